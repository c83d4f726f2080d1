import asyncio

import pytest

from orpheus.lib import config
from orpheus.lib.events import EventEmitter


@pytest.fixture(autouse=True)
def empty_config(monkeypatch):
    """Keep the developer's ~/.orpheus/config.json out of the tests."""
    monkeypatch.setattr(config, "_config", {})


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process.

    Must be created inside a running loop (StreamReader binds to it).
    """

    def __init__(self, lines=(), *, eof=True, output=b"", returncode=None):
        self.stdout = asyncio.StreamReader()
        for line in lines:
            self.stdout.feed_data(line.encode("utf-8") + b"\n")
        if eof:
            self.stdout.feed_eof()
        self.returncode = returncode
        self.killed = False
        self._output = output

    def push(self, line: str):
        self.stdout.feed_data(line.encode("utf-8") + b"\n")

    def kill(self):
        self.killed = True
        self.stdout.feed_eof()
        if self.returncode is None:
            self.returncode = -9

    async def wait(self):
        if self.returncode is None:
            self.returncode = 0
        return self.returncode

    async def communicate(self):
        if self.returncode is None:
            self.returncode = 0
        return self._output, b""


class FakeSpawner:
    """Replaces DetectorBase._spawn: streams get *stream*, one-shots get a
    fresh FakeProcess built from *query_output* / *query_rc*."""

    def __init__(self, stream=None, query_output=b"", query_rc=0):
        self.stream = stream
        self.query_output = query_output
        self.query_rc = query_rc
        self.calls = []

    async def __call__(self, cmd, stderr=None):
        self.calls.append(cmd)
        if self.stream is not None and self._is_stream(cmd):
            return self.stream
        output = self.query_output
        if isinstance(output, str):
            output = output.encode("utf-8")
        return FakeProcess(output=output, returncode=self.query_rc)

    @staticmethod
    def _is_stream(cmd):
        return "stream" in cmd or "--follow" in cmd or (
            cmd[0] == "powershell" and "while ($true)" in cmd[-1])


class FakeResolver:

    def __init__(self, cover=None, delay=0.0):
        self.cover = cover
        self.delay = delay
        self.calls = []
        self.closed = False

    async def fetch_cover_art(self, artist, album=None, title=None):
        self.calls.append((artist, album, title))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.cover

    async def close(self):
        self.closed = True


class FakeDetector(EventEmitter):
    """Façade/server-facing detector with canned results."""

    def __init__(self, now_playing=None, error=None):
        super().__init__()
        self.now_playing = now_playing
        self.error = error
        self.current = None
        self.started = 0
        self.stopped = 0

    async def start(self):
        if self.error is not None:
            raise self.error
        self.started += 1

    async def stop(self):
        self.stopped += 1

    async def get_now_playing(self):
        if self.error is not None:
            raise self.error
        return self.now_playing

    def get_current_track(self):
        return self.current


async def wait_for(predicate, timeout=2.0, interval=0.01):
    """Poll *predicate* until true or *timeout* seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
