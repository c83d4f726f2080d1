# Orpheus
# Copyright (C) 2024-2026 Orpheus contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Artwork helpers — turn whatever the OS hands us into something an overlay
can put in an <img src>.

  embedded bytes / base64   → data URI (MIME sniffed from magic bytes)
  file:// reference          → read off-loop, data URI
  http(s):// reference       → passed through unchanged
  downloaded cover art       → re-encoded JPEG data URI (Pillow, thread pool)
"""

import asyncio
import base64
import binascii
import logging
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from pathlib import Path
from urllib.parse import unquote, urlparse

from PIL import Image, UnidentifiedImageError

log = logging.getLogger(__name__)

MAX_ARTWORK_SIZE = 500 * 1024  # 500 KB limit for JPEG output
DEFAULT_MIME = "image/jpeg"

# Shared thread pool for CPU-bound image processing and file reads
_artwork_executor = ThreadPoolExecutor(max_workers=2)


def sniff_mime(data: bytes, default: str = DEFAULT_MIME) -> str:
    """Guess an image MIME type from its leading bytes."""
    try:
        with Image.open(BytesIO(data)) as image:
            return Image.MIME.get(image.format or "", default)
    except (UnidentifiedImageError, OSError, ValueError):
        return default


def to_data_uri(data: bytes, mime: str | None = None) -> str:
    mime = mime or sniff_mime(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_embedded(artwork_b64: str | None, mime: str | None = None) -> str | None:
    """Base64 artwork from a platform event → data URI, or None if unusable."""
    if not artwork_b64:
        return None
    try:
        raw = base64.b64decode(artwork_b64, validate=False)
    except (binascii.Error, ValueError) as e:
        log.warning("Discarding undecodable artwork: %s", e)
        return None
    if not raw:
        return None
    if mime:
        return f"data:{mime};base64,{artwork_b64}"
    return to_data_uri(raw)


def _read_file(path: str) -> bytes | None:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        log.debug("Could not read artwork file %s: %s", path, e)
        return None


async def load_local_file(url: str) -> str | None:
    """Read a ``file://`` URL (or bare path) into a data URI."""
    path = unquote(urlparse(url).path) if url.startswith("file://") else url
    loop = asyncio.get_running_loop()
    data = await loop.run_in_executor(_artwork_executor, _read_file, path)
    if not data:
        return None
    return to_data_uri(data)


def is_remote(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def is_local(url: str) -> bool:
    return url.startswith("file://") or url.startswith("/")


def _process_image(image_bytes: bytes) -> str | None:
    """Re-encode raw image bytes as a compressed JPEG data URI.

    Runs in a thread pool (CPU-bound).  Returns None on failure.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        if image.mode in ("RGBA", "LA", "P"):
            image = image.convert("RGB")

        buf = BytesIO()
        image.save(buf, "JPEG", quality=85)
        if buf.tell() > MAX_ARTWORK_SIZE:
            buf = BytesIO()
            image.save(buf, "JPEG", quality=60)

        return to_data_uri(buf.getvalue(), "image/jpeg")
    except Exception as e:
        log.warning("Error processing image: %s", e)
        return None


async def encode_image(image_bytes: bytes) -> str | None:
    if not image_bytes:
        return None
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        _artwork_executor, _process_image, image_bytes)
