"""
Size-capped content download.
"""

import logging
import re
import time
from dataclasses import dataclass
from email.message import Message
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from ..core.deadline import run_with_deadline
from ..core.errors import PayloadTooLarge, RequestFailed
from ..storage.models import MAX_URL_LENGTH

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
}
_RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    *(f"COM{i}" for i in range(1, 10)),
    *(f"LPT{i}" for i in range(1, 10)),
}
_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]+')


@dataclass(frozen=True)
class FetchedContent:
    """Downloaded bytes plus what we learned about them."""
    url: str
    data: bytes
    file_name: str
    mime_type: Optional[str] = None


def extension_for_content_type(content_type: Optional[str]) -> str:
    """File extension for a MIME type, ".bin" when unknown."""
    if not content_type:
        return ".bin"
    return _EXTENSIONS.get(content_type.split(";")[0].strip().lower(), ".bin")


def clean_file_name(file_name: str, max_length: int = 255) -> str:
    """Make a remote file name safe to store and upload.

    Raises:
        ValueError: If nothing usable remains after cleaning
    """
    if file_name is None or not file_name.strip():
        raise ValueError("file_name cannot be empty")

    cleaned = _INVALID_CHARS.sub("_", file_name.strip())
    while ".." in cleaned:
        cleaned = cleaned.replace("..", ".")
    cleaned = re.sub(r"_+", "_", cleaned).strip(" ._")
    if not cleaned:
        raise ValueError(f"file_name has no usable characters: {file_name!r}")

    stem = cleaned.split(".")[0].upper()
    if stem in _RESERVED_NAMES:
        cleaned = f"_{cleaned}"

    if len(cleaned) > max_length:
        suffix = PurePosixPath(cleaned).suffix[:16]
        cleaned = cleaned[:max_length - len(suffix)] + suffix
    return cleaned


def _disposition_file_name(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    message = Message()
    message["content-disposition"] = header
    return message.get_filename()


def resolve_file_name(url: str, response: httpx.Response) -> str:
    """Pick a file name from the URL, Content-Disposition, or a timestamp."""
    name = unquote(PurePosixPath(urlparse(url).path).name)
    if not name or not PurePosixPath(name).suffix:
        name = _disposition_file_name(response.headers.get("content-disposition")) or name

    content_type = response.headers.get("content-type")
    if not name:
        name = f"image_{int(time.time())}{extension_for_content_type(content_type)}"
    try:
        return clean_file_name(name)
    except ValueError:
        return f"image_{int(time.time())}{extension_for_content_type(content_type)}"


async def _download(url: str, client: httpx.AsyncClient, max_bytes: int) -> FetchedContent:
    async with client.stream("GET", url, follow_redirects=True) as response:
        if response.status_code < 200 or response.status_code >= 300:
            raise RequestFailed(response.status_code, f"GET {url}", "Download")

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise PayloadTooLarge(int(declared), max_bytes)

        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) > max_bytes:
                raise PayloadTooLarge(len(buffer), max_bytes)

        content_type = response.headers.get("content-type")
        return FetchedContent(
            url=url,
            data=bytes(buffer),
            file_name=resolve_file_name(url, response),
            mime_type=content_type.split(";")[0].strip() if content_type else None,
        )


async def fetch_content(
    url: str,
    client: httpx.AsyncClient,
    max_bytes: int,
    timeout: float,
) -> FetchedContent:
    """Download a resource with a size ceiling and a hard deadline.

    Args:
        url: http(s) URL of the resource
        client: HTTP client to download with
        max_bytes: Maximum accepted body size
        timeout: Deadline in seconds for the whole download

    Raises:
        ValueError: If the URL is not http(s) or is too long to store
        PayloadTooLarge: If the body exceeds max_bytes
        RequestFailed: On non-success status or transport error
        OperationTimedOut: If the download exceeds the deadline
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"URL must be an absolute http(s) URL: {url!r}")
    if len(url) > MAX_URL_LENGTH:
        raise ValueError(f"URL cannot exceed {MAX_URL_LENGTH} characters")

    try:
        content = await run_with_deadline(_download(url, client, max_bytes), timeout)
    except httpx.RequestError as e:
        raise RequestFailed(None, str(e), "Download") from e

    logger.debug("Downloaded %s (%d bytes)", url, len(content.data))
    return content
