from __future__ import annotations

import base64
import binascii
import http.client
import logging
import re
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from urllib.parse import quote_from_bytes, unquote_to_bytes

from linkreader.classification import is_data_url

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
DOWNLOAD_CHUNK_SIZE = 64 * 1024

_DATA_URL_PATTERN = re.compile(r"^data:([^,]*?),(.*)$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class FetchRequest:
    target: str
    user_prompt: str | None = None


@dataclass(frozen=True)
class FetchedPayload:
    content: bytes
    declared_content_type: str
    source_identifier: str

    @property
    def size_mb(self) -> float:
        return len(self.content) / 1024 / 1024


class FetchError(Exception):
    def __init__(self, reason: str, kind: str = "network"):
        super().__init__(reason)
        self.reason = reason
        self.kind = kind


def parse_data_url(url: str) -> tuple[str, bytes]:
    """Decode `data:[<mediatype>][;base64],<data>` into (media type, bytes)."""
    match = _DATA_URL_PATTERN.match(url.strip())
    if not match:
        raise FetchError("Invalid data URL format.", kind="invalid_data_url")

    header, data = match.group(1), match.group(2)
    parameters = [item.strip() for item in header.split(";")]
    media_type = parameters[0] or "text/plain"
    is_base64 = any(item.lower() == "base64" for item in parameters[1:])

    if not is_base64:
        return media_type, unquote_to_bytes(data)

    try:
        return media_type, base64.b64decode(re.sub(r"\s+", "", data), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FetchError(f"Invalid base64 payload in data URL: {exc}", kind="invalid_data_url") from exc


def encode_data_url(media_type: str, content: bytes, *, use_base64: bool = True) -> str:
    if use_base64:
        return f"data:{media_type};base64,{base64.b64encode(content).decode('ascii')}"
    return f"data:{media_type},{quote_from_bytes(content)}"


def _read_limited(response, max_bytes: int, url: str) -> bytes:
    declared_length = response.headers.get("Content-Length")
    if declared_length and declared_length.isdigit() and int(declared_length) > max_bytes:
        raise FetchError(
            f"Remote file is {int(declared_length)} bytes, above the {max_bytes} byte limit.",
            kind="size_limit",
        )

    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = response.read(DOWNLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise FetchError(f"Download of {url} exceeded the {max_bytes} byte limit.", kind="size_limit")
        chunks.append(chunk)
    return b"".join(chunks)


def download(url: str, *, timeout: float, max_bytes: int) -> FetchedPayload:
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT, "Accept": "*/*"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            content_type = response.headers.get("Content-Type") or ""
            content = _read_limited(response, max_bytes, url)
            final_url = response.geturl() or url
    except urllib.error.HTTPError as exc:
        raise FetchError(f"Download failed with HTTP {exc.code}.", kind="network") from exc
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, (socket.timeout, TimeoutError)):
            raise FetchError(f"Download timed out after {timeout:.0f}s.", kind="timeout") from exc
        raise FetchError(f"Download failed: {exc.reason}", kind="network") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise FetchError(f"Download timed out after {timeout:.0f}s.", kind="timeout") from exc
    except (http.client.HTTPException, OSError) as exc:
        raise FetchError(f"Download failed: {str(exc) or type(exc).__name__}", kind="network") from exc
    except ValueError as exc:
        raise FetchError(f"Invalid URL: {exc}", kind="network") from exc

    logger.debug("Downloaded %s (%d bytes, %s)", final_url, len(content), content_type or "no content type")
    return FetchedPayload(content=content, declared_content_type=content_type, source_identifier=final_url)


def fetch_payload(target: str, *, timeout: float, max_bytes: int) -> FetchedPayload:
    if is_data_url(target):
        media_type, content = parse_data_url(target)
        if len(content) > max_bytes:
            raise FetchError(
                f"Inline payload is {len(content)} bytes, above the {max_bytes} byte limit.",
                kind="size_limit",
            )
        return FetchedPayload(content=content, declared_content_type=media_type, source_identifier="data-url")

    if not target.lower().startswith(("http://", "https://")):
        raise FetchError("Only http(s) URLs and data URLs are supported.", kind="network")
    return download(target, timeout=timeout, max_bytes=max_bytes)
