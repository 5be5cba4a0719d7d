"""
Media proxy
Fetches NFT artwork on behalf of the browser. Every request ends in either
the upstream bytes or an SVG placeholder; errors never reach the client.
"""

import asyncio
import base64
import ipaddress
import logging
from html import escape
from typing import Dict, Optional, Tuple
from urllib.parse import quote, unquote, urlsplit

import aiohttp

from gallery.config import Settings, redact, settings as default_settings
from gallery.entities import MediaResponse
from gallery.services.base_client import BaseAPIClient
from gallery.url_normalizer import normalize_media_url, url_extension

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = {"mp4", "webm", "mov", "mp3", "wav", "ogg"}
GENERIC_TYPES = {"", "application/octet-stream", "text/plain", "binary/octet-stream"}
BLOCKED_HOSTS = {"localhost", "localhost.localdomain", "0.0.0.0", "::1", "127.0.0.1"}

EXTENSION_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "avif": "image/avif",
    "bmp": "image/bmp",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
}

PLACEHOLDER_TEMPLATE = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="200" height="200" viewBox="0 0 200 200">'
    '<rect width="200" height="200" fill="#f0f0f0"/>'
    '<text x="50%" y="50%" font-family="Arial" font-size="12" text-anchor="middle" fill="#888">{message}</text>'
    "</svg>"
)


class MediaFetchError(Exception):
    """Internal to the proxy; always converted to a placeholder."""

    def __init__(self, reason: str, status: Optional[int] = None, retryable: bool = True):
        super().__init__(reason)
        self.reason = reason
        self.status = status
        self.retryable = retryable


def placeholder(message: str, upstream_status: Optional[int] = None) -> MediaResponse:
    text = escape((message or "Image unavailable")[:60])
    return MediaResponse(
        body=PLACEHOLDER_TEMPLATE.format(message=text).encode("utf-8"),
        content_type="image/svg+xml",
        source_status="placeholder",
        cache_seconds=3600,
        upstream_status=upstream_status,
    )


def sniff_content_type(body: bytes) -> Optional[str]:
    if body.startswith(b"\x89PNG"):
        return "image/png"
    if body.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if body.startswith(b"GIF8"):
        return "image/gif"
    if body[:4] == b"RIFF" and body[8:12] == b"WEBP":
        return "image/webp"
    head = body[:256].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return "image/svg+xml"
    return None


def resolve_content_type(header: Optional[str], url: str, body: bytes) -> str:
    """Upstream type unless generic, then extension, then magic bytes, then JPEG."""
    content_type = (header or "").strip()
    if content_type.split(";", 1)[0].strip().lower() not in GENERIC_TYPES:
        return content_type
    return EXTENSION_TYPES.get(url_extension(url)) or sniff_content_type(body) or "image/jpeg"


def content_disposition(filename: str) -> str:
    """Inline disposition header value that survives latin-1 header encoding."""
    name = unquote(filename or "") or "media"
    fallback = "".join(c if 32 <= ord(c) < 127 and c not in '"\\' else "_" for c in name)
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"


def is_blocked_host(host: str) -> bool:
    host = (host or "").strip("[]").lower()
    if not host or host in BLOCKED_HOSTS or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private or address.is_unspecified or address.is_link_local


def decode_data_uri(uri: str) -> Tuple[bytes, str]:
    header, _, payload = uri[len("data:"):].partition(",")
    parts = header.split(";")
    content_type = parts[0] or "text/plain"
    if "base64" in (p.lower() for p in parts[1:]):
        return base64.b64decode(payload + "=" * (-len(payload) % 4)), content_type
    return unquote(payload).encode("utf-8"), content_type


class MediaProxy(BaseAPIClient):
    name = "media"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, config: Optional[Settings] = None):
        self.config = config or default_settings
        super().__init__(
            session,
            timeout=self.config.IMAGE_TIMEOUT,
            max_retries=self.config.MAX_RETRIES,
            backoff=self.config.RETRY_BACKOFF,
            max_backoff=self.config.RETRY_BACKOFF_MAX,
            concurrency=self.config.UPSTREAM_CONCURRENCY * 4,
        )

    async def fetch(self, url: Optional[str]) -> MediaResponse:
        """Bytes for ``url`` or a placeholder; never raises."""
        source = (url or "").strip()
        if "://" not in source and "%3a" in source.lower():
            source = unquote(source)
        if not source:
            return placeholder("Missing URL")

        if source.startswith("data:"):
            try:
                body, content_type = decode_data_uri(source)
            except (ValueError, TypeError):
                return placeholder("Invalid data URI")
            return MediaResponse(body=body, content_type=content_type)

        is_media = url_extension(source) in MEDIA_EXTENSIONS
        last_error: Optional[MediaFetchError] = None
        for attempt in range(self.max_retries + 1):
            try:
                normalized = normalize_media_url(
                    source,
                    gateway=self.config.ipfs_gateway_host,
                    alchemy_api_key=self.config.ALCHEMY_API_KEY,
                    retry=attempt > 0,
                )
                parts = urlsplit(normalized.url)
                hostname = parts.hostname
            except ValueError:
                return placeholder("Invalid URL")
            if parts.scheme != "https" or not hostname:
                return placeholder("Invalid URL")
            if is_blocked_host(hostname):
                logger.info("Refusing to proxy local address %s", hostname)
                return placeholder("Blocked host")

            try:
                return await self._get(normalized.url, normalized.headers, is_media)
            except MediaFetchError as e:
                last_error = e
            if not last_error.retryable:
                break
            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff_delay(attempt))

        logger.info("Serving placeholder for %s: %s", redact(source), last_error.reason)
        return placeholder(last_error.reason, last_error.status)

    async def _get(self, url: str, headers: Dict[str, str], is_media: bool) -> MediaResponse:
        max_bytes = self.config.MAX_MEDIA_BYTES if is_media else self.config.MAX_IMAGE_BYTES
        timeout = self.config.MEDIA_TIMEOUT if is_media else self.config.IMAGE_TIMEOUT
        try:
            async with self._semaphore:
                async with self.session.get(
                    url,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                    max_redirects=self.config.MAX_REDIRECTS,
                ) as response:
                    if response.status >= 400:
                        raise MediaFetchError(f"Error {response.status}", response.status)
                    length = response.content_length
                    if length is not None and length > max_bytes:
                        raise MediaFetchError("Too large", response.status, retryable=False)
                    body = bytearray()
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        body.extend(chunk)
                        if len(body) > max_bytes:
                            raise MediaFetchError("Too large", response.status, retryable=False)
                    header_type = response.headers.get("Content-Type")
                    final_url = str(response.url)
        except asyncio.TimeoutError:
            raise MediaFetchError("Timeout")
        except aiohttp.TooManyRedirects:
            raise MediaFetchError("Too many redirects", retryable=False)
        except aiohttp.ClientError as e:
            raise MediaFetchError(f"Network error: {type(e).__name__}")

        if not body:
            raise MediaFetchError("Empty response")

        content_type = resolve_content_type(header_type, final_url or url, bytes(body))
        filename = None
        if content_type.startswith(("video/", "audio/")):
            filename = urlsplit(url).path.rsplit("/", 1)[-1] or "media"
        return MediaResponse(body=bytes(body), content_type=content_type, filename=filename)
