"""
Media URL canonicalization.

Turns decentralized-storage and CDN references into a fetchable https URL
plus the request headers the origin expects. Applying the normalizer to
its own output is a no-op (``retry=False``).
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

from gallery.config import IPFS_GATEWAYS

ALCHEMY_CDN_HOST = "nft-cdn.alchemy.com"
ARWEAVE_HOST = "arweave.net"

CID_RE = re.compile(r"^(Qm[1-9A-HJ-NP-Za-km-z]{44}|baf[a-z2-7]{50,})(/.*)?$")
IPFS_PATH_RE = re.compile(r"/ipfs/([A-Za-z0-9]+)(/[^?#]*)?")
ZORA_IPFS_PATTERNS = [
    re.compile(r"ipfs(?:%3a|:)(?:%2f|/){2}([A-Za-z0-9]{46,})", re.I),
    re.compile(r"ipfs/([A-Za-z0-9]{46,})", re.I),
]
RENDITION_SEGMENTS = {"original", "thumb", "thumbnail", "original.jpg", "thumb.jpg"}

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
}

# Hosts that reject or ignore provenance headers
NO_REFERER_HOSTS = set(IPFS_GATEWAYS.values()) | {ARWEAVE_HOST, "nftstorage.link", "w3s.link"}

PROVENANCE_ORIGINS = {
    "seadn.io": "https://opensea.io",
    "openseauserdata.com": "https://opensea.io",
    ALCHEMY_CDN_HOST: "https://dashboard.alchemy.com",
    "zora.co": "https://zora.co",
}


@dataclass
class NormalizedUrl:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def host(self) -> str:
        return (urlsplit(self.url).hostname or "").lower()


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def _has_rendition(path: str) -> bool:
    segments = [s for s in path.split("/") if s]
    if not segments:
        return False
    if any(s.lower() in RENDITION_SEGMENTS for s in segments):
        return True
    return "." in segments[-1]


def url_extension(url: str) -> str:
    """Lowercased file extension of the URL path, without the dot."""
    try:
        path = urlsplit(url).path if "://" in url else url.split("?", 1)[0]
    except ValueError:
        path = url.split("?", 1)[0]
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return ""
    return last.rsplit(".", 1)[-1].lower()


def _rewrite_ipfs_path(parts, gateway: str):
    match = IPFS_PATH_RE.search(parts.path)
    if not match:
        return parts
    path = f"/ipfs/{match.group(1)}{match.group(2) or ''}"
    return parts._replace(scheme="https", netloc=gateway, path=path)


def _zora_ipfs_hash(url: str) -> Optional[str]:
    for pattern in ZORA_IPFS_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def _headers_for(host: str, gateway: str) -> Dict[str, str]:
    headers = dict(DEFAULT_HEADERS)
    if host == gateway or any(_host_matches(host, h) for h in NO_REFERER_HOSTS):
        return headers
    for domain, origin in PROVENANCE_ORIGINS.items():
        if _host_matches(host, domain):
            headers["Origin"] = origin
            headers["Referer"] = origin + "/"
            return headers
    if host:
        headers["Referer"] = f"https://{host}/"
    return headers


def normalize_media_url(
    url: str,
    gateway: str = "cloudflare-ipfs.com",
    alchemy_api_key: str = "",
    retry: bool = False,
) -> NormalizedUrl:
    """Canonical https URL and request headers for a media reference.

    ``retry=True`` applies the relaxed variants used after a failed fetch:
    Alchemy CDN URLs lose their query string and seadn.io URLs lose their
    width parameter.
    """
    target = (url or "").strip()
    if not target or target.startswith("data:"):
        return NormalizedUrl(target, {})

    lowered = target.lower()
    if lowered.startswith("ipfs://"):
        rest = target[len("ipfs://"):]
        if rest.lower().startswith("ipfs/"):
            rest = rest[len("ipfs/"):]
        target = f"https://{gateway}/ipfs/{rest}"
    elif CID_RE.match(target):
        target = f"https://{gateway}/ipfs/{target}"
    elif lowered.startswith("ar://"):
        target = f"https://{ARWEAVE_HOST}/{target[len('ar://'):]}"

    if target.lower().startswith("http://"):
        target = "https://" + target[len("http://"):]

    parts = urlsplit(target)
    host = (parts.hostname or "").lower()

    if _host_matches(host, "api.zora.co") and "ipfs" in target.lower():
        ipfs_hash = _zora_ipfs_hash(unquote(target))
        if ipfs_hash:
            parts = urlsplit(f"https://{gateway}/ipfs/{ipfs_hash}")
    elif host != gateway and "/ipfs/" in parts.path:
        parts = _rewrite_ipfs_path(parts, gateway)

    host = (parts.hostname or "").lower()

    if host == ALCHEMY_CDN_HOST:
        if retry:
            parts = parts._replace(query="")
            if not _has_rendition(parts.path):
                parts = parts._replace(path=parts.path.rstrip("/") + "/original.jpg")
        else:
            if not parts.query and not _has_rendition(parts.path):
                parts = parts._replace(path=parts.path.rstrip("/") + "/original.jpg")
            query = parse_qsl(parts.query, keep_blank_values=True)
            if alchemy_api_key and not any(k == "apiKey" for k, _ in query):
                query.append(("apiKey", alchemy_api_key))
                parts = parts._replace(query=urlencode(query, quote_via=quote))
    elif _host_matches(host, "seadn.io") and retry and parts.query:
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
                 if not (k == "w" and v.isdigit())]
        parts = parts._replace(query=urlencode(query, quote_via=quote))

    return NormalizedUrl(urlunsplit(parts), _headers_for(host, gateway))
