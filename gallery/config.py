# config.py
import logging
import re
from typing import Dict

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ALCHEMY_API_KEY: str = ""
    NEYNAR_API_KEY: str = "NEYNAR_API_DOCS"
    ZAPPER_API_KEY: str = ""
    IPFS_GATEWAY: str = "cloudflare-ipfs.com"

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    APP_BASE_URL: str = "https://gall3ry.vercel.app"

    NEYNAR_API_URL: str = "https://api.neynar.com/v2/farcaster"
    ZAPPER_API_URL: str = "https://public.zapper.xyz/graphql"

    # Upstream client policy
    REQUEST_TIMEOUT: float = 10.0
    MAX_RETRIES: int = 2
    RETRY_BACKOFF: float = 1.0
    RETRY_BACKOFF_MAX: float = 8.0
    UPSTREAM_CONCURRENCY: int = 4

    # Media proxy
    IMAGE_TIMEOUT: float = 8.0
    MEDIA_TIMEOUT: float = 15.0
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024
    MAX_MEDIA_BYTES: int = 30 * 1024 * 1024
    MAX_REDIRECTS: int = 5

    # Aggregation
    AGGREGATION_CONCURRENCY: int = 4
    PAGE_DELAY: float = 1.5
    AGGREGATION_TIMEOUT: float = 120.0
    RESOLVE_TIMEOUT: float = 20.0

    # In-process caches
    CACHE_ENABLED: bool = True
    IDENTITY_CACHE_SIZE: int = 1000
    IDENTITY_CACHE_TTL: int = 300
    NFT_CACHE_SIZE: int = 500
    NFT_CACHE_TTL: int = 900

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def ipfs_gateway_host(self) -> str:
        """Gateway host, resolving shorthands like ``cloudflare``."""
        gateway = (self.IPFS_GATEWAY or "").strip().lower()
        gateway = re.sub(r"^https?://", "", gateway).rstrip("/")
        gateway = re.sub(r"/ipfs$", "", gateway)
        return IPFS_GATEWAYS.get(gateway, gateway or IPFS_GATEWAYS["cloudflare"])

    def alchemy_base_url(self, network: str) -> str:
        return f"https://{network}.g.alchemy.com"

    def alchemy_nft_url(self, network: str) -> str:
        return f"{self.alchemy_base_url(network)}/nft/v3/{self.ALCHEMY_API_KEY}"

    def alchemy_rpc_url(self, network: str) -> str:
        key = self.ALCHEMY_API_KEY or "demo"
        return f"{self.alchemy_base_url(network)}/v2/{key}"


settings = Settings()


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_gallery", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._gallery = True
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


_KEY_IN_PATH = re.compile(r"/(v2|v3)/[A-Za-z0-9_\-]{8,}")
_KEY_IN_QUERY = re.compile(r"(?i)(api_?key=)[^&]+")


def redact(url: str) -> str:
    """Hide API keys embedded in upstream URLs before logging them."""
    url = _KEY_IN_PATH.sub(r"/\1/***", url)
    return _KEY_IN_QUERY.sub(r"\1***", url)


# IPFS gateway shorthands
IPFS_GATEWAYS: Dict[str, str] = {
    "cloudflare": "cloudflare-ipfs.com",
    "ipfs.io": "ipfs.io",
    "ipfs": "ipfs.io",
    "pinata": "gateway.pinata.cloud",
    "dweb": "dweb.link",
    "filebase": "ipfs.filebase.io",
}

# Known spam contracts (lowercase)
SPAM_CONTRACTS = {
    "0x94f1b9b64e2932f6a2db338f616844400cd58e8a",
    "0xbda83686c90314cfbaaeb18db46723d83fdf0c83",
    "0xba36735021a9ccd7582ebc7f70164794154ff30e",
    "0x0000000000000000000000000000000000000000",
}
