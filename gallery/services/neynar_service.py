"""
Social-graph client
Farcaster profiles, following lists and user search through Neynar v2.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from gallery.config import Settings, settings as default_settings
from gallery.entities import Identity, unique_addresses
from gallery.errors import NotFoundError, UpstreamError
from gallery.services.base_client import BaseAPIClient

logger = logging.getLogger(__name__)

FOLLOWING_PAGE_SIZE = 100


def user_addresses(user: Dict[str, Any]) -> List[str]:
    """Custody address plus verified ETH addresses, lowercased and unique."""
    candidates = [user.get("custody_address")]
    verified = user.get("verified_addresses") or {}
    if isinstance(verified, dict):
        candidates.extend(verified.get("eth_addresses") or [])
    elif isinstance(verified, list):
        candidates.extend(verified)
    candidates.extend(user.get("verifications") or [])
    return unique_addresses(candidates)


def identity_from_user(user: Dict[str, Any]) -> Identity:
    """Convert a Neynar user object into an Identity."""
    verified = user.get("verified_addresses") or {}
    connected = list(verified.get("eth_addresses") or []) if isinstance(verified, dict) else list(verified)
    connected.extend(user.get("verifications") or [])
    bio = ((user.get("profile") or {}).get("bio") or {}).get("text")
    return Identity(
        fid=int(user["fid"]),
        username=user.get("username") or "",
        display_name=user.get("display_name") or user.get("username"),
        avatar_url=user.get("pfp_url"),
        custody_address=user.get("custody_address"),
        connected_addresses=connected,
        bio=bio,
        follower_count=user.get("follower_count"),
        following_count=user.get("following_count"),
    )


class NeynarService(BaseAPIClient):
    name = "neynar"

    def __init__(self, session=None, config: Optional[Settings] = None, **kwargs):
        self.config = config or default_settings
        self.base_url = self.config.NEYNAR_API_URL.rstrip("/")
        kwargs.setdefault("timeout", self.config.REQUEST_TIMEOUT)
        kwargs.setdefault("max_retries", self.config.MAX_RETRIES)
        kwargs.setdefault("backoff", self.config.RETRY_BACKOFF)
        kwargs.setdefault("max_backoff", self.config.RETRY_BACKOFF_MAX)
        kwargs.setdefault("concurrency", self.config.UPSTREAM_CONCURRENCY)
        super().__init__(session, **kwargs)

    def _get_default_headers(self) -> Dict[str, str]:
        headers = super()._get_default_headers()
        headers["x-api-key"] = self.config.NEYNAR_API_KEY
        return headers

    async def following(self, fid: int, cursor: Optional[str] = None) -> Tuple[List[Dict], Optional[str]]:
        """One page of the users ``fid`` follows, as raw Neynar user objects."""
        params = {"fid": str(fid), "limit": str(FOLLOWING_PAGE_SIZE)}
        if cursor:
            params["cursor"] = cursor
        data = await self.get(f"{self.base_url}/following", params=params)
        if not isinstance(data, dict):
            raise UpstreamError("neynar returned a malformed following page")

        users = []
        for entry in data.get("users") or []:
            user = entry.get("user", entry) if isinstance(entry, dict) else None
            if isinstance(user, dict) and user.get("fid") is not None:
                users.append(user)
        next_cursor = (data.get("next") or {}).get("cursor")
        return users, next_cursor or None

    async def user_by_username(self, username: str) -> Optional[Identity]:
        try:
            data = await self.get(f"{self.base_url}/user/by_username", params={"username": username})
        except NotFoundError:
            return None
        user = (data or {}).get("user") if isinstance(data, dict) else None
        if not user:
            return None
        return identity_from_user(user)

    async def users_by_fid(self, fids: List[int]) -> List[Identity]:
        if not fids:
            return []
        try:
            data = await self.get(
                f"{self.base_url}/user/bulk",
                params={"fids": ",".join(str(f) for f in fids)},
            )
        except NotFoundError:
            return []
        users = (data or {}).get("users") or [] if isinstance(data, dict) else []
        return [identity_from_user(u) for u in users if u.get("fid") is not None]

    async def search(self, prefix: str, limit: int = 10) -> List[Identity]:
        try:
            data = await self.get(
                f"{self.base_url}/user/search",
                params={"q": prefix, "limit": str(max(1, min(limit, 100)))},
            )
        except NotFoundError:
            return []
        if not isinstance(data, dict):
            raise UpstreamError("neynar returned malformed search results")
        users = (data.get("result") or {}).get("users") or data.get("users") or []
        return [identity_from_user(u) for u in users if u.get("fid") is not None]
