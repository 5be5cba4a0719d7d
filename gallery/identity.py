"""
Identity Resolver
Maps a Farcaster handle (username, @username, profile URL or numeric FID)
to an Identity and its linked wallet addresses.
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from gallery.cache import ResponseCache, identity_cache
from gallery.config import Settings, settings as default_settings
from gallery.entities import Identity
from gallery.errors import (
    GalleryError,
    InvalidArgumentError,
    NotFoundError,
    UpstreamError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

_PROFILE_URL_RE = re.compile(r"^(?:https?://)?(?:www\.)?(?:warpcast\.com|farcaster\.xyz)/", re.I)

Lookup = Callable[[], Awaitable[Optional[Identity]]]


def normalize_handle(handle: Union[str, int, None]) -> str:
    """Bare lowercase username, or the FID digits."""
    if handle is None or isinstance(handle, bool):
        raise InvalidArgumentError("username is required")
    value = str(handle).strip()
    value = _PROFILE_URL_RE.sub("", value)
    value = value.split("?", 1)[0].split("#", 1)[0].strip("/")
    value = value.split("/", 1)[0].lstrip("@").strip().lower()
    if not value:
        raise InvalidArgumentError("username is required")
    return value


class IdentityResolver:
    """Zapper first, then Neynar; a ``.eth`` handle gets one stripped retry."""

    def __init__(self, zapper, neynar, config: Optional[Settings] = None,
                 cache: Optional[ResponseCache] = None):
        self.zapper = zapper
        self.neynar = neynar
        self.config = config or default_settings
        self.cache = cache if cache is not None else identity_cache

    async def resolve(self, handle: Union[str, int]) -> Identity:
        key = normalize_handle(handle)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Identity cache hit for %s", key)
            return cached

        try:
            identity = await asyncio.wait_for(self._resolve(key), timeout=self.config.RESOLVE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Resolving %s timed out after %.0fs", key, self.config.RESOLVE_TIMEOUT)
            raise UpstreamTimeoutError(f"Timed out resolving {key}")

        logger.info(
            "Resolved %s to fid %s with %d address(es)",
            key, identity.fid, len(identity.all_addresses()),
        )
        self.cache.set(key, identity)
        if identity.username:
            self.cache.set(identity.username.lower(), identity)
        self.cache.set(str(identity.fid), identity)
        return identity

    async def _resolve(self, key: str) -> Identity:
        if key.isdigit():
            lookups = self._fid_lookups(int(key))
        else:
            lookups = self._username_lookups(key)
            if key.endswith(".eth") and len(key) > 4:
                lookups += self._username_lookups(key[:-4])

        errors: List[GalleryError] = []
        not_found = False
        for source, lookup in lookups:
            try:
                identity = await lookup()
            except NotFoundError:
                not_found = True
                continue
            except GalleryError as e:
                logger.warning("%s lookup for %s failed: %s", source, key, e.message)
                errors.append(e)
                continue
            if identity is not None:
                return identity
            not_found = True

        if errors and not not_found:
            raise UpstreamError(f"Could not resolve {key}", detail=errors[-1].message,
                                upstream_status=errors[-1].upstream_status)
        raise NotFoundError(f"Farcaster user not found: {key}")

    def _username_lookups(self, username: str) -> List[Tuple[str, Lookup]]:
        lookups = []
        if getattr(self.zapper, "enabled", True):
            lookups.append(("zapper", lambda: self.zapper.farcaster_profile(username=username)))
        lookups.append(("neynar", lambda: self.neynar.user_by_username(username)))
        lookups.append(("neynar-search", lambda: self._search_exact(username)))
        return lookups

    def _fid_lookups(self, fid: int) -> List[Tuple[str, Lookup]]:
        lookups = []
        if getattr(self.zapper, "enabled", True):
            lookups.append(("zapper", lambda: self.zapper.farcaster_profile(fid=fid)))
        lookups.append(("neynar", lambda: self._user_by_fid(fid)))
        return lookups

    async def _user_by_fid(self, fid: int) -> Optional[Identity]:
        users = await self.neynar.users_by_fid([fid])
        return next((u for u in users if u.fid == fid), None)

    async def _search_exact(self, username: str) -> Optional[Identity]:
        users = await self.neynar.search(username, limit=5)
        return next((u for u in users if (u.username or "").lower() == username), None)

    async def search(self, prefix: str, limit: int = 10) -> List[Identity]:
        query = (prefix or "").strip().lstrip("@")
        if not query:
            raise InvalidArgumentError("q is required")
        if limit < 1:
            raise InvalidArgumentError("limit must be positive")
        return await self.neynar.search(query, limit=min(limit, 100))

    async def addresses(self, handle: Union[str, int]) -> List[str]:
        return (await self.resolve(handle)).all_addresses()
