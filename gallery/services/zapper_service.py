"""
Portfolio GraphQL client
Farcaster profile <-> address mapping and portfolio NFTs from Zapper.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from gallery.config import Settings, settings as default_settings
from gallery.entities import Identity
from gallery.errors import NotFoundError, UpstreamError
from gallery.services.base_client import BaseAPIClient

logger = logging.getLogger(__name__)

FARCASTER_PROFILE_QUERY = """
query FarcasterProfile($username: String, $fid: Int) {
  farcasterProfile(username: $username, fid: $fid) {
    username
    fid
    metadata {
      displayName
      description
      imageUrl
    }
    custodyAddress
    connectedAddresses
  }
}
"""

NFT_USERS_TOKENS_QUERY = """
query NftUsersTokens($owners: [Address!]!, $first: Int, $after: String) {
  nftUsersTokens(owners: $owners, first: $first, after: $after, withOverrides: true) {
    edges {
      node {
        id
        tokenId
        name
        mediasV2 {
          ... on Image { url originalUri original }
          ... on Animation { url originalUri original }
        }
        collection {
          address
          name
          network
          floorPriceEth
          cardImageUrl
        }
      }
      ownedAt
      owner
      cursor
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""


def identity_from_profile(profile: Dict[str, Any]) -> Identity:
    metadata = profile.get("metadata") or {}
    return Identity(
        fid=int(profile["fid"]),
        username=profile.get("username") or "",
        display_name=metadata.get("displayName") or profile.get("username"),
        avatar_url=metadata.get("imageUrl"),
        custody_address=profile.get("custodyAddress"),
        connected_addresses=list(profile.get("connectedAddresses") or []),
        bio=metadata.get("description"),
    )


class ZapperService(BaseAPIClient):
    name = "zapper"

    def __init__(self, session=None, config: Optional[Settings] = None, **kwargs):
        self.config = config or default_settings
        kwargs.setdefault("timeout", self.config.REQUEST_TIMEOUT)
        kwargs.setdefault("max_retries", self.config.MAX_RETRIES)
        kwargs.setdefault("backoff", self.config.RETRY_BACKOFF)
        kwargs.setdefault("max_backoff", self.config.RETRY_BACKOFF_MAX)
        kwargs.setdefault("concurrency", self.config.UPSTREAM_CONCURRENCY)
        super().__init__(session, **kwargs)

    @property
    def enabled(self) -> bool:
        return bool(self.config.ZAPPER_API_KEY)

    def _get_default_headers(self) -> Dict[str, str]:
        headers = super()._get_default_headers()
        headers["Content-Type"] = "application/json"
        headers["x-zapper-api-key"] = self.config.ZAPPER_API_KEY
        return headers

    async def query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        payload = await self.post(self.config.ZAPPER_API_URL, json_data={"query": query, "variables": variables})
        if not isinstance(payload, dict):
            raise UpstreamError("zapper returned a malformed response")
        if payload.get("errors"):
            messages = "; ".join(str(e.get("message", e)) for e in payload["errors"] if e)
            raise UpstreamError("zapper GraphQL error", detail=messages[:300])
        return payload.get("data") or {}

    async def farcaster_profile(self, username: Optional[str] = None, fid: Optional[int] = None) -> Optional[Identity]:
        """Profile by username or fid; None when not found or Zapper is not configured."""
        if not self.enabled:
            logger.debug("ZAPPER_API_KEY not set, skipping zapper profile lookup")
            return None
        variables = {"fid": int(fid)} if fid is not None else {"username": username}
        try:
            data = await self.query(FARCASTER_PROFILE_QUERY, variables)
        except NotFoundError:
            return None
        profile = data.get("farcasterProfile")
        if not profile or profile.get("fid") is None:
            return None
        return identity_from_profile(profile)

    async def user_nft_tokens(
        self,
        owners: List[str],
        cursor: Optional[str] = None,
        page_size: int = 50,
    ) -> Tuple[List[Dict], Optional[str]]:
        """One page of portfolio NFTs; nodes carry ``owner`` when Zapper reports it."""
        if not self.enabled:
            return [], None
        data = await self.query(
            NFT_USERS_TOKENS_QUERY,
            {"owners": owners, "first": page_size, "after": cursor},
        )
        connection = data.get("nftUsersTokens") or {}
        nodes = []
        for edge in connection.get("edges") or []:
            node = (edge or {}).get("node")
            if not node:
                continue
            node = dict(node)
            if edge.get("owner"):
                node.setdefault("owner", edge["owner"])
            if edge.get("ownedAt"):
                node.setdefault("ownedAt", edge["ownedAt"])
            nodes.append(node)
        page_info = connection.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
        return nodes, next_cursor
