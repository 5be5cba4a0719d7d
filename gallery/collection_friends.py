"""
Collection friends
Which accounts a Farcaster user follows also hold a given NFT collection.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from gallery.entities import Chain, CollectionFriendsResult, Friend, normalize_address
from gallery.errors import InvalidArgumentError
from gallery.services.neynar_service import user_addresses

logger = logging.getLogger(__name__)


def _parse_fid(fid: Any) -> int:
    try:
        value = int(str(fid).strip())
    except (TypeError, ValueError):
        raise InvalidArgumentError("fid must be a positive integer")
    if value <= 0:
        raise InvalidArgumentError("fid must be a positive integer")
    return value


def _friend(user: Dict[str, Any], address: str) -> Friend:
    return Friend(
        fid=int(user["fid"]),
        username=user.get("username") or "",
        display_name=user.get("display_name") or user.get("username"),
        avatar_url=user.get("pfp_url"),
        address=address,
    )


class CollectionFriendsService:
    def __init__(self, neynar, alchemy):
        self.neynar = neynar
        self.alchemy = alchemy

    async def following_users(self, fid: int) -> List[Dict]:
        users: List[Dict] = []
        cursor = None
        while True:
            page, cursor = await self.neynar.following(fid, cursor)
            users.extend(page)
            if not cursor:
                return users

    async def owner_addresses(self, chain: Chain, contract: str) -> Set[str]:
        owners: Set[str] = set()
        page_key = None
        while True:
            holders, page_key = await self.alchemy.owners_for_contract(chain, contract, page_key)
            owners.update(h.address for h in holders)
            if not page_key:
                return owners

    async def collection_friends(
        self,
        fid: Any,
        contract: str,
        chain: Any = Chain.ETH,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> CollectionFriendsResult:
        """Followed accounts holding ``contract``, in follow-list order.

        Both upstream walks must finish; any failure propagates and no
        partial friend list is returned. ``cursor`` is accepted for API
        compatibility and currently ignored.
        """
        fid = _parse_fid(fid)
        contract_address = normalize_address(contract)
        if contract_address is None:
            raise InvalidArgumentError("contractAddress must be a valid EVM address")
        if limit is None or limit < 0:
            raise InvalidArgumentError("limit must be zero or positive")
        chain = Chain.parse(chain)

        following = await self.following_users(fid)
        owners = await self.owner_addresses(chain, contract_address)

        # one friend per held address, credited to the first follower listing it
        friends: List[Friend] = []
        matched: Set[str] = set()
        for user in following:
            for address in user_addresses(user):
                if address not in owners or address in matched:
                    continue
                matched.add(address)
                friends.append(_friend(user, address))

        total = len(friends)
        logger.info(
            "fid %d follows %d account(s); %d hold %s on %s",
            fid, len(following), total, contract_address, chain.value,
        )
        return CollectionFriendsResult(friends=friends[:limit], total=total, has_more=total > limit)
