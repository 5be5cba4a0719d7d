"""
NFT-index client
Wraps the Alchemy NFT API v3 per chain: owned NFTs, contract owners,
token metadata and spam-contract lookups.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from gallery.config import Settings, settings as default_settings
from gallery.entities import Chain, Holder, normalize_address
from gallery.errors import ConfigError, UpstreamError
from gallery.services.base_client import BaseAPIClient

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class AlchemyService(BaseAPIClient):
    name = "alchemy"

    def __init__(self, session=None, config: Optional[Settings] = None, **kwargs):
        self.config = config or default_settings
        kwargs.setdefault("timeout", self.config.REQUEST_TIMEOUT)
        kwargs.setdefault("max_retries", self.config.MAX_RETRIES)
        kwargs.setdefault("backoff", self.config.RETRY_BACKOFF)
        kwargs.setdefault("max_backoff", self.config.RETRY_BACKOFF_MAX)
        kwargs.setdefault("concurrency", self.config.UPSTREAM_CONCURRENCY)
        super().__init__(session, **kwargs)

    def _nft_url(self, chain: Chain, endpoint: str) -> str:
        if not self.config.ALCHEMY_API_KEY:
            logger.error("ALCHEMY_API_KEY is not configured")
            raise ConfigError()
        return f"{self.config.alchemy_nft_url(Chain.parse(chain).network)}/{endpoint}"

    async def nfts_for_owner(
        self,
        chain: Chain,
        owner: str,
        page_key: Optional[str] = None,
        exclude_spam: bool = True,
        exclude_airdrops: bool = True,
        page_size: int = 100,
    ) -> Tuple[List[Dict], Optional[str]]:
        """One page of ``getNFTsForOwner``; returns raw NFTs and the next page key."""
        params = [
            ("owner", owner),
            ("withMetadata", "true"),
            ("pageSize", str(max(1, min(page_size, MAX_PAGE_SIZE)))),
        ]
        if exclude_spam:
            params.append(("excludeFilters[]", "SPAM"))
        if exclude_airdrops:
            params.append(("excludeFilters[]", "AIRDROPS"))
        if page_key:
            params.append(("pageKey", page_key))

        data = await self.get(self._nft_url(chain, "getNFTsForOwner"), params=params)
        if not isinstance(data, dict):
            raise UpstreamError("alchemy returned a malformed NFT page")
        nfts = data.get("ownedNfts") or data.get("nfts") or []
        return list(nfts), data.get("pageKey") or None

    async def owners_for_contract(
        self,
        chain: Chain,
        contract: str,
        page_key: Optional[str] = None,
    ) -> Tuple[List[Holder], Optional[str]]:
        """One page of ``getOwnersForContract`` flattened into holders."""
        params = {"contractAddress": contract, "withTokenBalances": "true"}
        if page_key:
            params["pageKey"] = page_key

        data = await self.get(self._nft_url(chain, "getOwnersForContract"), params=params)
        if not isinstance(data, dict):
            raise UpstreamError("alchemy returned a malformed owners page")
        holders = flatten_owners(data.get("owners") or [])
        return holders, data.get("pageKey") or None

    async def nft_metadata(self, chain: Chain, contract: str, token_id: str) -> Dict:
        params = {"contractAddress": contract, "tokenId": token_id, "refreshCache": "false"}
        data = await self.get(self._nft_url(chain, "getNFTMetadata"), params=params)
        if not isinstance(data, dict):
            raise UpstreamError("alchemy returned malformed metadata")
        return data

    async def spam_contracts(self, chain: Chain) -> List[str]:
        data = await self.get(self._nft_url(chain, "getSpamContracts"))
        if isinstance(data, dict):
            data = data.get("contractAddresses") or []
        if not isinstance(data, list):
            raise UpstreamError("alchemy returned a malformed spam list")
        return [a for a in (normalize_address(c) for c in data) if a]

    async def is_spam_contract(self, chain: Chain, contract: str) -> bool:
        data = await self.get(
            self._nft_url(chain, "isSpamContract"),
            params={"contractAddress": contract},
        )
        if isinstance(data, dict):
            return bool(data.get("isSpamContract", data.get("result", False)))
        return bool(data)


def flatten_owners(owners: List[Any]) -> List[Holder]:
    """Owners arrive either as address strings or ``{ownerAddress, tokenBalances}``."""
    holders: Dict[str, Holder] = {}
    for owner in owners:
        if isinstance(owner, dict):
            address = normalize_address(owner.get("ownerAddress") or owner.get("address"))
            balance = 0
            for token in owner.get("tokenBalances") or []:
                try:
                    balance += int(str(token.get("balance", 1)), 0)
                except (TypeError, ValueError):
                    balance += 1
            balance = max(balance, 1)
        else:
            address = normalize_address(owner)
            balance = 1
        if not address:
            continue
        if address in holders:
            holders[address].balance += balance
        else:
            holders[address] = Holder(address=address, balance=balance)
    return list(holders.values())
