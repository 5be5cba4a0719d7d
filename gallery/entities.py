"""
Canonical entities of the aggregation core.

Everything here is a plain value type built per request; the HTTP layer
serializes them through ``to_dict`` using the camelCase keys the gallery
front-end consumes.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from gallery.errors import InvalidArgumentError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def normalize_address(value: Any) -> Optional[str]:
    """Lowercased address, or None when ``value`` is not an EVM address."""
    if not is_valid_address(value):
        return None
    return value.strip().lower()


def unique_addresses(values: Iterable[Any]) -> List[str]:
    """Valid addresses from ``values``, lowercased, first-seen order."""
    seen = []
    for value in values:
        address = normalize_address(value)
        if address and address not in seen:
            seen.append(address)
    return seen


def short_address(address: str) -> str:
    if not address or len(address) < 10:
        return address or ""
    return f"{address[:6]}…{address[-4:]}"


class Chain(str, Enum):
    ETH = "eth"
    POLYGON = "polygon"
    ARBITRUM = "arbitrum"
    OPTIMISM = "optimism"
    BASE = "base"
    ZORA = "zora"

    @property
    def network(self) -> str:
        """Alchemy network slug."""
        return CHAIN_NETWORKS[self]

    @classmethod
    def parse(cls, value: Any) -> "Chain":
        if isinstance(value, Chain):
            return value
        key = str(value or "").strip().lower()
        if not key:
            return cls.ETH
        chain = CHAIN_ALIASES.get(key)
        if chain is None:
            raise InvalidArgumentError(f"Unsupported network: {value}")
        return chain


CHAIN_NETWORKS = {
    Chain.ETH: "eth-mainnet",
    Chain.POLYGON: "polygon-mainnet",
    Chain.ARBITRUM: "arb-mainnet",
    Chain.OPTIMISM: "opt-mainnet",
    Chain.BASE: "base-mainnet",
    Chain.ZORA: "zora-mainnet",
}

CHAIN_ALIASES = {
    "eth": Chain.ETH,
    "ethereum": Chain.ETH,
    "mainnet": Chain.ETH,
    "eth-mainnet": Chain.ETH,
    "polygon": Chain.POLYGON,
    "matic": Chain.POLYGON,
    "polygon-mainnet": Chain.POLYGON,
    "arbitrum": Chain.ARBITRUM,
    "arb": Chain.ARBITRUM,
    "arb-mainnet": Chain.ARBITRUM,
    "optimism": Chain.OPTIMISM,
    "opt": Chain.OPTIMISM,
    "opt-mainnet": Chain.OPTIMISM,
    "base": Chain.BASE,
    "base-mainnet": Chain.BASE,
    "zora": Chain.ZORA,
    "zora-mainnet": Chain.ZORA,
}


class SpamSignal(str, Enum):
    UPSTREAM = "upstream"
    BLOCKLIST = "blocklist"
    LOW_QUALITY = "low_quality"


@dataclass
class Identity:
    fid: int
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    custody_address: Optional[str] = None
    connected_addresses: List[str] = field(default_factory=list)
    bio: Optional[str] = None
    follower_count: Optional[int] = None
    following_count: Optional[int] = None

    def __post_init__(self):
        self.custody_address = normalize_address(self.custody_address)
        connected = unique_addresses(self.connected_addresses)
        if self.custody_address in connected:
            connected.remove(self.custody_address)
        self.connected_addresses = connected

    def all_addresses(self) -> List[str]:
        """Custody address first, then connected addresses."""
        addresses = [self.custody_address] if self.custody_address else []
        return addresses + [a for a in self.connected_addresses if a not in addresses]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fid": self.fid,
            "username": self.username,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
            "custodyAddress": self.custody_address,
            "connectedAddresses": list(self.connected_addresses),
            "bio": self.bio,
            "followerCount": self.follower_count,
            "followingCount": self.following_count,
        }


@dataclass(frozen=True)
class TokenRef:
    chain: Chain
    contract: str
    token_id: str


@dataclass
class Collection:
    address: Optional[str] = None
    name: Optional[str] = None
    floor_price_eth: Optional[float] = None
    floor_price_usd: Optional[float] = None

    @property
    def has_floor_price(self) -> bool:
        return self.floor_price_eth is not None or self.floor_price_usd is not None


@dataclass
class Media:
    url: Optional[str] = None
    mime_type: Optional[str] = None
    synthesized: bool = False


def make_fingerprint(chain: Any, contract: str, token_id: str) -> str:
    chain_value = chain.value if isinstance(chain, Chain) else str(chain)
    return f"{chain_value.lower()}|{contract.lower()}|{token_id}"


@dataclass
class NFT:
    ref: TokenRef
    owner_address: str
    name: Optional[str] = None
    collection: Collection = field(default_factory=Collection)
    media: Media = field(default_factory=Media)
    transfer_timestamp: Optional[datetime] = None
    spam_signals: List[SpamSignal] = field(default_factory=list)
    raw_spam_flag: bool = False

    @property
    def fingerprint(self) -> str:
        return make_fingerprint(self.ref.chain, self.ref.contract, self.ref.token_id)

    @property
    def is_spam(self) -> bool:
        return bool(self.spam_signals)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "chain": self.ref.chain.value,
            "contractAddress": self.ref.contract,
            "tokenId": self.ref.token_id,
            "name": self.name,
            "collection": {
                "address": self.collection.address,
                "name": self.collection.name,
                "floorPriceEth": self.collection.floor_price_eth,
                "floorPriceUsd": self.collection.floor_price_usd,
            },
            "media": {"url": self.media.url, "mimeType": self.media.mime_type},
            "ownerAddress": self.owner_address,
            "transferTimestamp": self.transfer_timestamp.isoformat() if self.transfer_timestamp else None,
            "spamSignals": [s.value for s in self.spam_signals],
        }


@dataclass
class Holder:
    address: str
    balance: int = 1


@dataclass
class Friend:
    fid: int
    username: str
    display_name: Optional[str]
    avatar_url: Optional[str]
    address: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fid": self.fid,
            "username": self.username,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
            "address": self.address,
        }


@dataclass
class MediaResponse:
    body: bytes
    content_type: str
    source_status: str = "ok"
    cache_seconds: int = 86400
    filename: Optional[str] = None
    upstream_status: Optional[int] = None


@dataclass
class FetchWarning:
    address: str
    chain: Optional[str]
    kind: str
    detail: str

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "chain": self.chain, "kind": self.kind, "detail": self.detail}


@dataclass
class AggregateOptions:
    chains: List[Chain] = field(default_factory=lambda: [Chain.ETH])
    exclude_spam: bool = True
    exclude_airdrops: bool = True
    page_size: int = 100
    max_nfts_per_wallet: Optional[int] = None
    max_total_nfts: Optional[int] = None
    aggressive_spam: bool = False


@dataclass
class AggregateResult:
    nfts: List[NFT] = field(default_factory=list)
    per_wallet: Dict[str, int] = field(default_factory=dict)
    warnings: List[FetchWarning] = field(default_factory=list)


@dataclass
class CollectionFriendsResult:
    friends: List[Friend] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
