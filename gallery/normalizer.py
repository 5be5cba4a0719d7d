"""
NFT Normalizer & Deduper

Converts Alchemy (v2 and v3) and Zapper token payloads into the canonical
``NFT`` record. No other module looks at raw provider shapes.
"""

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from gallery.classifiers import is_upstream_spam, spam_signals
from gallery.entities import (
    NFT,
    Chain,
    Collection,
    Media,
    TokenRef,
    normalize_address,
    short_address,
)
from gallery.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

ALCHEMY_CDN = "https://nft-cdn.alchemy.com"


# === HELPERS ===
def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _usable_media(value: Any) -> Optional[str]:
    url = _text(value)
    if not url or url.startswith("data:image"):
        # inline on-chain payloads are skipped in favour of the next candidate
        return None
    return url


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        seconds = float(value)
        if seconds > 1e12:
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _resolve_chain(raw: Dict[str, Any], chain: Any) -> Optional[Chain]:
    candidates = [chain, raw.get("chain"), raw.get("network"), _dig(raw, "collection", "network")]
    for candidate in candidates:
        if not candidate:
            continue
        value = str(candidate.value if isinstance(candidate, Chain) else candidate).lower()
        value = value.replace("_mainnet", "")
        try:
            return Chain.parse(value)
        except InvalidArgumentError:
            continue
    return None


def _contract_address(raw: Dict[str, Any]) -> Optional[str]:
    contract = raw.get("contract")
    candidates = [
        contract.get("address") if isinstance(contract, dict) else contract,
        raw.get("contractAddress"),
        _dig(raw, "collection", "address"),
    ]
    for candidate in candidates:
        address = normalize_address(candidate)
        if address:
            return address
    return None


def _token_id(raw: Dict[str, Any]) -> Optional[str]:
    token_id = raw.get("tokenId")
    if token_id is None:
        token_id = raw.get("token_id")
    if token_id is None and isinstance(raw.get("id"), dict):
        token_id = raw["id"].get("tokenId")
    if token_id is None or isinstance(token_id, bool):
        return None
    token_id = str(token_id).strip()
    return token_id or None


def _metadata(raw: Dict[str, Any]) -> Dict[str, Any]:
    metadata = _dig(raw, "raw", "metadata")
    if not isinstance(metadata, dict):
        metadata = raw.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _media(raw: Dict[str, Any], chain: Chain, contract: str, token_id: str) -> Media:
    media_list = raw.get("media") if isinstance(raw.get("media"), list) else []
    first_media = media_list[0] if media_list and isinstance(media_list[0], dict) else {}
    image = raw.get("image") if isinstance(raw.get("image"), dict) else {}
    medias_v2 = raw.get("mediasV2") if isinstance(raw.get("mediasV2"), list) else []
    first_v2 = next((m for m in medias_v2 if isinstance(m, dict)), {})

    candidates = [
        first_media.get("gateway"),
        image.get("cachedUrl"),
        image.get("originalUrl"),
        raw.get("image_url") or raw.get("imageUrl"),
        first_v2.get("original"),
        first_v2.get("originalUri"),
        first_v2.get("url"),
        _metadata(raw).get("image") or _metadata(raw).get("image_url"),
    ]
    mime_type = _text(image.get("contentType"))
    if not mime_type and _text(first_media.get("format")):
        fmt = first_media["format"].strip().lower()
        mime_type = fmt if "/" in fmt else f"image/{fmt}"

    for candidate in candidates:
        url = _usable_media(candidate)
        if url:
            return Media(url=url, mime_type=mime_type)
    return Media(
        url=f"{ALCHEMY_CDN}/{chain.network}/{contract}/{token_id}",
        mime_type=mime_type,
        synthesized=True,
    )


def _collection(raw: Dict[str, Any], contract: str) -> Collection:
    collection = raw.get("collection") if isinstance(raw.get("collection"), dict) else {}
    contract_info = raw.get("contract") if isinstance(raw.get("contract"), dict) else {}
    opensea = _dig(contract_info, "openSeaMetadata")
    opensea = opensea if isinstance(opensea, dict) else {}
    contract_metadata = raw.get("contractMetadata") if isinstance(raw.get("contractMetadata"), dict) else {}
    opensea_v2 = contract_metadata.get("openSea") if isinstance(contract_metadata.get("openSea"), dict) else {}

    name = (
        _text(collection.get("name"))
        or _text(contract_info.get("name"))
        or _text(opensea.get("collectionName"))
        or _text(opensea_v2.get("collectionName"))
        or _text(contract_metadata.get("name"))
        or short_address(contract)
    )

    floor_usd = None
    floor_eth = None
    floor = collection.get("floorPrice")
    if isinstance(floor, dict):
        floor_usd = _number(floor.get("valueUsd"))
        floor_eth = _number(floor.get("value"))
    elif floor is not None:
        floor_eth = _number(floor)
    if floor_eth is None:
        floor_eth = _number(collection.get("floorPriceEth"))
    if floor_eth is None:
        floor_eth = _number(opensea.get("floorPrice"))
    if floor_eth is None:
        floor_eth = _number(opensea_v2.get("floorPrice"))

    return Collection(address=contract, name=name, floor_price_eth=floor_eth, floor_price_usd=floor_usd)


def _transfer_timestamp(raw: Dict[str, Any]) -> Optional[datetime]:
    for value in (
        _dig(raw, "acquiredAt", "blockTimestamp"),
        _dig(raw, "mint", "timestamp"),
        raw.get("ownedAt"),
        raw.get("timeLastUpdated"),
    ):
        timestamp = parse_timestamp(value)
        if timestamp:
            return timestamp
    return None


# === PUBLIC API ===
def normalize(
    raw: Any,
    chain: Any = None,
    owner: Optional[str] = None,
    aggressive_spam: bool = False,
) -> Optional[NFT]:
    """Canonical NFT for a provider payload, or None when it cannot be identified.

    Already-canonical records are returned unchanged, so normalizing twice
    is a no-op.
    """
    if isinstance(raw, NFT):
        return raw
    if not isinstance(raw, dict):
        return None

    resolved_chain = _resolve_chain(raw, chain)
    contract = _contract_address(raw)
    token_id = _token_id(raw)
    if resolved_chain is None or not contract or token_id is None:
        logger.debug("Skipping unidentifiable NFT payload (contract=%s, tokenId=%s)", contract, token_id)
        return None

    metadata = _metadata(raw)
    nft = NFT(
        ref=TokenRef(chain=resolved_chain, contract=contract, token_id=token_id),
        owner_address=normalize_address(owner) or normalize_address(raw.get("owner") or raw.get("ownerAddress")),
        name=_text(raw.get("name")) or _text(raw.get("title")) or _text(metadata.get("name")),
        collection=_collection(raw, contract),
        media=_media(raw, resolved_chain, contract, token_id),
        transfer_timestamp=_transfer_timestamp(raw),
        raw_spam_flag=is_upstream_spam(raw),
    )
    nft.spam_signals = spam_signals(nft, aggressive_spam)
    return nft


def normalize_many(raws: Iterable[Any], chain: Any = None, owner: Optional[str] = None,
                   aggressive_spam: bool = False) -> List[NFT]:
    nfts = []
    for raw in raws:
        nft = normalize(raw, chain, owner, aggressive_spam)
        if nft is not None:
            nfts.append(nft)
    return nfts


def fingerprint(nft: NFT) -> str:
    return nft.fingerprint


def is_rich(nft: NFT) -> bool:
    """Provider media present and a floor price known."""
    return bool(nft.media.url) and not nft.media.synthesized and nft.collection.has_floor_price


def merge_nft(index: Dict[str, NFT], nft: NFT) -> bool:
    """Merge ``nft`` into ``index`` keyed by fingerprint.

    Returns True when the fingerprint is new. A richer duplicate replaces
    the stored payload in place but keeps the first owner.
    """
    key = nft.fingerprint
    existing = index.get(key)
    if existing is None:
        index[key] = nft
        return True
    if is_rich(nft) and not is_rich(existing):
        index[key] = dataclasses.replace(nft, owner_address=existing.owner_address)
    return False


def dedupe(nfts: Iterable[NFT]) -> List[NFT]:
    index: Dict[str, NFT] = {}
    for nft in nfts:
        merge_nft(index, nft)
    return list(index.values())


def _sort_key_recent(nft: NFT):
    timestamp = nft.transfer_timestamp
    if timestamp is None:
        return float("-inf")
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.timestamp()


def _sort_key_value(nft: NFT):
    if nft.collection.floor_price_usd is not None:
        return (1, nft.collection.floor_price_usd)
    return (0, nft.collection.floor_price_eth or 0.0)


SORTS = {
    "recent": (_sort_key_recent, True),
    "value": (_sort_key_value, True),
    "name": (lambda n: (n.name or "").lower(), False),
    "collection": (lambda n: ((n.collection.name or "").lower(), (n.name or "").lower()), False),
}


def sort_nfts(nfts: List[NFT], by: Optional[str]) -> List[NFT]:
    """Server-side ordering; ``None`` keeps discovery order."""
    if not by:
        return list(nfts)
    if by not in SORTS:
        raise InvalidArgumentError(f"Unsupported sort: {by}")
    key, reverse = SORTS[by]
    return sorted(nfts, key=key, reverse=reverse)
