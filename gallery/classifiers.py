# classifiers.py
from typing import Any, Dict, List, Optional, Set

from gallery.config import SPAM_CONTRACTS
from gallery.entities import NFT, SpamSignal


def is_upstream_spam(raw: Dict[str, Any]) -> bool:
    """True when the provider payload itself flags the token or contract as spam."""
    if not isinstance(raw, dict):
        return False
    contract = raw.get("contract")
    if not isinstance(contract, dict):
        contract = {}
    spam_info = raw.get("spamInfo")
    if not isinstance(spam_info, dict):
        spam_info = {"isSpam": spam_info}
    if raw.get("isSpam") is True or contract.get("isSpam") is True:
        return True
    if str(spam_info.get("isSpam", "")).lower() == "true":
        return True
    if contract.get("spamClassifications") or raw.get("spamClassifications"):
        return True
    return False


def is_blocklisted(contract: Optional[str], blocklist: Optional[Set[str]] = None) -> bool:
    if not contract:
        return False
    return contract.lower() in (blocklist if blocklist is not None else SPAM_CONTRACTS)


def is_low_quality(nft: NFT) -> bool:
    """Aggressive heuristic: no name, no provider media and no floor price."""
    no_name = not (nft.name or "").strip()
    no_media = not nft.media.url or nft.media.synthesized
    no_floor = not ((nft.collection.floor_price_eth or 0) > 0 or (nft.collection.floor_price_usd or 0) > 0)
    return no_name and no_media and no_floor


def spam_signals(nft: NFT, aggressive: bool = False, blocklist: Optional[Set[str]] = None) -> List[SpamSignal]:
    signals = []
    if nft.raw_spam_flag:
        signals.append(SpamSignal.UPSTREAM)
    if is_blocklisted(nft.ref.contract, blocklist):
        signals.append(SpamSignal.BLOCKLIST)
    if aggressive and is_low_quality(nft):
        signals.append(SpamSignal.LOW_QUALITY)
    return signals


def classify_nfts(nfts: List[NFT]) -> Dict[str, Any]:
    legit_nfts = []
    spam_nfts = []

    for nft in nfts:
        if nft.spam_signals:
            spam_nfts.append(nft)
        else:
            legit_nfts.append(nft)

    return {
        "legit": legit_nfts,
        "spam": spam_nfts,
        "counts": {
            "total": len(nfts),
            "legit": len(legit_nfts),
            "spam": len(spam_nfts),
        },
    }
