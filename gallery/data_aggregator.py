"""
NFT Data Aggregator
Fetches NFTs for many wallets across many chains from the Alchemy NFT API,
merges them into one deduplicated list and streams partial results.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from gallery.cache import ResponseCache, nft_page_cache
from gallery.classifiers import classify_nfts
from gallery.config import Settings, settings as default_settings
from gallery.entities import (
    NFT,
    AggregateOptions,
    AggregateResult,
    Chain,
    FetchWarning,
    normalize_address,
)
from gallery.errors import GalleryError, UpstreamError
from gallery.normalizer import merge_nft, normalize_many

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], Any]


class _Run:
    """Mutable state of one aggregate() call."""

    def __init__(self, addresses: List[str], opts: AggregateOptions, on_progress: Optional[ProgressCallback]):
        self.opts = opts
        self.on_progress = on_progress
        self.index: Dict[str, NFT] = {}
        self.per_wallet: Dict[str, int] = {a: 0 for a in addresses}
        self.warnings: List[FetchWarning] = []

    def total_reached(self) -> bool:
        cap = self.opts.max_total_nfts
        return cap is not None and len(self.index) >= cap

    def wallet_reached(self, address: str) -> bool:
        cap = self.opts.max_nfts_per_wallet
        return cap is not None and self.per_wallet[address] >= cap

    def add(self, address: str, nfts: Iterable[NFT]) -> int:
        added = 0
        for nft in nfts:
            if self.total_reached() or self.wallet_reached(address):
                break
            if merge_nft(self.index, nft):
                self.per_wallet[address] += 1
                added += 1
        return added

    def snapshot(self) -> List[NFT]:
        return list(self.index.values())


class DataAggregator:
    """
    Aggregator over the NFT index:
    - one sequential page loop per (address, chain) pair
    - pairs run concurrently under AGGREGATION_CONCURRENCY
    - per-pair failures become warnings, never exceptions
    """

    def __init__(self, alchemy, config: Optional[Settings] = None,
                 cache: Optional[ResponseCache] = None, resolver=None):
        self.alchemy = alchemy
        self.config = config or default_settings
        self.cache = cache if cache is not None else nft_page_cache
        self.resolver = resolver

    async def aggregate(
        self,
        addresses: Iterable[Any],
        opts: Optional[AggregateOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AggregateResult:
        opts = opts or AggregateOptions()
        valid, invalid = self._split_addresses(addresses)
        run = _Run(valid, opts, on_progress)
        for value in invalid:
            run.warnings.append(FetchWarning(str(value), None, "invalid_address", "not an EVM address"))

        chains = [Chain.parse(c) for c in (opts.chains or [Chain.ETH])]
        pairs = [(address, chain) for address in valid for chain in dict.fromkeys(chains)]
        if pairs:
            semaphore = asyncio.Semaphore(max(1, self.config.AGGREGATION_CONCURRENCY))
            tasks = [self._run_pair(run, semaphore, address, chain) for address, chain in pairs]
            try:
                await asyncio.wait_for(asyncio.gather(*tasks), timeout=self.config.AGGREGATION_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("Aggregation timed out after %.0fs; returning partial results",
                               self.config.AGGREGATION_TIMEOUT)
                run.warnings.append(FetchWarning("*", None, "timeout", "aggregation deadline exceeded"))

        result = AggregateResult(nfts=run.snapshot(), per_wallet=dict(run.per_wallet), warnings=run.warnings)
        logger.info(
            "Aggregated %d NFT(s) for %d wallet(s) on %d chain(s), %d warning(s)",
            len(result.nfts), len(valid), len(chains), len(result.warnings),
        )
        await self._notify(run, result.nfts, in_progress=False)
        return result

    async def aggregate_for_identity(self, handle, opts: Optional[AggregateOptions] = None,
                                     on_progress: Optional[ProgressCallback] = None):
        """Resolve ``handle`` and aggregate over all its addresses."""
        identity = await self.resolver.resolve(handle)
        result = await self.aggregate(identity.all_addresses(), opts, on_progress)
        return identity, result

    @staticmethod
    def _split_addresses(addresses: Iterable[Any]) -> Tuple[List[str], List[Any]]:
        valid: List[str] = []
        invalid: List[Any] = []
        for value in addresses or []:
            address = normalize_address(value)
            if address is None:
                invalid.append(value)
            elif address not in valid:
                valid.append(address)
        return valid, invalid

    async def _run_pair(self, run: _Run, semaphore: asyncio.Semaphore, address: str, chain: Chain) -> None:
        async with semaphore:
            page_key = None
            page_number = 0
            while not run.total_reached() and not run.wallet_reached(address):
                if page_number and self.config.PAGE_DELAY > 0:
                    await asyncio.sleep(self.config.PAGE_DELAY)
                try:
                    raw_nfts, page_key = await self._fetch_page(chain, address, page_key, run.opts)
                except GalleryError as e:
                    logger.warning("Fetching NFTs for %s on %s failed: %s", address, chain.value, e.message)
                    run.warnings.append(FetchWarning(address, chain.value, e.kind, e.message))
                    return
                page_number += 1

                try:
                    nfts = normalize_many(raw_nfts, chain, address, run.opts.aggressive_spam)
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    logger.exception("Malformed NFT page for %s on %s", address, chain.value)
                    run.warnings.append(FetchWarning(address, chain.value, UpstreamError.kind, f"malformed NFT page: {e}"))
                    return
                if run.opts.exclude_spam:
                    split = classify_nfts(nfts)
                    if split["counts"]["spam"]:
                        logger.debug("%s %s: dropped %d spam NFT(s)", address, chain.value, split["counts"]["spam"])
                    nfts = split["legit"]
                added = run.add(address, nfts)
                logger.debug("%s %s page %d: %d new NFT(s)", address, chain.value, page_number, added)
                await self._notify(run, run.snapshot(), in_progress=True)

                if not page_key:
                    return

    async def _fetch_page(self, chain: Chain, address: str, page_key: Optional[str], opts: AggregateOptions):
        key = (chain.value, address, page_key, opts.page_size, opts.exclude_spam, opts.exclude_airdrops)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        page = await self.alchemy.nfts_for_owner(
            chain,
            address,
            page_key=page_key,
            exclude_spam=opts.exclude_spam,
            exclude_airdrops=opts.exclude_airdrops,
            page_size=opts.page_size,
        )
        self.cache.set(key, page)
        return page

    async def _notify(self, run: _Run, nfts: List[NFT], in_progress: bool) -> None:
        if run.on_progress is None:
            return
        try:
            outcome = run.on_progress({"nfts": nfts, "inProgress": in_progress})
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Progress callback raised; continuing aggregation")
