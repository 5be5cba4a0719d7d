"""
Tests for Farcaster identity resolution.
"""

import asyncio

import pytest

from gallery.cache import ResponseCache
from gallery.entities import Identity
from gallery.errors import InvalidArgumentError, NotFoundError, UpstreamError, UpstreamTimeoutError
from gallery.identity import IdentityResolver, normalize_handle
from tests.fakes import FakeNeynar, FakeZapper, addr

DWR = Identity(fid=3, username="dwr", custody_address=addr("f"), connected_addresses=[addr("a").upper().replace("0X", "0x")])


class TestNormalizeHandle:
    @pytest.mark.parametrize("raw", ["dwr", " @dwr ", "https://warpcast.com/dwr", "warpcast.com/dwr/casts", "DWR"])
    def test_variants(self, raw):
        assert normalize_handle(raw) == "dwr"

    def test_fid(self):
        assert normalize_handle(3) == "3"

    @pytest.mark.parametrize("raw", ["", "   ", "@", None])
    def test_empty_rejected(self, raw):
        with pytest.raises(InvalidArgumentError):
            normalize_handle(raw)


class TestResolve:
    async def test_zapper_first(self, test_settings):
        zapper = FakeZapper({"dwr": DWR})
        neynar = FakeNeynar()
        identity = await IdentityResolver(zapper, neynar, test_settings).resolve("@dwr")
        assert identity.fid == 3
        assert identity.connected_addresses == [addr("a")]
        assert identity.all_addresses() == [addr("f"), addr("a")]
        assert neynar.calls == []

    async def test_falls_back_to_neynar(self, test_settings):
        zapper = FakeZapper({})
        neynar = FakeNeynar(users={"dwr": DWR})
        identity = await IdentityResolver(zapper, neynar, test_settings).resolve("dwr")
        assert identity.username == "dwr"
        assert zapper.calls == [("profile", "dwr", None)]

    async def test_disabled_zapper_skipped(self, test_settings):
        zapper = FakeZapper({"dwr": DWR}, enabled=False)
        neynar = FakeNeynar(users={"dwr": DWR})
        await IdentityResolver(zapper, neynar, test_settings).resolve("dwr")
        assert zapper.calls == []

    async def test_exact_search_fallback(self, test_settings):
        other = Identity(fid=99, username="dwr-fan")
        neynar = FakeNeynar(search_results=[other, DWR])
        identity = await IdentityResolver(FakeZapper(enabled=False), neynar, test_settings).resolve("dwr")
        assert identity.fid == 3

    async def test_eth_suffix_fallback(self, test_settings):
        neynar = FakeNeynar(users={"dwr": DWR})
        identity = await IdentityResolver(FakeZapper(enabled=False), neynar, test_settings).resolve("dwr.eth")
        assert identity.fid == 3
        assert ("by_username", "dwr.eth") in neynar.calls
        assert ("by_username", "dwr") in neynar.calls

    async def test_numeric_fid(self, test_settings):
        neynar = FakeNeynar(users={"dwr": DWR})
        identity = await IdentityResolver(FakeZapper(enabled=False), neynar, test_settings).resolve("3")
        assert identity.username == "dwr"
        assert neynar.calls == [("bulk", (3,))]

    async def test_not_found(self, test_settings):
        with pytest.raises(NotFoundError):
            await IdentityResolver(FakeZapper(), FakeNeynar(), test_settings).resolve("nobody")

    async def test_all_providers_failing_is_upstream(self, test_settings):
        boom = UpstreamError("neynar returned HTTP 503", upstream_status=503)
        zapper = FakeZapper(error=UpstreamError("zapper down"))
        neynar = FakeNeynar(errors={"by_username": boom, "search": boom})
        with pytest.raises(UpstreamError) as info:
            await IdentityResolver(zapper, neynar, test_settings).resolve("dwr")
        assert not isinstance(info.value, NotFoundError)

    async def test_definitive_not_found_beats_errors(self, test_settings):
        zapper = FakeZapper(error=UpstreamError("zapper down"))
        neynar = FakeNeynar()
        with pytest.raises(NotFoundError):
            await IdentityResolver(zapper, neynar, test_settings).resolve("dwr")

    async def test_overall_deadline(self, test_settings):
        class SlowNeynar(FakeNeynar):
            async def user_by_username(self, username):
                await asyncio.sleep(5)

        test_settings.RESOLVE_TIMEOUT = 0.05
        with pytest.raises(UpstreamTimeoutError):
            await IdentityResolver(FakeZapper(enabled=False), SlowNeynar(), test_settings).resolve("dwr")


class TestCaching:
    async def test_cached_by_handle_username_and_fid(self, test_settings):
        cache = ResponseCache("identity", maxsize=10, ttl=60)
        neynar = FakeNeynar(users={"dwr": DWR})
        resolver = IdentityResolver(FakeZapper(enabled=False), neynar, test_settings, cache=cache)

        first = await resolver.resolve("https://warpcast.com/dwr")
        calls = len(neynar.calls)
        again = await resolver.resolve(first.username)
        by_fid = await resolver.resolve(first.fid)

        assert again.fid == by_fid.fid == 3
        assert len(neynar.calls) == calls

    async def test_disabled_cache_always_asks_upstream(self, test_settings):
        cache = ResponseCache("identity", maxsize=10, ttl=60, enabled=False)
        neynar = FakeNeynar(users={"dwr": DWR})
        resolver = IdentityResolver(FakeZapper(enabled=False), neynar, test_settings, cache=cache)
        await resolver.resolve("dwr")
        await resolver.resolve("dwr")
        assert neynar.calls.count(("by_username", "dwr")) == 2


class TestSearch:
    async def test_search(self, test_settings):
        neynar = FakeNeynar(search_results=[DWR])
        users = await IdentityResolver(FakeZapper(), neynar, test_settings).search("@dw", limit=5)
        assert [u.username for u in users] == ["dwr"]
        assert neynar.calls == [("search", "dw")]

    async def test_empty_query(self, test_settings):
        with pytest.raises(InvalidArgumentError):
            await IdentityResolver(FakeZapper(), FakeNeynar(), test_settings).search("  ")
