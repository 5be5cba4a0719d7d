"""
Tests for the follow-list x collection-owners intersection.
"""

import pytest

from gallery.collection_friends import CollectionFriendsService
from gallery.entities import Chain, Holder
from gallery.errors import InvalidArgumentError, UpstreamError
from tests.fakes import FakeAlchemy, FakeNeynar, addr, neynar_user

BAYC = "0xBC4CA0EdA7647A8aB7C2061c2E118A18a936f13D"


def holders(*addresses):
    return [Holder(address=a) for a in addresses]


class TestIntersection:
    async def test_follower_holding_collection(self):
        neynar = FakeNeynar(following_pages=[[
            neynar_user(4, "alice", custody=addr("A", "01")),
            neynar_user(5, "bob", eth=[addr("B", "02")]),
        ]])
        alchemy = FakeAlchemy(owner_pages=[holders(addr("b", "02"), addr("c", "03"))])

        result = await CollectionFriendsService(neynar, alchemy).collection_friends(3, BAYC, Chain.ETH)

        assert [(f.fid, f.address) for f in result.friends] == [(5, addr("b", "02"))]
        assert result.total == 1
        assert result.has_more is False
        assert alchemy.calls[0][2] == BAYC.lower()

    async def test_walks_every_page(self):
        neynar = FakeNeynar(following_pages=[
            [neynar_user(4, "alice", custody=addr("1"))],
            [neynar_user(5, "bob", custody=addr("2"))],
        ])
        alchemy = FakeAlchemy(owner_pages=[holders(addr("3")), holders(addr("2")), holders(addr("1"))])

        result = await CollectionFriendsService(neynar, alchemy).collection_friends(3, BAYC)

        assert [f.fid for f in result.friends] == [4, 5]
        assert [c[2] for c in neynar.calls] == [None, "1"]
        assert [c[3] for c in alchemy.calls] == [None, "1", "2"]

    async def test_address_credited_to_first_follower(self):
        shared = addr("d")
        neynar = FakeNeynar(following_pages=[[
            neynar_user(4, "alice", custody=shared),
            neynar_user(5, "bob", eth=[shared.upper().replace("0X", "0x")]),
        ]])
        alchemy = FakeAlchemy(owner_pages=[holders(shared)])
        result = await CollectionFriendsService(neynar, alchemy).collection_friends(3, BAYC)
        assert [(f.fid, f.address) for f in result.friends] == [(4, shared)]

    async def test_friend_addresses_are_in_both_sets(self):
        follows = [neynar_user(i, f"u{i}", custody=addr(str(i)), eth=[addr(str(i), "ff")]) for i in range(1, 8)]
        owners = holders(*[addr(str(i)) for i in range(0, 10, 2)], addr("5", "ff"))
        neynar = FakeNeynar(following_pages=[follows])
        result = await CollectionFriendsService(neynar, FakeAlchemy(owner_pages=[owners])).collection_friends(3, BAYC)

        follow_union = {a for u in follows for a in [u["custody_address"]] + u["verified_addresses"]["eth_addresses"]}
        owner_set = {h.address for h in owners}
        assert result.friends
        for friend in result.friends:
            assert friend.address in follow_union
            assert friend.address in owner_set
            assert friend.address == friend.address.lower()


class TestBoundaries:
    async def test_empty_follow_list(self):
        alchemy = FakeAlchemy(owner_pages=[holders(addr("1"))])
        result = await CollectionFriendsService(FakeNeynar(), alchemy).collection_friends(3, BAYC)
        assert (result.friends, result.total, result.has_more) == ([], 0, False)

    async def test_empty_owners(self):
        neynar = FakeNeynar(following_pages=[[neynar_user(4, "alice", custody=addr("1"))]])
        result = await CollectionFriendsService(neynar, FakeAlchemy()).collection_friends(3, BAYC)
        assert (result.friends, result.total, result.has_more) == ([], 0, False)

    async def test_limit_zero(self):
        neynar = FakeNeynar(following_pages=[[neynar_user(4, "alice", custody=addr("1"))]])
        alchemy = FakeAlchemy(owner_pages=[holders(addr("1"))])
        result = await CollectionFriendsService(neynar, alchemy).collection_friends(3, BAYC, limit=0)
        assert result.friends == []
        assert result.total == 1
        assert result.has_more is True

    async def test_limit_applied_after_intersection(self):
        follows = [neynar_user(i, f"u{i}", custody=addr(str(i))) for i in range(1, 6)]
        alchemy = FakeAlchemy(owner_pages=[holders(*[addr(str(i)) for i in range(1, 6)])])
        result = await CollectionFriendsService(FakeNeynar(following_pages=[follows]), alchemy).collection_friends(
            3, BAYC, limit=2)
        assert [f.fid for f in result.friends] == [1, 2]
        assert result.total == 5
        assert result.has_more is True


class TestValidationAndFailures:
    @pytest.mark.parametrize("fid", ["abc", 0, -3, ""])
    async def test_bad_fid(self, fid):
        with pytest.raises(InvalidArgumentError):
            await CollectionFriendsService(FakeNeynar(), FakeAlchemy()).collection_friends(fid, BAYC)

    async def test_bad_contract(self):
        with pytest.raises(InvalidArgumentError):
            await CollectionFriendsService(FakeNeynar(), FakeAlchemy()).collection_friends(3, "1234")

    async def test_following_failure_is_fatal(self):
        neynar = FakeNeynar(errors={"following": UpstreamError("neynar returned HTTP 500", upstream_status=500)})
        with pytest.raises(UpstreamError):
            await CollectionFriendsService(neynar, FakeAlchemy()).collection_friends(3, BAYC)

    async def test_owners_failure_is_fatal(self):
        neynar = FakeNeynar(following_pages=[[neynar_user(4, "alice", custody=addr("1"))]])
        alchemy = FakeAlchemy(failures={("owners", BAYC.lower()): UpstreamError("alchemy down")})
        with pytest.raises(UpstreamError):
            await CollectionFriendsService(neynar, alchemy).collection_friends(3, BAYC)
