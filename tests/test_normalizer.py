"""
Tests for NFT payload normalization, deduplication and sorting.
"""

from datetime import datetime, timezone

import pytest

from gallery.entities import Chain, SpamSignal
from gallery.errors import InvalidArgumentError
from gallery.normalizer import dedupe, normalize, parse_timestamp, sort_nfts
from tests.fakes import addr, raw_nft

CONTRACT = addr("c")
OWNER = addr("a")


class TestNormalizeShapes:
    def test_alchemy_v3(self):
        nft = normalize(raw_nft(CONTRACT.upper().replace("0X", "0x"), "42", floor=1.5), Chain.ETH, OWNER)
        assert nft.fingerprint == f"eth|{CONTRACT}|42"
        assert nft.ref.contract == CONTRACT
        assert nft.owner_address == OWNER
        assert nft.name == "Token"
        assert nft.collection.name == "Collection"
        assert nft.collection.floor_price_eth == 1.5
        assert nft.media.url == "https://img.example/1.png"
        assert not nft.media.synthesized

    def test_alchemy_v2(self):
        raw = {
            "contract": {"address": CONTRACT},
            "id": {"tokenId": "0x01"},
            "title": "Old style",
            "media": [{"gateway": "https://gw.example/a.gif", "format": "gif"}],
            "contractMetadata": {"name": "V2 Coll", "openSea": {"floorPrice": 0.2}},
        }
        nft = normalize(raw, "ethereum", OWNER)
        assert nft.ref.token_id == "0x01"
        assert nft.name == "Old style"
        assert nft.media.url == "https://gw.example/a.gif"
        assert nft.media.mime_type == "image/gif"
        assert nft.collection.name == "V2 Coll"
        assert nft.collection.floor_price_eth == 0.2

    def test_zapper_node(self):
        raw = {
            "tokenId": "7",
            "name": "Zapped",
            "mediasV2": [{"original": "ipfs://QmHash/1.png"}],
            "collection": {"address": CONTRACT, "name": "Zap Coll", "network": "BASE_MAINNET", "floorPriceEth": "0.3"},
            "owner": OWNER,
            "ownedAt": "1700000000000",
        }
        nft = normalize(raw)
        assert nft.ref.chain is Chain.BASE
        assert nft.media.url == "ipfs://QmHash/1.png"
        assert nft.collection.floor_price_eth == 0.3
        assert nft.owner_address == OWNER
        assert nft.transfer_timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_missing_identity_returns_none(self):
        assert normalize({"tokenId": "1"}, Chain.ETH) is None
        assert normalize({"contract": {"address": "not-hex"}, "tokenId": "1"}, Chain.ETH) is None
        assert normalize({"contract": {"address": CONTRACT}}, Chain.ETH) is None
        assert normalize("garbage", Chain.ETH) is None

    def test_normalize_is_idempotent(self):
        nft = normalize(raw_nft(CONTRACT), Chain.ETH, OWNER)
        assert normalize(nft) is nft
        assert normalize(normalize(nft)).fingerprint == nft.fingerprint


class TestMediaPrecedence:
    def test_media_gateway_beats_image(self):
        raw = raw_nft(CONTRACT, media=[{"gateway": "https://first.example/x.png"}])
        assert normalize(raw, Chain.ETH, OWNER).media.url == "https://first.example/x.png"

    def test_original_url_when_no_cached(self):
        raw = raw_nft(CONTRACT, image=None)
        raw["image"] = {"originalUrl": "https://orig.example/x.png"}
        assert normalize(raw, Chain.ETH, OWNER).media.url == "https://orig.example/x.png"

    def test_inline_data_image_skipped(self):
        raw = raw_nft(CONTRACT, image=None)
        raw["raw"]["metadata"]["image"] = "data:image/svg+xml;base64,AAAA"
        nft = normalize(raw, Chain.POLYGON, OWNER)
        assert nft.media.synthesized
        assert nft.media.url == f"https://nft-cdn.alchemy.com/polygon-mainnet/{CONTRACT}/1"

    def test_metadata_image_used(self):
        raw = raw_nft(CONTRACT, image=None)
        raw["raw"]["metadata"]["image"] = "ipfs://QmMeta"
        assert normalize(raw, Chain.ETH, OWNER).media.url == "ipfs://QmMeta"


class TestCollectionFields:
    def test_short_hex_fallback(self):
        raw = raw_nft(CONTRACT)
        raw["contract"]["name"] = None
        assert normalize(raw, Chain.ETH, OWNER).collection.name == "0xcccc…cccc"

    def test_usd_floor(self):
        raw = raw_nft(CONTRACT, collection={"floorPrice": {"value": 2, "valueUsd": 5000}})
        nft = normalize(raw, Chain.ETH, OWNER)
        assert nft.collection.floor_price_usd == 5000
        assert nft.collection.floor_price_eth == 2

    def test_timestamp_precedence(self):
        raw = raw_nft(
            CONTRACT,
            acquiredAt={"blockTimestamp": "2024-01-02T03:04:05Z"},
            timeLastUpdated="2020-01-01T00:00:00Z",
        )
        nft = normalize(raw, Chain.ETH, OWNER)
        assert nft.transfer_timestamp == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_parse_timestamp_rejects_junk(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None


class TestSpamSignals:
    def test_upstream_flag(self):
        raw = raw_nft(CONTRACT)
        raw["contract"]["isSpam"] = True
        assert normalize(raw, Chain.ETH, OWNER).spam_signals == [SpamSignal.UPSTREAM]

    def test_blocklist(self):
        raw = raw_nft("0x94f1b9b64e2932f6a2db338f616844400cd58e8a")
        assert SpamSignal.BLOCKLIST in normalize(raw, Chain.ETH, OWNER).spam_signals

    def test_low_quality_only_when_aggressive(self):
        raw = raw_nft(CONTRACT, name=None, image=None)
        assert normalize(raw, Chain.ETH, OWNER).spam_signals == []
        assert normalize(raw, Chain.ETH, OWNER, aggressive_spam=True).spam_signals == [SpamSignal.LOW_QUALITY]

    def test_low_quality_needs_all_three(self):
        raw = raw_nft(CONTRACT, name=None, image=None, floor=0.1)
        assert normalize(raw, Chain.ETH, OWNER, aggressive_spam=True).spam_signals == []


class TestDedupe:
    def test_first_seen_wins_when_equal(self):
        first = normalize(raw_nft(CONTRACT, "1", name="A"), Chain.ETH, addr("a"))
        second = normalize(raw_nft(CONTRACT, "1", name="B"), Chain.ETH, addr("b"))
        result = dedupe([first, second])
        assert len(result) == 1
        assert result[0].name == "A"
        assert result[0].owner_address == addr("a")

    def test_richer_record_replaces_but_keeps_owner(self):
        poor = normalize(raw_nft(CONTRACT, "1", name="Poor", image=None), Chain.ETH, addr("a"))
        rich = normalize(raw_nft(CONTRACT, "1", name="Rich", floor=3.0), Chain.ETH, addr("b"))
        other = normalize(raw_nft(CONTRACT, "2"), Chain.ETH, addr("a"))
        result = dedupe([poor, other, rich])
        assert [n.ref.token_id for n in result] == ["1", "2"]
        assert result[0].name == "Rich"
        assert result[0].owner_address == addr("a")

    def test_chain_is_part_of_fingerprint(self):
        eth = normalize(raw_nft(CONTRACT, "1"), Chain.ETH, OWNER)
        base = normalize(raw_nft(CONTRACT, "1"), Chain.BASE, OWNER)
        assert len(dedupe([eth, base])) == 2


class TestSort:
    def _nfts(self):
        return [
            normalize(raw_nft(CONTRACT, "1", name="beta", floor=1.0,
                              acquiredAt={"blockTimestamp": "2024-01-01T00:00:00Z"}), Chain.ETH, OWNER),
            normalize(raw_nft(CONTRACT, "2", name="Alpha", floor=5.0,
                              acquiredAt={"blockTimestamp": "2023-01-01T00:00:00Z"}), Chain.ETH, OWNER),
            normalize(raw_nft(CONTRACT, "3", name="gamma"), Chain.ETH, OWNER),
        ]

    def test_none_keeps_order(self):
        assert [n.ref.token_id for n in sort_nfts(self._nfts(), None)] == ["1", "2", "3"]

    def test_recent(self):
        assert [n.ref.token_id for n in sort_nfts(self._nfts(), "recent")] == ["1", "2", "3"]

    def test_value(self):
        assert [n.ref.token_id for n in sort_nfts(self._nfts(), "value")] == ["2", "1", "3"]

    def test_name(self):
        assert [n.name for n in sort_nfts(self._nfts(), "name")] == ["Alpha", "beta", "gamma"]

    def test_unknown_sort(self):
        with pytest.raises(InvalidArgumentError):
            sort_nfts(self._nfts(), "random")
