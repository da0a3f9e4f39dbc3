"""Tests for data models and configuration."""

from __future__ import annotations

import pytest

from conftest import MARKET
from ramble.config import IPFS_LOCAL, IPFS_REMOTE, RambleConfig
from ramble.errors import ParameterError
from ramble.models import (
    Comment,
    Endpoint,
    FetchOptions,
    Metadata,
    RetrievedComment,
    RetrievedMetadata,
    encode_payload,
    image_bytes,
)


# =============================================================================
# ENDPOINT
# =============================================================================


class TestEndpoint:
    def test_url(self):
        assert Endpoint("ipfs2.augur.net", 443, "https").url == "https://ipfs2.augur.net:443"

    def test_from_url_default_ports(self):
        assert Endpoint.from_url("https://ipfs4.augur.net").port == 443
        assert Endpoint.from_url("http://node.test").port == 80

    def test_from_url_without_scheme(self):
        endpoint = Endpoint.from_url("localhost:5001")
        assert endpoint == Endpoint("localhost", 5001, "http")

    def test_dict_round_trip(self):
        endpoint = Endpoint("ipfs5.augur.net", 443, "https")
        assert Endpoint.from_dict(endpoint.to_dict()) == endpoint

    def test_missing_host(self):
        with pytest.raises(ParameterError):
            Endpoint.from_dict({"port": 5001})

    def test_coerce_rejects_other_types(self):
        with pytest.raises(ParameterError):
            Endpoint.coerce(5001)

    def test_hashable(self):
        assert len({Endpoint("a", 1), Endpoint("a", 1)}) == 1


# =============================================================================
# DOCUMENTS
# =============================================================================


class TestComment:
    def test_payload_omits_broadcast(self):
        comment = Comment.from_dict({
            "marketId": MARKET,
            "author": "0xabc",
            "message": "haters gonna hate",
            "broadcast": True,
        })

        assert comment.broadcast is True
        assert comment.to_payload() == {
            "marketId": MARKET,
            "author": "0xabc",
            "message": "haters gonna hate",
        }

    def test_extra_fields_preserved(self):
        comment = Comment.from_dict({"market_id": "0x1", "author": "a", "message": "m", "reply": "Qm"})
        assert comment.to_payload()["reply"] == "Qm"

    def test_market_required(self):
        with pytest.raises(ParameterError):
            Comment.from_dict({"author": "a", "message": "m"})

    def test_compact_encoding(self):
        assert encode_payload({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'


class TestMetadata:
    def test_image_stored_as_byte_array(self):
        metadata = Metadata(market_id=MARKET, image=b"\x89PNG", source="https://example.test")
        payload = metadata.to_payload()

        assert payload["image"] == [0x89, 0x50, 0x4E, 0x47]
        assert payload["source"] == "https://example.test"
        assert "details" not in payload

    def test_from_dict_accepts_buffer_shape(self):
        metadata = Metadata.from_dict({
            "marketId": MARKET,
            "image": {"type": "Buffer", "data": [1, 2, 3]},
            "broadcast": True,
        })

        assert metadata.image == b"\x01\x02\x03"
        assert "broadcast" not in metadata.to_payload()

    def test_image_bytes_passthrough(self):
        assert image_bytes("not an image") == "not an image"
        assert image_bytes([300]) == [300]
        assert image_bytes(None) is None


class TestRetrieved:
    def test_comment_dict_omits_missing_block(self):
        record = RetrievedComment(hash="Qm", author="a", message="m")
        assert record.to_dict() == {"hash": "Qm", "author": "a", "message": "m"}

    def test_comment_dict_with_block(self):
        record = RetrievedComment(hash="Qm", author="a", message="m", block_number=5, time=10)
        assert record.to_dict()["blockNumber"] == 5
        assert record.to_dict()["time"] == 10

    def test_metadata_from_payload(self):
        record = RetrievedMetadata.from_payload("Qm", {
            "marketId": MARKET,
            "image": [1, 2],
            "tags": ["x"],
            "custom": True,
        })

        assert record.image == b"\x01\x02"
        assert record.tags == ["x"]
        assert record.to_dict()["custom"] is True


class TestFetchOptions:
    def test_defaults(self):
        options = FetchOptions.coerce(None)
        assert options.from_block == "0x1"
        assert options.to_block == "latest"
        assert options.num_comments is None
        assert options.sourceless is False

    def test_camel_case_mapping(self):
        options = FetchOptions.coerce({"fromBlock": 100, "numComments": "5", "sourceless": True})
        assert options.from_block == 100
        assert options.num_comments == 5
        assert options.sourceless is True

    def test_snake_case_mapping(self):
        options = FetchOptions.coerce({"to_block": "0x20", "num_comments": 3})
        assert options.to_block == "0x20"
        assert options.num_comments == 3

    def test_instance_passthrough(self):
        options = FetchOptions(num_comments=2)
        assert FetchOptions.coerce(options) is options

    def test_rejects_other_types(self):
        with pytest.raises(ParameterError):
            FetchOptions.coerce(["fromBlock"])

    @pytest.mark.parametrize("num", ["ten", "5.5", [3]])
    def test_bad_num_comments(self, num):
        with pytest.raises(ParameterError, match="numComments"):
            FetchOptions.coerce({"numComments": num})


# =============================================================================
# CONFIG
# =============================================================================


class TestConfig:
    def test_defaults_from_empty_env(self):
        config = RambleConfig.from_env({})

        assert config.local_node == IPFS_LOCAL
        assert config.remote_nodes == IPFS_REMOTE
        assert config.default_endpoint == IPFS_LOCAL
        assert config.max_publish_attempts is None

    def test_remote_list(self):
        config = RambleConfig.from_env({
            "RAMBLE_IPFS_REMOTES": "https://a.test, https://b.test:8443,",
        })

        assert config.remote_nodes == [
            Endpoint("a.test", 443, "https"),
            Endpoint("b.test", 8443, "https"),
        ]

    def test_secure_starts_on_remote(self):
        config = RambleConfig.from_env({"RAMBLE_SECURE": "true"})
        assert config.default_endpoint == IPFS_REMOTE[0]

    def test_numbers(self):
        config = RambleConfig.from_env({
            "RAMBLE_IPFS_TIMEOUT": "2.5",
            "RAMBLE_FANOUT": "3",
            "RAMBLE_MAX_PUBLISH_ATTEMPTS": "2",
        })

        assert config.ipfs_timeout == 2.5
        assert config.fanout == 3
        assert config.max_publish_attempts == 2

    def test_ledger_settings(self):
        config = RambleConfig.from_env({
            "RAMBLE_RPC_URL": "http://ledger.test:8545",
            "RAMBLE_RECEIPT_TIMEOUT": "60",
            "RAMBLE_COMMENT_EVENT": "CommentAdded",
            "RAMBLE_METADATA_EVENT": "MetadataAdded",
        })

        assert config.rpc_url == "http://ledger.test:8545"
        assert config.receipt_timeout == 60.0
        assert config.comment_event == "CommentAdded"
        assert config.metadata_event == "MetadataAdded"

    def test_bad_number(self):
        with pytest.raises(ParameterError):
            RambleConfig.from_env({"RAMBLE_IPFS_TIMEOUT": "soon"})

    def test_selectors(self):
        config = RambleConfig.from_env({
            "RAMBLE_SELECTORS": '{"addComment": "0x0a0b0c0d", "addMetadata": "0x01020304"}',
        })
        assert config.selectors["addComment"] == "0x0a0b0c0d"

    @pytest.mark.parametrize("raw", ["[1, 2]", "{not json"])
    def test_bad_selectors(self, raw):
        with pytest.raises(ParameterError):
            RambleConfig.from_env({"RAMBLE_SELECTORS": raw})

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("RAMBLE_COMMENTS_CONTRACT", "0xc0ffee")
        monkeypatch.setenv("RAMBLE_DEBUG", "1")

        config = RambleConfig.from_env()

        assert config.comments_contract == "0xc0ffee"
        assert config.debug is True
