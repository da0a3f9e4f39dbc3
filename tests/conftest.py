"""Shared fixtures: an in-memory storage network and a scripted ledger.

``FakeNetwork`` stands in for a pool of IPFS nodes. Content added on any
node is visible to every node (as it would be through the DHT) unless a
node is configured to answer empty. Per-node switches simulate outages,
rejected adds/pins and gateways answering with HTML pages.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import pytest

from ramble import multihash
from ramble.config import RambleConfig
from ramble.client import Ramble
from ramble.errors import LedgerError
from ramble.ledger import Block, LogEvent, TxSpec, invoke_callback
from ramble.models import Endpoint

MARKET = "-0xd7d2bb0f5302c85649fed3e74391861c673fc53068823e911ff3938e68064d84"
OTHER_MARKET = "0x1234"
AUTHOR = "0x05ae1d0ca6206c6168b42efcd1fbe0ed144e821b"


def content_hash(data: bytes) -> str:
    return multihash.encode(hashlib.sha256(data).digest())


# =============================================================================
# Fake storage network
# =============================================================================


@dataclass
class FakeNode:
    endpoint: Endpoint
    reachable: bool = True
    empty: bool = False
    reject_add: bool = False
    reject_pin: bool = False
    html_pin: bool = False
    list_results: bool = True
    add_hash: Optional[str] = None
    cat_error: Optional[Exception] = None
    calls: List[str] = field(default_factory=list)
    pins: Set[str] = field(default_factory=set)


class FakeClient:
    """StorageClient backed by a FakeNode."""

    CHUNK = 7

    def __init__(self, network: "FakeNetwork", node: FakeNode):
        self.network = network
        self.node = node

    async def add(self, data: bytes) -> Any:
        self.node.calls.append("add")
        if not self.node.reachable:
            raise ConnectionRefusedError(f"{self.node.endpoint} unreachable")
        if self.node.reject_add:
            return {"error": "add rejected"}
        h = content_hash(data)
        self.network.blobs[h] = bytes(data)
        reported = self.node.add_hash or h
        entry = {"Name": reported, "Hash": reported, "Size": str(len(data))}
        return [entry] if self.node.list_results else entry

    async def cat(self, h: str):
        self.node.calls.append("cat")
        if not self.node.reachable:
            raise ConnectionRefusedError(f"{self.node.endpoint} unreachable")
        if self.node.cat_error is not None:
            raise self.node.cat_error
        delay = self.network.delays.get(h)
        if delay:
            await asyncio.sleep(delay)
        if self.node.empty:
            return
        data = self.network.blobs.get(h, b"")
        for i in range(0, len(data), self.CHUNK):
            yield data[i:i + self.CHUNK]

    async def pin_add(self, h: str) -> Any:
        self.node.calls.append("pin")
        if not self.node.reachable:
            raise ConnectionRefusedError(f"{self.node.endpoint} unreachable")
        if self.node.reject_pin:
            return {"error": "pin rejected"}
        if self.node.html_pin:
            return "<html><body>502 Bad Gateway</body></html>"
        self.node.pins.add(h)
        return {"Pins": [h]}


class FakeNetwork:
    def __init__(self):
        self.nodes: Dict[Endpoint, FakeNode] = {}
        self.blobs: Dict[str, bytes] = {}
        self.delays: Dict[str, float] = {}

    def node(self, endpoint: Endpoint) -> FakeNode:
        if endpoint not in self.nodes:
            self.nodes[endpoint] = FakeNode(endpoint)
        return self.nodes[endpoint]

    def client_factory(self, endpoint: Endpoint) -> FakeClient:
        return FakeClient(self, self.node(endpoint))

    def put(self, doc: Any, wrap: bytes = b"") -> str:
        """Store a document directly, returning its hash."""
        raw = doc if isinstance(doc, bytes) else json.dumps(doc).encode("utf-8")
        data = wrap + raw + wrap
        h = content_hash(data)
        self.blobs[h] = data
        return h

    def total_calls(self, kind: str) -> int:
        return sum(n.calls.count(kind) for n in self.nodes.values())


# =============================================================================
# Fake ledger
# =============================================================================


class FakeLedger:
    def __init__(self):
        self.logs: Any = []
        self.blocks: Dict[int, int] = {}
        self.query_error: Optional[Exception] = None
        self.fail_tx = False
        self.filters: List[Dict[str, Any]] = []
        self.submitted: List[TxSpec] = []

    def add_log(self, event: str, market: Any, h: str, block_number: int, timestamp: int = 1_700_000_000) -> None:
        digest = multihash.decode(h)
        self.logs.append(LogEvent(
            topics=[event, market],
            data="0x" + digest.hex(),
            block_number=hex(block_number),
        ))
        self.blocks[block_number] = timestamp + block_number

    async def query_logs(self, filter: Dict[str, Any]) -> Any:
        self.filters.append(filter)
        if self.query_error is not None:
            raise self.query_error
        return self.logs

    async def get_block(self, number: Any, full_tx: bool = True) -> Optional[Block]:
        timestamp = self.blocks.get(int(number))
        if timestamp is None:
            return None
        return Block(number=int(number), timestamp=timestamp)

    async def submit_transaction(self, tx, on_sent, on_success, on_failed) -> None:
        self.submitted.append(tx)
        if self.fail_tx:
            await invoke_callback(on_failed, LedgerError("transaction rejected"))
            return
        await invoke_callback(on_sent, {"txHash": "0xfeed", "callReturn": "1"})
        await invoke_callback(on_success, {"txHash": "0xfeed", "callReturn": "1", "blockNumber": "0x10"})


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def remotes() -> List[Endpoint]:
    return [Endpoint(host=f"ipfs{i}.test", port=443, protocol="https") for i in range(4)]


@pytest.fixture
def local() -> Endpoint:
    return Endpoint(host="localhost", port=5001, protocol="http")


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def config(remotes, local) -> RambleConfig:
    return RambleConfig(
        local_node=local,
        remote_nodes=list(remotes),
        comments_contract="0xc0ffee",
        from_address=AUTHOR,
    )


@pytest.fixture
def ramble(config, network, ledger) -> Ramble:
    return Ramble(config, ledger=ledger, client_factory=network.client_factory)
