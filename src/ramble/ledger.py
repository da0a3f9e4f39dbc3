"""
Ledger collaborator - log queries, block lookups and reference transactions.

The engines depend only on the :class:`LedgerClient` protocol.
:class:`JsonRpcLedger` implements it against an Ethereum-style JSON-RPC node
that holds an unlocked sending account; signing and gas handling stay on the
node. Function selectors for the comments contract are configuration, keyed
by method name.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import aiohttp

from . import abi
from .errors import LedgerError, LedgerQueryFailed, ParameterError

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass
class LogEvent:
    """One log entry: topics[0] is the event tag, topics[1] the market id."""

    topics: List[Any]
    data: str
    block_number: Any = None
    address: Optional[str] = None
    transaction_hash: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogEvent":
        return cls(
            topics=list(data.get("topics") or []),
            data=data.get("data") or "",
            block_number=data.get("blockNumber"),
            address=data.get("address"),
            transaction_hash=data.get("transactionHash"),
        )


@dataclass
class Block:
    """The parts of a block the retrieval engine reads."""

    number: int
    timestamp: int
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Block":
        return cls(
            number=abi.to_number(data.get("number") or 0),
            timestamp=abi.to_number(data.get("timestamp") or 0),
            raw=dict(data),
        )


@dataclass
class TxSpec:
    """A contract call to submit.

    ``signature`` lists parameter kinds ("i" = int256), ``returns`` the
    expected return type of the call.
    """

    to: str
    from_: str
    method: str
    signature: str
    params: List[str]
    returns: str = "number"
    send: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "from": self.from_,
            "method": self.method,
            "signature": self.signature,
            "params": list(self.params),
            "returns": self.returns,
            "send": self.send,
        }


# =============================================================================
# PROTOCOL
# =============================================================================


@runtime_checkable
class LedgerClient(Protocol):
    """What the engines need from the ledger."""

    async def query_logs(self, filter: Dict[str, Any]) -> Any:
        """Return a list of :class:`LogEvent` (anything else means no logs)."""
        ...

    async def get_block(self, number: Any, full_tx: bool = True) -> Optional[Block]:
        """Return the block or None when it does not exist."""
        ...

    async def submit_transaction(
        self,
        tx: TxSpec,
        on_sent: Callback,
        on_success: Callback,
        on_failed: Callback,
    ) -> None:
        """Submit *tx*, reporting progress through the callbacks."""
        ...


async def invoke_callback(cb: Optional[Callable[..., Any]], *args: Any) -> None:
    """Call *cb* with *args*, awaiting the result when it is awaitable."""
    if cb is None:
        return
    result = cb(*args)
    if inspect.isawaitable(result):
        await result


# =============================================================================
# JSON-RPC IMPLEMENTATION
# =============================================================================


class JsonRpcLedger:
    """
    LedgerClient over JSON-RPC 2.0.

    Example:
        ledger = JsonRpcLedger(
            "http://127.0.0.1:8545",
            selectors={"addComment": "0x...", "addMetadata": "0x..."},
        )
        logs = await ledger.query_logs({"address": contract, "topics": ["comment"]})
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        selectors: Optional[Dict[str, str]] = None,
        receipt_poll_interval: float = 2.0,
        receipt_timeout: float = 240.0,
    ):
        self.url = url
        self.timeout = timeout
        self.selectors = dict(selectors or {})
        self.receipt_poll_interval = receipt_poll_interval
        self.receipt_timeout = receipt_timeout
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: List[Any]) -> Any:
        request_body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=request_body) as resp:
                    if resp.status != 200:
                        raise LedgerQueryFailed(
                            f"{method} returned HTTP {resp.status}: {await resp.text()}"
                        )
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise LedgerQueryFailed(f"{method} connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise LedgerQueryFailed(f"{method} timed out") from e
        except ValueError as e:
            raise LedgerQueryFailed(f"{method} returned a non-JSON body: {e}") from e

        if not isinstance(data, dict):
            raise LedgerQueryFailed(f"{method} returned malformed response: {data!r}")
        if data.get("error"):
            raise LedgerQueryFailed(f"{method} failed: {data['error']}")
        return data.get("result")

    # -------------------------------------------------------------------------
    # QUERIES
    # -------------------------------------------------------------------------

    async def query_logs(self, filter: Dict[str, Any]) -> Any:
        params = dict(filter)
        for key in ("fromBlock", "toBlock"):
            value = params.get(key)
            if isinstance(value, int):
                params[key] = abi.to_quantity(value)
        result = await self._call("eth_getLogs", [params])
        if not isinstance(result, list):
            return result
        return [LogEvent.from_dict(entry) for entry in result if isinstance(entry, Mapping)]

    async def get_block(self, number: Any, full_tx: bool = True) -> Optional[Block]:
        result = await self._call("eth_getBlockByNumber", [abi.to_quantity(number), bool(full_tx)])
        if not result:
            return None
        return Block.from_dict(result)

    # -------------------------------------------------------------------------
    # TRANSACTIONS
    # -------------------------------------------------------------------------

    def encode_call(self, tx: TxSpec) -> str:
        """ABI-encode *tx* as call data (int256 params only)."""
        selector = self.selectors.get(tx.method)
        if not selector:
            raise ParameterError(f"no function selector configured for {tx.method}")
        if len(tx.params) != len(tx.signature):
            raise ParameterError(
                f"{tx.method} expects {len(tx.signature)} params, got {len(tx.params)}"
            )
        if any(kind != "i" for kind in tx.signature):
            raise ParameterError(f"unsupported signature {tx.signature!r}")
        selector = selector[2:] if selector.startswith("0x") else selector
        return "0x" + selector + "".join(abi.to_hex(p, prefix=False) for p in tx.params)

    async def submit_transaction(
        self,
        tx: TxSpec,
        on_sent: Callback,
        on_success: Callback,
        on_failed: Callback,
    ) -> None:
        try:
            call = {"from": tx.from_, "to": tx.to, "data": self.encode_call(tx)}
            call_return = await self._call("eth_call", [call, "latest"])
            if tx.returns == "number" and isinstance(call_return, str) and call_return not in ("", "0x"):
                call_return = str(abi.to_number(call_return))
            tx_hash = await self._call("eth_sendTransaction", [call])
        except (LedgerError, ParameterError) as e:
            logger.error(f"{tx.method} submission failed: {e}")
            await invoke_callback(on_failed, e)
            return

        logger.info(f"{tx.method} sent: {tx_hash}")
        await invoke_callback(on_sent, {"txHash": tx_hash, "callReturn": call_return})

        try:
            receipt = await self._wait_for_receipt(tx_hash)
        except LedgerError as e:
            await invoke_callback(on_failed, e)
            return

        if str(receipt.get("status", "0x1")).lower() in ("0x0", "0"):
            await invoke_callback(on_failed, LedgerError(f"{tx.method} reverted in {tx_hash}"))
            return
        success = dict(receipt)
        success.update({"txHash": tx_hash, "callReturn": call_return})
        await invoke_callback(on_success, success)

    async def _wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = await self._call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            if time.monotonic() >= deadline:
                raise LedgerError(f"no receipt for {tx_hash} after {self.receipt_timeout}s")
            await asyncio.sleep(self.receipt_poll_interval)
