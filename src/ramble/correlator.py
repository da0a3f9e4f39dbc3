"""
Log correlator - find a market's documents through the ledger's event log.

The comments contract logs one event per published document, tagged with
the document kind in ``topics[0]`` and the market id in ``topics[1]``; the
log data is the sha2-256 digest of the stored document.

``num_comments`` keeps only the newest N log entries *before* entries are
matched against the market id, so a market may get fewer than N results
even when it has older matching entries.

Any retrieval error aborts the whole batch. Results come back newest first.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from . import abi, multihash
from .errors import LedgerError, LedgerQueryFailed, NoLogs, ParameterError
from .ledger import LedgerClient, LogEvent
from .models import FetchOptions, RetrievedComment, RetrievedMetadata
from .retrieval import RetrievalEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LogCorrelator:
    """
    Drives the retrieval engine from ledger log events.

    Attributes:
        contract: Address of the comments contract
        debug: Retrieve one entry at a time instead of fanning out
        fanout: Concurrent retrievals when not in debug mode
    """

    def __init__(
        self,
        retrieval: RetrievalEngine,
        ledger: LedgerClient,
        contract: str = "",
        comment_event: str = "comment",
        metadata_event: str = "metadata",
        debug: bool = False,
        fanout: int = 8,
    ):
        self.retrieval = retrieval
        self.ledger = ledger
        self.contract = contract
        self.comment_event = comment_event
        self.metadata_event = metadata_event
        self.debug = debug
        self.fanout = max(1, int(fanout))

    # -------------------------------------------------------------------------
    # PUBLIC API
    # -------------------------------------------------------------------------

    async def fetch_comments(
        self,
        market_id: Any,
        options: Optional[FetchOptions] = None,
    ) -> List[RetrievedComment]:
        """
        Fetch every comment logged for *market_id*, newest first.

        Comments missing an author, a message or a block time are dropped.

        Raises:
            ParameterError: If market_id is missing
            LedgerQueryFailed: If the log query fails
            NoLogs: If the query returned nothing
        """
        market = self._market_word(market_id)
        options = FetchOptions.coerce(options)
        logs = await self._matching_logs(self.comment_event, market, options)

        async def fetch(entry: LogEvent) -> RetrievedComment:
            return await self.retrieval.fetch_comment(
                multihash.encode(abi.to_hex(entry.data, prefix=False)),
                entry.block_number,
            )

        comments = await self._gather(logs, fetch)
        return [c for c in reversed(comments) if c.author and c.message and c.time]

    async def fetch_metadata_list(
        self,
        market_id: Any,
        options: Optional[FetchOptions] = None,
    ) -> List[RetrievedMetadata]:
        """Fetch every metadata record logged for *market_id*, newest first.

        Records without a ``source`` are dropped unless ``options.sourceless``.
        """
        market = self._market_word(market_id)
        options = FetchOptions.coerce(options)
        logs = await self._matching_logs(self.metadata_event, market, options)

        async def fetch(entry: LogEvent) -> RetrievedMetadata:
            return await self.retrieval.fetch_metadata(
                multihash.encode(abi.to_hex(entry.data, prefix=False))
            )

        records = await self._gather(logs, fetch)
        return [m for m in reversed(records) if options.sourceless or m.source]

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    @staticmethod
    def _market_word(market_id: Any) -> int:
        if market_id is None or market_id == "":
            raise ParameterError("market id is required")
        return abi.to_word(market_id)

    async def _matching_logs(self, event: str, market: int, options: FetchOptions) -> List[LogEvent]:
        log_filter: Dict[str, Any] = {
            "fromBlock": options.from_block,
            "toBlock": options.to_block,
            "address": self.contract,
            "topics": [event],
        }
        try:
            logs = await self.ledger.query_logs(log_filter)
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerQueryFailed(f"log query failed: {e}") from e

        if isinstance(logs, dict) and logs.get("error"):
            raise LedgerQueryFailed(f"log query failed: {logs['error']}")
        if not isinstance(logs, list) or not logs:
            raise NoLogs(f"no {event} logs between {options.from_block} and {options.to_block}")

        if options.num_comments and options.num_comments < len(logs):
            logs = logs[len(logs) - options.num_comments:]

        matching = []
        for entry in logs:
            if isinstance(entry, dict):
                entry = LogEvent.from_dict(entry)
            if not entry or len(entry.topics) < 2:
                continue
            if not abi.same_id(entry.topics[1], market):
                continue
            matching.append(entry)
        logger.debug(f"{len(matching)}/{len(logs)} {event} logs match market {abi.to_hex(market)}")
        return matching

    async def _gather(
        self,
        logs: List[LogEvent],
        fetch: Callable[[LogEvent], Awaitable[T]],
    ) -> List[T]:
        """Run *fetch* over *logs*, keeping input order in the result."""
        if self.debug:
            return [await fetch(entry) for entry in logs]

        semaphore = asyncio.Semaphore(self.fanout)

        async def bounded(entry: LogEvent) -> T:
            async with semaphore:
                return await fetch(entry)

        tasks = [asyncio.ensure_future(bounded(entry)) for entry in logs]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
