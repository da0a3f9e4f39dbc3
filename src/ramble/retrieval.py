"""
Retrieval engine - fetch, pin and parse documents by content hash.

A fetch that fails in transit, comes back empty or cannot be pinned moves
the pool to the next node and tries again. Empty answers usually mean a
node has not replicated the content yet, so they rotate too instead of
ending the fetch. Attempts are bounded by the pool size: once ``attempt``
exceeds it the fetch fails with StorageExhausted. Any other store error
ends the fetch.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from . import abi
from .errors import (
    LedgerError,
    LedgerQueryFailed,
    MalformedPayload,
    PinRejected,
    StorageExhausted,
    StoreError,
)
from .ledger import LedgerClient
from .models import RetrievedComment, RetrievedMetadata
from .multihash import validate_hash
from .pool import EndpointPool
from .store import ContentStore

logger = logging.getLogger(__name__)


def parse_envelope(payload: bytes) -> Dict[str, Any]:
    """Parse the JSON object between the first ``{`` and the last ``}``.

    Some transports wrap the document in framing bytes; those are ignored.
    """
    text = payload.decode("utf-8", errors="replace")
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        raise MalformedPayload(f"no JSON object in payload ({len(payload)} bytes)")
    try:
        doc = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"invalid JSON payload: {e}") from e
    if not isinstance(doc, dict):
        raise MalformedPayload("payload is not a JSON object")
    return doc


class RetrievalEngine:
    """
    Fetches documents through the content store with pool failover.

    Attributes:
        pool: Endpoint pool to rotate on failure
        store: Content store bound to the pool's current endpoint
        ledger: Ledger used to stamp comments with their block time
    """

    def __init__(self, pool: EndpointPool, store: ContentStore, ledger: LedgerClient):
        self.pool = pool
        self.store = store
        self.ledger = ledger
        self._stats = {"fetches": 0, "retries": 0, "exhausted": 0}

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    async def fetch_document(self, content_hash: str) -> Dict[str, Any]:
        """Fetch, pin and parse the document stored under *content_hash*."""
        content_hash = validate_hash(content_hash)
        self._stats["fetches"] += 1
        attempt = 0
        last_error: Optional[Exception] = None

        while attempt <= self.pool.size:
            endpoint = self.store.endpoint
            try:
                payload = await self.store.fetch(content_hash)
                pinned = await self.store.pin(content_hash)
                logger.debug(f"Pinned {content_hash} on {endpoint}: {pinned}")
            except StoreError as e:
                if not (e.is_transient or isinstance(e, PinRejected)):
                    raise
                last_error = e
                attempt += 1
                self._stats["retries"] += 1
                logger.warning(
                    f"Fetching {content_hash} from {endpoint} failed "
                    f"(attempt {attempt}/{self.pool.size + 1}): {e}"
                )
                self.pool.advance()
                continue
            return parse_envelope(payload)

        self._stats["exhausted"] += 1
        raise StorageExhausted(
            f"could not retrieve {content_hash} from any of {self.pool.size} nodes",
            attempts=attempt,
            last_error=last_error,
        )

    async def fetch_comment(
        self,
        content_hash: str,
        block_number: Optional[Any] = None,
    ) -> RetrievedComment:
        """
        Fetch a comment, stamping it with its block time when a block is given.

        Raises:
            ParameterError: If the hash is malformed
            StorageExhausted: If no node could serve and pin the content
            MalformedPayload: If the content is not a JSON object
            LedgerQueryFailed: If the block lookup fails
        """
        number = abi.to_number(block_number) if block_number is not None else None
        doc = await self.fetch_document(content_hash)
        comment = RetrievedComment(
            hash=content_hash.strip(),
            author=doc.get("author"),
            message=doc.get("message") or "",
        )
        if number is None:
            return comment

        try:
            block = await self.ledger.get_block(number, True)
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerQueryFailed(f"block {number} lookup failed: {e}") from e
        if block is None:
            raise LedgerQueryFailed(f"block {number} not found")
        comment.block_number = number
        comment.time = int(block.timestamp)
        return comment

    async def fetch_metadata(self, content_hash: str) -> RetrievedMetadata:
        """Fetch a metadata record; an array-shaped image comes back as bytes."""
        doc = await self.fetch_document(content_hash)
        return RetrievedMetadata.from_payload(content_hash.strip(), doc)

