"""
Publication engine - store a document, pin it and reference it on the ledger.

Flow for one publish:

1. Strip the transient ``broadcast`` flag and serialize the document
2. ``add`` it through the content store, rotating the pool on failure
3. Pin the hash on the node that accepted the add (failure is terminal)
4. Submit ``add<Kind>(marketId, digest)`` to the comments contract
5. When the transaction is sent, optionally replicate to every node in
   the background, then forward to the caller's ``on_sent``

Add retries are capped at ``max_publish_attempts`` (pool size + 1 unless
configured), matching the retrieval bound.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Optional, Set, Tuple, Union

from . import abi, multihash
from .broadcast import BroadcastPinner
from .errors import (
    BroadcastFailed,
    LedgerError,
    ParameterError,
    StorageExhausted,
    StoreError,
)
from .ledger import Callback, LedgerClient, TxSpec, invoke_callback
from .models import Comment, Metadata, encode_payload
from .pool import EndpointPool
from .store import ContentStore

logger = logging.getLogger(__name__)

ADD_COMMENT = "addComment"
ADD_METADATA = "addMetadata"


def _check_callbacks(*callbacks: Any) -> None:
    for cb in callbacks:
        if not callable(cb):
            raise ParameterError(f"callback is not callable: {cb!r}")


class PublicationEngine:
    """
    Publishes comments and metadata.

    Attributes:
        contract: Address of the comments contract
        from_address: Sending account (unlocked on the ledger node)
        max_publish_attempts: Cap on add attempts, None for pool size + 1
    """

    def __init__(
        self,
        pool: EndpointPool,
        store: ContentStore,
        ledger: LedgerClient,
        pinner: BroadcastPinner,
        contract: str = "",
        from_address: str = "",
        max_publish_attempts: Optional[int] = None,
    ):
        self.pool = pool
        self.store = store
        self.ledger = ledger
        self.pinner = pinner
        self.contract = contract
        self.from_address = from_address
        self._max_publish_attempts = max_publish_attempts
        self._tasks: Set[asyncio.Task] = set()

    @property
    def max_publish_attempts(self) -> int:
        if self._max_publish_attempts:
            return self._max_publish_attempts
        return self.pool.size + 1

    # -------------------------------------------------------------------------
    # PUBLIC API
    # -------------------------------------------------------------------------

    async def publish_comment(
        self,
        comment: Union[Comment, Mapping[str, Any]],
        on_sent: Callback,
        on_success: Callback,
        on_failed: Callback,
    ) -> Optional[str]:
        """
        Publish a comment ``{marketId, author, message, broadcast?}``.

        Returns:
            The content hash, or None if the failure callback was invoked

        Raises:
            ParameterError: If the comment or a callback is malformed
        """
        _check_callbacks(on_sent, on_success, on_failed)
        if isinstance(comment, Mapping):
            comment = Comment.from_dict(comment)
        if not isinstance(comment, Comment):
            raise ParameterError(f"not a comment: {comment!r}")
        return await self._publish(
            ADD_COMMENT, comment.market_id, comment.to_payload(), comment.broadcast,
            on_sent, on_success, on_failed,
        )

    async def publish_metadata(
        self,
        metadata: Union[Metadata, Mapping[str, Any]],
        on_sent: Callback,
        on_success: Callback,
        on_failed: Callback,
    ) -> Optional[str]:
        """Publish a metadata record. Same contract as :meth:`publish_comment`."""
        _check_callbacks(on_sent, on_success, on_failed)
        if isinstance(metadata, Mapping):
            metadata = Metadata.from_dict(metadata)
        if not isinstance(metadata, Metadata):
            raise ParameterError(f"not a metadata record: {metadata!r}")
        return await self._publish(
            ADD_METADATA, metadata.market_id, metadata.to_payload(), metadata.broadcast,
            on_sent, on_success, on_failed,
        )

    async def wait_for_broadcasts(self) -> None:
        """Wait for background broadcasts started by earlier publishes."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    async def _add(self, payload: dict) -> Tuple[bytes, str]:
        attempts = self.max_publish_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            data = encode_payload(payload)
            endpoint = self.store.endpoint
            try:
                return data, await self.store.add(data)
            except StoreError as e:
                last_error = e
                logger.warning(f"add on {endpoint} failed (attempt {attempt}/{attempts}): {e}")
                self.pool.advance()
        raise StorageExhausted(
            f"could not store document on any node after {attempts} attempts",
            attempts=attempts,
            last_error=last_error,
        )

    async def _publish(
        self,
        method: str,
        market_id: Any,
        payload: dict,
        broadcast: bool,
        on_sent: Callback,
        on_success: Callback,
        on_failed: Callback,
    ) -> Optional[str]:
        market_word = abi.to_hex(market_id)

        try:
            data, content_hash = await self._add(payload)
        except StorageExhausted as e:
            logger.error(f"{method}: {e}")
            await invoke_callback(on_failed, e)
            return None

        endpoint = self.store.endpoint
        try:
            await self.store.pin(content_hash)
        except StoreError as e:
            logger.error(f"{method}: pin of {content_hash} on {endpoint} failed: {e}")
            await invoke_callback(on_failed, e)
            return None
        logger.info(f"{method}: stored and pinned {content_hash} on {endpoint}")

        tx = TxSpec(
            to=self.contract,
            from_=self.from_address,
            method=method,
            signature="ii",
            params=[market_word, abi.to_hex(multihash.decode(content_hash))],
            returns="number",
        )

        async def sent(response: Any) -> None:
            if broadcast:
                self._start_broadcast(data, content_hash)
            await invoke_callback(on_sent, response)

        try:
            await self.ledger.submit_transaction(tx, sent, on_success, on_failed)
        except LedgerError as e:
            logger.error(f"{method}: transaction failed: {e}")
            await invoke_callback(on_failed, e)
            return None
        return content_hash

    def _start_broadcast(self, data: bytes, content_hash: str) -> None:
        task = asyncio.create_task(self._broadcast(data, content_hash))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _broadcast(self, data: bytes, content_hash: str) -> None:
        try:
            nodes = await self.pinner.broadcast_pin(data, content_hash)
        except BroadcastFailed as e:
            logger.warning(f"Background broadcast of {content_hash} failed: {e}")
            return
        logger.debug(f"Background broadcast of {content_hash} pinned on {[str(n) for n in nodes]}")
