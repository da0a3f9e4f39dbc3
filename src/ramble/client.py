"""
Ramble client - the public surface.

One :class:`Ramble` instance owns an endpoint pool, the content store bound
to it, and the engines built on top. Instances are independent: nothing is
kept at module level, so tests and applications can run several side by
side.

Example:
    ramble = create_client()
    ramble.select_remote_endpoint()
    comments = await ramble.fetch_comments_for_market(market_id, {"numComments": 10})
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, List, Optional, Union

from .broadcast import BroadcastPinner
from .config import RambleConfig
from .correlator import LogCorrelator
from .errors import BroadcastFailed
from .ledger import Callback, JsonRpcLedger, LedgerClient, invoke_callback
from .models import (
    Comment,
    Endpoint,
    FetchOptions,
    Metadata,
    RetrievedComment,
    RetrievedMetadata,
)
from .pool import EndpointLike, EndpointPool
from .publication import PublicationEngine
from .retrieval import RetrievalEngine
from .store import ClientFactory, ContentStore

logger = logging.getLogger(__name__)

OptionsLike = Union[FetchOptions, Mapping[str, Any], None]


class Ramble:
    """
    Comments and metadata over content-addressed storage and a ledger.

    Attributes:
        config: Configuration the instance was built from
        pool: Endpoint pool shared by every engine
        store: Content store bound to the pool's current endpoint
        ledger: Ledger collaborator
    """

    def __init__(
        self,
        config: Optional[RambleConfig] = None,
        ledger: Optional[LedgerClient] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.config = config or RambleConfig()
        cfg = self.config

        default = cfg.default_endpoint
        self.pool = EndpointPool(
            nodes=list(cfg.remote_nodes),
            local=cfg.local_node,
            active=default if default != cfg.local_node else None,
        )

        self.store = ContentStore(default, client_factory=client_factory, timeout=cfg.ipfs_timeout)
        self.pool.on_bind = self.store.bind

        self.ledger: LedgerClient = ledger or JsonRpcLedger(
            cfg.rpc_url,
            timeout=cfg.rpc_timeout,
            selectors=cfg.selectors,
            receipt_poll_interval=cfg.receipt_poll_interval,
            receipt_timeout=cfg.receipt_timeout,
        )

        self.retrieval = RetrievalEngine(self.pool, self.store, self.ledger)
        self.pinner = BroadcastPinner(self.pool, self.store)
        self.publication = PublicationEngine(
            self.pool,
            self.store,
            self.ledger,
            self.pinner,
            contract=cfg.comments_contract,
            from_address=cfg.from_address,
            max_publish_attempts=cfg.max_publish_attempts,
        )
        self.correlator = LogCorrelator(
            self.retrieval,
            self.ledger,
            contract=cfg.comments_contract,
            comment_event=cfg.comment_event,
            metadata_event=cfg.metadata_event,
            debug=cfg.debug,
            fanout=cfg.fanout,
        )
        logger.debug(f"Ramble bound to {default} with {self.pool.size} remote nodes")

    # -------------------------------------------------------------------------
    # ENDPOINT SELECTION
    # -------------------------------------------------------------------------

    def select_local_endpoint(self, url: Optional[EndpointLike] = None) -> Endpoint:
        """Use the local node (optionally a different one)."""
        return self.pool.select_local(url)

    def select_remote_endpoint(self, endpoint: Optional[EndpointLike] = None) -> Endpoint:
        """Use a remote node, adding *endpoint* to the pool when given."""
        return self.pool.select_remote(endpoint)

    @property
    def endpoint(self) -> Optional[Endpoint]:
        return self.pool.current

    # -------------------------------------------------------------------------
    # RETRIEVAL
    # -------------------------------------------------------------------------

    async def fetch_comment(self, content_hash: str, block_number: Optional[Any] = None) -> RetrievedComment:
        return await self.retrieval.fetch_comment(content_hash, block_number)

    async def fetch_metadata(self, content_hash: str) -> RetrievedMetadata:
        return await self.retrieval.fetch_metadata(content_hash)

    async def fetch_comments_for_market(self, market_id: Any, options: OptionsLike = None) -> List[RetrievedComment]:
        return await self.correlator.fetch_comments(market_id, FetchOptions.coerce(options))

    async def fetch_metadata_for_market(self, market_id: Any, options: OptionsLike = None) -> List[RetrievedMetadata]:
        return await self.correlator.fetch_metadata_list(market_id, FetchOptions.coerce(options))

    # -------------------------------------------------------------------------
    # PUBLICATION
    # -------------------------------------------------------------------------

    async def publish_comment(
        self,
        comment: Union[Comment, Mapping[str, Any]],
        on_sent: Callback,
        on_success: Callback,
        on_failed: Callback,
    ) -> Optional[str]:
        return await self.publication.publish_comment(comment, on_sent, on_success, on_failed)

    async def publish_metadata(
        self,
        metadata: Union[Metadata, Mapping[str, Any]],
        on_sent: Callback,
        on_success: Callback,
        on_failed: Callback,
    ) -> Optional[str]:
        return await self.publication.publish_metadata(metadata, on_sent, on_success, on_failed)

    async def broadcast_pin(
        self,
        data: bytes,
        content_hash: str,
        cb: Optional[Callable[[Optional[Exception], Optional[List[Endpoint]]], Any]] = None,
    ) -> List[Endpoint]:
        """
        Replicate *data* to every node in the pool.

        With *cb* (plain or async), the outcome is reported as
        ``cb(error, None)`` or ``cb(None, nodes)`` instead of raising.
        """
        if cb is None:
            return await self.pinner.broadcast_pin(data, content_hash)
        try:
            nodes = await self.pinner.broadcast_pin(data, content_hash)
        except BroadcastFailed as e:
            await invoke_callback(cb, e, None)
            return []
        await invoke_callback(cb, None, nodes)
        return nodes

    async def wait_for_broadcasts(self) -> None:
        await self.publication.wait_for_broadcasts()

    def get_stats(self) -> dict:
        stats = dict(self.pool.get_stats())
        stats.update(self.retrieval.get_stats())
        return stats


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def create_client(
    config: Optional[RambleConfig] = None,
    remotes: Optional[List[EndpointLike]] = None,
    ledger: Optional[LedgerClient] = None,
    client_factory: Optional[ClientFactory] = None,
    **kwargs,
) -> Ramble:
    """
    Create a client from the environment, with optional overrides.

    Args:
        config: Base configuration (defaults to RambleConfig.from_env())
        remotes: Replacement remote node list
        ledger: Pre-configured ledger client
        client_factory: Storage client factory (one client per endpoint)
        **kwargs: RambleConfig fields to override

    Returns:
        Configured Ramble instance
    """
    config = config or RambleConfig.from_env()
    if remotes is not None:
        config.remote_nodes = [Endpoint.coerce(r) for r in remotes]
    for key, value in kwargs.items():
        if not hasattr(config, key):
            raise TypeError(f"unknown config field: {key}")
        setattr(config, key, value)
    return Ramble(config, ledger=ledger, client_factory=client_factory)
