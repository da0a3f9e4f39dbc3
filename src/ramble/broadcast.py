"""
Broadcast pinner - replicate a stored payload to every node in the pool.

Nodes are visited one at a time, in pool order, each through its own
client so the content store binding is left alone. The first failure ends
the broadcast: nothing is reported as pinned unless every node succeeded.
A node that answers the pin with an HTML page is not an error, but is not
counted as pinned either.
"""

from __future__ import annotations

import logging
from typing import List

from .errors import BroadcastFailed, StoreError
from .models import Endpoint
from .pool import EndpointPool
from .store import ContentStore, add_with, looks_like_html, pin_with

logger = logging.getLogger(__name__)


class BroadcastPinner:
    """Adds and pins a payload on every endpoint of a pool."""

    def __init__(self, pool: EndpointPool, store: ContentStore):
        self.pool = pool
        self.store = store

    async def broadcast_pin(self, data: bytes, content_hash: str) -> List[Endpoint]:
        """
        Add *data* and pin *content_hash* on every node.

        Returns:
            Endpoints that confirmed the pin

        Raises:
            BroadcastFailed: On the first node that fails
        """
        pinning_nodes: List[Endpoint] = []
        nodes = self.pool.snapshot()
        logger.info(f"Broadcasting {content_hash} to {len(nodes)} nodes")

        for endpoint in nodes:
            client = self.store.client_for(endpoint)
            try:
                await add_with(client, endpoint, data)
                pinned = await pin_with(client, endpoint, content_hash)
            except StoreError as e:
                logger.warning(f"Broadcast of {content_hash} failed on {endpoint}: {e}")
                raise BroadcastFailed(
                    f"broadcast of {content_hash} failed on {endpoint}: {e}",
                    endpoint=endpoint,
                    cause=e,
                ) from e

            if looks_like_html(pinned):
                logger.debug(f"{endpoint} answered pin with an HTML page")
                continue
            pinning_nodes.append(endpoint)

        logger.info(f"{content_hash} pinned on {len(pinning_nodes)}/{len(nodes)} nodes")
        return pinning_nodes
