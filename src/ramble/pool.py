"""
Endpoint pool - which storage node the content store talks to.

The pool holds one local endpoint and an ordered list of remote endpoints.
Exactly one of them is bound at a time: selecting a remote clears the local
binding and vice versa. Failover walks the remote list strictly round-robin.

The cursor is shared by every request using the pool and is not locked.
Concurrent failovers may skip a node; that only affects which node serves
the next call, never which content is served, since the hash decides that.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

from .errors import ParameterError
from .models import Endpoint

logger = logging.getLogger(__name__)

EndpointLike = Union[Endpoint, str, Mapping[str, Any]]


@dataclass
class EndpointPool:
    """
    Ordered set of storage endpoints with a round-robin cursor.

    Example:
        pool = EndpointPool(nodes=[Endpoint.from_url("https://ipfs2.augur.net")])
        pool.on_bind = store.bind
        pool.select_remote()
        pool.advance()  # after a failure
    """

    nodes: List[Endpoint] = field(default_factory=list)
    local: Optional[Endpoint] = None
    active: Optional[Endpoint] = None
    cursor: int = 0

    # Called with the newly bound endpoint after every selection
    on_bind: Optional[Callable[[Endpoint], None]] = field(default=None, repr=False)

    # Last local endpoint, restored by select_local() after a remote selection
    _home: Optional[Endpoint] = field(default=None, repr=False)

    _stats: dict = field(default_factory=lambda: {
        "rebinds": 0,
        "failovers": 0,
    }, repr=False)

    def __post_init__(self) -> None:
        self.nodes = [Endpoint.coerce(n) for n in self.nodes]
        if not self.nodes:
            raise ParameterError("endpoint pool needs at least one remote node")
        if self.local is not None:
            self.local = Endpoint.coerce(self.local)
            self._home = self.local
        if self.active is not None:
            self.active = Endpoint.coerce(self.active)
            self.local = None

    # -------------------------------------------------------------------------
    # STATE
    # -------------------------------------------------------------------------

    @property
    def size(self) -> int:
        """Number of remote nodes."""
        return len(self.nodes)

    @property
    def current(self) -> Optional[Endpoint]:
        """The endpoint the content store is bound to."""
        return self.active if self.active is not None else self.local

    @property
    def is_local(self) -> bool:
        return self.active is None and self.local is not None

    def snapshot(self) -> Tuple[Endpoint, ...]:
        """Copy of the remote node list, for iteration that must not see appends."""
        return tuple(self.nodes)

    def get_stats(self) -> dict:
        return dict(self._stats)

    # -------------------------------------------------------------------------
    # SELECTION
    # -------------------------------------------------------------------------

    def select_local(self, endpoint: Optional[EndpointLike] = None) -> Endpoint:
        """Bind the local node, optionally replacing it first."""
        if endpoint is not None:
            self._home = Endpoint.coerce(endpoint)
        if self._home is None:
            raise ParameterError("no local endpoint configured")
        self.local = self._home
        self.active = None
        self._bind(self.local)
        return self.local

    def select_remote(self, endpoint: Optional[EndpointLike] = None) -> Endpoint:
        """Bind a remote node.

        A new endpoint is appended to the pool and becomes the cursor
        position; otherwise the node under the current cursor is bound.
        """
        if endpoint is not None:
            self.nodes.append(Endpoint.coerce(endpoint))
            self.cursor = len(self.nodes) - 1
            logger.info(f"Added remote node {self.nodes[-1]} (pool size {self.size})")
        self.active = self.nodes[self.cursor % self.size]
        self.local = None
        self._bind(self.active)
        return self.active

    def advance(self) -> Endpoint:
        """Move to the next remote node after a failure."""
        previous = self.current
        self.cursor += 1
        self.active = self.nodes[self.cursor % self.size]
        self.local = None
        self._stats["failovers"] += 1
        logger.info(f"Failing over from {previous} to {self.active}")
        self._bind(self.active)
        return self.active

    def _bind(self, endpoint: Endpoint) -> None:
        self._stats["rebinds"] += 1
        logger.debug(f"Binding content store to {endpoint}")
        if self.on_bind is not None:
            self.on_bind(endpoint)
