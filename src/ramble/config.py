"""Configurable defaults for Ramble.

Every field can be overridden from a ``RAMBLE_*`` environment variable via
:meth:`RambleConfig.from_env`.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .errors import ParameterError
from .models import Endpoint

IPFS_LOCAL = Endpoint(host="localhost", port=5001, protocol="http")
IPFS_REMOTE = [
    Endpoint(host="ipfs2.augur.net", port=443, protocol="https"),
    Endpoint(host="ipfs4.augur.net", port=443, protocol="https"),
    Endpoint(host="ipfs5.augur.net", port=443, protocol="https"),
]

COMMENT_EVENT = "comment"
METADATA_EVENT = "metadata"

_TRUE = {"1", "true", "yes", "on"}


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ParameterError(f"{key} must be a number, got {raw!r}") from e


def _env_int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ParameterError(f"{key} must be an integer, got {raw!r}") from e


@dataclass
class RambleConfig:
    """Configuration for a :class:`~ramble.client.Ramble` instance."""

    # Storage pool
    local_node: Endpoint = IPFS_LOCAL
    remote_nodes: List[Endpoint] = field(default_factory=lambda: list(IPFS_REMOTE))

    # Start on the first remote node instead of the local one (https contexts)
    secure: bool = False

    # Storage request timeout (seconds)
    ipfs_timeout: float = 30.0

    # Ledger JSON-RPC
    rpc_url: str = "http://127.0.0.1:8545"
    rpc_timeout: float = 30.0
    receipt_poll_interval: float = 2.0
    receipt_timeout: float = 240.0

    # Comments contract and sending account
    comments_contract: str = ""
    from_address: str = ""

    # Function selectors for the comments contract, keyed by method name
    selectors: Dict[str, str] = field(default_factory=dict)

    # Log event tags
    comment_event: str = COMMENT_EVENT
    metadata_event: str = METADATA_EVENT

    # Sequential correlation and verbose tracing
    debug: bool = False

    # Concurrent retrievals per correlation call outside debug mode
    fanout: int = 8

    # None means pool size + 1, the same bound retrieval uses
    max_publish_attempts: Optional[int] = None

    @property
    def default_endpoint(self) -> Endpoint:
        """Endpoint bound at start-up."""
        if self.secure and self.remote_nodes:
            return self.remote_nodes[0]
        return self.local_node

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RambleConfig":
        """Build a config from ``RAMBLE_*`` environment variables."""
        env = os.environ if env is None else env
        cfg = cls()

        local = (env.get("RAMBLE_IPFS_LOCAL") or "").strip()
        if local:
            cfg.local_node = Endpoint.from_url(local)

        remotes = (env.get("RAMBLE_IPFS_REMOTES") or "").strip()
        if remotes:
            cfg.remote_nodes = [Endpoint.from_url(u) for u in remotes.split(",") if u.strip()]

        cfg.secure = _env_bool(env, "RAMBLE_SECURE", cfg.secure)
        cfg.ipfs_timeout = _env_float(env, "RAMBLE_IPFS_TIMEOUT", cfg.ipfs_timeout)
        cfg.rpc_url = (env.get("RAMBLE_RPC_URL") or cfg.rpc_url).strip()
        cfg.rpc_timeout = _env_float(env, "RAMBLE_RPC_TIMEOUT", cfg.rpc_timeout)
        cfg.receipt_poll_interval = _env_float(env, "RAMBLE_RECEIPT_POLL_INTERVAL", cfg.receipt_poll_interval)
        cfg.receipt_timeout = _env_float(env, "RAMBLE_RECEIPT_TIMEOUT", cfg.receipt_timeout)
        cfg.comments_contract = (env.get("RAMBLE_COMMENTS_CONTRACT") or cfg.comments_contract).strip()
        cfg.from_address = (env.get("RAMBLE_FROM") or cfg.from_address).strip()
        cfg.comment_event = (env.get("RAMBLE_COMMENT_EVENT") or cfg.comment_event).strip()
        cfg.metadata_event = (env.get("RAMBLE_METADATA_EVENT") or cfg.metadata_event).strip()
        cfg.debug = _env_bool(env, "RAMBLE_DEBUG", cfg.debug)
        cfg.fanout = _env_int(env, "RAMBLE_FANOUT", cfg.fanout) or 1
        cfg.max_publish_attempts = _env_int(env, "RAMBLE_MAX_PUBLISH_ATTEMPTS", cfg.max_publish_attempts)

        selectors = (env.get("RAMBLE_SELECTORS") or "").strip()
        if selectors:
            try:
                parsed = json.loads(selectors)
            except json.JSONDecodeError as e:
                raise ParameterError(f"RAMBLE_SELECTORS is not JSON: {e}") from e
            if not isinstance(parsed, dict):
                raise ParameterError("RAMBLE_SELECTORS must be a JSON object")
            cfg.selectors = {str(k): str(v) for k, v in parsed.items()}

        return cfg
