"""
Ramble - comments and metadata on content-addressed storage.

Documents are stored on a pool of IPFS nodes with automatic failover,
pinned for durability and referenced from ledger log events so they can be
found again per market.
"""

__version__ = "1.0.0"

from ramble.client import Ramble, create_client
from ramble.config import IPFS_LOCAL, IPFS_REMOTE, RambleConfig
from ramble.errors import (
    BroadcastFailed,
    LedgerError,
    LedgerQueryFailed,
    MalformedPayload,
    NoLogs,
    NotFoundOrEmpty,
    ParameterError,
    PinRejected,
    RambleError,
    StorageExhausted,
    StoreError,
    StoreRejected,
    StoreUnavailable,
)
from ramble.ledger import Block, JsonRpcLedger, LedgerClient, LogEvent, TxSpec
from ramble.models import (
    Comment,
    Endpoint,
    FetchOptions,
    Metadata,
    RetrievedComment,
    RetrievedMetadata,
)
from ramble.pool import EndpointPool
from ramble.store import ContentStore, IpfsHttpClient, StorageClient

__all__ = [
    # Client
    "Ramble",
    "create_client",
    # Config
    "RambleConfig",
    "IPFS_LOCAL",
    "IPFS_REMOTE",
    # Models
    "Endpoint",
    "Comment",
    "Metadata",
    "RetrievedComment",
    "RetrievedMetadata",
    "FetchOptions",
    # Storage
    "EndpointPool",
    "ContentStore",
    "StorageClient",
    "IpfsHttpClient",
    # Ledger
    "LedgerClient",
    "JsonRpcLedger",
    "LogEvent",
    "Block",
    "TxSpec",
    # Errors
    "RambleError",
    "StoreError",
    "StoreUnavailable",
    "StoreRejected",
    "NotFoundOrEmpty",
    "PinRejected",
    "MalformedPayload",
    "StorageExhausted",
    "BroadcastFailed",
    "LedgerError",
    "LedgerQueryFailed",
    "NoLogs",
    "ParameterError",
]
