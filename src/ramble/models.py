"""
Ramble data models.

Documents (comments, metadata) are what callers publish; retrieved records
are what the retrieval engine hands back after cross-referencing the ledger.
Stored payloads use the camelCase field names the published documents have
always used (``marketId``), so documents written by other clients parse
the same way.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlsplit

from .errors import ParameterError

DEFAULT_PORTS = {"http": 80, "https": 443}


# =============================================================================
# ENDPOINTS
# =============================================================================


@dataclass(frozen=True)
class Endpoint:
    """Address of one storage node."""

    host: str
    port: int
    protocol: str = "http"

    @property
    def url(self) -> str:
        """Base URL of the node's HTTP API."""
        return f"{self.protocol}://{self.host}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port, "protocol": self.protocol}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Endpoint":
        """Create from a ``{host, port, protocol}`` mapping."""
        host = str(data.get("host") or "").strip()
        if not host:
            raise ParameterError(f"endpoint without host: {dict(data)!r}")
        protocol = str(data.get("protocol") or "http").strip().lower()
        port = data.get("port") or DEFAULT_PORTS.get(protocol, 80)
        try:
            port = int(port)
        except (TypeError, ValueError) as e:
            raise ParameterError(f"invalid endpoint port: {port!r}") from e
        return cls(host=host, port=port, protocol=protocol)

    @classmethod
    def from_url(cls, url: str) -> "Endpoint":
        """Create from ``protocol://host:port``."""
        text = str(url or "").strip()
        if "://" not in text:
            text = f"http://{text}"
        parts = urlsplit(text)
        if not parts.hostname:
            raise ParameterError(f"endpoint URL without host: {url!r}")
        protocol = (parts.scheme or "http").lower()
        return cls(
            host=parts.hostname,
            port=parts.port or DEFAULT_PORTS.get(protocol, 80),
            protocol=protocol,
        )

    @classmethod
    def coerce(cls, value: Union["Endpoint", str, Mapping[str, Any]]) -> "Endpoint":
        """Accept an Endpoint, a URL or a mapping."""
        if isinstance(value, Endpoint):
            return value
        if isinstance(value, str):
            return cls.from_url(value)
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise ParameterError(f"not an endpoint: {value!r}")

    def __str__(self) -> str:
        return self.url


# =============================================================================
# DOCUMENTS
# =============================================================================


def _require_market(data: Mapping[str, Any]) -> Any:
    market_id = data.get("marketId", data.get("market_id"))
    if market_id is None or market_id == "":
        raise ParameterError("document is missing marketId")
    return market_id


def encode_payload(doc: Mapping[str, Any]) -> bytes:
    """Serialize a document payload to compact JSON bytes."""
    return json.dumps(doc, separators=(",", ":")).encode("utf-8")


@dataclass
class Comment:
    """A comment on a market."""

    market_id: Any
    author: str
    message: str
    broadcast: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Stored form. The transient broadcast flag is never included."""
        payload = dict(self.extra)
        payload.update({"marketId": self.market_id, "author": self.author, "message": self.message})
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Comment":
        known = {"marketId", "market_id", "author", "message", "broadcast"}
        return cls(
            market_id=_require_market(data),
            author=data.get("author", ""),
            message=data.get("message", ""),
            broadcast=bool(data.get("broadcast", False)),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class Metadata:
    """Descriptive metadata attached to a market.

    ``image`` is raw bytes in memory and an array of byte values once stored.
    """

    market_id: Any
    image: Optional[bytes] = None
    details: Optional[str] = None
    tags: Optional[List[str]] = None
    links: Optional[List[str]] = None
    source: Optional[str] = None
    broadcast: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        payload["marketId"] = self.market_id
        if self.image is not None:
            payload["image"] = list(bytes(self.image))
        for key in ("details", "tags", "links", "source"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Metadata":
        known = {"marketId", "market_id", "image", "details", "tags", "links", "source", "broadcast"}
        return cls(
            market_id=_require_market(data),
            image=image_bytes(data.get("image")),
            details=data.get("details"),
            tags=data.get("tags"),
            links=data.get("links"),
            source=data.get("source"),
            broadcast=bool(data.get("broadcast", False)),
            extra={k: v for k, v in data.items() if k not in known},
        )


def image_bytes(value: Any) -> Any:
    """Convert an array-shaped (or Buffer-shaped) image back to bytes.

    Anything else is returned unchanged.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, Mapping) and value.get("type") == "Buffer":
        value = value.get("data")
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError):
            return value
    return value


# =============================================================================
# RETRIEVED RECORDS
# =============================================================================


@dataclass
class RetrievedComment:
    """A fetched comment, optionally stamped with its ledger block."""

    hash: str
    author: Optional[str]
    message: str
    block_number: Optional[int] = None
    time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "hash": self.hash,
            "author": self.author,
            "message": self.message,
        }
        if self.block_number is not None:
            result["blockNumber"] = self.block_number
        if self.time is not None:
            result["time"] = self.time
        return result


@dataclass
class RetrievedMetadata:
    """A fetched metadata record."""

    hash: str
    market_id: Any = None
    image: Any = None
    details: Optional[str] = None
    tags: Optional[List[str]] = None
    links: Optional[List[str]] = None
    source: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, content_hash: str, payload: Mapping[str, Any]) -> "RetrievedMetadata":
        known = {"marketId", "image", "details", "tags", "links", "source"}
        return cls(
            hash=content_hash,
            market_id=payload.get("marketId"),
            image=image_bytes(payload.get("image")),
            details=payload.get("details"),
            tags=payload.get("tags"),
            links=payload.get("links"),
            source=payload.get("source"),
            extra={k: v for k, v in payload.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result["hash"] = self.hash
        result["marketId"] = self.market_id
        for key in ("image", "details", "tags", "links", "source"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


# =============================================================================
# OPTIONS
# =============================================================================


@dataclass
class FetchOptions:
    """Options for market-wide fetches.

    ``num_comments`` keeps only the newest N log entries before they are
    matched against the market id. ``sourceless`` accepts metadata records
    that have no ``source`` field.
    """

    from_block: Union[int, str] = "0x1"
    to_block: Union[int, str] = "latest"
    num_comments: Optional[int] = None
    sourceless: bool = False

    @classmethod
    def coerce(cls, value: Union["FetchOptions", Mapping[str, Any], None]) -> "FetchOptions":
        if value is None:
            return cls()
        if isinstance(value, FetchOptions):
            return value
        if not isinstance(value, Mapping):
            raise ParameterError(f"invalid fetch options: {value!r}")
        num = value.get("numComments", value.get("num_comments"))
        try:
            num = int(num) if num else None
        except (TypeError, ValueError) as e:
            raise ParameterError(f"numComments must be an integer, got {num!r}") from e
        return cls(
            from_block=value.get("fromBlock", value.get("from_block")) or "0x1",
            to_block=value.get("toBlock", value.get("to_block")) or "latest",
            num_comments=num,
            sourceless=bool(value.get("sourceless", False)),
        )
