"""
Content store - add/fetch/pin against whichever storage node is bound.

``ContentStore`` is the adapter the engines talk to. It wraps a storage
client (anything satisfying :class:`StorageClient`) and can be rebound to a
different endpoint at runtime. Every operation captures the client when it
starts, so a rebind only affects calls made after it.

``IpfsHttpClient`` is the concrete client, speaking the Kubo ``/api/v0``
HTTP API over aiohttp:

- POST /api/v0/add (multipart) -> {"Name", "Hash", "Size"}
- POST /api/v0/cat?arg=<hash>  -> raw bytes, streamed
- POST /api/v0/pin/add?arg=<hash> -> {"Pins": [...]}
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any, Optional, Protocol, runtime_checkable

import aiohttp

from . import multihash
from .errors import (
    NotFoundOrEmpty,
    ParameterError,
    PinRejected,
    StoreError,
    StoreRejected,
    StoreUnavailable,
)
from .models import Endpoint

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
HTML_MARKER = "<html>"

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


# =============================================================================
# CLIENT PROTOCOL
# =============================================================================


@runtime_checkable
class StorageClient(Protocol):
    """Primitives a storage node exposes. One client per endpoint."""

    async def add(self, data: bytes) -> Any:
        """Store *data*; returns ``{"Hash": ...}`` or a list of those."""
        ...

    def cat(self, content_hash: str) -> AsyncIterator[bytes]:
        """Yield the stored bytes for *content_hash*."""
        ...

    async def pin_add(self, content_hash: str) -> Any:
        """Pin *content_hash*; returns the node's confirmation."""
        ...


# =============================================================================
# RESULT HELPERS
# =============================================================================


def is_error_result(result: Any) -> bool:
    """Whether a node response is error-shaped."""
    if isinstance(result, Mapping):
        if result.get("error"):
            return True
        return str(result.get("Type", "")).lower() == "error"
    return False


def extract_hash(result: Any) -> Optional[str]:
    """Pull the content hash out of an add result (possibly list-wrapped)."""
    if isinstance(result, list):
        if not result:
            return None
        result = result[0]
    if isinstance(result, Mapping):
        value = result.get("Hash") or result.get("hash")
        return str(value) if value else None
    return None


def looks_like_html(response: Any) -> bool:
    """Gateways sometimes answer pin requests with an HTML error page."""
    if isinstance(response, (bytes, bytearray)):
        response = bytes(response).decode("utf-8", errors="replace")
    return HTML_MARKER in str(response)


# =============================================================================
# IPFS HTTP CLIENT
# =============================================================================


class IpfsHttpClient:
    """
    Storage client for one IPFS node's HTTP API.

    Sessions are opened per call, so the client holds no connection state
    and needs no teardown.
    """

    def __init__(self, endpoint: Endpoint, timeout: float = 30.0):
        self.endpoint = endpoint
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.endpoint.url}/api/v0/{path}"

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)

    async def add(self, data: bytes) -> Any:
        form = aiohttp.FormData()
        form.add_field("file", bytes(data), filename="data", content_type="application/octet-stream")
        try:
            async with aiohttp.ClientSession(timeout=self._client_timeout()) as session:
                async with session.post(self._url("add"), data=form, params={"pin": "false"}) as resp:
                    body = await resp.text()
                    if resp.status >= 400:
                        raise StoreRejected(
                            f"add returned HTTP {resp.status}: {body[:200]}", self.endpoint
                        )
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailable(f"add failed on {self.endpoint}: {e!r}", self.endpoint) from e

        # One JSON object per line, one line per added file
        entries = []
        for line in body.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise StoreRejected(f"add returned non-JSON: {line[:200]}", self.endpoint) from e
        if not entries:
            return None
        return entries[0] if len(entries) == 1 else entries

    async def cat(self, content_hash: str) -> AsyncIterator[bytes]:
        try:
            async with aiohttp.ClientSession(timeout=self._client_timeout()) as session:
                async with session.post(self._url("cat"), params={"arg": content_hash}) as resp:
                    if resp.status >= 400:
                        body = await resp.text()
                        raise NotFoundOrEmpty(
                            f"cat returned HTTP {resp.status}: {body[:200]}", self.endpoint
                        )
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        yield chunk
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailable(f"cat failed on {self.endpoint}: {e!r}", self.endpoint) from e

    async def pin_add(self, content_hash: str) -> Any:
        try:
            async with aiohttp.ClientSession(timeout=self._client_timeout()) as session:
                async with session.post(
                    self._url("pin/add"),
                    params={"arg": content_hash, "recursive": "true"},
                ) as resp:
                    body = await resp.text()
                    if resp.status >= 400:
                        raise PinRejected(
                            f"pin returned HTTP {resp.status}: {body[:200]}", self.endpoint
                        )
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailable(f"pin failed on {self.endpoint}: {e!r}", self.endpoint) from e

        try:
            return json.loads(body)
        except json.JSONDecodeError:
            return body


# =============================================================================
# CONTENT STORE ADAPTER
# =============================================================================


ClientFactory = Callable[[Endpoint], StorageClient]


class ContentStore:
    """
    Rebindable adapter over a storage client.

    Attributes:
        endpoint: Endpoint the store is currently bound to
        client_factory: Builds a client for an endpoint
    """

    def __init__(
        self,
        endpoint: Endpoint,
        client_factory: Optional[ClientFactory] = None,
        timeout: float = 30.0,
    ):
        self.timeout = timeout
        self.client_factory: ClientFactory = client_factory or self._default_factory
        self.endpoint = endpoint
        self._client = self.client_factory(endpoint)

    def _default_factory(self, endpoint: Endpoint) -> StorageClient:
        return IpfsHttpClient(endpoint, timeout=self.timeout)

    @property
    def client(self) -> StorageClient:
        return self._client

    def bind(self, endpoint: Endpoint) -> None:
        """Point subsequent calls at *endpoint*."""
        client = self.client_factory(endpoint)
        self._client, self.endpoint = client, endpoint

    def client_for(self, endpoint: Endpoint) -> StorageClient:
        """A standalone client for *endpoint*, independent of the binding."""
        return self.client_factory(endpoint)

    # -------------------------------------------------------------------------
    # OPERATIONS
    # -------------------------------------------------------------------------

    async def add(self, data: bytes) -> str:
        client, endpoint = self._client, self.endpoint
        return await add_with(client, endpoint, data)

    async def fetch(self, content_hash: str) -> bytes:
        client, endpoint = self._client, self.endpoint
        chunks = []
        try:
            async for chunk in client.cat(content_hash):
                if isinstance(chunk, str):
                    chunk = chunk.encode("utf-8")
                chunks.append(bytes(chunk))
        except StoreError:
            raise
        except TRANSPORT_ERRORS as e:
            raise StoreUnavailable(f"fetch failed on {endpoint}: {e!r}", endpoint) from e
        payload = b"".join(chunks)
        if not payload:
            raise NotFoundOrEmpty(f"{endpoint} returned no content for {content_hash}", endpoint)
        logger.debug(f"Fetched {len(payload)} bytes for {content_hash} from {endpoint}")
        return payload

    async def pin(self, content_hash: str) -> Any:
        client, endpoint = self._client, self.endpoint
        return await pin_with(client, endpoint, content_hash)


async def add_with(client: StorageClient, endpoint: Endpoint, data: bytes) -> str:
    """``add`` on a specific client, normalising failures."""
    try:
        result = await client.add(data)
    except StoreError:
        raise
    except TRANSPORT_ERRORS as e:
        raise StoreUnavailable(f"add failed on {endpoint}: {e!r}", endpoint) from e
    logger.debug(f"add on {endpoint}: {result}")
    if not result or is_error_result(result):
        raise StoreRejected(f"add rejected by {endpoint}: {result!r}", endpoint)
    content_hash = extract_hash(result)
    if not content_hash:
        raise StoreRejected(f"add on {endpoint} returned no hash: {result!r}", endpoint)
    try:
        multihash.decode(content_hash)
    except ParameterError as e:
        raise StoreRejected(f"add on {endpoint} returned a non-sha2-256 hash: {content_hash!r}", endpoint) from e
    return content_hash


async def pin_with(client: StorageClient, endpoint: Endpoint, content_hash: str) -> Any:
    """``pin`` on a specific client, normalising failures."""
    try:
        pinned = await client.pin_add(content_hash)
    except StoreError as e:
        if isinstance(e, (StoreUnavailable, PinRejected)):
            raise
        raise PinRejected(str(e), endpoint) from e
    except TRANSPORT_ERRORS as e:
        raise StoreUnavailable(f"pin failed on {endpoint}: {e!r}", endpoint) from e
    logger.debug(f"pin on {endpoint}: {pinned}")
    if not pinned or is_error_result(pinned):
        raise PinRejected(f"pin of {content_hash} rejected by {endpoint}: {pinned!r}", endpoint)
    return pinned
