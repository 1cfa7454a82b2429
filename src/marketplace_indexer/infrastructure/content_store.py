"""Content-addressed blob storage.

Job events only carry a 32-byte content hash. Two stores resolve it:

* ``IpfsContentStore`` talks to an IPFS node's HTTP API. The hash is the
  sha2-256 digest of a CIDv0, so ``Qm...`` <-> bytes32 is a base58
  round trip with the ``0x12 0x20`` multihash prefix.
* ``InMemoryContentStore`` keys blobs by keccak256, for tests and offline
  replays.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import base58
import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from web3 import Web3

from marketplace_indexer.config import get_settings
from marketplace_indexer.domain.exceptions import ContentUnavailableError
from marketplace_indexer.logging_config import get_logger

if TYPE_CHECKING:
    from tenacity.wait import wait_base

logger = get_logger(__name__)

# sha2-256, 32-byte digest
MULTIHASH_PREFIX = b"\x12\x20"


def _hash_bytes(content_hash: str) -> bytes:
    raw = bytes.fromhex(content_hash[2:] if content_hash.startswith("0x") else content_hash)
    if len(raw) != 32:
        raise ContentUnavailableError(content_hash, "hash must be 32 bytes")
    return raw


def hash_to_cid(content_hash: str) -> str:
    """bytes32 hex -> CIDv0 (``Qm...``)."""
    return base58.b58encode(MULTIHASH_PREFIX + _hash_bytes(content_hash)).decode("ascii")


def cid_to_hash(cid: str) -> str:
    """CIDv0 -> bytes32 hex.

    Raises:
        ValueError: If the CID is not a sha2-256 CIDv0.
    """
    multihash = base58.b58decode(cid)
    if len(multihash) != 34 or multihash[:2] != MULTIHASH_PREFIX:
        raise ValueError(f"Not a CIDv0: {cid}")
    return "0x" + multihash[2:].hex()


class InMemoryContentStore:
    """Dict-backed ContentStore keyed by keccak256 of the blob."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def fetch_by_hash(self, content_hash: str) -> bytes:
        try:
            return self._blobs[content_hash.lower()]
        except KeyError:
            raise ContentUnavailableError(content_hash, "not stored") from None

    async def store_bytes(self, data: bytes) -> str:
        content_hash = "0x" + bytes(Web3.keccak(data)).hex()
        self._blobs[content_hash] = bytes(data)
        return content_hash

    def __len__(self) -> int:
        return len(self._blobs)


class IpfsContentStore:
    """ContentStore over the IPFS HTTP API (``/api/v0/add``, ``/api/v0/cat``).

    Transport errors (connection refused, timeouts) are retried with
    exponential backoff; HTTP status errors are not retried. Either way the
    caller sees ContentUnavailableError.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        max_attempts: int | None = None,
        wait: wait_base | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.ipfs_api_url,
            timeout=settings.ipfs_timeout_seconds,
        )
        self._owns_client = client is None
        self._max_attempts = max_attempts or settings.ipfs_max_attempts
        self._wait = wait or wait_exponential(multiplier=0.5, min=1, max=8)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            reraise=True,
        )

    async def _post(self, path: str, **kwargs) -> httpx.Response:  # noqa: ANN003
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.post(path, **kwargs)
                response.raise_for_status()
        return response

    async def fetch_by_hash(self, content_hash: str) -> bytes:
        cid = hash_to_cid(content_hash)
        try:
            response = await self._post("/api/v0/cat", params={"arg": cid})
        except httpx.HTTPError as err:
            logger.warning("ipfs.fetch_failed", cid=cid, error=str(err))
            raise ContentUnavailableError(content_hash, str(err)) from err
        logger.debug("ipfs.fetched", cid=cid, size=len(response.content))
        return response.content

    async def store_bytes(self, data: bytes) -> str:
        try:
            response = await self._post(
                "/api/v0/add",
                params={"cid-version": "0", "pin": "true"},
                files={"file": ("blob", data)},
            )
        except httpx.HTTPError as err:
            logger.warning("ipfs.store_failed", size=len(data), error=str(err))
            raise ContentUnavailableError("<new blob>", str(err)) from err
        cid = response.json()["Hash"]
        logger.debug("ipfs.stored", cid=cid, size=len(data))
        return cid_to_hash(cid)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
