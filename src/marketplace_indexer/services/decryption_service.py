"""Session/Decryption Pipeline: resolves the off-chain content of a job timeline.

Runs on the client side, on behalf of one participant (a SessionIdentity),
over the output of the diff engine. Two rounds, never interleaved:

    1. Key round: resolve every counterpart's public key concurrently,
       wait for all of them, then derive pair session keys and reveal the
       session keys wrapped into Disputed events.
    2. Content round: fetch every distinct referenced blob once, concurrently,
       then decrypt it for each event that points at it.

Nothing here is fatal. A failing key lookup is reported per counterpart and a
failing fetch or decrypt per event, in the DecryptionReport.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from marketplace_indexer.codec.job_events import decode_job_event
from marketplace_indexer.config import get_settings
from marketplace_indexer.domain.entities import ZERO_ADDRESS, ZERO_HASH
from marketplace_indexer.domain.enums import ContentStatus, EntityKind, JobEventType
from marketplace_indexer.domain.exceptions import (
    ContentUnavailableError,
    DecodeError,
    DecryptionError,
    KeyResolutionError,
)
from marketplace_indexer.infrastructure.crypto import (
    decrypt_content,
    derive_session_key,
    encrypt_content,
    unwrap_session_key,
    wrap_session_key,
)
from marketplace_indexer.logging_config import get_logger
from marketplace_indexer.schemas.events import (
    JobCreatedDetails,
    JobDeliveredPayload,
    JobDisputedDetails,
    JobMessageDetails,
    JobUpdatedDetails,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from marketplace_indexer.domain.diffs import JobEventWithDiffs
    from marketplace_indexer.domain.gateway_protocol import (
        ContentStore,
        EntityStore,
        PublicKeyResolver,
    )
    from marketplace_indexer.infrastructure.crypto import SessionIdentity

logger = get_logger(__name__)

# Kinds whose sender is a job participant besides the creator.
PARTICIPANT_EVENT_TYPES = frozenset(
    {
        JobEventType.OWNER_MESSAGE,
        JobEventType.WORKER_MESSAGE,
        JobEventType.PAID,
        JobEventType.TAKEN,
        JobEventType.SIGNED,
        JobEventType.WHITELISTED_WORKER_ADDED,
        JobEventType.WHITELISTED_WORKER_REMOVED,
    }
)


def pair_key(a: str, b: str) -> str:
    """Session key map entry for the directed pair ``a-b``."""
    return f"{a.lower()}-{b.lower()}"


def _hash_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedContent:
    """Content of one event.

    ``content`` is set for ``decrypted`` and ``plaintext``; ``error`` is set
    for ``unavailable`` and ``decrypt_failed``.
    """

    status: ContentStatus
    content: bytes | None = None
    error: str | None = None

    @property
    def text(self) -> str | None:
        return self.content.decode("utf-8", errors="replace") if self.content is not None else None


@dataclass(frozen=True)
class KeyResolutionFailure:
    address: str
    reason: str


@dataclass(frozen=True)
class DecryptionReport:
    contents: Mapping[str, ResolvedContent]
    session_keys: Mapping[str, bytes]
    key_failures: tuple[KeyResolutionFailure, ...]

    def for_event(self, event_id: str) -> ResolvedContent | None:
        return self.contents.get(event_id)


@dataclass(frozen=True)
class _ContentRequest:
    event_id: str
    content_hash: str
    key: bytes | None
    encrypted: bool


# ---------------------------------------------------------------------------
# Public key resolution
# ---------------------------------------------------------------------------


class StorePublicKeyResolver:
    """Looks up registered public keys: User first, then Arbitrator."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def resolve(self, address: str) -> bytes | None:
        for kind in (EntityKind.USER, EntityKind.ARBITRATOR):
            entity = await self._store.find_by_id(kind, address)
            if entity is not None and entity.public_key not in ("", "0x"):
                return _hash_bytes(entity.public_key)
        return None


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class SessionDecryptionPipeline:
    """Resolves keys and contents for one job timeline.

    Usage:
        pipeline = SessionDecryptionPipeline(identity, resolver, content_store)
        report = await pipeline.run(list(compute_job_state_diffs(events, job_id)))
        report.for_event(event_id).text
    """

    def __init__(
        self,
        identity: SessionIdentity,
        resolver: PublicKeyResolver,
        content_store: ContentStore,
        key_concurrency: int | None = None,
        fetch_concurrency: int | None = None,
    ) -> None:
        settings = get_settings()
        self._identity = identity
        self._resolver = resolver
        self._content_store = content_store
        self._key_concurrency = key_concurrency or settings.key_resolution_concurrency
        self._fetch_concurrency = fetch_concurrency or settings.content_fetch_concurrency

    async def run(self, events_with_diffs: Sequence[JobEventWithDiffs]) -> DecryptionReport:
        items = [item for item in events_with_diffs if item.decode_error is None]
        if not items:
            return DecryptionReport(contents={}, session_keys={}, key_failures=())

        job_id = int(items[0].event.job_id)
        counterparts = self._counterparts(items)

        # Round 1: every lookup completes before any key is derived.
        semaphore = asyncio.Semaphore(self._key_concurrency)
        resolved = await asyncio.gather(
            *(self._resolve_key(semaphore, address) for address in counterparts)
        )
        session_keys, failures = self._derive_keys(resolved, job_id)
        contents: dict[str, ResolvedContent] = {}
        dispute_keys = self._reveal_dispute_keys(items, session_keys, contents)

        # Round 2: contents.
        requests = self._content_requests(items, session_keys, dispute_keys, contents)
        blobs = await self._fetch_blobs(requests)
        contents.update({request.event_id: _open(request, blobs) for request in requests})

        logger.info(
            "decrypt.completed",
            job_id=job_id,
            counterparts=len(counterparts),
            key_failures=len(failures),
            contents=len(contents),
        )
        return DecryptionReport(
            contents=contents,
            session_keys=session_keys,
            key_failures=tuple(failures),
        )

    # ------------------------------------------------------------------
    # Round 1: keys
    # ------------------------------------------------------------------

    def _counterparts(self, items: Sequence[JobEventWithDiffs]) -> list[str]:
        addresses: dict[str, str] = {}
        for item in items:
            event = item.event
            if event.type == JobEventType.CREATED or event.type in PARTICIPANT_EVENT_TYPES:
                addresses.setdefault(event.address.lower(), event.address)
            if item.job is not None:
                addresses.setdefault(item.job.roles.creator.lower(), item.job.roles.creator)
                arbitrator = item.job.roles.arbitrator
                if arbitrator != ZERO_ADDRESS:
                    addresses.setdefault(arbitrator.lower(), arbitrator)
        addresses.pop(self._identity.address.lower(), None)
        addresses.pop(ZERO_ADDRESS, None)
        return sorted(addresses.values(), key=str.lower)

    async def _resolve_key(
        self,
        semaphore: asyncio.Semaphore,
        address: str,
    ) -> tuple[str, bytes | None, str | None]:
        async with semaphore:
            try:
                public_key = await self._resolver.resolve(address)
            except Exception as exc:
                logger.exception("decrypt.key_lookup_failed", address=address)
                return address, None, f"Key lookup failed: {exc}"
        if public_key is None:
            err = KeyResolutionError(address)
            logger.warning("decrypt.key_unresolved", address=address, code=err.code)
            return address, None, err.message
        return address, public_key, None

    def _derive_keys(
        self,
        resolved: Sequence[tuple[str, bytes | None, str | None]],
        job_id: int,
    ) -> tuple[dict[str, bytes], list[KeyResolutionFailure]]:
        own = self._identity.address
        session_keys: dict[str, bytes] = {}
        failures: list[KeyResolutionFailure] = []
        for address, public_key, error in resolved:
            if public_key is None:
                failures.append(KeyResolutionFailure(address, error or ""))
                continue
            try:
                key = derive_session_key(self._identity, public_key, job_id)
            except ValueError as err:
                logger.warning("decrypt.invalid_public_key", address=address, error=str(err))
                failures.append(KeyResolutionFailure(address, f"Invalid public key: {err}"))
                continue
            session_keys[pair_key(own, address)] = key
            session_keys[pair_key(address, own)] = key
        return session_keys, failures

    def _reveal_dispute_keys(
        self,
        items: Sequence[JobEventWithDiffs],
        session_keys: dict[str, bytes],
        contents: dict[str, ResolvedContent],
    ) -> dict[str, bytes]:
        """Unwrap the session key carried by each Disputed event we can open."""
        revealed: dict[str, bytes] = {}
        for item in items:
            details = item.event.details
            if not isinstance(details, JobDisputedDetails) or item.job is None:
                continue
            initiator = item.event.address
            counterpart = _other_party(item, initiator)
            wrapping_key = session_keys.get(pair_key(initiator, item.job.roles.arbitrator))
            if wrapping_key is None:
                continue
            try:
                key = unwrap_session_key(_hash_bytes(details.session_key), wrapping_key)
            except DecryptionError as err:
                logger.warning("decrypt.dispute_key_failed", event_id=item.event.id)
                contents[item.event.id] = ResolvedContent(
                    ContentStatus.DECRYPT_FAILED, error=err.message
                )
                continue
            revealed[item.event.id] = key
            if counterpart is not None:
                session_keys[pair_key(initiator, counterpart)] = key
                session_keys[pair_key(counterpart, initiator)] = key
        return revealed

    # ------------------------------------------------------------------
    # Round 2: contents
    # ------------------------------------------------------------------

    def _content_requests(
        self,
        items: Sequence[JobEventWithDiffs],
        session_keys: Mapping[str, bytes],
        dispute_keys: Mapping[str, bytes],
        contents: Mapping[str, ResolvedContent],
    ) -> list[_ContentRequest]:
        requests: list[_ContentRequest] = []
        for item in items:
            event = item.event
            if event.id in contents:
                continue
            details = event.details
            if isinstance(details, JobCreatedDetails | JobUpdatedDetails):
                requests.append(_ContentRequest(event.id, details.content_hash, None, False))
            elif isinstance(details, JobMessageDetails):
                key = session_keys.get(pair_key(event.address, details.recipient))
                requests.append(_ContentRequest(event.id, details.content_hash, key, True))
            elif isinstance(details, JobDisputedDetails):
                counterpart = _other_party(item, event.address)
                key = dispute_keys.get(event.id)
                if key is None and counterpart is not None:
                    key = session_keys.get(pair_key(event.address, counterpart))
                requests.append(_ContentRequest(event.id, details.content, key, True))
            elif event.type == JobEventType.DELIVERED and item.job is not None:
                try:
                    delivered = decode_job_event(event.type, event.data)
                except DecodeError:
                    continue
                if isinstance(delivered, JobDeliveredPayload):
                    key = session_keys.get(pair_key(item.job.roles.creator, event.address))
                    requests.append(_ContentRequest(event.id, delivered.result_hash, key, True))
        return requests

    async def _fetch_blobs(
        self,
        requests: Sequence[_ContentRequest],
    ) -> dict[str, bytes | ResolvedContent]:
        """Fetch each distinct content hash once, keyed by the lowercased hash."""
        hashes: dict[str, str] = {}
        for request in requests:
            if _needs_fetch(request):
                hashes.setdefault(request.content_hash.lower(), request.content_hash)
        semaphore = asyncio.Semaphore(self._fetch_concurrency)
        results = await asyncio.gather(
            *(self._fetch(semaphore, content_hash) for content_hash in hashes.values())
        )
        return dict(zip(hashes, results))

    async def _fetch(
        self,
        semaphore: asyncio.Semaphore,
        content_hash: str,
    ) -> bytes | ResolvedContent:
        async with semaphore:
            try:
                return await self._content_store.fetch_by_hash(content_hash)
            except ContentUnavailableError as err:
                logger.warning("decrypt.content_unavailable", content_hash=content_hash)
                return ResolvedContent(ContentStatus.UNAVAILABLE, error=err.message)
            except Exception as exc:
                logger.exception("decrypt.content_fetch_failed", content_hash=content_hash)
                return ResolvedContent(
                    ContentStatus.UNAVAILABLE, error=f"Content fetch failed: {exc}"
                )


def _needs_fetch(request: _ContentRequest) -> bool:
    if request.content_hash.lower() == ZERO_HASH:
        return False
    return not (request.encrypted and request.key is None)


def _open(request: _ContentRequest, blobs: Mapping[str, bytes | ResolvedContent]) -> ResolvedContent:
    """Turn a fetched blob into the content of one event."""
    if request.content_hash.lower() == ZERO_HASH:
        return ResolvedContent(ContentStatus.EMPTY)
    if request.encrypted and request.key is None:
        return ResolvedContent(ContentStatus.MISSING_KEY)

    blob = blobs[request.content_hash.lower()]
    if isinstance(blob, ResolvedContent):
        return blob
    if not request.encrypted:
        return ResolvedContent(ContentStatus.PLAINTEXT, content=blob)
    try:
        return ResolvedContent(ContentStatus.DECRYPTED, content=decrypt_content(blob, request.key))
    except DecryptionError as err:
        logger.warning("decrypt.content_failed", event_id=request.event_id)
        return ResolvedContent(ContentStatus.DECRYPT_FAILED, error=err.message)


def _other_party(item: JobEventWithDiffs, initiator: str) -> str | None:
    """The creator/worker on the other side of ``initiator``."""
    roles = item.job.roles
    other = roles.worker if initiator.lower() == roles.creator.lower() else roles.creator
    return None if other == ZERO_ADDRESS else other


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------


async def publish_content(store: ContentStore, plaintext: bytes, session_key: bytes) -> str:
    """Encrypt content with a session key and store it.

    Returns:
        The 32-byte content hash to put in a message or dispute payload.
    """
    content_hash = await store.store_bytes(encrypt_content(plaintext, session_key))
    logger.debug("decrypt.content_published", content_hash=content_hash, size=len(plaintext))
    return content_hash


def build_dispute_payload(session_key: bytes, arbitrator_key: bytes, content_hash: str) -> bytes:
    """Disputed payload: the pair session key wrapped for the arbitrator, then the content hash."""
    return wrap_session_key(session_key, arbitrator_key) + _hash_bytes(content_hash)
