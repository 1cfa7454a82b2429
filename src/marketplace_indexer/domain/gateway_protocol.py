"""Interfaces to the external collaborators.

These are Protocols (structural subtyping): the SQL store, the in-memory
store, the IPFS client and test doubles only need to match the shape.

The domain layer has ZERO imports from SQLAlchemy, httpx or any other
infrastructure library.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketplace_indexer.domain.entities import (
        Arbitrator,
        Job,
        JobEventRecord,
        Marketplace,
        Review,
        User,
    )
    from marketplace_indexer.domain.enums import EntityKind

    Entity = Marketplace | Job | JobEventRecord | User | Arbitrator | Review


@runtime_checkable
class EntityStore(Protocol):
    """Keyed access to persisted entities.

    Implementations:
        - infrastructure/database/repositories.py (SqlEntityStore)
        - infrastructure/memory_store.py          (InMemoryEntityStore)

    ``upsert_many`` is last-writer-wins per id: writing the same id twice
    leaves one row with the last state. Returned entities are detached
    copies; mutating them does not change the store.
    """

    async def find_by_id(self, kind: EntityKind, entity_id: str) -> Entity | None:
        """Return the entity, or None if it does not exist."""
        ...

    async def upsert_many(self, kind: EntityKind, entities: Sequence[Entity]) -> None:
        """Insert or overwrite entities of one kind."""
        ...

    async def find_job_events(self, job_id: str) -> list[JobEventRecord]:
        """Return a job's ledger ordered by (block number, log index)."""
        ...


@runtime_checkable
class ContentStore(Protocol):
    """Content-addressed blob storage.

    Implementations:
        - infrastructure/content_store.py (IpfsContentStore, InMemoryContentStore)
    """

    async def fetch_by_hash(self, content_hash: str) -> bytes:
        """Return the blob stored under ``content_hash``.

        Raises:
            ContentUnavailableError: If the blob cannot be fetched.
        """
        ...

    async def store_bytes(self, data: bytes) -> str:
        """Store a blob and return its 32-byte content hash as 0x hex."""
        ...


@runtime_checkable
class PublicKeyResolver(Protocol):
    """Lookup of a participant's registered encryption public key."""

    async def resolve(self, address: str) -> bytes | None:
        """Return the SEC1-encoded public key, or None if not registered."""
        ...
