"""In-memory entity store.

Used by tests and by clients that replay a job from an already downloaded
ledger. Every read and write copies, so a batch that aborts after mutating
cached entities never leaks into the store.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

from marketplace_indexer.domain.enums import EntityKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketplace_indexer.domain.entities import JobEventRecord
    from marketplace_indexer.domain.gateway_protocol import Entity


class InMemoryEntityStore:
    """Dict-backed EntityStore."""

    def __init__(self) -> None:
        self._tables: dict[EntityKind, dict[str, Entity]] = {kind: {} for kind in EntityKind}

    async def find_by_id(self, kind: EntityKind, entity_id: str) -> Entity | None:
        entity = self._tables[kind].get(entity_id)
        return copy.deepcopy(entity) if entity is not None else None

    async def upsert_many(self, kind: EntityKind, entities: Sequence[Entity]) -> None:
        table = self._tables[kind]
        for entity in entities:
            table[entity.id] = copy.deepcopy(entity)

    async def find_job_events(self, job_id: str) -> list[JobEventRecord]:
        events = [e for e in self._tables[EntityKind.JOB_EVENT].values() if e.job_id == job_id]
        return sorted(events, key=lambda e: e.sort_key)

    def count(self, kind: EntityKind) -> int:
        return len(self._tables[kind])
