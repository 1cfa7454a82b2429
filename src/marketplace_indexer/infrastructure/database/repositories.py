"""SQL implementation of the entity store gateway.

SqlEntityStore accepts an AsyncSession and never manages its own
transaction (that's the caller's responsibility). Rows are mapped to and
from the domain dataclasses here, so nothing above this module sees an
ORM object.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from marketplace_indexer.domain.entities import (
    Arbitrator,
    Job,
    JobEventRecord,
    JobRoles,
    Marketplace,
    Review,
    User,
)
from marketplace_indexer.domain.enums import EntityKind, JobState
from marketplace_indexer.infrastructure.database.orm_models import (
    ArbitratorRow,
    Base,
    JobEventRow,
    JobRow,
    MarketplaceRow,
    ReviewRow,
    UserRow,
)
from marketplace_indexer.logging_config import get_logger
from marketplace_indexer.schemas.events import details_from_json, details_to_json

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_indexer.domain.gateway_protocol import Entity

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Row <-> entity mapping
# ---------------------------------------------------------------------------


def _plain_row(row_class: type[Base]) -> Callable[[Any], Base]:
    def _to_row(entity: Any) -> Base:
        return row_class(**asdict(entity))

    return _to_row


def _plain_entity(entity_class: type) -> Callable[[Any], Any]:
    columns = None

    def _to_entity(row: Any) -> Any:
        nonlocal columns
        if columns is None:
            columns = [c.key for c in row.__table__.columns]
        return entity_class(**{name: getattr(row, name) for name in columns})

    return _to_entity


def _job_to_row(job: Job) -> JobRow:
    values = asdict(job)
    values["state"] = int(job.state)
    return JobRow(**values)


def _row_to_job(row: JobRow) -> Job:
    return Job(
        id=row.id,
        state=JobState(row.state),
        roles=JobRoles(**row.roles),
        title=row.title,
        content_hash=row.content_hash,
        multiple_applicants=row.multiple_applicants,
        tags=list(row.tags),
        token=row.token,
        amount=row.amount,
        max_time=row.max_time,
        delivery_method=row.delivery_method,
        collateral_owed=row.collateral_owed,
        escrow_id=row.escrow_id,
        result_hash=row.result_hash,
        rating=row.rating,
        disputed=row.disputed,
        whitelist_workers=row.whitelist_workers,
        allowed_workers=list(row.allowed_workers),
        timestamp=row.timestamp,
    )


def _event_to_row(event: JobEventRecord) -> JobEventRow:
    return JobEventRow(
        id=event.id,
        job_id=event.job_id,
        type=event.type,
        address=event.address,
        data=event.data,
        timestamp=event.timestamp,
        block_number=event.block_number,
        log_index=event.log_index,
        details=details_to_json(event.details),
    )


def _row_to_event(row: JobEventRow) -> JobEventRecord:
    return JobEventRecord(
        id=row.id,
        job_id=row.job_id,
        type=row.type,
        address=row.address,
        data=bytes(row.data),
        timestamp=row.timestamp,
        block_number=row.block_number,
        log_index=row.log_index,
        details=details_from_json(row.details),
    )


_MAPPERS: dict[EntityKind, tuple[type[Base], Callable[[Any], Base], Callable[[Any], Any]]] = {
    EntityKind.MARKETPLACE: (
        MarketplaceRow,
        _plain_row(MarketplaceRow),
        _plain_entity(Marketplace),
    ),
    EntityKind.JOB: (JobRow, _job_to_row, _row_to_job),
    EntityKind.JOB_EVENT: (JobEventRow, _event_to_row, _row_to_event),
    EntityKind.USER: (UserRow, _plain_row(UserRow), _plain_entity(User)),
    EntityKind.ARBITRATOR: (
        ArbitratorRow,
        _plain_row(ArbitratorRow),
        _plain_entity(Arbitrator),
    ),
    EntityKind.REVIEW: (ReviewRow, _plain_row(ReviewRow), _plain_entity(Review)),
}


class SqlEntityStore:
    """EntityStore backed by an AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_id(self, kind: EntityKind, entity_id: str) -> Entity | None:
        """Fetch one entity by primary key."""
        row_class, _, to_entity = _MAPPERS[kind]
        result = await self._session.execute(select(row_class).where(row_class.id == entity_id))
        row = result.scalar_one_or_none()
        return to_entity(row) if row is not None else None

    async def upsert_many(self, kind: EntityKind, entities: Sequence[Entity]) -> None:
        """Insert or overwrite rows by primary key, then flush."""
        if not entities:
            return
        _, to_row, _ = _MAPPERS[kind]
        for entity in entities:
            await self._session.merge(to_row(entity))
        await self._session.flush()
        logger.debug("store.upserted", kind=kind.value, count=len(entities))

    async def find_job_events(self, job_id: str) -> list[JobEventRecord]:
        """Fetch a job's ledger in chain order."""
        result = await self._session.execute(
            select(JobEventRow)
            .where(JobEventRow.job_id == job_id)
            .order_by(JobEventRow.block_number.asc(), JobEventRow.log_index.asc())
        )
        return [_row_to_event(row) for row in result.scalars().all()]
