"""Batch Ingestor: folds ordered blocks of logs into derived entities.

This is the application layer that coordinates between:
    - Event codec (topic resolution, log and payload decoding)
    - Job state machine (pure transitions plus side effects)
    - Entity store gateway (cache misses, bulk upsert at batch end)

Every call to ``ingest`` owns a fresh BatchContext. Entities are read once
per batch (cache, then store, then "not found"), mutated only in the
context, and written back in one pass per kind after the last log. A fatal
error aborts before anything is written, so the caller can retry the batch
from the same starting block.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

import structlog

from marketplace_indexer.codec.job_events import decode_job_event, decode_participant
from marketplace_indexer.codec.logs import (
    ContractDomain,
    LogEventKind,
    decode_log,
    resolve_topic,
)
from marketplace_indexer.config import get_settings
from marketplace_indexer.domain.entities import (
    Arbitrator,
    Job,
    JobEventRecord,
    Marketplace,
    Review,
    User,
)
from marketplace_indexer.domain.enums import EntityKind, LogOutcomeStatus
from marketplace_indexer.domain.exceptions import (
    BatchAbortedError,
    DecodeError,
    EntityNotFoundError,
    JobNotFoundError,
)
from marketplace_indexer.domain.state_machine import (
    DEFAULT_GRACE_SECONDS,
    ArbitratorRefused,
    ArbitratorSettled,
    RatingApplied,
    ReputationChange,
    ReviewCreated,
    apply_job_event,
)
from marketplace_indexer.infrastructure.database.engine import session_scope
from marketplace_indexer.infrastructure.database.repositories import SqlEntityStore
from marketplace_indexer.logging_config import get_logger
from marketplace_indexer.schemas.events import DETAIL_TYPES

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from marketplace_indexer.config import Settings
    from marketplace_indexer.domain.gateway_protocol import EntityStore
    from marketplace_indexer.domain.state_machine import Effect

logger = get_logger(__name__)

# Rating scale used for User.average_rating (a 4-star rating counts 40000).
RATING_SCALE = 10000


# ---------------------------------------------------------------------------
# Log delivery input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Log:
    """One log as delivered by the log-delivery component.

    Attributes:
        id: Globally unique log id, used as the JobEvent primary key.
        address: Emitting contract address.
        topics: topic[0] is the event selector, then indexed parameters.
    """

    id: str
    address: str
    topics: tuple[str, ...]
    data: bytes
    log_index: int
    transaction_hash: str = ""


@dataclass(frozen=True)
class Block:
    height: int
    timestamp: int
    logs: tuple[Log, ...] = ()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogOutcome:
    log_id: str
    block_height: int
    status: LogOutcomeStatus
    kind: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class IngestResult:
    outcomes: tuple[LogOutcome, ...]
    upserted: Mapping[EntityKind, int]

    @property
    def applied(self) -> int:
        return sum(1 for o in self.outcomes if o.status is LogOutcomeStatus.APPLIED)

    @property
    def decode_errors(self) -> tuple[LogOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status is LogOutcomeStatus.DECODE_ERROR)


@dataclass
class BatchContext:
    """Writable view of every entity touched by one batch."""

    marketplace: Marketplace | None = None
    jobs: dict[str, Job] = field(default_factory=dict)
    users: dict[str, User] = field(default_factory=dict)
    arbitrators: dict[str, Arbitrator] = field(default_factory=dict)
    events: list[JobEventRecord] = field(default_factory=list)
    reviews: list[Review] = field(default_factory=list)


class BatchIngestor:
    """Applies ordered blocks to the entity store.

    Usage:
        ingestor = BatchIngestor(store, marketplace_address, marketplace_data_address)
        result = await ingestor.ingest(blocks)
    """

    def __init__(
        self,
        store: EntityStore,
        marketplace_address: str,
        marketplace_data_address: str,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self._store = store
        self._marketplace_address = marketplace_address
        self._marketplace_data_address = marketplace_data_address
        self._grace_seconds = grace_seconds
        self._domains = {
            marketplace_address.lower(): ContractDomain.MARKETPLACE,
            marketplace_data_address.lower(): ContractDomain.MARKETPLACE_DATA,
        }

    @classmethod
    def from_settings(cls, store: EntityStore, settings: Settings | None = None) -> BatchIngestor:
        settings = settings or get_settings()
        return cls(
            store,
            marketplace_address=settings.marketplace_address,
            marketplace_data_address=settings.marketplace_data_address,
            grace_seconds=settings.collateral_grace_seconds,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def ingest(self, blocks: Sequence[Block]) -> IngestResult:
        """Process blocks in order and upsert the result.

        Raises:
            BatchAbortedError: A log referenced a job, user or arbitrator
                that does not exist. Nothing has been written.
        """
        ctx = BatchContext()
        outcomes: list[LogOutcome] = []

        for block in blocks:
            if not block.logs:
                continue
            with structlog.contextvars.bound_contextvars(block_height=block.height):
                logger.debug("ingest.block_started", logs=len(block.logs))
                for log in block.logs:
                    try:
                        outcomes.append(await self._process_log(ctx, block, log))
                    except (JobNotFoundError, EntityNotFoundError) as err:
                        logger.error(
                            "ingest.batch_aborted",
                            log_id=log.id,
                            code=err.code,
                            error=err.message,
                        )
                        raise BatchAbortedError(log.id, block.height, err) from err

        upserted = await self._flush(ctx)
        logger.info(
            "ingest.batch_completed",
            blocks=len(blocks),
            logs=len(outcomes),
            upserted={kind.value: count for kind, count in upserted.items()},
        )
        return IngestResult(outcomes=tuple(outcomes), upserted=upserted)

    async def _process_log(self, ctx: BatchContext, block: Block, log: Log) -> LogOutcome:
        domain = self._domains.get(log.address.lower())
        if domain is None or not log.topics:
            return LogOutcome(log.id, block.height, LogOutcomeStatus.IGNORED)

        if domain is ContractDomain.MARKETPLACE:
            await self._marketplace(ctx)

        kind = resolve_topic(domain, log.topics[0])
        if kind is None:
            logger.debug("ingest.unknown_topic", log_id=log.id, topic=log.topics[0])
            return LogOutcome(log.id, block.height, LogOutcomeStatus.IGNORED)

        try:
            decoded = decode_log(kind, log.topics, log.data)
            await self._HANDLERS[kind](self, ctx, block, log, decoded.args)
        except DecodeError as err:
            logger.warning(
                "ingest.decode_error",
                log_id=log.id,
                kind=kind.value,
                error=err.message,
            )
            return LogOutcome(
                log.id, block.height, LogOutcomeStatus.DECODE_ERROR, kind.value, err.message
            )
        return LogOutcome(log.id, block.height, LogOutcomeStatus.APPLIED, kind.value)

    # ------------------------------------------------------------------
    # Cache lookups: batch context, then store, then not found
    # ------------------------------------------------------------------

    async def _marketplace(self, ctx: BatchContext) -> Marketplace:
        if ctx.marketplace is None:
            ctx.marketplace = await self._store.find_by_id(
                EntityKind.MARKETPLACE, self._marketplace_address
            ) or Marketplace(
                id=self._marketplace_address,
                marketplace_data=self._marketplace_data_address,
            )
        return ctx.marketplace

    async def _job(self, ctx: BatchContext, job_id: str) -> Job | None:
        if job_id not in ctx.jobs:
            job = await self._store.find_by_id(EntityKind.JOB, job_id)
            if job is None:
                return None
            ctx.jobs[job_id] = job
        return ctx.jobs[job_id]

    async def _user(self, ctx: BatchContext, address: str) -> User:
        if address not in ctx.users:
            user = await self._store.find_by_id(EntityKind.USER, address)
            if user is None:
                raise EntityNotFoundError("User", address)
            ctx.users[address] = user
        return ctx.users[address]

    async def _arbitrator(self, ctx: BatchContext, address: str) -> Arbitrator:
        if address not in ctx.arbitrators:
            arbitrator = await self._store.find_by_id(EntityKind.ARBITRATOR, address)
            if arbitrator is None:
                raise EntityNotFoundError("Arbitrator", address)
            ctx.arbitrators[address] = arbitrator
        return ctx.arbitrators[address]

    # ------------------------------------------------------------------
    # Marketplace handlers
    # ------------------------------------------------------------------

    async def _on_initialized(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.version = int(args["version"])

    async def _on_marketplace_data_changed(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.marketplace_data = args["marketplaceDataAddress"]

    async def _on_treasury_changed(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.treasury_address = args["treasuryAddress"]

    async def _on_escrow_addresses_changed(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.escrow_address = args["unicrowAddress"]
        ctx.marketplace.escrow_dispute_address = args["unicrowDisputeAddress"]
        ctx.marketplace.escrow_arbitrator_address = args["unicrowArbitratorAddress"]

    async def _on_escrow_fee_changed(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.escrow_fee = int(args["unicrowMarketplaceFee"])

    async def _on_version_changed(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.version = int(args["version"])

    async def _on_paused(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.paused = True

    async def _on_unpaused(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.paused = False

    async def _on_ownership_transferred(self, ctx, block, log, args) -> None:  # noqa: ANN001
        ctx.marketplace.owner = args["newOwner"]

    # ------------------------------------------------------------------
    # MarketplaceData handlers
    # ------------------------------------------------------------------

    async def _on_user_registered(self, ctx, block, log, args) -> None:  # noqa: ANN001
        address = args["addr"]
        ctx.users[address] = User(
            id=address,
            address=address,
            public_key="0x" + bytes(args["pubkey"]).hex(),
            name=args["name"],
            bio=args["bio"],
            avatar=args["avatar"],
        )
        logger.info("ingest.user_registered", address=address)

    async def _on_user_updated(self, ctx, block, log, args) -> None:  # noqa: ANN001
        user = await self._user(ctx, args["addr"])
        user.name = args["name"]
        user.bio = args["bio"]
        user.avatar = args["avatar"]

    async def _on_arbitrator_registered(self, ctx, block, log, args) -> None:  # noqa: ANN001
        address = args["addr"]
        ctx.arbitrators[address] = Arbitrator(
            id=address,
            address=address,
            public_key="0x" + bytes(args["pubkey"]).hex(),
            name=args["name"],
            bio=args["bio"],
            avatar=args["avatar"],
            fee=int(args["fee"]),
        )
        logger.info("ingest.arbitrator_registered", address=address)

    async def _on_arbitrator_updated(self, ctx, block, log, args) -> None:  # noqa: ANN001
        arbitrator = await self._arbitrator(ctx, args["addr"])
        arbitrator.name = args["name"]
        arbitrator.bio = args["bio"]
        arbitrator.avatar = args["avatar"]

    async def _on_job_event(self, ctx, block, log, args) -> None:  # noqa: ANN001
        job_id = str(args["jobId"])
        event_type, raw_address, raw_payload, timestamp = args["eventData"]
        payload = bytes(raw_payload)

        # Decode before touching the context: a bad payload leaves no trace.
        decoded = decode_job_event(event_type, payload)
        record = JobEventRecord(
            id=log.id,
            job_id=job_id,
            type=int(event_type),
            address=decode_participant(bytes(raw_address)),
            data=payload,
            timestamp=int(timestamp),
            block_number=block.height,
            log_index=log.log_index,
            details=decoded if isinstance(decoded, DETAIL_TYPES) else None,
        )

        job = await self._job(ctx, job_id)
        outcome = apply_job_event(job, record, decoded, self._grace_seconds)
        for effect in outcome.effects:
            await self._apply_effect(ctx, effect)
        if outcome.job is not None:
            ctx.jobs[job_id] = outcome.job
        ctx.events.append(record)
        logger.debug("ingest.job_event", job_id=job_id, type=record.type, log_id=log.id)

    _HANDLERS: ClassVar[dict[LogEventKind, Callable[..., Awaitable[None]]]] = {
        LogEventKind.INITIALIZED: _on_initialized,
        LogEventKind.MARKETPLACE_DATA_ADDRESS_CHANGED: _on_marketplace_data_changed,
        LogEventKind.TREASURY_ADDRESS_CHANGED: _on_treasury_changed,
        LogEventKind.ESCROW_ADDRESSES_CHANGED: _on_escrow_addresses_changed,
        LogEventKind.ESCROW_FEE_CHANGED: _on_escrow_fee_changed,
        LogEventKind.VERSION_CHANGED: _on_version_changed,
        LogEventKind.PAUSED: _on_paused,
        LogEventKind.UNPAUSED: _on_unpaused,
        LogEventKind.OWNERSHIP_TRANSFERRED: _on_ownership_transferred,
        LogEventKind.USER_REGISTERED: _on_user_registered,
        LogEventKind.USER_UPDATED: _on_user_updated,
        LogEventKind.ARBITRATOR_REGISTERED: _on_arbitrator_registered,
        LogEventKind.ARBITRATOR_UPDATED: _on_arbitrator_updated,
        LogEventKind.JOB_EVENT: _on_job_event,
    }

    # ------------------------------------------------------------------
    # Side effects of job transitions
    # ------------------------------------------------------------------

    async def _apply_effect(self, ctx: BatchContext, effect: Effect) -> None:
        match effect:
            case ReputationChange(user=address, up=up, down=down):
                user = await self._user(ctx, address)
                user.reputation_up += up
                user.reputation_down += down
            case RatingApplied(user=address, rating=rating):
                user = await self._user(ctx, address)
                user.rating_total += rating * RATING_SCALE
                user.number_of_reviews += 1
                user.average_rating = user.rating_total / user.number_of_reviews
            case ReviewCreated(review=review):
                ctx.reviews.append(review)
            case ArbitratorSettled(arbitrator=address):
                arbitrator = await self._arbitrator(ctx, address)
                arbitrator.settled_count += 1
            case ArbitratorRefused(arbitrator=address):
                arbitrator = await self._arbitrator(ctx, address)
                arbitrator.refused_count += 1

    # ------------------------------------------------------------------
    # Batch end
    # ------------------------------------------------------------------

    async def _flush(self, ctx: BatchContext) -> dict[EntityKind, int]:
        batches: list[tuple[EntityKind, list[Any]]] = [
            (EntityKind.MARKETPLACE, [ctx.marketplace] if ctx.marketplace else []),
            (EntityKind.USER, list(ctx.users.values())),
            (EntityKind.ARBITRATOR, list(ctx.arbitrators.values())),
            (EntityKind.JOB, list(ctx.jobs.values())),
            (EntityKind.JOB_EVENT, ctx.events),
            (EntityKind.REVIEW, ctx.reviews),
        ]
        upserted: dict[EntityKind, int] = {}
        for kind, entities in batches:
            if entities:
                await self._store.upsert_many(kind, entities)
            upserted[kind] = len(entities)
        return upserted


class IndexerService:
    """Runs batches against the SQL store, one transaction per batch.

    Usage:
        service = IndexerService()
        result = await service.process_batch(blocks)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session_factory = session_factory

    async def process_batch(self, blocks: Sequence[Block]) -> IngestResult:
        """Ingest and commit. On BatchAbortedError the transaction is rolled back."""
        async with session_scope(self._session_factory) as session:
            ingestor = BatchIngestor.from_settings(SqlEntityStore(session), self._settings)
            result = await ingestor.ingest(blocks)

        if blocks:
            logger.info(
                "indexer.batch_committed",
                first_block=blocks[0].height,
                last_block=blocks[-1].height,
                applied=result.applied,
            )
        return result
