#!/usr/bin/env python3
"""Marketplace Indexer: End-to-End Simulation.

Replays scripted on-chain logs through the indexer, then rebuilds the job
timeline and decrypts its content on behalf of one participant.

    Scenario 1: Happy Path
        - Creator and worker register, creator posts a job
        - Worker takes it, they exchange an encrypted message
        - Worker delivers, creator rates -> worker reputation and review

    Scenario 2: Dispute
        - Job with an arbitrator, taken by the worker
        - Worker disputes and reveals the session key to the arbitrator
        - Arbitrator reads the whole thread and settles

    Scenario 3: Aborted Batch
        - A batch references a job that was never created -> nothing written
        - The batch is retried with the Created log in front -> applied

Usage:
    # Option A: PostgreSQL (DATABASE_URL from .env):
    uv run python simulation.py

    # Option B: SQLite in-memory:
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from marketplace_indexer.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from marketplace_indexer.codec import encode_job_payload, encode_log  # noqa: E402
from marketplace_indexer.codec.logs import LogEventKind  # noqa: E402
from marketplace_indexer.config import Settings  # noqa: E402
from marketplace_indexer.domain.diffs import compute_job_state_diffs  # noqa: E402
from marketplace_indexer.domain.entities import ZERO_ADDRESS  # noqa: E402
from marketplace_indexer.domain.enums import EntityKind, JobEventType  # noqa: E402
from marketplace_indexer.domain.exceptions import BatchAbortedError  # noqa: E402
from marketplace_indexer.infrastructure.content_store import InMemoryContentStore  # noqa: E402
from marketplace_indexer.infrastructure.crypto import (  # noqa: E402
    SessionIdentity,
    derive_session_key,
)
from marketplace_indexer.infrastructure.database import SqlEntityStore  # noqa: E402
from marketplace_indexer.schemas.events import (  # noqa: E402
    JobArbitratedDetails,
    JobCreatedDetails,
    JobDeliveredPayload,
    JobDisputedDetails,
    JobMessageDetails,
    JobRatedDetails,
    JobTakenPayload,
)
from marketplace_indexer.services import (  # noqa: E402
    IndexerService,
    SessionDecryptionPipeline,
    StorePublicKeyResolver,
)
from marketplace_indexer.services.decryption_service import (  # noqa: E402
    build_dispute_payload,
    publish_content,
)
from marketplace_indexer.services.ingestion_service import Block, Log  # noqa: E402

MARKETPLACE = "0x" + "11" * 20
MARKETPLACE_DATA = "0x" + "22" * 20
TOKEN = "0x" + "77" * 20
T0 = 1_700_000_000

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None


async def init_database(use_sqlite: bool = False):
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

        from marketplace_indexer.infrastructure.database import Base

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from marketplace_indexer.infrastructure.database import init_db
        await init_db()


def get_session_factory():
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory

    from marketplace_indexer.infrastructure.database.engine import _get_session_factory
    return _get_session_factory()


async def shutdown_database():
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from marketplace_indexer.infrastructure.database import close_db
        await close_db()


# ---------------------------------------------------------------------------
# Chain script
# ---------------------------------------------------------------------------
@dataclass
class Chain:
    """Emits logs the way the two marketplace contracts would."""

    height: int = 1
    log_index: int = 0
    pending: list[Log] = field(default_factory=list)

    def _emit(self, address: str, kind: LogEventKind, **args: Any) -> None:
        topics, data = encode_log(kind, args)
        self.pending.append(
            Log(
                id=f"{self.height:010d}-{self.log_index:05d}",
                address=address,
                topics=topics,
                data=data,
                log_index=self.log_index,
            )
        )
        self.log_index += 1

    def register(self, identity: SessionIdentity, name: str, arbitrator: bool = False) -> None:
        args = {
            "addr": identity.address,
            "pubkey": identity.public_key,
            "name": name,
            "bio": "",
            "avatar": "",
        }
        if arbitrator:
            self._emit(MARKETPLACE_DATA, LogEventKind.ARBITRATOR_REGISTERED, fee=100, **args)
        else:
            self._emit(MARKETPLACE_DATA, LogEventKind.USER_REGISTERED, **args)

    def job(self, job_id: int, kind: JobEventType, sender: str, payload: Any = None, at: int = T0) -> None:
        data = encode_job_payload(payload) if payload is not None else b""
        self._emit(
            MARKETPLACE_DATA,
            LogEventKind.JOB_EVENT,
            jobId=job_id,
            eventData=(int(kind), bytes.fromhex(sender[2:]), data, at),
        )

    def mine(self) -> Block:
        block = Block(height=self.height, timestamp=T0 + self.height, logs=tuple(self.pending))
        self.height += 1
        self.log_index = 0
        self.pending = []
        return block


@dataclass
class Cast:
    creator: SessionIdentity = field(default_factory=lambda: SessionIdentity.from_secret(b"\x01" * 32))
    worker: SessionIdentity = field(default_factory=lambda: SessionIdentity.from_secret(b"\x02" * 32))
    arbitrator: SessionIdentity = field(default_factory=lambda: SessionIdentity.from_secret(b"\x03" * 32))
    content: InMemoryContentStore = field(default_factory=InMemoryContentStore)

    def key(self, a: SessionIdentity, b: SessionIdentity, job_id: int) -> bytes:
        return derive_session_key(a, b.public_key, job_id)


def indexer() -> IndexerService:
    settings = Settings(marketplace_address=MARKETPLACE, marketplace_data_address=MARKETPLACE_DATA)
    return IndexerService(settings=settings, session_factory=get_session_factory())


def job_post(description_hash: str, arbitrator: str = ZERO_ADDRESS) -> JobCreatedDetails:
    return JobCreatedDetails(
        title="Design a logo",
        content_hash=description_hash,
        multiple_applicants=False,
        tags=["design"],
        token=TOKEN,
        amount=1_000_000,
        max_time=7 * 24 * 3600,
        delivery_method="ipfs",
        arbitrator=arbitrator,
        whitelist_workers=False,
    )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_timeline(job_id: int, viewer: SessionIdentity, content: InMemoryContentStore) -> None:
    """Print the job's timeline with diffs and the viewer's decrypted content."""
    factory = get_session_factory()
    async with factory() as session:
        store = SqlEntityStore(session)
        ledger = await store.find_job_events(str(job_id))
        items = list(compute_job_state_diffs(ledger, str(job_id)))
        report = await SessionDecryptionPipeline(
            viewer, StorePublicKeyResolver(store), content
        ).run(items)

    print(f"  Timeline of job {job_id} as seen by {viewer.address[:10]}...:")
    for i, item in enumerate(items, 1):
        name = JobEventType(item.event.type).name
        changed = ", ".join(d.field for d in item.diffs) or "-"
        print(f"    {i}. [{name}] changed: {changed}")
        resolved = report.for_event(item.event.id)
        if resolved is not None:
            print(f"       content ({resolved.status.value}): {resolved.text or resolved.error or ''}")
    for failure in report.key_failures:
        print(f"    ! no key for {failure.address}: {failure.reason}")
    print()


async def print_entity(kind: EntityKind, entity_id: str) -> None:
    async with get_session_factory()() as session:
        entity = await SqlEntityStore(session).find_by_id(kind, entity_id)
    print(f"  {kind.value}: {entity}")


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path: post, take, deliver, rate")
    cast, chain, job_id = Cast(), Chain(), 1
    key = cast.key(cast.creator, cast.worker, job_id)

    section("Block 1: registrations")
    chain.register(cast.creator, "Carol")
    chain.register(cast.worker, "Walt")
    blocks = [chain.mine()]

    section("Block 2: job posted and taken, brief sent")
    description = await cast.content.store_bytes(b"Minimal logo for a bakery, two colours.")
    brief = await publish_content(cast.content, b"Brand colours are #C0FFEE and #FACADE.", key)
    chain.job(job_id, JobEventType.CREATED, cast.creator.address, job_post(description))
    chain.job(job_id, JobEventType.TAKEN, cast.worker.address, JobTakenPayload(escrow_id=17))
    chain.job(
        job_id, JobEventType.OWNER_MESSAGE, cast.creator.address,
        JobMessageDetails(content_hash=brief, recipient=cast.worker.address),
    )
    blocks.append(chain.mine())

    section("Block 3: delivered and rated")
    result = await publish_content(cast.content, b"logo-final.svg", key)
    chain.job(
        job_id, JobEventType.DELIVERED, cast.worker.address,
        JobDeliveredPayload(result_hash=result), at=T0 + 3600,
    )
    chain.job(
        job_id, JobEventType.RATED, cast.creator.address,
        JobRatedDetails(rating=5, review="Fast and friendly"), at=T0 + 7200,
    )
    blocks.append(chain.mine())

    outcome = await indexer().process_batch(blocks)
    print(f"  Applied {outcome.applied} logs")
    await print_entity(EntityKind.JOB, str(job_id))
    await print_entity(EntityKind.USER, cast.worker.address)
    await print_timeline(job_id, cast.worker, cast.content)


# ===========================================================================
# Scenario 2: Dispute
# ===========================================================================
async def scenario_2_dispute() -> None:
    banner("SCENARIO 2: Dispute: arbitrator reads the thread")
    cast, chain, job_id = Cast(), Chain(height=100), 2
    key = cast.key(cast.creator, cast.worker, job_id)
    arbitrator_key = cast.key(cast.worker, cast.arbitrator, job_id)

    chain.register(cast.creator, "Carol")
    chain.register(cast.worker, "Walt")
    chain.register(cast.arbitrator, "Ada", arbitrator=True)
    description = await cast.content.store_bytes(b"Landing page copy, 300 words.")
    chain.job(
        job_id, JobEventType.CREATED, cast.creator.address,
        job_post(description, arbitrator=cast.arbitrator.address),
    )
    chain.job(job_id, JobEventType.TAKEN, cast.worker.address, JobTakenPayload(escrow_id=18))
    blocks = [chain.mine()]

    section("Worker opens a dispute")
    complaint = await publish_content(cast.content, b"Delivered on time, payment withheld.", key)
    payload = build_dispute_payload(key, arbitrator_key, complaint)
    chain.job(
        job_id, JobEventType.WORKER_MESSAGE, cast.worker.address,
        JobMessageDetails(
            content_hash=await publish_content(cast.content, b"Draft attached.", key),
            recipient=cast.creator.address,
        ),
    )
    chain.job(
        job_id, JobEventType.DISPUTED, cast.worker.address,
        JobDisputedDetails(session_key="0x" + payload[:40].hex(), content=complaint),
    )
    chain.job(
        job_id, JobEventType.ARBITRATED, cast.arbitrator.address,
        JobArbitratedDetails(
            creator_share=2000, creator_amount=200_000, worker_share=8000,
            worker_amount=800_000, reason_hash="0x" + "00" * 32,
        ),
    )
    blocks.append(chain.mine())

    await indexer().process_batch(blocks)
    await print_entity(EntityKind.ARBITRATOR, cast.arbitrator.address)
    await print_timeline(job_id, cast.arbitrator, cast.content)


# ===========================================================================
# Scenario 3: Aborted Batch
# ===========================================================================
async def scenario_3_aborted_batch() -> None:
    banner("SCENARIO 3: Aborted Batch: unknown job, then retry")
    cast, chain, job_id = Cast(), Chain(height=200), 3

    chain.job(job_id, JobEventType.TAKEN, cast.worker.address, JobTakenPayload(escrow_id=19))
    orphan = chain.mine()

    section("Batch without the Created log")
    try:
        await indexer().process_batch([orphan])
    except BatchAbortedError as err:
        print(f"  ❌ {err.message}")
    await print_entity(EntityKind.JOB, str(job_id))

    section("Retry with the Created log first")
    retry_chain = Chain(height=199)
    description = await cast.content.store_bytes(b"Translate a menu.")
    retry_chain.job(job_id, JobEventType.CREATED, cast.creator.address, job_post(description))
    await indexer().process_batch([retry_chain.mine(), orphan])
    print("  ✅ Batch applied")
    await print_entity(EntityKind.JOB, str(job_id))


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_dispute,
    3: scenario_3_aborted_batch,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when ``scenario`` is 0."""
    await init_database(use_sqlite=use_sqlite)
    try:
        if scenario == 0:
            for run_scenario in SCENARIOS.values():
                await run_scenario()
        elif scenario in SCENARIOS:
            await SCENARIOS[scenario]()
        else:
            print(f"Unknown scenario {scenario}. Available: 1, 2, 3")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Marketplace Indexer Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL.",
    )
    args = parser.parse_args()
    asyncio.run(run(args.scenario, use_sqlite=args.sqlite))
