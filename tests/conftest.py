"""Shared test fixtures for the marketplace indexer test suite.

Provides:
    - Deterministic participant addresses and session identities
    - Factories for job event records, raw logs and blocks
    - In-memory entity store and a batch ingestor bound to it
    - Async SQLite sessions for the SQL entity store
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from pydantic import BaseModel

from marketplace_indexer.codec.encoders import encode_job_payload, encode_log
from marketplace_indexer.codec.logs import LogEventKind
from marketplace_indexer.domain.entities import ZERO_ADDRESS, JobEventRecord
from marketplace_indexer.domain.enums import JobEventType
from marketplace_indexer.infrastructure.crypto import SessionIdentity
from marketplace_indexer.infrastructure.memory_store import InMemoryEntityStore
from marketplace_indexer.schemas.events import DETAIL_TYPES, JobCreatedDetails
from marketplace_indexer.services.ingestion_service import BatchIngestor, Block, Log

# Digit-only addresses are their own checksum form.
MARKETPLACE = "0x" + "11" * 20
MARKETPLACE_DATA = "0x" + "22" * 20
CREATOR = "0x" + "33" * 20
WORKER = "0x" + "44" * 20
ARBITRATOR = "0x" + "55" * 20
OUTSIDER = "0x" + "66" * 20
TOKEN = "0x" + "77" * 20

T0 = 1_700_000_000
HOUR = 3600


@dataclass(frozen=True)
class Accounts:
    marketplace: str = MARKETPLACE
    marketplace_data: str = MARKETPLACE_DATA
    creator: str = CREATOR
    worker: str = WORKER
    arbitrator: str = ARBITRATOR
    outsider: str = OUTSIDER
    token: str = TOKEN
    zero: str = ZERO_ADDRESS


def created_details(**overrides: Any) -> JobCreatedDetails:
    values: dict[str, Any] = {
        "title": "Design a logo",
        "content_hash": "0x" + "ab" * 32,
        "multiple_applicants": False,
        "tags": ["design", "branding"],
        "token": TOKEN,
        "amount": 100,
        "max_time": 3600,
        "delivery_method": "ipfs",
        "arbitrator": ZERO_ADDRESS,
        "whitelist_workers": False,
    }
    values.update(overrides)
    return JobCreatedDetails(**values)


def _payload_bytes(payload: BaseModel | bytes | None) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    return encode_job_payload(payload)


@dataclass
class EventFactory:
    """Builds JobEventRecords in chain order (one log per call)."""

    job_id: str = "1"
    block: int = 100
    log_index: int = 0

    def make(
        self,
        event_type: JobEventType | int,
        payload: BaseModel | bytes | None = None,
        *,
        address: str = CREATOR,
        timestamp: int = T0,
        job_id: str | None = None,
        block: int | None = None,
        log_index: int | None = None,
    ) -> JobEventRecord:
        block = self.block if block is None else block
        log_index = self.log_index if log_index is None else log_index
        self.log_index = log_index + 1
        return JobEventRecord(
            id=f"{block:010d}-{log_index:05d}",
            job_id=job_id or self.job_id,
            type=int(event_type),
            address=address,
            data=_payload_bytes(payload),
            timestamp=timestamp,
            block_number=block,
            log_index=log_index,
            details=payload if isinstance(payload, DETAIL_TYPES) else None,
        )

    def created(self, timestamp: int = T0, **overrides: Any) -> JobEventRecord:
        return self.make(JobEventType.CREATED, created_details(**overrides), timestamp=timestamp)


@dataclass
class LogFactory:
    """Builds raw logs as the log-delivery component would hand them over."""

    counter: int = 0
    pending: list[Log] = field(default_factory=list)

    def _log(self, address: str, kind: LogEventKind, args: dict[str, Any]) -> Log:
        topics, data = encode_log(kind, args)
        log = Log(
            id=f"log-{self.counter:06d}",
            address=address,
            topics=topics,
            data=data,
            log_index=self.counter,
            transaction_hash="0x" + f"{self.counter:064x}",
        )
        self.counter += 1
        return log

    def marketplace(self, kind: LogEventKind, **args: Any) -> Log:
        return self._log(MARKETPLACE, kind, args)

    def data(self, kind: LogEventKind, **args: Any) -> Log:
        return self._log(MARKETPLACE_DATA, kind, args)

    def user_registered(self, address: str, pubkey: bytes = b"\x02" + b"\x01" * 32) -> Log:
        return self.data(
            LogEventKind.USER_REGISTERED,
            addr=address,
            pubkey=pubkey,
            name=f"user-{address[-4:]}",
            bio="",
            avatar="",
        )

    def arbitrator_registered(self, address: str, fee: int = 100) -> Log:
        return self.data(
            LogEventKind.ARBITRATOR_REGISTERED,
            addr=address,
            pubkey=b"\x03" + b"\x02" * 32,
            name="arbiter",
            bio="",
            avatar="",
            fee=fee,
        )

    def job_event(
        self,
        job_id: int,
        event_type: JobEventType | int,
        payload: BaseModel | bytes | None = None,
        *,
        address: str = CREATOR,
        timestamp: int = T0,
    ) -> Log:
        sender = bytes.fromhex(address[2:])
        return self.data(
            LogEventKind.JOB_EVENT,
            jobId=job_id,
            eventData=(int(event_type), sender, _payload_bytes(payload), timestamp),
        )

    @staticmethod
    def block(height: int, *logs: Log, timestamp: int = T0) -> Block:
        return Block(height=height, timestamp=timestamp, logs=tuple(logs))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def accounts() -> Accounts:
    return Accounts()


@pytest.fixture
def events() -> EventFactory:
    return EventFactory()


@pytest.fixture
def logs() -> LogFactory:
    return LogFactory()


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def ingestor(store: InMemoryEntityStore) -> BatchIngestor:
    return BatchIngestor(store, MARKETPLACE, MARKETPLACE_DATA)


@pytest.fixture
def creator_identity() -> SessionIdentity:
    return SessionIdentity.from_secret(b"\x01" * 32)


@pytest.fixture
def worker_identity() -> SessionIdentity:
    return SessionIdentity.from_secret(b"\x02" * 32)


@pytest.fixture
def arbitrator_identity() -> SessionIdentity:
    return SessionIdentity.from_secret(b"\x03" * 32)


@pytest_asyncio.fixture
async def sqlite_session_factory():
    """Session factory over a fresh in-memory SQLite database with all tables."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from marketplace_indexer.infrastructure.database import Base

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    await engine.dispose()
