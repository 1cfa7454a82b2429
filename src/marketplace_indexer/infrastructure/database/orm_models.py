"""SQLAlchemy 2.0 ORM models for the marketplace indexer.

Six tables:
    1. marketplace  - singleton row per marketplace contract.
    2. job          - derived job state.
    3. job_event    - append-only ledger of job events (FK job, indexed by job).
    4. user         - registered users with reputation and rating aggregates.
    5. arbitrator   - registered arbitrators with settlement counters.
    6. review       - one row per Rated event.

Design decisions:
    - Natural keys: addresses, decimal job ids and log ids (no surrogate keys),
      so upserts are idempotent by construction.
    - uint256 values (amount, collateral, escrow id) use Uint256: NUMERIC(78, 0)
      on PostgreSQL, text on SQLite, always a Python int in the application.
    - JSONB for roles, tag lists and decoded event details (plain JSON on SQLite).
    - job_event is append-only: rows are never updated at the application level.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    LargeBinary,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


# JSONB on PostgreSQL, JSON on SQLite.
JsonDocument = JSONB().with_variant(JSON(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Uint256(TypeDecorator):
    """Unbounded non-negative integer column (EVM uint256)."""

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):  # noqa: ANN001, ANN201
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        return str(value) if dialect.name == "sqlite" else Decimal(value)

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        return None if value is None else int(value)


# ---------------------------------------------------------------------------
# 1. marketplace
# ---------------------------------------------------------------------------
class MarketplaceRow(Base):
    __tablename__ = "marketplace"

    id: Mapped[str] = mapped_column(String(42), primary_key=True)
    marketplace_data: Mapped[str] = mapped_column(String(42), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escrow_address: Mapped[str] = mapped_column(String(42), nullable=False)
    escrow_dispute_address: Mapped[str] = mapped_column(String(42), nullable=False)
    escrow_arbitrator_address: Mapped[str] = mapped_column(String(42), nullable=False)
    treasury_address: Mapped[str] = mapped_column(String(42), nullable=False)
    escrow_fee: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Marketplace fee in basis points",
    )
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    owner: Mapped[str] = mapped_column(String(42), nullable=False)

    def __repr__(self) -> str:
        return f"<MarketplaceRow id={self.id} version={self.version} paused={self.paused}>"


# ---------------------------------------------------------------------------
# 2. job
# ---------------------------------------------------------------------------
class JobRow(Base):
    __tablename__ = "job"

    id: Mapped[str] = mapped_column(
        String(78),
        primary_key=True,
        comment="Decimal string of the on-chain uint256 job id",
    )
    state: Mapped[int] = mapped_column(Integer, nullable=False)
    roles: Mapped[dict] = mapped_column(
        JsonDocument,
        nullable=False,
        comment='{"creator": ..., "worker": ..., "arbitrator": ...}',
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    multiple_applicants: Mapped[bool] = mapped_column(Boolean, nullable=False)
    tags: Mapped[list] = mapped_column(JsonDocument, nullable=False)
    token: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(Uint256, nullable=False)
    max_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    delivery_method: Mapped[str] = mapped_column(Text, nullable=False)
    collateral_owed: Mapped[int] = mapped_column(
        Uint256,
        nullable=False,
        comment="Amount the creator owes the worker after lowering/closing early",
    )
    escrow_id: Mapped[int] = mapped_column(Uint256, nullable=False)
    result_hash: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    disputed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    whitelist_workers: Mapped[bool] = mapped_column(Boolean, nullable=False)
    allowed_workers: Mapped[list] = mapped_column(JsonDocument, nullable=False)
    timestamp: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Start of the collateral grace window (creation or last reopen)",
    )

    __table_args__ = (
        CheckConstraint("state IN (0, 1, 2)", name="ck_job_valid_state"),
        Index("idx_job_state", "state"),
    )

    def __repr__(self) -> str:
        return f"<JobRow id={self.id} state={self.state} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 3. job_event (Append-Only Ledger)
# ---------------------------------------------------------------------------
class JobEventRow(Base):
    """Immutable record of one job event log.

    Replay order is (block_number, log_index); nothing else.
    """

    __tablename__ = "job_event"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    job_id: Mapped[str] = mapped_column(
        String(78),
        ForeignKey("job.id"),
        nullable=False,
    )
    type: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    details: Mapped[dict | None] = mapped_column(
        JsonDocument,
        nullable=True,
        default=None,
        comment="Decoded payload for Created/Updated/Signed/Rated/Disputed/Arbitrated/Message",
    )

    __table_args__ = (
        Index("idx_job_event_job", "job_id"),
        Index("idx_job_event_position", "block_number", "log_index"),
    )

    def __repr__(self) -> str:
        return f"<JobEventRow id={self.id} job={self.job_id} type={self.type}>"


# ---------------------------------------------------------------------------
# 4. user
# ---------------------------------------------------------------------------
class UserRow(Base):
    __tablename__ = "user"

    id: Mapped[str] = mapped_column(String(42), primary_key=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    public_key: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    bio: Mapped[str] = mapped_column(Text, nullable=False)
    avatar: Mapped[str] = mapped_column(Text, nullable=False)
    reputation_up: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reputation_down: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    number_of_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_total: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, comment="Sum of ratings x 10000"
    )

    __table_args__ = (Index("idx_user_address", "address"),)

    def __repr__(self) -> str:
        return f"<UserRow id={self.id} reviews={self.number_of_reviews}>"


# ---------------------------------------------------------------------------
# 5. arbitrator
# ---------------------------------------------------------------------------
class ArbitratorRow(Base):
    __tablename__ = "arbitrator"

    id: Mapped[str] = mapped_column(String(42), primary_key=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    public_key: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    bio: Mapped[str] = mapped_column(Text, nullable=False)
    avatar: Mapped[str] = mapped_column(Text, nullable=False)
    fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    settled_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refused_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_arbitrator_address", "address"),)

    def __repr__(self) -> str:
        return f"<ArbitratorRow id={self.id} settled={self.settled_count}>"


# ---------------------------------------------------------------------------
# 6. review
# ---------------------------------------------------------------------------
class ReviewRow(Base):
    __tablename__ = "review"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user: Mapped[str] = mapped_column(String(42), nullable=False, comment="Rated user")
    reviewer: Mapped[str] = mapped_column(String(42), nullable=False)
    job_id: Mapped[int] = mapped_column(Uint256, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_review_user", "user"),
        Index("idx_review_reviewer", "reviewer"),
        Index("idx_review_job", "job_id"),
    )

    def __repr__(self) -> str:
        return f"<ReviewRow id={self.id} user={self.user} rating={self.rating}>"
