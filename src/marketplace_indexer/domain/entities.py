"""Domain entities derived from the marketplace event stream.

Plain dataclasses with no persistence concerns. The batch ingestor mutates
cached copies of these during a batch; the entity store gateway maps them
to and from storage. Jobs and their events reference each other only by
job id, never by object handle.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from marketplace_indexer.domain.enums import JobState
from marketplace_indexer.schemas.events import JobEventDetails  # noqa: TC001

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = "0x" + "00" * 32


@dataclass
class Marketplace:
    """Singleton marketplace configuration, keyed by contract address."""

    id: str
    marketplace_data: str = ZERO_ADDRESS
    version: int = 0
    escrow_address: str = ZERO_ADDRESS
    escrow_dispute_address: str = ZERO_ADDRESS
    escrow_arbitrator_address: str = ZERO_ADDRESS
    treasury_address: str = ZERO_ADDRESS
    escrow_fee: int = 0
    paused: bool = False
    owner: str = ZERO_ADDRESS


@dataclass
class JobRoles:
    creator: str = ZERO_ADDRESS
    worker: str = ZERO_ADDRESS
    arbitrator: str = ZERO_ADDRESS


@dataclass
class Job:
    """Derived job state. ``amount`` and ``collateral_owed`` are token base units."""

    id: str
    state: JobState = JobState.OPEN
    roles: JobRoles = field(default_factory=JobRoles)
    title: str = ""
    content_hash: str = ZERO_HASH
    multiple_applicants: bool = False
    tags: list[str] = field(default_factory=list)
    token: str = ZERO_ADDRESS
    amount: int = 0
    max_time: int = 0
    delivery_method: str = ""
    collateral_owed: int = 0
    escrow_id: int = 0
    result_hash: str = ZERO_HASH
    rating: int = 0
    disputed: bool = False
    whitelist_workers: bool = False
    allowed_workers: list[str] = field(default_factory=list)
    timestamp: int = 0


@dataclass(frozen=True)
class JobEventRecord:
    """Immutable ledger entry for one job event log.

    Attributes:
        id: Globally unique log id from the log-delivery component.
        job_id: Owning job (decimal string of the on-chain uint256).
        type: Raw JobEventType value; unknown values are kept as-is.
        address: Emitting participant address (or raw hex if not 20 bytes).
        data: Raw event payload.
        details: Decoded payload for the kinds that carry one.
    """

    id: str
    job_id: str
    type: int
    address: str
    data: bytes
    timestamp: int
    block_number: int
    log_index: int
    details: JobEventDetails | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass
class User:
    id: str
    address: str
    public_key: str
    name: str = ""
    bio: str = ""
    avatar: str = ""
    reputation_up: int = 0
    reputation_down: int = 0
    # Scaled by 10000: a single 4-star rating gives 40000.
    average_rating: float = 0.0
    number_of_reviews: int = 0
    # Sum of every scaled rating; average_rating is derived from it.
    rating_total: int = 0


@dataclass
class Arbitrator:
    id: str
    address: str
    public_key: str
    name: str = ""
    bio: str = ""
    avatar: str = ""
    fee: int = 0
    settled_count: int = 0
    refused_count: int = 0


@dataclass(frozen=True)
class Review:
    """One review per Rated event, keyed by the originating log id."""

    id: str
    user: str
    reviewer: str
    job_id: int
    rating: int
    text: str
    timestamp: int
