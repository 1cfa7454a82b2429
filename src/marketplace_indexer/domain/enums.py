"""Domain enumerations for the marketplace indexer.

Numeric values match what the marketplace contracts emit on chain and what
is persisted in the job / job_event tables. They are framework-agnostic.
"""

import enum


class JobState(enum.IntEnum):
    """Lifecycle states of a job.

    Transitions are driven by JobLifecycle in domain/state_machine.py.
    """

    OPEN = 0
    TAKEN = 1
    CLOSED = 2


class JobEventType(enum.IntEnum):
    """Types of job events carried in a MarketplaceData ``JobEvent`` log.

    Every value is recorded in the append-only job_event ledger.
    """

    CREATED = 1
    TAKEN = 2
    PAID = 3
    UPDATED = 4
    SIGNED = 5
    COMPLETED = 6
    DELIVERED = 7
    CLOSED = 8
    REOPENED = 9
    RATED = 10
    REFUNDED = 11
    DISPUTED = 12
    ARBITRATED = 13
    ARBITRATOR_CHANGED = 14
    ARBITRATION_REFUSED = 15
    WHITELISTED_WORKER_ADDED = 16
    WHITELISTED_WORKER_REMOVED = 17
    COLLATERAL_WITHDRAWN = 18

    WORKER_MESSAGE = 21
    OWNER_MESSAGE = 22


class EntityKind(enum.StrEnum):
    """Entity kinds reachable through the entity store gateway."""

    MARKETPLACE = "marketplace"
    JOB = "job"
    JOB_EVENT = "job_event"
    USER = "user"
    ARBITRATOR = "arbitrator"
    REVIEW = "review"


class LogOutcomeStatus(enum.StrEnum):
    """What the ingestor did with a single delivered log."""

    APPLIED = "applied"
    IGNORED = "ignored"
    DECODE_ERROR = "decode_error"


class ContentStatus(enum.StrEnum):
    """Resolution status of an event's off-chain content."""

    DECRYPTED = "decrypted"
    PLAINTEXT = "plaintext"
    EMPTY = "empty"
    MISSING_KEY = "missing_key"
    UNAVAILABLE = "unavailable"
    DECRYPT_FAILED = "decrypt_failed"
