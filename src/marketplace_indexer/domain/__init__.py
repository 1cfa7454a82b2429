"""Domain layer: pure business logic with zero framework dependencies.

The diff engine lives in domain.diffs and is imported from there, since it
builds on the codec.
"""

from marketplace_indexer.domain.entities import (
    ZERO_ADDRESS,
    ZERO_HASH,
    Arbitrator,
    Job,
    JobEventRecord,
    JobRoles,
    Marketplace,
    Review,
    User,
)
from marketplace_indexer.domain.enums import (
    ContentStatus,
    EntityKind,
    JobEventType,
    JobState,
    LogOutcomeStatus,
)
from marketplace_indexer.domain.exceptions import (
    BatchAbortedError,
    ContentUnavailableError,
    DecodeError,
    DecryptionError,
    EntityNotFoundError,
    IndexerError,
    JobNotFoundError,
    KeyResolutionError,
)
from marketplace_indexer.domain.state_machine import (
    JobLifecycle,
    TransitionOutcome,
    apply_job_event,
    next_state,
)

__all__ = [
    "ZERO_ADDRESS",
    "ZERO_HASH",
    "Arbitrator",
    "BatchAbortedError",
    "ContentStatus",
    "ContentUnavailableError",
    "DecodeError",
    "DecryptionError",
    "EntityKind",
    "EntityNotFoundError",
    "IndexerError",
    "Job",
    "JobEventRecord",
    "JobEventType",
    "JobLifecycle",
    "JobNotFoundError",
    "JobRoles",
    "JobState",
    "KeyResolutionError",
    "LogOutcomeStatus",
    "Marketplace",
    "Review",
    "TransitionOutcome",
    "User",
    "apply_job_event",
    "next_state",
]
