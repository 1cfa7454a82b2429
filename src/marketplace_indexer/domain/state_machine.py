"""Job State Machine.

Two layers:

* ``JobLifecycle`` uses python-statemachine to model the Open/Taken/Closed
  lifecycle. The contract is authoritative, so every lifecycle event is
  accepted from every state; the machine only answers "what is the state
  after this event".
* ``apply_job_event`` is the transition table. It is pure: it never mutates
  the job it is given and returns the next job together with the side
  effects on other entities (reputation, ratings, reviews, arbitrator
  counters). The batch ingestor applies those effects to cached users and
  arbitrators; the client diff engine ignores them.

Transition table (every kind except CREATED requires an existing job):
    CREATED                   initialize job (no-op if it already exists)
    TAKEN / PAID              worker = sender, take, escrow id
    UPDATED                   overwrite post fields, collateral rule on amount
    SIGNED                    no change
    COMPLETED                 close
    DELIVERED                 result hash, worker reputation up
    CLOSED                    close, collateral += amount inside grace window
    REOPENED                  reopen, reset result and timestamp, release collateral
    RATED                     rating, worker average, new review
    REFUNDED                  drop worker (penalize if worker refunded), reopen
    DISPUTED                  disputed flag
    ARBITRATED                close, collateral += creator amount, arbitrator settled
    ARBITRATOR_CHANGED        no change
    ARBITRATION_REFUSED       clear arbitrator, refused count on the cleared slot
    WHITELISTED_WORKER_*      allowed worker set add / remove
    COLLATERAL_WITHDRAWN      collateral = 0
    OWNER/WORKER_MESSAGE      no change
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from statemachine import State, StateMachine

from marketplace_indexer.domain.entities import ZERO_ADDRESS, ZERO_HASH, Job, JobRoles, Review
from marketplace_indexer.domain.enums import JobEventType, JobState
from marketplace_indexer.domain.exceptions import DecodeError, JobNotFoundError
from marketplace_indexer.schemas.events import (
    JobArbitratedDetails,
    JobCreatedDetails,
    JobDeliveredPayload,
    JobRatedDetails,
    JobTakenPayload,
    JobUpdatedDetails,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from marketplace_indexer.domain.entities import JobEventRecord
    from marketplace_indexer.schemas.events import DecodedJobPayload

DEFAULT_GRACE_SECONDS = 60 * 60 * 24
LIFECYCLE_EVENTS = frozenset({"take", "close", "reopen"})

_P = TypeVar("_P")


class JobLifecycle(StateMachine):
    """Open/Taken/Closed lifecycle of a job.

    Every event is accepted from every state: the chain has already validated
    the transition, so the machine only records where the job ends up.

    Usage:
        sm = JobLifecycle(JobState.TAKEN)
        sm.close()
        sm.job_state  # JobState.CLOSED
    """

    # --- States ---
    OPEN = State("OPEN", initial=True)
    TAKEN = State("TAKEN")
    CLOSED = State("CLOSED")

    # --- Events / Transitions ---
    take = OPEN.to(TAKEN) | TAKEN.to.itself() | CLOSED.to(TAKEN)
    close = OPEN.to(CLOSED) | TAKEN.to(CLOSED) | CLOSED.to.itself()
    reopen = OPEN.to.itself() | TAKEN.to(OPEN) | CLOSED.to(OPEN)

    def __init__(self, current_state: JobState = JobState.OPEN) -> None:
        super().__init__(start_value=JobState(current_state).name)

    @property
    def job_state(self) -> JobState:
        return JobState[str(self.current_state.value)]


def next_state(current: JobState, event_name: str) -> JobState:
    """Fire a lifecycle event from ``current`` and return the resulting state.

    Raises:
        ValueError: If the event name is not a lifecycle event.
    """
    if event_name not in LIFECYCLE_EVENTS:
        raise ValueError(f"Unknown lifecycle event '{event_name}'")
    sm = JobLifecycle(current)
    getattr(sm, event_name)()
    return sm.job_state


# ---------------------------------------------------------------------------
# Side effects on entities other than the job
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReputationChange:
    user: str
    up: int = 0
    down: int = 0


@dataclass(frozen=True)
class RatingApplied:
    user: str
    rating: int


@dataclass(frozen=True)
class ReviewCreated:
    review: Review


@dataclass(frozen=True)
class ArbitratorSettled:
    arbitrator: str


@dataclass(frozen=True)
class ArbitratorRefused:
    arbitrator: str


Effect = ReputationChange | RatingApplied | ReviewCreated | ArbitratorSettled | ArbitratorRefused


@dataclass(frozen=True)
class TransitionOutcome:
    job: Job | None
    effects: tuple[Effect, ...] = ()


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


def _same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


@dataclass
class _Transition:
    job: Job
    event: JobEventRecord
    kind: JobEventType
    payload: DecodedJobPayload | None
    grace_seconds: int
    effects: list[Effect] = field(default_factory=list)

    def _expect(self, payload_type: type[_P]) -> _P:
        if not isinstance(self.payload, payload_type):
            raise DecodeError(self.kind.name, f"expected {payload_type.__name__} payload")
        return self.payload

    def _fire(self, event_name: str) -> None:
        self.job.state = next_state(self.job.state, event_name)

    def _grace_elapsed(self) -> bool:
        return self.event.timestamp >= self.job.timestamp + self.grace_seconds

    # --- handlers ---

    def created(self) -> None:
        # Handled in apply_job_event: a new job is built there.
        pass

    def taken(self) -> None:
        taken = self._expect(JobTakenPayload)
        self.job.roles.worker = self.event.address
        self._fire("take")
        self.job.escrow_id = taken.escrow_id

    def updated(self) -> None:
        update = self._expect(JobUpdatedDetails)
        job = self.job
        job.title = update.title
        job.content_hash = update.content_hash
        job.tags = list(update.tags)
        job.max_time = update.max_time
        job.roles.arbitrator = update.arbitrator
        job.whitelist_workers = update.whitelist_workers

        if update.amount != job.amount:
            if update.amount > job.amount:
                job.collateral_owed = 0
            elif self._grace_elapsed():
                job.collateral_owed = 0
            else:
                job.collateral_owed += job.amount - update.amount
            job.amount = update.amount

    def no_change(self) -> None:
        pass

    def completed(self) -> None:
        self._fire("close")

    def delivered(self) -> None:
        delivered = self._expect(JobDeliveredPayload)
        self.job.result_hash = delivered.result_hash
        self.effects.append(ReputationChange(self.job.roles.worker, up=1))

    def closed(self) -> None:
        self._fire("close")
        if self._grace_elapsed():
            self.job.collateral_owed = 0
        else:
            self.job.collateral_owed += self.job.amount

    def reopened(self) -> None:
        job = self.job
        self._fire("reopen")
        job.result_hash = ZERO_HASH
        job.timestamp = self.event.timestamp
        job.collateral_owed = max(0, job.collateral_owed - job.amount)

    def rated(self) -> None:
        rated = self._expect(JobRatedDetails)
        job = self.job
        job.rating = rated.rating
        self.effects.append(RatingApplied(job.roles.worker, rated.rating))
        self.effects.append(
            ReviewCreated(
                Review(
                    id=self.event.id,
                    user=job.roles.worker,
                    reviewer=job.roles.creator,
                    job_id=int(job.id),
                    rating=rated.rating,
                    text=rated.review,
                    timestamp=self.event.timestamp,
                )
            )
        )

    def refunded(self) -> None:
        job = self.job
        worker = job.roles.worker
        if _same_address(self.event.address, worker):
            job.allowed_workers = [a for a in job.allowed_workers if not _same_address(a, worker)]
            self.effects.append(ReputationChange(worker, down=1))
        job.roles.worker = ZERO_ADDRESS
        self._fire("reopen")
        job.escrow_id = 0

    def disputed(self) -> None:
        self.job.disputed = True

    def arbitrated(self) -> None:
        arbitrated = self._expect(JobArbitratedDetails)
        self._fire("close")
        self.job.collateral_owed += arbitrated.creator_amount
        self.effects.append(ArbitratorSettled(self.job.roles.arbitrator))

    def arbitration_refused(self) -> None:
        self.job.roles.arbitrator = ZERO_ADDRESS
        # The counter follows the already-cleared slot; kept as observed on chain
        # until product intent says it should charge the refusing arbitrator.
        self.effects.append(ArbitratorRefused(self.job.roles.arbitrator))

    def whitelist_added(self) -> None:
        address = self.event.address
        if not any(_same_address(a, address) for a in self.job.allowed_workers):
            self.job.allowed_workers.append(address)

    def whitelist_removed(self) -> None:
        address = self.event.address
        self.job.allowed_workers = [
            a for a in self.job.allowed_workers if not _same_address(a, address)
        ]

    def collateral_withdrawn(self) -> None:
        self.job.collateral_owed = 0


TRANSITIONS: dict[JobEventType, Callable[[_Transition], None]] = {
    JobEventType.CREATED: _Transition.created,
    JobEventType.TAKEN: _Transition.taken,
    JobEventType.PAID: _Transition.taken,
    JobEventType.UPDATED: _Transition.updated,
    JobEventType.SIGNED: _Transition.no_change,
    JobEventType.COMPLETED: _Transition.completed,
    JobEventType.DELIVERED: _Transition.delivered,
    JobEventType.CLOSED: _Transition.closed,
    JobEventType.REOPENED: _Transition.reopened,
    JobEventType.RATED: _Transition.rated,
    JobEventType.REFUNDED: _Transition.refunded,
    JobEventType.DISPUTED: _Transition.disputed,
    JobEventType.ARBITRATED: _Transition.arbitrated,
    JobEventType.ARBITRATOR_CHANGED: _Transition.no_change,
    JobEventType.ARBITRATION_REFUSED: _Transition.arbitration_refused,
    JobEventType.WHITELISTED_WORKER_ADDED: _Transition.whitelist_added,
    JobEventType.WHITELISTED_WORKER_REMOVED: _Transition.whitelist_removed,
    JobEventType.COLLATERAL_WITHDRAWN: _Transition.collateral_withdrawn,
    JobEventType.WORKER_MESSAGE: _Transition.no_change,
    JobEventType.OWNER_MESSAGE: _Transition.no_change,
}


def _new_job(event: JobEventRecord, created: JobCreatedDetails) -> Job:
    return Job(
        id=event.job_id,
        state=JobState.OPEN,
        roles=JobRoles(
            creator=event.address,
            worker=ZERO_ADDRESS,
            arbitrator=created.arbitrator,
        ),
        title=created.title,
        content_hash=created.content_hash,
        multiple_applicants=created.multiple_applicants,
        tags=list(created.tags),
        token=created.token,
        amount=created.amount,
        max_time=created.max_time,
        delivery_method=created.delivery_method,
        collateral_owed=0,
        escrow_id=0,
        result_hash=ZERO_HASH,
        rating=0,
        disputed=False,
        whitelist_workers=created.whitelist_workers,
        allowed_workers=[],
        timestamp=event.timestamp,
    )


def apply_job_event(
    job: Job | None,
    event: JobEventRecord,
    payload: DecodedJobPayload | None,
    grace_seconds: int = DEFAULT_GRACE_SECONDS,
) -> TransitionOutcome:
    """Apply one job event to a job snapshot.

    Args:
        job: Current job, or None if no Created event has been seen.
        event: The ledger record of the event.
        payload: The event payload as decoded by the codec.
        grace_seconds: Collateral grace window, measured from job.timestamp.

    Returns:
        The next job (a new object; ``job`` is left untouched) and the
        effects on users and arbitrators.

    Raises:
        JobNotFoundError: If the event needs an existing job and there is none.
        DecodeError: If the payload does not belong to the event kind.
    """
    try:
        kind = JobEventType(event.type)
    except ValueError:
        return TransitionOutcome(job=copy.deepcopy(job))

    if kind is JobEventType.CREATED:
        if job is not None:
            return TransitionOutcome(job=copy.deepcopy(job))
        if not isinstance(payload, JobCreatedDetails):
            raise DecodeError(kind.name, "expected JobCreatedDetails payload")
        return TransitionOutcome(job=_new_job(event, payload))

    if job is None:
        raise JobNotFoundError(event.job_id, kind.name)

    transition = _Transition(
        job=copy.deepcopy(job),
        event=event,
        kind=kind,
        payload=payload,
        grace_seconds=grace_seconds,
    )
    TRANSITIONS[kind](transition)
    return TransitionOutcome(job=transition.job, effects=tuple(transition.effects))
