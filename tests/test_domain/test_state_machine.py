"""Tests for the job lifecycle and the job event transition table.

These tests verify that:
    1. The lifecycle accepts every event from every state.
    2. Each event kind has exactly the documented effect.
    3. Collateral bookkeeping follows the grace window from job.timestamp.
    4. apply_job_event never mutates its input.
"""

from __future__ import annotations

import copy
import itertools

import pytest

from marketplace_indexer.codec.job_events import decode_job_event
from marketplace_indexer.domain.entities import ZERO_ADDRESS, ZERO_HASH, Job
from marketplace_indexer.domain.enums import JobEventType, JobState
from marketplace_indexer.domain.exceptions import DecodeError, JobNotFoundError
from marketplace_indexer.domain.state_machine import (
    LIFECYCLE_EVENTS,
    TRANSITIONS,
    ArbitratorRefused,
    ArbitratorSettled,
    JobLifecycle,
    RatingApplied,
    ReputationChange,
    ReviewCreated,
    apply_job_event,
    next_state,
)
from marketplace_indexer.schemas.events import (
    JobArbitratedDetails,
    JobDeliveredPayload,
    JobRatedDetails,
    JobTakenPayload,
    JobUpdatedDetails,
)

T0 = 1_700_000_000
HOUR = 3600
CREATOR = "0x" + "33" * 20
WORKER = "0x" + "44" * 20
ARBITRATOR = "0x" + "55" * 20
OUTSIDER = "0x" + "66" * 20


def apply(job, event):
    """Decode the record's payload and apply it, like the ingestor does."""
    return apply_job_event(job, event, decode_job_event(event.type, event.data))


def update_to(amount: int, **overrides) -> JobUpdatedDetails:
    values = {
        "title": "Design a logo",
        "content_hash": "0x" + "ab" * 32,
        "tags": ["design"],
        "amount": amount,
        "max_time": 3600,
        "arbitrator": ZERO_ADDRESS,
        "whitelist_workers": False,
    }
    values.update(overrides)
    return JobUpdatedDetails(**values)


@pytest.fixture
def open_job(events) -> Job:
    return apply(None, events.created()).job


@pytest.fixture
def taken_job(events, open_job) -> Job:
    taken = events.make(JobEventType.TAKEN, JobTakenPayload(escrow_id=5), address=WORKER)
    return apply(open_job, taken).job


class TestLifecycle:
    def test_starts_open(self) -> None:
        assert JobLifecycle().job_state is JobState.OPEN

    def test_resumes_from_state(self) -> None:
        sm = JobLifecycle(JobState.TAKEN)
        sm.close()
        assert sm.job_state is JobState.CLOSED

    @pytest.mark.parametrize(
        ("state", "event", "expected"),
        [
            (state, event, expected)
            for state in JobState
            for event, expected in (
                ("take", JobState.TAKEN),
                ("close", JobState.CLOSED),
                ("reopen", JobState.OPEN),
            )
        ],
    )
    def test_every_event_accepted_from_every_state(
        self, state: JobState, event: str, expected: JobState
    ) -> None:
        assert next_state(state, event) is expected

    def test_lifecycle_events_are_the_machine_events(self) -> None:
        sm = JobLifecycle()
        assert all(callable(getattr(sm, name)) for name in LIFECYCLE_EVENTS)
        assert LIFECYCLE_EVENTS == {"take", "close", "reopen"}

    def test_unknown_event(self) -> None:
        with pytest.raises(ValueError, match="Unknown lifecycle event"):
            next_state(JobState.OPEN, "explode")


class TestDispatchTable:
    def test_every_event_type_has_a_transition(self) -> None:
        assert set(TRANSITIONS) == set(JobEventType)


class TestCreated:
    def test_initializes_job(self, events) -> None:
        job = apply(None, events.created(arbitrator=ARBITRATOR)).job

        assert job.id == "1"
        assert job.state is JobState.OPEN
        assert job.roles.creator == CREATOR
        assert job.roles.worker == ZERO_ADDRESS
        assert job.roles.arbitrator == ARBITRATOR
        assert job.amount == 100
        assert job.collateral_owed == 0
        assert job.escrow_id == 0
        assert job.rating == 0
        assert job.result_hash == ZERO_HASH
        assert job.timestamp == T0

    def test_existing_job_is_kept(self, events, open_job) -> None:
        again = events.created(title="Something else", amount=999)
        assert apply(open_job, again).job == open_job

    def test_other_kinds_need_a_job(self, events) -> None:
        with pytest.raises(JobNotFoundError) as exc_info:
            apply(None, events.make(JobEventType.COMPLETED))
        assert exc_info.value.job_id == "1"
        assert exc_info.value.code == "JOB_NOT_FOUND"

    @pytest.mark.parametrize("kind", [k for k in JobEventType if k is not JobEventType.CREATED])
    def test_blanket_precondition(self, events, kind: JobEventType) -> None:
        with pytest.raises(JobNotFoundError):
            apply_job_event(None, events.make(kind), None)


class TestTakenAndPaid:
    @pytest.mark.parametrize("kind", [JobEventType.TAKEN, JobEventType.PAID])
    def test_assigns_worker(self, events, open_job, kind: JobEventType) -> None:
        event = events.make(kind, JobTakenPayload(escrow_id=9), address=WORKER)
        job = apply(open_job, event).job
        assert job.roles.worker == WORKER
        assert job.state is JobState.TAKEN
        assert job.escrow_id == 9

    def test_wrong_payload_type(self, events, open_job) -> None:
        event = events.make(JobEventType.TAKEN, address=WORKER)
        with pytest.raises(DecodeError):
            apply_job_event(open_job, event, JobDeliveredPayload(result_hash=ZERO_HASH))


class TestUpdated:
    def test_overwrites_post_fields(self, events, open_job) -> None:
        update = update_to(
            100, title="Renamed", tags=["x"], max_time=99, arbitrator=ARBITRATOR,
            whitelist_workers=True,
        )
        job = apply(open_job, events.make(JobEventType.UPDATED, update)).job
        assert job.title == "Renamed"
        assert job.tags == ["x"]
        assert job.max_time == 99
        assert job.roles.arbitrator == ARBITRATOR
        assert job.whitelist_workers is True
        assert job.amount == 100
        assert job.collateral_owed == 0

    @pytest.mark.parametrize("prior_collateral", [0, 7, 10**40])
    def test_raise_clears_collateral(self, events, open_job, prior_collateral: int) -> None:
        open_job.collateral_owed = prior_collateral
        event = events.make(JobEventType.UPDATED, update_to(150), timestamp=T0 + HOUR)
        job = apply(open_job, event).job
        assert job.collateral_owed == 0
        assert job.amount == 150

    def test_lower_inside_grace_adds_difference(self, events, open_job) -> None:
        open_job.collateral_owed = 5
        event = events.make(JobEventType.UPDATED, update_to(40), timestamp=T0 + 10 * HOUR)
        job = apply(open_job, event).job
        assert job.collateral_owed == 5 + 60
        assert job.amount == 40

    def test_lower_after_grace_clears(self, events, open_job) -> None:
        open_job.collateral_owed = 5
        event = events.make(JobEventType.UPDATED, update_to(40), timestamp=T0 + 24 * HOUR)
        assert apply(open_job, event).job.collateral_owed == 0

    def test_same_amount_keeps_collateral(self, events, open_job) -> None:
        open_job.collateral_owed = 5
        event = events.make(JobEventType.UPDATED, update_to(100), timestamp=T0 + 30 * HOUR)
        assert apply(open_job, event).job.collateral_owed == 5


class TestClosedAndCompleted:
    def test_completed_closes(self, events, taken_job) -> None:
        job = apply(taken_job, events.make(JobEventType.COMPLETED)).job
        assert job.state is JobState.CLOSED
        assert job.collateral_owed == 0

    def test_closed_inside_grace_owes_amount(self, events, open_job) -> None:
        open_job.collateral_owed = 3
        job = apply(open_job, events.make(JobEventType.CLOSED, timestamp=T0 + HOUR)).job
        assert job.state is JobState.CLOSED
        assert job.collateral_owed == 103

    def test_closed_after_grace_clears(self, events, open_job) -> None:
        open_job.collateral_owed = 3
        job = apply(open_job, events.make(JobEventType.CLOSED, timestamp=T0 + 25 * HOUR)).job
        assert job.collateral_owed == 0


class TestReopened:
    def test_resets_and_releases(self, events, open_job) -> None:
        closed = apply(open_job, events.make(JobEventType.CLOSED, timestamp=T0 + HOUR)).job
        closed.result_hash = "0x" + "12" * 32
        job = apply(closed, events.make(JobEventType.REOPENED, timestamp=T0 + 2 * HOUR)).job
        assert job.state is JobState.OPEN
        assert job.result_hash == ZERO_HASH
        assert job.timestamp == T0 + 2 * HOUR
        assert job.collateral_owed == 0

    def test_release_never_goes_negative(self, events, open_job) -> None:
        open_job.collateral_owed = 30
        job = apply(open_job, events.make(JobEventType.REOPENED)).job
        assert job.collateral_owed == 0

    def test_reopen_restarts_grace_window(self, events, open_job) -> None:
        reopened = apply(open_job, events.make(JobEventType.REOPENED, timestamp=T0 + 48 * HOUR)).job
        job = apply(reopened, events.make(JobEventType.CLOSED, timestamp=T0 + 50 * HOUR)).job
        assert job.collateral_owed == 100


class TestDeliveredAndRated:
    def test_delivered(self, events, taken_job) -> None:
        result = "0x" + "0d" * 32
        outcome = apply(
            taken_job,
            events.make(JobEventType.DELIVERED, JobDeliveredPayload(result_hash=result), address=WORKER),
        )
        assert outcome.job.result_hash == result
        assert outcome.effects == (ReputationChange(WORKER, up=1),)

    def test_rated(self, events, taken_job) -> None:
        event = events.make(JobEventType.RATED, JobRatedDetails(rating=4, review="good"))
        outcome = apply(taken_job, event)

        assert outcome.job.rating == 4
        assert outcome.job.state is JobState.TAKEN
        rating, review = outcome.effects
        assert rating == RatingApplied(WORKER, 4)
        assert isinstance(review, ReviewCreated)
        assert review.review.id == event.id
        assert review.review.user == WORKER
        assert review.review.reviewer == CREATOR
        assert review.review.job_id == 1
        assert review.review.text == "good"


class TestRefunded:
    def test_worker_refund_penalizes(self, events, taken_job) -> None:
        taken_job.allowed_workers = [WORKER, OUTSIDER]
        outcome = apply(taken_job, events.make(JobEventType.REFUNDED, address=WORKER))
        job = outcome.job
        assert job.roles.worker == ZERO_ADDRESS
        assert job.state is JobState.OPEN
        assert job.escrow_id == 0
        assert job.allowed_workers == [OUTSIDER]
        assert outcome.effects == (ReputationChange(WORKER, down=1),)

    def test_creator_refund_has_no_penalty(self, events, taken_job) -> None:
        taken_job.allowed_workers = [WORKER]
        outcome = apply(taken_job, events.make(JobEventType.REFUNDED, address=CREATOR))
        assert outcome.job.allowed_workers == [WORKER]
        assert outcome.effects == ()
        assert outcome.job.roles.worker == ZERO_ADDRESS


class TestArbitration:
    def test_disputed(self, events, taken_job) -> None:
        payload = b"\x01" * 40 + b"\x02" * 32
        assert apply(taken_job, events.make(JobEventType.DISPUTED, payload)).job.disputed is True

    def test_arbitrated(self, events, taken_job) -> None:
        taken_job.roles.arbitrator = ARBITRATOR
        taken_job.collateral_owed = 10
        details = JobArbitratedDetails(
            creator_share=3000, creator_amount=30, worker_share=7000, worker_amount=70,
            reason_hash=ZERO_HASH,
        )
        outcome = apply(taken_job, events.make(JobEventType.ARBITRATED, details, address=ARBITRATOR))
        assert outcome.job.state is JobState.CLOSED
        assert outcome.job.collateral_owed == 40
        assert outcome.effects == (ArbitratorSettled(ARBITRATOR),)

    def test_refusal_charges_cleared_slot(self, events, taken_job) -> None:
        taken_job.roles.arbitrator = ARBITRATOR
        event = events.make(JobEventType.ARBITRATION_REFUSED, address=ARBITRATOR)
        outcome = apply(taken_job, event)
        assert outcome.job.roles.arbitrator == ZERO_ADDRESS
        assert outcome.effects == (ArbitratorRefused(ZERO_ADDRESS),)

    def test_arbitrator_changed_is_recorded_only(self, events, taken_job) -> None:
        outcome = apply(taken_job, events.make(JobEventType.ARBITRATOR_CHANGED))
        assert outcome.job == taken_job
        assert outcome.effects == ()


class TestWhitelistAndCollateral:
    def test_add_is_idempotent(self, events, open_job) -> None:
        add = JobEventType.WHITELISTED_WORKER_ADDED
        job = apply(open_job, events.make(add, address=WORKER)).job
        job = apply(job, events.make(add, address=WORKER)).job
        assert job.allowed_workers == [WORKER]

    def test_remove_filters_all(self, events, open_job) -> None:
        open_job.allowed_workers = [WORKER, OUTSIDER, WORKER]
        event = events.make(JobEventType.WHITELISTED_WORKER_REMOVED, address=WORKER)
        assert apply(open_job, event).job.allowed_workers == [OUTSIDER]

    def test_collateral_withdrawn(self, events, open_job) -> None:
        open_job.collateral_owed = 77
        job = apply(open_job, events.make(JobEventType.COLLATERAL_WITHDRAWN)).job
        assert job.collateral_owed == 0

    @pytest.mark.parametrize(
        "kind", [JobEventType.SIGNED, JobEventType.OWNER_MESSAGE, JobEventType.WORKER_MESSAGE]
    )
    def test_audit_only_kinds(self, events, open_job, kind: JobEventType) -> None:
        payload = b"\x00\x01" + b"\x09" * 64 if kind is JobEventType.SIGNED else b"\x01" * 52
        assert apply(open_job, events.make(kind, payload)).job == open_job


class TestPurity:
    def test_input_job_untouched(self, events, taken_job) -> None:
        taken_job.allowed_workers = [WORKER]
        before = copy.deepcopy(taken_job)
        apply(taken_job, events.make(JobEventType.REFUNDED, address=WORKER))
        assert taken_job == before

    def test_unknown_event_type_returns_copy(self, events, open_job) -> None:
        outcome = apply_job_event(open_job, events.make(42), None)
        assert outcome.job == open_job
        assert outcome.job is not open_job
        assert outcome.effects == ()

    def test_replay_is_deterministic(self, events) -> None:
        ledger = [
            events.created(),
            events.make(JobEventType.TAKEN, JobTakenPayload(escrow_id=5), address=WORKER),
            events.make(JobEventType.UPDATED, update_to(40), timestamp=T0 + HOUR),
            events.make(JobEventType.CLOSED, timestamp=T0 + 2 * HOUR),
            events.make(JobEventType.REOPENED, timestamp=T0 + 3 * HOUR),
        ]

        def replay() -> Job:
            job = None
            for event in ledger:
                job = apply(job, event).job
            return job

        assert replay() == replay()


class TestScenarios:
    def test_created_taken_delivered_rated(self, events) -> None:
        ledger = [
            events.created(amount=100, max_time=3600),
            events.make(JobEventType.TAKEN, JobTakenPayload(escrow_id=5), address=WORKER),
            events.make(
                JobEventType.DELIVERED,
                JobDeliveredPayload(result_hash="0x" + "cc" * 32),
                address=WORKER,
            ),
            events.make(JobEventType.RATED, JobRatedDetails(rating=4, review="good")),
        ]
        job, effects = None, []
        for event in ledger:
            outcome = apply(job, event)
            job = outcome.job
            effects.extend(outcome.effects)

        assert job.state is JobState.TAKEN
        assert job.escrow_id == 5
        assert job.result_hash == "0x" + "cc" * 32
        assert ReputationChange(WORKER, up=1) in effects
        assert RatingApplied(WORKER, 4) in effects
        assert sum(isinstance(e, ReviewCreated) for e in effects) == 1

    def test_update_then_close_measured_from_creation(self, events) -> None:
        job = apply(None, events.created(amount=100)).job
        job = apply(
            job, events.make(JobEventType.UPDATED, update_to(40), timestamp=T0 + 10 * HOUR)
        ).job
        assert job.collateral_owed == 60

        job = apply(job, events.make(JobEventType.CLOSED, timestamp=T0 + 30 * HOUR)).job
        assert job.collateral_owed == 0


class TestCollateralProperties:
    @pytest.mark.parametrize(
        ("old", "new", "prior", "elapsed"),
        list(itertools.product([10, 100, 10**30], [1, 50, 10**31], [0, 9, 10**35], [0, 23, 24, 90])),
    )
    def test_updated_rule(self, events, old: int, new: int, prior: int, elapsed: int) -> None:
        job = apply(None, events.created(amount=old)).job
        job.collateral_owed = prior
        event = events.make(JobEventType.UPDATED, update_to(new), timestamp=T0 + elapsed * HOUR)
        after = apply(job, event).job

        if new > old:
            assert after.collateral_owed == 0
        elif new < old and elapsed < 24:
            assert after.collateral_owed == prior + (old - new)
        elif new < old:
            assert after.collateral_owed == 0
        else:
            assert after.collateral_owed == prior
        assert after.amount == new
