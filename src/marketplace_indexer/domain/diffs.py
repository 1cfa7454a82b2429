"""Client diff engine: per-event field changes for a job timeline.

Replays a job's ledger through the same transition table the ingestor uses,
against a local snapshot that starts from a default Job, and reports which
fields each event changed. Nested fields are reported with dotted paths
(``roles.worker``).

Usage:
    diffs = compute_job_state_diffs(events, job_id="7")
    for item in diffs:
        print(item.event.type, [d.field for d in item.diffs])
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from marketplace_indexer.codec.job_events import decode_job_event
from marketplace_indexer.domain.entities import Job
from marketplace_indexer.domain.exceptions import DecodeError
from marketplace_indexer.domain.state_machine import DEFAULT_GRACE_SECONDS, apply_job_event

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from marketplace_indexer.domain.entities import JobEventRecord


@dataclass(frozen=True)
class FieldDiff:
    field: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class JobEventWithDiffs:
    """One timeline entry.

    Attributes:
        event: The ledger record.
        job: Job snapshot after this event (None until the job exists).
        diffs: Fields whose value changed, in Job field order.
        decode_error: Set when the payload could not be decoded; the
            snapshot is then carried over unchanged.
    """

    event: JobEventRecord
    job: Job | None
    diffs: tuple[FieldDiff, ...]
    decode_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.event.id,
            "type": self.event.type,
            "address": self.event.address,
            "timestamp": self.event.timestamp,
            "diffs": [[d.field, d.old_value, d.new_value] for d in self.diffs],
            "decode_error": self.decode_error,
        }


def _flatten(job: Job) -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in asdict(job).items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                flat[f"{key}.{sub_key}"] = sub_value
        else:
            flat[key] = value
    return flat


def diff_jobs(before: Job, after: Job) -> tuple[FieldDiff, ...]:
    """Field-level diff between two job snapshots."""
    old, new = _flatten(before), _flatten(after)
    return tuple(
        FieldDiff(field=name, old_value=old[name], new_value=value)
        for name, value in new.items()
        if old[name] != value
    )


class JobStateDiffs:
    """Lazy, restartable sequence of JobEventWithDiffs.

    Every ``iter()`` replays from the default job, so consumers may stop
    early and iterate again to get the same entries.
    """

    def __init__(
        self,
        events: Iterable[JobEventRecord],
        job_id: str,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self._job_id = job_id
        self._grace_seconds = grace_seconds
        self._events = tuple(
            sorted((e for e in events if e.job_id == job_id), key=lambda e: e.sort_key)
        )

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[JobEventWithDiffs]:
        default = Job(id=self._job_id)
        current: Job | None = None

        for event in self._events:
            try:
                payload = decode_job_event(event.type, event.data)
            except DecodeError as err:
                yield JobEventWithDiffs(event=event, job=current, diffs=(), decode_error=err.message)
                continue

            outcome = apply_job_event(current, event, payload, self._grace_seconds)
            after = outcome.job
            diffs = diff_jobs(current or default, after) if after is not None else ()
            yield JobEventWithDiffs(event=event, job=after, diffs=diffs)
            current = after

    def to_json(self) -> str:
        """Deterministic serialization; identical input yields identical bytes."""
        return json.dumps(
            [item.to_dict() for item in self],
            sort_keys=True,
            separators=(",", ":"),
        )


def compute_job_state_diffs(
    events: Iterable[JobEventRecord],
    job_id: str,
    grace_seconds: int = DEFAULT_GRACE_SECONDS,
) -> JobStateDiffs:
    """Build the diff sequence for one job's events."""
    return JobStateDiffs(events, job_id, grace_seconds)
