"""Pydantic schemas for decoded job event payloads.

The seven ``details`` variants (Created, Updated, Signed, Rated, Disputed,
Arbitrated, Message) are stored verbatim in ``job_event.details``. Each one
carries a ``kind`` literal so the stored JSON can be parsed back into the
right class. Taken/Paid and Delivered payloads are decoded too, but they
only drive state and are not kept as details.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Details variants (persisted)
# ---------------------------------------------------------------------------


class JobCreatedDetails(_Payload):
    """Initial job post."""

    kind: Literal["created"] = "created"
    title: str
    content_hash: str
    multiple_applicants: bool
    tags: list[str]
    token: str
    amount: int
    max_time: int
    delivery_method: str
    arbitrator: str
    whitelist_workers: bool


class JobUpdatedDetails(_Payload):
    """Creator edit of an open job."""

    kind: Literal["updated"] = "updated"
    title: str
    content_hash: str
    tags: list[str]
    amount: int
    max_time: int
    arbitrator: str
    whitelist_workers: bool


class JobSignedDetails(_Payload):
    """Worker signature over a given job revision."""

    kind: Literal["signed"] = "signed"
    revision: int
    signature: str


class JobRatedDetails(_Payload):
    kind: Literal["rated"] = "rated"
    rating: int
    review: str


class JobDisputedDetails(_Payload):
    """Dispute opened by creator or worker.

    Attributes:
        session_key: The pair session key, wrapped for the arbitrator.
        content: Content hash of the dispute text, encrypted with session_key.
    """

    kind: Literal["disputed"] = "disputed"
    session_key: str
    content: str


class JobArbitratedDetails(_Payload):
    kind: Literal["arbitrated"] = "arbitrated"
    creator_share: int
    creator_amount: int
    worker_share: int
    worker_amount: int
    reason_hash: str


class JobMessageDetails(_Payload):
    """Thread message between a job's participants."""

    kind: Literal["message"] = "message"
    content_hash: str
    recipient: str


JobEventDetails = Annotated[
    JobCreatedDetails
    | JobUpdatedDetails
    | JobSignedDetails
    | JobRatedDetails
    | JobDisputedDetails
    | JobArbitratedDetails
    | JobMessageDetails,
    Field(discriminator="kind"),
]

DETAILS_ADAPTER: TypeAdapter[JobEventDetails] = TypeAdapter(JobEventDetails)

DETAIL_TYPES = (
    JobCreatedDetails,
    JobUpdatedDetails,
    JobSignedDetails,
    JobRatedDetails,
    JobDisputedDetails,
    JobArbitratedDetails,
    JobMessageDetails,
)


# ---------------------------------------------------------------------------
# State-only payloads (not persisted as details)
# ---------------------------------------------------------------------------


class JobTakenPayload(_Payload):
    kind: Literal["taken"] = "taken"
    escrow_id: int


class JobDeliveredPayload(_Payload):
    kind: Literal["delivered"] = "delivered"
    result_hash: str


DecodedJobPayload = (
    JobCreatedDetails
    | JobUpdatedDetails
    | JobSignedDetails
    | JobRatedDetails
    | JobDisputedDetails
    | JobArbitratedDetails
    | JobMessageDetails
    | JobTakenPayload
    | JobDeliveredPayload
)


def details_to_json(details: JobEventDetails | None) -> dict | None:
    """Serialize details for the job_event.details JSON column."""
    if details is None:
        return None
    return details.model_dump(mode="json")


def details_from_json(data: dict | None) -> JobEventDetails | None:
    """Parse a stored job_event.details value back into its variant."""
    if data is None:
        return None
    return DETAILS_ADAPTER.validate_python(data)
