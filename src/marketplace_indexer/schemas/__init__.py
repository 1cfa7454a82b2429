"""Pydantic schemas for decoded on-chain payloads."""

from marketplace_indexer.schemas.events import (
    DETAIL_TYPES,
    DecodedJobPayload,
    JobArbitratedDetails,
    JobCreatedDetails,
    JobDeliveredPayload,
    JobDisputedDetails,
    JobEventDetails,
    JobMessageDetails,
    JobRatedDetails,
    JobSignedDetails,
    JobTakenPayload,
    JobUpdatedDetails,
    details_from_json,
    details_to_json,
)

__all__ = [
    "DETAIL_TYPES",
    "DecodedJobPayload",
    "JobArbitratedDetails",
    "JobCreatedDetails",
    "JobDeliveredPayload",
    "JobDisputedDetails",
    "JobEventDetails",
    "JobMessageDetails",
    "JobRatedDetails",
    "JobSignedDetails",
    "JobTakenPayload",
    "JobUpdatedDetails",
    "details_from_json",
    "details_to_json",
]
