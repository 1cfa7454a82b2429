"""Encoders for job event payloads and contract logs.

The inverse of job_events.py and logs.py, used by the client when it posts
messages or opens disputes, and to build log fixtures for replays.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from eth_abi import encode as abi_encode

from marketplace_indexer.codec.job_events import (
    ARBITRATED_TYPES,
    CREATED_TYPES,
    UPDATED_TYPES,
)
from marketplace_indexer.codec.logs import event_abi
from marketplace_indexer.schemas.events import (
    JobArbitratedDetails,
    JobCreatedDetails,
    JobDeliveredPayload,
    JobDisputedDetails,
    JobMessageDetails,
    JobRatedDetails,
    JobSignedDetails,
    JobTakenPayload,
    JobUpdatedDetails,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from marketplace_indexer.codec.logs import LogEventKind
    from marketplace_indexer.schemas.events import DecodedJobPayload


def _raw(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def encode_job_payload(payload: DecodedJobPayload) -> bytes:
    """Serialize a typed payload into the ``data_`` bytes of a job event."""
    match payload:
        case JobCreatedDetails():
            return abi_encode(
                CREATED_TYPES,
                [
                    payload.title, _raw(payload.content_hash), payload.multiple_applicants,
                    payload.tags, payload.token, payload.amount, payload.max_time,
                    payload.delivery_method, payload.arbitrator, payload.whitelist_workers,
                ],
            )
        case JobUpdatedDetails():
            return abi_encode(
                UPDATED_TYPES,
                [
                    payload.title, _raw(payload.content_hash), payload.tags, payload.amount,
                    payload.max_time, payload.arbitrator, payload.whitelist_workers,
                ],
            )
        case JobTakenPayload():
            return payload.escrow_id.to_bytes(32, "big")
        case JobSignedDetails():
            return payload.revision.to_bytes(2, "big") + _raw(payload.signature)
        case JobDeliveredPayload():
            return _raw(payload.result_hash)
        case JobRatedDetails():
            return bytes([payload.rating]) + payload.review.encode("utf-8")
        case JobDisputedDetails():
            return _raw(payload.session_key) + _raw(payload.content)
        case JobArbitratedDetails():
            return abi_encode(
                ARBITRATED_TYPES,
                [
                    payload.creator_share, payload.creator_amount, payload.worker_share,
                    payload.worker_amount, _raw(payload.reason_hash),
                ],
            )
        case JobMessageDetails():
            return _raw(payload.content_hash) + _raw(payload.recipient)
    raise TypeError(f"Cannot encode {type(payload).__name__}")


def encode_log(kind: LogEventKind, args: Mapping[str, Any]) -> tuple[tuple[str, ...], bytes]:
    """Build (topics, data) for an event, as a node would emit it."""
    abi = event_abi(kind)
    topics = [abi.topic]
    plain_types: list[str] = []
    plain_values: list[Any] = []
    for param in abi.params:
        if param.indexed:
            topics.append("0x" + abi_encode([param.abi_type], [args[param.name]]).hex())
        else:
            plain_types.append(param.abi_type)
            plain_values.append(args[param.name])
    data = abi_encode(plain_types, plain_values) if plain_types else b""
    return tuple(topics), data
