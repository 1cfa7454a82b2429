"""Decoders for job event payloads (the ``data_`` field of a JobEvent log).

Each JobEventType that carries a payload has exactly one decoder. Decoders
are pure: they only look at the bytes and raise DecodeError when the
payload is shorter than the layout requires or otherwise malformed.

Layouts:
    Created      ABI (string, bytes32, bool, string[], address, uint256,
                      uint32, string, address, bool)
    Updated      ABI (string, bytes32, string[], uint256, uint32, address, bool)
    Taken/Paid   big-endian escrow id, 1..32 bytes
    Signed       uint16 revision | signature
    Delivered    bytes32 result hash
    Rated        uint8 rating | utf-8 review
    Disputed     40-byte wrapped session key | content hash
    Arbitrated   ABI (uint16, uint256, uint16, uint256, bytes32)
    Messages     bytes32 content hash | 20-byte recipient
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from marketplace_indexer.domain.enums import JobEventType
from marketplace_indexer.domain.exceptions import DecodeError
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
    from collections.abc import Callable

    from marketplace_indexer.schemas.events import DecodedJobPayload

# AES key wrap (RFC 3394) of a 32-byte key adds one 8-byte block.
WRAPPED_SESSION_KEY_LENGTH = 40

CREATED_TYPES = [
    "string", "bytes32", "bool", "string[]", "address",
    "uint256", "uint32", "string", "address", "bool",
]
UPDATED_TYPES = ["string", "bytes32", "string[]", "uint256", "uint32", "address", "bool"]
ARBITRATED_TYPES = ["uint16", "uint256", "uint16", "uint256", "bytes32"]


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def _require(kind: JobEventType, payload: bytes, min_length: int) -> None:
    if len(payload) < min_length:
        raise DecodeError(
            kind.name,
            f"payload is {len(payload)} bytes, at least {min_length} required",
        )


def _abi(kind: JobEventType, types: list[str], payload: bytes) -> tuple:
    _require(kind, payload, 32 * len(types))
    try:
        return abi_decode(types, payload)
    except (DecodingError, UnicodeDecodeError, ValueError, OverflowError) as err:
        raise DecodeError(kind.name, str(err)) from err


def decode_participant(raw: bytes) -> str:
    """Render the ``address_`` field of a job event.

    Participants are 20-byte addresses (sometimes left-padded to 32 bytes).
    Anything else is kept as raw hex so it is still recorded.
    """
    if len(raw) == 32 and raw[:12] == b"\x00" * 12:
        raw = raw[12:]
    if len(raw) == 20:
        return Web3.to_checksum_address(raw)
    return _hex(raw)


# ---------------------------------------------------------------------------
# Per-kind decoders
# ---------------------------------------------------------------------------


def _decode_created(payload: bytes) -> JobCreatedDetails:
    (
        title, content_hash, multiple_applicants, tags, token,
        amount, max_time, delivery_method, arbitrator, whitelist_workers,
    ) = _abi(JobEventType.CREATED, CREATED_TYPES, payload)
    return JobCreatedDetails(
        title=title,
        content_hash=_hex(content_hash),
        multiple_applicants=multiple_applicants,
        tags=list(tags),
        token=Web3.to_checksum_address(token),
        amount=amount,
        max_time=max_time,
        delivery_method=delivery_method,
        arbitrator=Web3.to_checksum_address(arbitrator),
        whitelist_workers=whitelist_workers,
    )


def _decode_updated(payload: bytes) -> JobUpdatedDetails:
    title, content_hash, tags, amount, max_time, arbitrator, whitelist_workers = _abi(
        JobEventType.UPDATED, UPDATED_TYPES, payload
    )
    return JobUpdatedDetails(
        title=title,
        content_hash=_hex(content_hash),
        tags=list(tags),
        amount=amount,
        max_time=max_time,
        arbitrator=Web3.to_checksum_address(arbitrator),
        whitelist_workers=whitelist_workers,
    )


def _escrow_decoder(kind: JobEventType) -> Callable[[bytes], JobTakenPayload]:
    def _decode(payload: bytes) -> JobTakenPayload:
        _require(kind, payload, 1)
        if len(payload) > 32:
            raise DecodeError(kind.name, f"escrow id is {len(payload)} bytes, at most 32 allowed")
        return JobTakenPayload(escrow_id=int.from_bytes(payload, "big"))

    return _decode


def _decode_signed(payload: bytes) -> JobSignedDetails:
    _require(JobEventType.SIGNED, payload, 2)
    return JobSignedDetails(
        revision=int.from_bytes(payload[:2], "big"),
        signature=_hex(payload[2:]),
    )


def _decode_delivered(payload: bytes) -> JobDeliveredPayload:
    _require(JobEventType.DELIVERED, payload, 32)
    return JobDeliveredPayload(result_hash=_hex(payload))


def _decode_rated(payload: bytes) -> JobRatedDetails:
    _require(JobEventType.RATED, payload, 2)
    try:
        review = payload[1:].decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecodeError(JobEventType.RATED.name, "review is not valid utf-8") from err
    return JobRatedDetails(rating=payload[0], review=review)


def _decode_disputed(payload: bytes) -> JobDisputedDetails:
    _require(JobEventType.DISPUTED, payload, WRAPPED_SESSION_KEY_LENGTH + 1)
    return JobDisputedDetails(
        session_key=_hex(payload[:WRAPPED_SESSION_KEY_LENGTH]),
        content=_hex(payload[WRAPPED_SESSION_KEY_LENGTH:]),
    )


def _decode_arbitrated(payload: bytes) -> JobArbitratedDetails:
    creator_share, creator_amount, worker_share, worker_amount, reason_hash = _abi(
        JobEventType.ARBITRATED, ARBITRATED_TYPES, payload
    )
    return JobArbitratedDetails(
        creator_share=creator_share,
        creator_amount=creator_amount,
        worker_share=worker_share,
        worker_amount=worker_amount,
        reason_hash=_hex(reason_hash),
    )


def _message_decoder(kind: JobEventType) -> Callable[[bytes], JobMessageDetails]:
    def _decode(payload: bytes) -> JobMessageDetails:
        _require(kind, payload, 52)
        return JobMessageDetails(
            content_hash=_hex(payload[:32]),
            recipient=Web3.to_checksum_address(payload[32:52]),
        )

    return _decode


_DECODERS: dict[JobEventType, Callable[[bytes], DecodedJobPayload]] = {
    JobEventType.CREATED: _decode_created,
    JobEventType.TAKEN: _escrow_decoder(JobEventType.TAKEN),
    JobEventType.PAID: _escrow_decoder(JobEventType.PAID),
    JobEventType.UPDATED: _decode_updated,
    JobEventType.SIGNED: _decode_signed,
    JobEventType.DELIVERED: _decode_delivered,
    JobEventType.RATED: _decode_rated,
    JobEventType.DISPUTED: _decode_disputed,
    JobEventType.ARBITRATED: _decode_arbitrated,
    JobEventType.OWNER_MESSAGE: _message_decoder(JobEventType.OWNER_MESSAGE),
    JobEventType.WORKER_MESSAGE: _message_decoder(JobEventType.WORKER_MESSAGE),
}


def decode_job_event(event_type: int, payload: bytes) -> DecodedJobPayload | None:
    """Decode a job event payload.

    Args:
        event_type: Raw JobEventType value from the log.
        payload: The event's ``data_`` bytes.

    Returns:
        The typed payload, or None for kinds that carry no payload
        (and for event types this indexer does not know).

    Raises:
        DecodeError: If the payload does not match the kind's layout.
    """
    try:
        kind = JobEventType(event_type)
    except ValueError:
        return None
    decoder = _DECODERS.get(kind)
    if decoder is None:
        return None
    return decoder(payload)
