"""Domain exceptions for the marketplace indexer.

Recoverable errors (decode, key resolution, content) are caught where they
happen and turned into structured results. Precondition violations propagate
and abort the whole ingestion batch.
"""

from __future__ import annotations


class IndexerError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "INDEXER_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Codec Errors ---


class DecodeError(IndexerError):
    """Raised when a log or job event payload cannot be decoded.

    Example: a Rated payload of a single byte (rating without review).
    """

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(
            message=f"Cannot decode {kind}: {reason}",
            code="DECODE_ERROR",
        )
        self.kind = kind
        self.reason = reason


# --- Precondition Errors (fatal for a batch) ---


class JobNotFoundError(IndexerError):
    """Raised when an event references a job with no prior Created event."""

    def __init__(self, job_id: str, event_type: str) -> None:
        super().__init__(
            message=f"Job {job_id} must be created before {event_type} can be applied",
            code="JOB_NOT_FOUND",
        )
        self.job_id = job_id
        self.event_type = event_type


class EntityNotFoundError(IndexerError):
    """Raised when a counterpart user or arbitrator was never registered."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(
            message=f"{kind} not found: {entity_id}",
            code="ENTITY_NOT_FOUND",
        )
        self.kind = kind
        self.entity_id = entity_id


class BatchAbortedError(IndexerError):
    """Raised by the ingestor when a fatal error stops a batch.

    Nothing from the batch has been persisted; the caller retries from the
    same starting block once the cause is fixed upstream.
    """

    def __init__(self, log_id: str, block_height: int, cause: IndexerError) -> None:
        super().__init__(
            message=f"Batch aborted at log {log_id} (block {block_height}): {cause.message}",
            code="BATCH_ABORTED",
        )
        self.log_id = log_id
        self.block_height = block_height
        self.cause = cause


# --- Client-side Errors (recoverable, reported per pair / per event) ---


class KeyResolutionError(IndexerError):
    """A counterpart with no registered public key.

    Built by the decryption pipeline to describe the failure it reports for
    that counterpart; it is never raised out of the pipeline.
    """

    def __init__(self, address: str) -> None:
        super().__init__(
            message=f"No public key registered for {address}",
            code="KEY_RESOLUTION_FAILED",
        )
        self.address = address


class ContentUnavailableError(IndexerError):
    """Raised when content-addressed storage cannot return a blob."""

    def __init__(self, content_hash: str, reason: str = "") -> None:
        super().__init__(
            message=f"Content unavailable: {content_hash} {reason}".strip(),
            code="CONTENT_UNAVAILABLE",
        )
        self.content_hash = content_hash


class DecryptionError(IndexerError):
    """Raised when a blob or wrapped key does not decrypt with the given key."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Decryption failed: {reason}", code="DECRYPTION_FAILED")
