"""Event codec: raw logs and job event payloads into typed values."""

from marketplace_indexer.codec.encoders import encode_job_payload, encode_log
from marketplace_indexer.codec.job_events import decode_job_event, decode_participant
from marketplace_indexer.codec.logs import (
    ContractDomain,
    DecodedLog,
    LogEventKind,
    decode_log,
    event_abi,
    resolve_topic,
)

__all__ = [
    "ContractDomain",
    "DecodedLog",
    "LogEventKind",
    "decode_job_event",
    "decode_log",
    "decode_participant",
    "encode_job_payload",
    "encode_log",
    "event_abi",
    "resolve_topic",
]
