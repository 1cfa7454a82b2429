"""Application services: ingestion and client-side decryption."""

from marketplace_indexer.services.decryption_service import (
    DecryptionReport,
    ResolvedContent,
    SessionDecryptionPipeline,
    StorePublicKeyResolver,
    publish_content,
)
from marketplace_indexer.services.ingestion_service import (
    BatchIngestor,
    Block,
    IndexerService,
    IngestResult,
    Log,
    LogOutcome,
)

__all__ = [
    "BatchIngestor",
    "Block",
    "DecryptionReport",
    "IndexerService",
    "IngestResult",
    "Log",
    "LogOutcome",
    "ResolvedContent",
    "SessionDecryptionPipeline",
    "StorePublicKeyResolver",
    "publish_content",
]
