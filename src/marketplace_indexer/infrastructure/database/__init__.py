"""Database infrastructure: engine, ORM models, and the SQL entity store."""

from marketplace_indexer.infrastructure.database.engine import (
    close_db,
    init_db,
    session_scope,
)
from marketplace_indexer.infrastructure.database.orm_models import (
    ArbitratorRow,
    Base,
    JobEventRow,
    JobRow,
    MarketplaceRow,
    ReviewRow,
    Uint256,
    UserRow,
)
from marketplace_indexer.infrastructure.database.repositories import SqlEntityStore

__all__ = [
    "ArbitratorRow",
    "Base",
    "JobEventRow",
    "JobRow",
    "MarketplaceRow",
    "ReviewRow",
    "SqlEntityStore",
    "Uint256",
    "UserRow",
    "close_db",
    "init_db",
    "session_scope",
]
