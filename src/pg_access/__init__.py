# PgAccess - PostgreSQL Data Access Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""PgAccess - pooled PostgreSQL access and a positional-parameter SQL builder."""

from .core.config import DatabaseSettings, get_settings
from .core.database import (
    Database,
    PoolState,
    PoolStatus,
    QueryResult,
    close_db_pool,
    get_database,
    init_db_pool,
)
from .core.exceptions import DatabaseError, QueryBuilderError
from .core.query_builder import JoinType, SortDirection, SqlQueryBuilder

__version__ = "0.1.0"

__all__ = [
    "Database",
    "DatabaseError",
    "DatabaseSettings",
    "JoinType",
    "PoolState",
    "PoolStatus",
    "QueryBuilderError",
    "QueryResult",
    "SortDirection",
    "SqlQueryBuilder",
    "__version__",
    "close_db_pool",
    "get_database",
    "get_settings",
    "init_db_pool",
]
