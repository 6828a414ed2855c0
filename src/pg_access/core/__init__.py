# PgAccess - PostgreSQL Data Access Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Core infrastructure components: settings, logging, pool manager, SQL builder."""

from .config import DatabaseSettings, get_settings
from .database import Database, get_database
from .query_builder import SqlQueryBuilder

__all__ = ["get_settings", "DatabaseSettings", "Database", "get_database", "SqlQueryBuilder"]
