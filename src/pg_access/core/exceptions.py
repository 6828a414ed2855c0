# PgAccess - PostgreSQL Data Access Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.
# SPDX-License-Identifier: AGPL-3.0-or-later
"""Exception hierarchy for the data-access layer.

Every database failure surfaces as a :class:`DatabaseError` subclass carrying
the operation that raised it (``instance``) and the underlying driver error
(``cause``). Subclasses only narrow the kind so callers can tell a missing
pool apart from a failed statement without parsing messages.
"""

from typing import Any
from uuid import uuid4

from beartype import beartype


class DatabaseError(Exception):
    """Base error for pool, query and transaction failures."""

    errcode: str = "db-00002"
    error_type: str = "DatabaseError"

    def __init__(
        self,
        message: str,
        instance: str = "",
        *,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize database error.

        Args:
            message: Human readable description.
            instance: Operation label where the error occurred,
                e.g. ``"Database.query"``.
            cause: Underlying driver error, if any.
        """
        self.id = str(uuid4())
        self.message = message
        self.instance = instance
        self.cause = cause
        super().__init__(message)

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Convert to an error payload suitable for an API boundary."""
        payload: dict[str, Any] = {
            "id": self.id,
            "errcode": self.errcode,
            "type": self.error_type,
            "message": self.message,
            "instance": self.instance,
        }
        if self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload


class DatabaseConfigurationError(DatabaseError):
    """Database settings were not provided."""

    error_type = "DatabaseConfigurationError"


class PoolNotInitializedError(DatabaseError):
    """An operation was attempted before the pool became ready."""

    error_type = "PoolNotInitializedError"


class DatabaseConnectionError(DatabaseError):
    """The database could not be reached (pool creation, acquire or probe)."""

    error_type = "DatabaseConnectionError"


class QueryExecutionError(DatabaseError):
    """A single statement failed against a live pool."""

    error_type = "QueryExecutionError"


class TransactionError(DatabaseError):
    """A transaction was rolled back."""

    error_type = "TransactionError"


class QueryBuilderError(ValueError):
    """The statement builder was used incorrectly."""
