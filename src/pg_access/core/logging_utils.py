"""Central logging utilities for the data-access layer.

Key Features
------------
1. configure_logging(): idempotent initialization of the root logger.
2. get_logger(name): typed helper that always returns a configured logger.
3. get_context_logger(name, **context): logger adapter that renders bound
   context (e.g. ``service_context="Database"``) and per-call ``extra``
   fields as ``key=value`` pairs after the message.

Secrets must never be passed as context or ``extra`` values.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, MutableMapping
from typing import Any, Final

from beartype import beartype

__all__: Final = [
    "ContextLogger",
    "configure_logging",
    "get_context_logger",
    "get_logger",
]

_DEFAULT_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_is_configured: bool = False


@beartype
def configure_logging(
    *, level: int = logging.INFO, fmt: str = _DEFAULT_LOG_FORMAT
) -> None:
    """Configure the root logger exactly once.

    Calling this function multiple times is safe – configuration will only
    be applied on the first invocation.
    """
    global _is_configured
    if _is_configured:
        return

    logging.basicConfig(level=level, format=fmt)
    _is_configured = True


@beartype
def get_logger(name: str | None = None, *, level: int | None = None) -> logging.Logger:
    """Return a module-scoped logger that is guaranteed to be configured."""
    configure_logging()
    logger = logging.getLogger(name or "pg_access")
    if level is not None:
        logger.setLevel(level)
    return logger


def _render_fields(fields: Mapping[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items())


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter with bound context fields.

    ``logger.info("Pool created", extra={"host": "db"})`` is emitted as
    ``Pool created | service_context=Database host=db``. The same fields are
    also attached to the record so structured handlers can read them.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        call_extra = kwargs.get("extra") or {}
        fields = {**(self.extra or {}), **call_extra}
        kwargs["extra"] = {"context": fields}
        if fields:
            msg = f"{msg} | {_render_fields(fields)}"
        return msg, kwargs

    @beartype
    def child(self, **context: Any) -> ContextLogger:
        """Return a new adapter with additional bound context."""
        return ContextLogger(self.logger, {**(self.extra or {}), **context})


@beartype
def get_context_logger(name: str | None = None, **context: Any) -> ContextLogger:
    """Return a configured logger adapter bound to ``context``."""
    return ContextLogger(get_logger(name), context)
