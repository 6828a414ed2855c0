# PgAccess - PostgreSQL Data Access Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.
# SPDX-License-Identifier: AGPL-3.0-or-later
"""Delay policies for the startup connectivity probe."""

import random
from typing import Protocol, runtime_checkable

from attrs import field, frozen
from beartype import beartype

from .config import DatabaseSettings


@runtime_checkable
class RetryPolicy(Protocol):
    """Computes the pause (seconds) after a failed attempt (1-based)."""

    def delay_for(self, attempt: int) -> float: ...


@frozen
class FixedDelay:
    """Constant delay between attempts."""

    delay_seconds: float = field(default=10.0)

    @beartype
    def delay_for(self, attempt: int) -> float:
        return self.delay_seconds


@frozen
class ExponentialBackoff:
    """Doubling delay capped at ``max_delay_seconds``, with optional jitter."""

    base_delay_seconds: float = field(default=1.0)
    max_delay_seconds: float = field(default=60.0)
    multiplier: float = field(default=2.0)
    jitter: bool = field(default=False)

    @beartype
    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay_seconds * (self.multiplier ** max(0, attempt - 1))
        delay = min(delay, self.max_delay_seconds)
        if self.jitter:
            # full jitter: uniform in [0, delay]
            delay = random.uniform(0, delay)
        return delay


@beartype
def retry_policy_from_settings(settings: DatabaseSettings) -> RetryPolicy:
    """Build the probe policy selected by ``settings.retry_strategy``."""
    if settings.retry_strategy == "exponential":
        return ExponentialBackoff(
            base_delay_seconds=settings.retry_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )
    return FixedDelay(delay_seconds=settings.retry_delay_seconds)
