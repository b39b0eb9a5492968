"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication settings for the router."""

    backend: str = "memory"
    ttl_seconds: int = 15
    max_entries: int = 10_000


@dataclass(frozen=True)
class SessionConfig:
    """Session expiry settings."""

    max_inactive_seconds: int = 1800
    expire_check_seconds: int = 60


@dataclass(frozen=True)
class PoolConfig:
    """Worker pool sizing; ``max_pending=None`` queues without limit."""

    size: int = 100
    max_pending: Optional[int] = None
