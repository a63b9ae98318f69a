"""Utility exports for concurrency helpers."""

from nexus_workforce.utils.concurrency import (
    CancellationToken,
    KeyedLocks,
    maybe_await,
    run_with_timeout,
)

__all__ = ["CancellationToken", "KeyedLocks", "maybe_await", "run_with_timeout"]
