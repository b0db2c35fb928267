"""Totality guards for analysis stages.

The engine must never let an exception cross its boundary: each stage is
wrapped so that a failure is logged and replaced by that stage's empty
artifact. Pattern passes are bounded by a per-category match cap so that
pathological inputs (thousands of quote marks) cannot blow up runtime.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Iterable, Iterator
from typing import Any, TypeVar

from manuscript_intel.core.logging import get_logger, stage_var

logger = get_logger(__name__)

T = TypeVar("T")


def guarded(stage: str, fallback: Callable[[], T]) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator: run a stage, falling back to ``fallback()`` on any exception.

    Args:
        stage: Stage name bound into log context (e.g. "structure", "style").
        fallback: Zero-argument factory for the stage's empty artifact.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            token = stage_var.set(stage)
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                logger.exception(
                    "stage_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return fallback()
            finally:
                stage_var.reset(token)

        return wrapper

    return decorator


def capped(items: Iterable[T], limit: int, category: str) -> Iterator[T]:
    """Yield at most ``limit`` items, logging when the source is truncated."""
    for count, item in enumerate(items):
        if count >= limit:
            logger.warning("match_cap_reached", category=category, limit=limit)
            return
        yield item
