"""Async utilities for bridging blocking sync-store calls to async MCP handlers."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Module-level semaphore, initialized at server startup
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 5) -> None:
    """Initialize the concurrency semaphore. Call once at server startup."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info(
        "Sync operation semaphore initialized: max_parallel=%d",
        max_parallel,
    )


def reset_semaphore() -> None:
    """Drop the semaphore (used on shutdown and in tests)."""
    global _semaphore
    _semaphore = None


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a thread without blocking the event loop.

    Does not acquire the semaphore.

    Example:
        state = await run_sync(store.get_sync_state, "blog_post")
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a thread, bounded by the semaphore.

    Falls back to unbounded if the semaphore is not initialized.
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)

