"""Thread offloading for the blocking dulwich and requests calls made by the engine."""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Bounds concurrent object-store reads; None means unbounded
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 8) -> None:
    """Create the read semaphore for the running event loop.

    Called at the start of each sync attempt with
    ``SyncConfig.max_parallel_reads``.
    """
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.debug("Blob read concurrency limited to %d", max_parallel)


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await ``func(*args, **kwargs)`` on the default thread pool.

    Example:
        head = await run_sync(repo.resolve_ref, "HEAD")
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Like ``run_sync``, but holds the read semaphore while *func* runs."""
    if _semaphore is None:
        return await run_sync(func, *args, **kwargs)
    async with _semaphore:
        return await run_sync(func, *args, **kwargs)


async def gather_limited(coros: Sequence[Coroutine[Any, Any, T]]) -> list[T]:
    """Await *coros* concurrently and return their results in input order.

    The coroutines are expected to go through ``run_sync_limited``; the
    first exception raised propagates.
    """
    if not coros:
        return []
    return list(await asyncio.gather(*coros))
