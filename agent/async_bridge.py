"""Sync-to-async bridge.

Single source of truth for running the async agent loop from synchronous
callers (``AIAgent.chat`` and scripts).
"""

import asyncio
import concurrent.futures


def run_async(coro, timeout: float = None):
    """Run an async coroutine from a sync context.

    If the current thread already has a running event loop (e.g. inside a
    notebook or another async application), a disposable thread is used so
    asyncio.run() can create its own loop without conflicting.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(asyncio.run, coro)
            return future.result(timeout=timeout)
    return asyncio.run(coro)
