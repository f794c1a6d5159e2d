import asyncio
import logging
from collections import deque
from functools import partial
from typing import Awaitable, Callable, Deque, Set, Tuple

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    """
    Runs post-commit side effects (emails, receipts) as detached asyncio tasks.

    A failing side effect is logged and kept in recent_failures; it never
    propagates into the request that scheduled it.
    """

    def __init__(self, max_failures: int = 100):
        self._tasks: Set[asyncio.Task] = set()
        self.recent_failures: Deque[Tuple[str, BaseException]] = deque(maxlen=max_failures)

    def dispatch(self, description: str, func: Callable[..., Awaitable], *args, **kwargs) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(f"No running event loop, dropping side effect: {description}")
            return
        task = loop.create_task(self._run(description, func, *args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_done, description))

    async def _run(self, description: str, func: Callable[..., Awaitable], *args, **kwargs):
        logger.info(f"Running side effect: {description}")
        await func(*args, **kwargs)

    def _on_done(self, description: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Side effect cancelled: {description}")
            return
        exc = task.exception()
        if exc is not None:
            self.recent_failures.append((description, exc))
            logger.error(f"Side effect failed: {description}: {exc}", exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled side effect to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
