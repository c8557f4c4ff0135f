import asyncio
import logging
import re
import time
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


def now_ts() -> float:
    return time.time()


def sort_leaderboard(players: list[dict]) -> list[dict]:
    # stable: equal scores keep registration order
    return sorted(players, key=lambda p: -p.get("score", 0))


def slugify(username: str) -> str:
    return re.sub(r"\s+", "-", username.strip().lower())


def spawn(coro: Awaitable, pending: Set[asyncio.Task], label: str) -> asyncio.Task:
    """Run ``coro`` in the background, keeping a reference until it finishes.

    Failures are logged, never raised into the caller.
    """
    task = asyncio.ensure_future(coro)
    pending.add(task)

    def _done(t: asyncio.Task):
        pending.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error("%s failed", label, exc_info=exc)

    task.add_done_callback(_done)
    return task


async def drain(pending: Set[asyncio.Task]) -> None:
    while pending:
        await asyncio.gather(*list(pending), return_exceptions=True)
