import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideEffectResult:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


async def best_effort(description: str, awaitable: Awaitable[Any]) -> SideEffectResult:
    """Await a non-critical write; failures are logged and returned, never raised."""
    try:
        value = await awaitable
    except Exception as e:
        logger.error(f"{description} failed: {e}")
        return SideEffectResult(ok=False, error=e)
    return SideEffectResult(ok=True, value=value)


class SideChannel:
    """Background runner for best-effort writes that the response must not wait on."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, description: str, awaitable: Awaitable[Any]) -> "asyncio.Task[SideEffectResult]":
        task = asyncio.ensure_future(best_effort(description, awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
