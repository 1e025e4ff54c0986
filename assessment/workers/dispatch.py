from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from assessment.integrations.gateways import GatewayResult

logger = logging.getLogger(__name__)

# Anything with the ``BackgroundTasks.add_task`` signature.
Schedule = Callable[..., Any]


async def deliver(
    event_type: str,
    target_service: str,
    send: Callable[[dict[str, Any]], Awaitable[GatewayResult]],
    payload: dict[str, Any],
) -> None:
    """Single best-effort push. Failures are logged, never raised."""
    try:
        result = await send(payload)
    except Exception:  # noqa: BLE001
        logger.exception(f"Push failed event={event_type} target={target_service}")
        return

    if result.degraded:
        logger.warning(f"Push degraded event={event_type} target={target_service} reason={result.reason}")
    else:
        logger.info(f"Push delivered event={event_type} target={target_service}")


async def deliver_call(label: str, call: Callable[..., Awaitable[Any]], *args: Any) -> None:
    try:
        await call(*args)
    except Exception:  # noqa: BLE001
        logger.exception(f"Background call failed: {label}")


class TaskDispatcher:
    """Fire-and-forget scheduler for code that runs outside a request.

    Keeps a reference to every task until it finishes so it is not garbage collected mid-flight.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> None:
        task = asyncio.get_running_loop().create_task(func(*args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
