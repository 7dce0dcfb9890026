"""Serial dispatch of event batches with spacing between sends."""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from notifier.core.notifications.dispatcher import DispatchResult
from notifier.core.notifications.events import AppointmentEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[AppointmentEvent], Awaitable[DispatchResult]]
Sleeper = Callable[[float], Awaitable[None]]


async def dispatch_batch(
    handle: EventHandler,
    events: Iterable[AppointmentEvent],
    spacing: float,
    sleep: Optional[Sleeper] = None,
) -> list[DispatchResult]:
    """Dispatch events one at a time, pausing ``spacing`` seconds between them.

    A failing dispatch is logged and the batch continues.

    Returns:
        Results of the dispatches that returned, in order
    """
    sleep = sleep or asyncio.sleep
    results: list[DispatchResult] = []

    for index, event in enumerate(events):
        if index > 0 and spacing > 0:
            await sleep(spacing)
        try:
            result = await handle(event)
        except Exception as e:
            logger.error(f"Dispatch of {event!r} raised: {e}")
            continue

        if not result.delivered:
            reason = result.reason.value if result.reason else "unknown"
            logger.warning(f"{event.kind.value} for {event.appointment_id} failed: {reason}")
        results.append(result)

    return results
