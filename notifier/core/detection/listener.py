"""
Push-based change detection over PostgreSQL LISTEN/NOTIFY.

The appointments trigger (notifier.infra.database) publishes a JSON payload
for every insert and update:

    {"op": "INSERT", "id": "...", "status": "pending"}
    {"op": "UPDATE", "id": "...", "status": "cancelled", "old_status": "confirmed"}

A dedicated asyncpg connection listens on the channel. When the connection
drops, the hosting loop waits and subscribes again.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import asyncpg

from notifier.config import get_settings
from notifier.core.notifications.dispatcher import DispatchResult
from notifier.core.notifications.events import (
    AppointmentCancelled,
    AppointmentCreated,
    AppointmentEvent,
)
from notifier.models.database import AppointmentStatus
from .batch import EventHandler, Sleeper, dispatch_batch

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class ChangeNotification:
    """Decoded trigger payload."""

    op: str
    appointment_id: uuid.UUID
    status: Optional[str] = None
    old_status: Optional[str] = None

    @classmethod
    def parse(cls, payload: str) -> "ChangeNotification":
        """Decode a NOTIFY payload.

        Raises:
            ValueError: If the payload is not a valid change notification
        """
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"Payload is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("Payload is not an object")

        op = data.get("op")
        if op not in ("INSERT", "UPDATE"):
            raise ValueError(f"Unsupported operation: {op!r}")

        try:
            appointment_id = uuid.UUID(str(data.get("id")))
        except ValueError as e:
            raise ValueError(f"Invalid appointment id: {data.get('id')!r}") from e

        return cls(
            op=op,
            appointment_id=appointment_id,
            status=data.get("status"),
            old_status=data.get("old_status"),
        )


def events_from_change(change: ChangeNotification) -> list[AppointmentEvent]:
    """Map a change to the events it implies.

    - INSERT: AppointmentCreated
    - UPDATE into cancelled from anything else: AppointmentCancelled
    - everything else: nothing
    """
    cancelled = AppointmentStatus.CANCELLED.value

    if change.op == "INSERT":
        return [AppointmentCreated(change.appointment_id)]
    if change.op == "UPDATE" and change.status == cancelled and change.old_status != cancelled:
        return [AppointmentCancelled(change.appointment_id)]
    return []


class AppointmentChangeListener:
    """Subscribes to appointment changes and dispatches the resulting events."""

    def __init__(
        self,
        handle: EventHandler,
        dsn: Optional[str] = None,
        channel: Optional[str] = None,
        settle_delay: Optional[float] = None,
        resubscribe_delay: Optional[float] = None,
        connect: Optional[Connector] = None,
        sleep: Optional[Sleeper] = None,
    ):
        settings = get_settings()
        self._handle = handle
        self._dsn = dsn or settings.database_url_sync
        self._channel = channel or settings.notify_channel
        self._settle_delay = settle_delay if settle_delay is not None else settings.settle_delay
        self._resubscribe_delay = (
            resubscribe_delay if resubscribe_delay is not None else settings.resubscribe_delay
        )
        self._connect = connect or asyncpg.connect
        self._sleep = sleep or asyncio.sleep
        self._pending: set[asyncio.Task] = set()

    async def process(self, payload: str) -> list[DispatchResult]:
        """Handle one NOTIFY payload: parse, settle, dispatch."""
        try:
            change = ChangeNotification.parse(payload)
        except ValueError as e:
            logger.warning(f"Dropping malformed change payload: {e}")
            return []

        events = events_from_change(change)
        if not events:
            logger.debug(f"No notification for {change.op} on {change.appointment_id}")
            return []

        # Related rows from the same booking may land right after the insert
        if self._settle_delay > 0:
            await self._sleep(self._settle_delay)
        return await dispatch_batch(self._handle, events, spacing=0, sleep=self._sleep)

    async def run(self) -> None:
        """Listen forever, resubscribing after failures, until cancelled."""
        try:
            while True:
                try:
                    await self.listen_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Change subscription failed: {e}")
                logger.info(f"Resubscribing to '{self._channel}' in {self._resubscribe_delay}s")
                await self._sleep(self._resubscribe_delay)
        finally:
            for task in list(self._pending):
                task.cancel()

    async def listen_once(self) -> None:
        """Hold one subscription until its connection terminates."""
        connection = await self._connect(self._dsn)
        terminated = asyncio.Event()
        connection.add_termination_listener(lambda _conn: terminated.set())

        try:
            await connection.add_listener(self._channel, self._on_notification)
            logger.info(f"Listening for appointment changes on '{self._channel}'")
            await terminated.wait()
            logger.warning("Change subscription connection terminated")
        finally:
            if not connection.is_closed():
                await connection.close()

    def _on_notification(self, connection, pid: int, channel: str, payload: str) -> None:
        task = asyncio.create_task(self.process(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
