"""
Connection Manager.

Owns the single session to the messaging network: pairing, credential
persistence, disconnect classification and reconnection. One instance is
built at startup and handed to every consumer.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from notifier.config import get_settings
from notifier.core.errors import (
    CredentialsInvalidError,
    DeliveryFailedError,
    NotConnectedError,
    NotifierError,
)
from notifier.infra.credentials import CredentialStore
from .state import (
    LOGGED_OUT_STATUS,
    ConnectionEvent,
    ConnectionSession,
    ConnectionState,
    DisconnectReason,
    InvalidTransitionError,
    backoff_delay,
    classify_disconnect,
    is_in_flight,
    transition,
)
from .transport import (
    ConnectionUpdate,
    MessagingTransport,
    PairingChallenge,
    TransportSession,
    UpdateStatus,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ConnectionObserver:
    """
    Receives connection notifications.

    Subclasses override what they need; both hooks default to no-ops.
    """

    async def on_pairing_challenge(self, challenge: PairingChallenge) -> None:
        """Called once per issued pairing challenge."""

    async def on_state_change(self, state: ConnectionState) -> None:
        """Called after every state change."""


class ConnectionManager:
    """
    Lifecycle manager for the messaging session.

    Guarantees:
    - at most one connection attempt in flight (explicit flag plus an
      owned attempt task that forced re-pairing cancels)
    - every disconnect schedules a reconnect, none is fatal
    - credentials are wiped on logout, on repeated failures and on
      forced re-pairing, and the session object is replaced each time;
      a failed wipe keeps the store from being read until it succeeds
    """

    def __init__(
        self,
        transport: MessagingTransport,
        credential_store: CredentialStore,
        observers: Optional[Iterable[ConnectionObserver]] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        logged_out_delay: Optional[float] = None,
        restart_delay: Optional[float] = None,
        critical_delay: Optional[float] = None,
        send_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the manager.

        Args:
            transport: Messaging transport capability
            credential_store: Where pairing credentials are persisted
            observers: Receivers of pairing challenges and state changes
            max_retries: Transient failures before credentials are wiped
            base_delay: Base of the exponential backoff (seconds)
            max_delay: Backoff cap (seconds)
            logged_out_delay: Reconnect delay after a remote logout
            restart_delay: Reconnect delay after a post-pairing restart
            critical_delay: Reconnect delay after wiping corrupt credentials
            send_timeout: Maximum duration of a single send
            clock: Source of the current time
        """
        settings = get_settings()
        self._transport = transport
        self._credentials = credential_store
        self._observers: list[ConnectionObserver] = list(observers or [])
        self._max_retries = (
            max_retries if max_retries is not None else settings.max_connect_retries
        )
        self._base_delay = base_delay if base_delay is not None else settings.reconnect_base_delay
        self._max_delay = max_delay if max_delay is not None else settings.reconnect_max_delay
        self._logged_out_delay = (
            logged_out_delay if logged_out_delay is not None else settings.logged_out_delay
        )
        self._restart_delay = restart_delay if restart_delay is not None else settings.restart_delay
        self._critical_delay = (
            critical_delay if critical_delay is not None else settings.critical_delay
        )
        self._send_timeout = send_timeout if send_timeout is not None else settings.send_timeout
        self._clock = clock

        self._session = ConnectionSession()
        self._connecting = False
        self._resetting = False
        self._wipe_pending = False
        self._generation = 0
        self._attempt_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        transport.on_connection_state_change(self._handle_update)
        transport.on_pairing_challenge(self._handle_challenge)

    @property
    def session(self) -> ConnectionSession:
        """Current session snapshot (replaced on every credential wipe)."""
        return self._session

    @property
    def reconnect_pending(self) -> bool:
        """True while a reconnect timer is armed."""
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # === Lifecycle ===

    async def start(self) -> None:
        """Open the first connection."""
        logger.info("Starting messaging connection")
        await self.connect()

    async def connect(self) -> None:
        """Start a connection attempt unless one is already in flight.

        The attempt runs as an owned task so ``force_pairing`` and
        ``shutdown`` can cancel it; results of a superseded attempt are
        dropped.
        """
        if self._connecting or is_in_flight(self._session.state):
            logger.warning("Connection attempt already in progress")
            return

        self._connecting = True
        self._cancel_reconnect()
        await self._apply(ConnectionEvent.CONNECT_REQUESTED)

        self._generation += 1
        attempt = asyncio.create_task(
            self._attempt(self._generation), name="connection-attempt"
        )
        self._attempt_task = attempt
        await asyncio.wait({attempt})
        if self._attempt_task is attempt:
            self._attempt_task = None

    async def _attempt(self, generation: int) -> None:
        try:
            credentials = await self._load_credentials()
            result = await self._transport.connect(credentials)
        except CredentialsInvalidError as e:
            if self._is_stale(generation):
                return
            logger.warning(f"Stored credentials rejected: {e}")
            await self._on_closed(
                ConnectionUpdate(
                    status=UpdateStatus.CLOSE,
                    status_code=LOGGED_OUT_STATUS,
                    message=str(e),
                )
            )
            return
        except Exception as e:
            if self._is_stale(generation):
                return
            logger.error(f"Failed to open messaging session: {e}")
            await self._on_closed(
                ConnectionUpdate(status=UpdateStatus.CLOSE, message=str(e))
            )
            return

        if isinstance(result, PairingChallenge):
            await self._handle_challenge(result, generation)
        elif isinstance(result, TransportSession):
            await self._on_opened(result.identity, result.credentials, generation)

    async def force_pairing(self) -> None:
        """Drop the current pairing and start over with a fresh challenge."""
        logger.info("Forcing a new pairing")
        self._cancel_reconnect()
        self._resetting = True
        try:
            self._generation += 1
            await self._cancel_attempt()
            try:
                await self._transport.logout()
            except Exception as e:
                logger.warning(f"Logout failed during forced pairing: {e}")
            self._connecting = False
            await self._apply(ConnectionEvent.RESET)
            await self._wipe_credentials(reason=None)
        finally:
            self._resetting = False

        await self.connect()

    async def shutdown(self) -> None:
        """Cancel timers and the pending attempt, then close the transport."""
        logger.info("Shutting down messaging connection")
        self._cancel_reconnect()
        self._resetting = True
        self._generation += 1
        try:
            await self._cancel_attempt()
            await self._transport.close()
        except Exception as e:
            logger.warning(f"Error closing messaging transport: {e}")
        finally:
            self._connecting = False
            await self._apply(ConnectionEvent.RESET)
            self._resetting = False

    # === Send capability ===

    def is_connected(self) -> bool:
        """Check if the session can send messages."""
        return self._session.state is ConnectionState.CONNECTED

    async def send(self, address: str, content: str) -> None:
        """Send a text message through the live session.

        Args:
            address: Full network address (number + suffix)
            content: Message text

        Raises:
            NotConnectedError: If the session is not connected
            DeliveryFailedError: If the transport fails or times out
        """
        self._require_connected()
        await self._deliver(address, self._transport.send(address, content))

    async def send_image(
        self, address: str, image_url: str, caption: Optional[str] = None
    ) -> None:
        """Send an image by URL through the live session.

        Same errors as ``send``.
        """
        self._require_connected()
        await self._deliver(address, self._transport.send_image(address, image_url, caption))

    def _require_connected(self) -> None:
        if not self.is_connected():
            raise NotConnectedError(
                f"Messaging session is {self._session.state.value}, cannot send"
            )

    async def _deliver(self, address: str, sending: Awaitable[None]) -> None:
        try:
            await asyncio.wait_for(sending, timeout=self._send_timeout)
        except asyncio.TimeoutError as e:
            raise DeliveryFailedError(
                f"Send to {address} timed out after {self._send_timeout}s"
            ) from e
        except NotifierError:
            raise
        except Exception as e:
            raise DeliveryFailedError(f"Send to {address} failed: {e}") from e

    def status(self) -> dict:
        """Operator-facing snapshot of the connection."""
        data = self._session.to_dict()
        data["connected"] = self.is_connected()
        data["reconnect_pending"] = self.reconnect_pending
        challenge_at = self._session.last_challenge_at
        data["last_challenge_age_seconds"] = (
            (self._clock() - challenge_at).total_seconds() if challenge_at else None
        )
        return data

    # === Transport callbacks ===

    async def _handle_update(self, update: ConnectionUpdate) -> None:
        """Route a transport connection update."""
        if self._resetting:
            logger.debug(f"Ignoring {update.status.value} update during reset")
            return

        if update.status is UpdateStatus.OPEN:
            await self._on_opened(update.identity, update.credentials)
        elif update.status is UpdateStatus.CLOSE:
            await self._on_closed(update)
        else:
            logger.info("Connecting to messaging network...")
            if update.credentials:
                await self._save_credentials(update.credentials)

    async def _handle_challenge(
        self, challenge: PairingChallenge, generation: Optional[int] = None
    ) -> None:
        """Publish a pairing challenge exactly once."""
        if self._resetting or self._is_stale(generation):
            return
        if challenge.code == self._session.last_challenge:
            logger.debug("Duplicate pairing challenge ignored")
            return
        if not await self._apply(ConnectionEvent.CHALLENGE_ISSUED):
            return

        self._session.last_challenge = challenge.code
        self._session.last_challenge_at = self._clock()
        self._session.retry_count = 0
        logger.info("Pairing challenge issued, waiting for scan")

        for observer in self._observers:
            try:
                await observer.on_pairing_challenge(challenge)
            except Exception as e:
                logger.error(f"Pairing observer {observer!r} failed: {e}")

    async def _on_opened(
        self,
        identity: Optional[str],
        credentials: Optional[dict],
        generation: Optional[int] = None,
    ) -> None:
        if self._is_stale(generation):
            logger.info("Discarding session opened by a superseded attempt")
            return
        if credentials:
            await self._save_credentials(credentials)

        if self._session.state is ConnectionState.CONNECTED:
            self._session.paired_identity = identity or self._session.paired_identity
            return
        if not await self._apply(ConnectionEvent.OPENED):
            return

        self._connecting = False
        self._session.retry_count = 0
        self._session.last_failure_reason = None
        self._session.paired_identity = identity
        self._session.last_challenge = None
        logger.info(f"Messaging session connected as {identity or 'unknown'}")

    async def _on_closed(self, update: ConnectionUpdate) -> None:
        if not self._connecting and not is_in_flight(self._session.state):
            logger.debug(f"Stale close ignored in state {self._session.state.value}")
            return

        self._connecting = False
        reason = classify_disconnect(
            update.status_code,
            update.message,
            self._session.retry_count,
            self._max_retries,
        )
        await self._apply(ConnectionEvent.CLOSED)
        self._session.last_failure_reason = reason
        logger.warning(
            f"Messaging connection closed: {update.message or 'unknown'} "
            f"(code: {update.status_code}, reason: {reason.value})"
        )

        if reason is DisconnectReason.LOGGED_OUT:
            logger.info("Logged out remotely, wiping credentials")
            await self._wipe_credentials(reason)
            delay = self._logged_out_delay
        elif reason is DisconnectReason.REPAIRING_RESTART:
            logger.info("Restart requested after pairing, keeping credentials")
            self._session.retry_count = 0
            delay = self._restart_delay
        elif reason is DisconnectReason.CRITICAL:
            logger.error(
                f"Connection failed after {self._max_retries} attempts, "
                "credentials may be corrupt; wiping"
            )
            await self._wipe_credentials(reason)
            delay = self._critical_delay
        else:
            self._session.retry_count += 1
            delay = backoff_delay(
                self._session.retry_count, self._base_delay, self._max_delay
            )
            logger.info(
                f"Attempt {self._session.retry_count}/{self._max_retries} - "
                f"reconnecting in {delay:.1f}s"
            )

        self._schedule_reconnect(delay)

    # === Internals ===

    async def _apply(self, event: ConnectionEvent) -> bool:
        """Run the transition function and notify observers on change."""
        previous = self._session.state
        try:
            new_state = transition(previous, event)
        except InvalidTransitionError as e:
            logger.warning(f"Ignoring connection event: {e}")
            return False

        if new_state is not previous:
            self._session.state = new_state
            logger.debug(f"Connection state {previous.value} -> {new_state.value}")
            for observer in self._observers:
                try:
                    await observer.on_state_change(new_state)
                except Exception as e:
                    logger.error(f"State observer {observer!r} failed: {e}")
        return True

    def _is_stale(self, generation: Optional[int]) -> bool:
        """True when a result belongs to an attempt that was superseded."""
        return generation is not None and generation != self._generation

    async def _cancel_attempt(self) -> None:
        """Cancel the attempt task and wait until it has unwound."""
        task, self._attempt_task = self._attempt_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    async def _load_credentials(self) -> Optional[dict]:
        """Credentials for the next attempt.

        While a wipe is outstanding the store is not read; the wipe is
        retried and the attempt pairs from scratch whatever the outcome.
        """
        if self._wipe_pending:
            try:
                await self._credentials.wipe()
                self._wipe_pending = False
            except Exception as e:
                logger.error(f"Credential wipe still failing, pairing without them: {e}")
            return None

        credentials = await self._credentials.load()
        if credentials:
            logger.info("Stored credentials found, reconnecting")
        else:
            logger.info("No stored credentials, a pairing challenge will be issued")
        return credentials

    async def _wipe_credentials(self, reason: Optional[DisconnectReason]) -> None:
        """Wipe stored credentials and replace the session object.

        A failed wipe is remembered; the store is not read again until the
        wipe succeeds or new credentials overwrite the old ones.
        """
        try:
            await self._credentials.wipe()
            self._wipe_pending = False
        except Exception as e:
            logger.error(f"Failed to wipe credentials, will retry before reconnecting: {e}")
            self._wipe_pending = True

        self._session = ConnectionSession(
            state=self._session.state,
            last_failure_reason=reason,
        )
        await self._apply(ConnectionEvent.CREDENTIALS_WIPED)

    async def _save_credentials(self, credentials: dict) -> None:
        try:
            await self._credentials.save(credentials)
            self._wipe_pending = False
        except Exception as e:
            logger.error(f"Failed to persist credentials: {e}")

    def _schedule_reconnect(self, delay: float) -> None:
        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None
