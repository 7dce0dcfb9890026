"""Connection state machine and disconnect classification."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Set


class ConnectionState(str, Enum):
    """States of the messaging session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    BACKOFF_WAIT = "backoff_wait"


class ConnectionEvent(str, Enum):
    """Inputs to the transition function."""

    CONNECT_REQUESTED = "connect_requested"
    CHALLENGE_ISSUED = "challenge_issued"
    OPENED = "opened"
    CLOSED = "closed"
    CREDENTIALS_WIPED = "credentials_wiped"
    RESET = "reset"


class DisconnectReason(str, Enum):
    """Classified cause of a closed connection."""

    LOGGED_OUT = "logged_out"
    REPAIRING_RESTART = "repairing_restart"
    CRITICAL = "critical"
    TRANSIENT = "transient"


# Status codes reported by the messaging network on close
LOGGED_OUT_STATUS = 401
RESTART_REQUIRED_STATUS = 515
STREAM_ERRORED_MARKER = "Stream Errored"


TRANSITIONS: dict[ConnectionState, dict[ConnectionEvent, ConnectionState]] = {
    ConnectionState.DISCONNECTED: {
        ConnectionEvent.CONNECT_REQUESTED: ConnectionState.CONNECTING,
        ConnectionEvent.CREDENTIALS_WIPED: ConnectionState.DISCONNECTED,
    },
    ConnectionState.CONNECTING: {
        ConnectionEvent.CHALLENGE_ISSUED: ConnectionState.AWAITING_PAIRING,
        ConnectionEvent.OPENED: ConnectionState.CONNECTED,
        ConnectionEvent.CLOSED: ConnectionState.BACKOFF_WAIT,
    },
    ConnectionState.AWAITING_PAIRING: {
        # The network refreshes the QR code periodically
        ConnectionEvent.CHALLENGE_ISSUED: ConnectionState.AWAITING_PAIRING,
        ConnectionEvent.OPENED: ConnectionState.CONNECTED,
        ConnectionEvent.CLOSED: ConnectionState.BACKOFF_WAIT,
    },
    ConnectionState.CONNECTED: {
        ConnectionEvent.CLOSED: ConnectionState.BACKOFF_WAIT,
    },
    ConnectionState.BACKOFF_WAIT: {
        ConnectionEvent.CONNECT_REQUESTED: ConnectionState.CONNECTING,
        ConnectionEvent.CREDENTIALS_WIPED: ConnectionState.BACKOFF_WAIT,
    },
}


class InvalidTransitionError(Exception):
    """Raised when an event is not accepted in the current state."""

    def __init__(self, state: ConnectionState, event: ConnectionEvent):
        super().__init__(f"Event {event.value} not allowed in state {state.value}")
        self.state = state
        self.event = event


def transition(state: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    """Return the state reached by applying ``event`` in ``state``.

    RESET is accepted everywhere and always lands on DISCONNECTED.

    Raises:
        InvalidTransitionError: If the event is not valid for the state
    """
    if event is ConnectionEvent.RESET:
        return ConnectionState.DISCONNECTED
    try:
        return TRANSITIONS[state][event]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


def get_valid_events(state: ConnectionState) -> Set[ConnectionEvent]:
    """Get all events accepted in a state."""
    return set(TRANSITIONS.get(state, {})) | {ConnectionEvent.RESET}


def is_in_flight(state: ConnectionState) -> bool:
    """True while an attempt is running or a session is live."""
    return state in {
        ConnectionState.CONNECTING,
        ConnectionState.AWAITING_PAIRING,
        ConnectionState.CONNECTED,
    }


def classify_disconnect(
    status_code: Optional[int],
    message: Optional[str],
    retry_count: int,
    max_retries: int,
) -> DisconnectReason:
    """Classify why a connection closed.

    Args:
        status_code: Status code reported by the transport, if any
        message: Error message reported by the transport, if any
        retry_count: Consecutive transient failures seen so far
        max_retries: Failures tolerated before credentials are distrusted

    Returns:
        DisconnectReason driving the recovery branch
    """
    if status_code == LOGGED_OUT_STATUS:
        return DisconnectReason.LOGGED_OUT
    if status_code == RESTART_REQUIRED_STATUS or (
        message and STREAM_ERRORED_MARKER in message
    ):
        return DisconnectReason.REPAIRING_RESTART
    if retry_count >= max_retries:
        return DisconnectReason.CRITICAL
    return DisconnectReason.TRANSIENT


def backoff_delay(retry_count: int, base: float, cap: float) -> float:
    """Exponential reconnect delay: ``base * 2 ** retry_count``, capped."""
    return min(base * (2 ** retry_count), cap)


@dataclass
class ConnectionSession:
    """
    The single live (or attempting) link to the messaging network.

    Replaced by a fresh instance whenever credentials are wiped; never
    carried across a re-pair.
    """

    state: ConnectionState = ConnectionState.DISCONNECTED
    retry_count: int = 0
    last_failure_reason: Optional[DisconnectReason] = None
    paired_identity: Optional[str] = None
    last_challenge: Optional[str] = None
    last_challenge_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "state": self.state.value,
            "retry_count": self.retry_count,
            "last_failure_reason": (
                self.last_failure_reason.value if self.last_failure_reason else None
            ),
            "paired_identity": self.paired_identity,
        }
