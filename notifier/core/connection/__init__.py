"""
Connection Module

Lifecycle management for the single messaging session.

Usage:
    from notifier.core.connection import ConnectionManager

    manager = ConnectionManager(transport, credential_store)
    await manager.start()
    await manager.send("558698053279@s.whatsapp.net", "Olá!")
"""

from notifier.core.connection.state import (
    ConnectionEvent,
    ConnectionSession,
    ConnectionState,
    DisconnectReason,
    InvalidTransitionError,
    backoff_delay,
    classify_disconnect,
    transition,
)
from notifier.core.connection.transport import (
    ConnectionUpdate,
    MessagingTransport,
    PairingChallenge,
    TransportSession,
    UpdateStatus,
)
from notifier.core.connection.manager import ConnectionManager, ConnectionObserver
from notifier.core.connection.observers import ChallengeBoard

__all__ = [
    # State machine
    "ConnectionEvent",
    "ConnectionSession",
    "ConnectionState",
    "DisconnectReason",
    "InvalidTransitionError",
    "backoff_delay",
    "classify_disconnect",
    "transition",
    # Transport capability
    "ConnectionUpdate",
    "MessagingTransport",
    "PairingChallenge",
    "TransportSession",
    "UpdateStatus",
    # Manager
    "ConnectionManager",
    "ConnectionObserver",
    "ChallengeBoard",
]
