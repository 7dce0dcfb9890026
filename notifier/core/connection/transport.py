"""
Messaging transport capability.

The transport owns the actual socket to the messaging network. The
connection manager only drives it through this interface, so the protocol
implementation can live in a sidecar (see notifier.infra.gateway) or in a
test double.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union


class UpdateStatus(str, Enum):
    """Connection status reported by the transport."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


@dataclass
class ConnectionUpdate:
    """Connection state change pushed by the transport."""

    status: UpdateStatus
    status_code: Optional[int] = None
    message: Optional[str] = None
    identity: Optional[str] = None
    credentials: Optional[dict[str, Any]] = None


@dataclass
class PairingChallenge:
    """One-time QR payload that must be scanned to pair the device."""

    code: str


@dataclass
class TransportSession:
    """Open session returned when stored credentials are accepted."""

    identity: Optional[str] = None
    credentials: Optional[dict[str, Any]] = None


ConnectResult = Union[TransportSession, PairingChallenge]
UpdateCallback = Callable[[ConnectionUpdate], Awaitable[None]]
ChallengeCallback = Callable[[PairingChallenge], Awaitable[None]]


class MessagingTransport(ABC):
    """
    Capability interface for the messaging network.

    Callbacks are coroutine functions; the transport awaits them in order.
    """

    @abstractmethod
    async def connect(self, credentials: Optional[dict[str, Any]]) -> ConnectResult:
        """
        Open a session.

        Args:
            credentials: Stored credentials, or None to start pairing

        Returns:
            TransportSession when already paired, PairingChallenge otherwise

        Raises:
            CredentialsInvalidError: If the stored credentials are rejected
        """

    @abstractmethod
    async def send(self, address: str, content: str) -> None:
        """Send a text message to a network address."""

    @abstractmethod
    async def send_image(
        self, address: str, image_url: str, caption: Optional[str] = None
    ) -> None:
        """Send an image the network fetches from ``image_url``, with an optional caption."""

    @abstractmethod
    def on_connection_state_change(self, callback: UpdateCallback) -> None:
        """Register the connection update callback."""

    @abstractmethod
    def on_pairing_challenge(self, callback: ChallengeCallback) -> None:
        """Register the pairing challenge callback."""

    @abstractmethod
    async def logout(self) -> None:
        """Unpair the device from the network."""

    async def close(self) -> None:
        """Drop the socket without unpairing."""
