"""Connection observers used by the admin surface."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .manager import ConnectionObserver
from .state import ConnectionState
from .transport import PairingChallenge

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ChallengeBoard(ConnectionObserver):
    """
    Keeps the latest pairing challenge for display.

    Cleared as soon as the session connects, so a stale QR code is never
    shown to the operator.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._code: Optional[str] = None
        self._issued_at: Optional[datetime] = None

    @property
    def code(self) -> Optional[str]:
        """Raw payload of the latest challenge, if any."""
        return self._code

    def age_seconds(self) -> Optional[float]:
        """Seconds since the latest challenge was issued."""
        if self._issued_at is None:
            return None
        return (self._clock() - self._issued_at).total_seconds()

    async def on_pairing_challenge(self, challenge: PairingChallenge) -> None:
        self._code = challenge.code
        self._issued_at = self._clock()
        logger.info("Pairing challenge available at /connection/pairing")

    async def on_state_change(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self._code = None
            self._issued_at = None
