"""
HTTP client for the messaging gateway.

The gateway is a sidecar that holds the actual WhatsApp Web socket and
exposes a small REST API per named session:
- POST /sessions/{name}/connect - Open the session (body: stored credentials)
- GET /sessions/{name}/status - Current status, QR payload, fresh credentials
- POST /sessions/{name}/messages - Send a text message
- POST /sessions/{name}/logout - Unpair the device

Status responses look like:
    {"status": "open", "identity": "5586...@s.whatsapp.net", "credentials": {...}}
    {"status": "pairing", "qr": "2@AbC..."}
    {"status": "close", "status_code": 401, "message": "Logged out"}
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from notifier.config import get_settings
from notifier.core.connection.transport import (
    ChallengeCallback,
    ConnectionUpdate,
    ConnectResult,
    MessagingTransport,
    PairingChallenge,
    TransportSession,
    UpdateCallback,
    UpdateStatus,
)
from notifier.core.errors import CredentialsInvalidError, DeliveryFailedError

logger = logging.getLogger(__name__)

PAIRING_STATUS = "pairing"


class GatewayError(Exception):
    """Raised when the gateway rejects a request or answers nonsense."""


class GatewayTransport(MessagingTransport):
    """
    MessagingTransport backed by the HTTP gateway.

    After connect() a watcher task polls the session status and turns
    changes into connection update and pairing challenge callbacks.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        session_name: Optional[str] = None,
        timeout: Optional[float] = None,
        status_interval: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize transport.

        Args:
            base_url: Gateway base URL (defaults to settings)
            session_name: Gateway session name (defaults to settings)
            timeout: Request timeout in seconds
            status_interval: Seconds between status polls
            client: Preconfigured HTTP client (tests)
        """
        settings = get_settings()
        self.base_url = base_url or settings.gateway_url
        self.session_name = session_name or settings.gateway_session
        self.timeout = timeout if timeout is not None else settings.gateway_timeout
        self.status_interval = (
            status_interval if status_interval is not None else settings.gateway_status_interval
        )
        self._client = client
        self._on_update: Optional[UpdateCallback] = None
        self._on_challenge: Optional[ChallengeCallback] = None
        self._watcher: Optional[asyncio.Task] = None
        self._last_status: Optional[str] = None
        self._last_qr: Optional[str] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    def _path(self, action: str) -> str:
        return f"/sessions/{self.session_name}/{action}"

    # === Callback registration ===

    def on_connection_state_change(self, callback: UpdateCallback) -> None:
        self._on_update = callback

    def on_pairing_challenge(self, callback: ChallengeCallback) -> None:
        self._on_challenge = callback

    # === Session ===

    async def connect(self, credentials: Optional[dict[str, Any]]) -> ConnectResult:
        """Open the gateway session.

        Returns:
            TransportSession if the credentials were accepted,
            PairingChallenge if a QR code must be scanned

        Raises:
            CredentialsInvalidError: If the gateway rejects the credentials
            GatewayError: If the gateway closes the session during connect
            httpx.HTTPError: If the gateway is unreachable
        """
        self._stop_watcher()
        self._last_status = None
        self._last_qr = None
        client = await self._get_client()

        response = await client.post(self._path("connect"), json={"credentials": credentials})
        if response.status_code == 401:
            raise CredentialsInvalidError(self._error_message(response))
        response.raise_for_status()

        data = await self._await_resolution(response.json())
        self._last_status = data.get("status")
        self._watcher = asyncio.create_task(self._watch())

        if data.get("status") == UpdateStatus.OPEN.value:
            return TransportSession(
                identity=data.get("identity"),
                credentials=data.get("credentials"),
            )
        self._last_qr = data["qr"]
        return PairingChallenge(code=data["qr"])

    async def send(self, address: str, content: str) -> None:
        """Send a text message.

        Raises:
            DeliveryFailedError: If the gateway refuses the message
        """
        await self._post_message(address, {"text": content})

    async def send_image(
        self, address: str, image_url: str, caption: Optional[str] = None
    ) -> None:
        """Send an image by URL; the gateway downloads it.

        Raises:
            DeliveryFailedError: If the gateway refuses the message
        """
        payload: dict[str, Any] = {"image": {"url": image_url}}
        if caption:
            payload["caption"] = caption
        await self._post_message(address, payload)

    async def _post_message(self, address: str, payload: dict[str, Any]) -> None:
        client = await self._get_client()
        response = await client.post(
            self._path("messages"),
            json={"to": address, **payload},
        )
        if response.is_error:
            raise DeliveryFailedError(
                f"Gateway refused message to {address}: {self._error_message(response)}"
            )
        logger.debug(f"Message accepted by gateway for {address}")

    async def logout(self) -> None:
        """Unpair the device and stop watching."""
        self._stop_watcher()
        client = await self._get_client()
        response = await client.post(self._path("logout"))
        response.raise_for_status()
        logger.info(f"Gateway session '{self.session_name}' logged out")

    async def close(self) -> None:
        """Stop watching and close HTTP client."""
        self._stop_watcher()
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_status(self) -> dict:
        """Fetch the raw session status."""
        client = await self._get_client()
        response = await client.get(self._path("status"))
        response.raise_for_status()
        return response.json()

    # === Status watching ===

    async def _await_resolution(self, data: dict) -> dict:
        """Poll until the session is open, pairing or closed."""
        deadline = asyncio.get_running_loop().time() + self.timeout
        while True:
            status = data.get("status")
            if status == UpdateStatus.OPEN.value:
                return data
            if status == PAIRING_STATUS and data.get("qr"):
                return data
            if status == UpdateStatus.CLOSE.value:
                if data.get("status_code") == 401:
                    raise CredentialsInvalidError(data.get("message") or "Logged out")
                raise GatewayError(data.get("message") or "Session closed while connecting")
            if asyncio.get_running_loop().time() >= deadline:
                raise GatewayError(f"Session still {status!r} after {self.timeout}s")
            await asyncio.sleep(self.status_interval)
            data = await self.get_status()

    async def _watch(self) -> None:
        """Translate status changes into callbacks until the session closes."""
        while True:
            await asyncio.sleep(self.status_interval)
            try:
                data = await self.get_status()
            except httpx.HTTPError as e:
                logger.warning(f"Gateway status check failed: {e}")
                await self._emit(
                    ConnectionUpdate(status=UpdateStatus.CLOSE, message=f"Gateway unreachable: {e}")
                )
                return

            qr = data.get("qr")
            if qr and qr != self._last_qr:
                self._last_qr = qr
                if self._on_challenge:
                    await self._on_challenge(PairingChallenge(code=qr))

            status = data.get("status")
            if status == self._last_status:
                continue
            self._last_status = status

            if status in {s.value for s in UpdateStatus}:
                await self._emit(
                    ConnectionUpdate(
                        status=UpdateStatus(status),
                        status_code=data.get("status_code"),
                        message=data.get("message"),
                        identity=data.get("identity"),
                        credentials=data.get("credentials"),
                    )
                )
            if status == UpdateStatus.CLOSE.value:
                return

    async def _emit(self, update: ConnectionUpdate) -> None:
        if self._on_update:
            await self._on_update(update)

    def _stop_watcher(self) -> None:
        task = self._watcher
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._watcher = None

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(data, dict):
            return data.get("message") or data.get("error") or f"HTTP {response.status_code}"
        return f"HTTP {response.status_code}"
