"""
Pairing Credential Storage

Persists the opaque credential blob produced by the messaging transport
after pairing. Two backends:
- FileCredentialStore: JSON file inside an auth directory (default)
- RedisCredentialStore: single namespaced Redis key
"""

import asyncio
import json
import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from redis.exceptions import RedisError

from notifier.config import get_settings
from notifier.infra.redis import delete_key, namespaced, read_json, write_json

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Raised when credentials cannot be persisted or wiped."""


class CredentialStore(ABC):
    """Load/save/wipe contract used by the connection manager."""

    @abstractmethod
    async def load(self) -> Optional[dict[str, Any]]:
        """Return stored credentials or None."""

    @abstractmethod
    async def save(self, credentials: dict[str, Any]) -> None:
        """Persist credentials, replacing previous ones."""

    @abstractmethod
    async def wipe(self) -> None:
        """Remove stored credentials."""


class FileCredentialStore(CredentialStore):
    """
    Credentials kept as ``creds.json`` inside an auth directory.

    Wiping removes the whole directory; a failed removal is retried once
    after a short pause (files may still be held open by a closing socket).
    """

    FILE_NAME = "creds.json"

    def __init__(self, auth_dir: Optional[str] = None, retry_delay: float = 1.0):
        self.auth_dir = Path(auth_dir or get_settings().auth_dir)
        self.retry_delay = retry_delay

    @property
    def path(self) -> Path:
        return self.auth_dir / self.FILE_NAME

    async def load(self) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(self._read)

    async def save(self, credentials: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, credentials)

    async def wipe(self) -> None:
        try:
            await asyncio.to_thread(self._remove)
        except OSError as e:
            logger.warning(f"Failed to remove {self.auth_dir}, retrying: {e}")
            await asyncio.sleep(self.retry_delay)
            try:
                await asyncio.to_thread(self._remove)
            except OSError as retry_error:
                raise CredentialStoreError(
                    f"Could not remove {self.auth_dir}: {retry_error}"
                ) from retry_error
        logger.info("Stored credentials wiped")

    def _read(self) -> Optional[dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable credentials file: {e}")
            return None

    def _write(self, credentials: dict[str, Any]) -> None:
        self.auth_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(credentials), encoding="utf-8")
        tmp.replace(self.path)

    def _remove(self) -> None:
        if self.auth_dir.exists():
            shutil.rmtree(self.auth_dir)


class RedisCredentialStore(CredentialStore):
    """
    Credentials kept under ``notifier:v1:credentials:{session}``.

    Redis being down is an error here, not a degraded mode: losing
    credentials means re-pairing.
    """

    def __init__(self, session_name: Optional[str] = None):
        self.session_name = session_name or get_settings().gateway_session

    @property
    def name(self) -> str:
        return f"credentials:{self.session_name}"

    @property
    def key(self) -> str:
        return namespaced(self.name)

    async def load(self) -> Optional[dict[str, Any]]:
        try:
            return await read_json(self.name)
        except RedisError as e:
            raise CredentialStoreError(f"Failed to load credentials: {e}") from e
        except ValueError as e:
            logger.warning(f"Ignoring unreadable credentials in {self.key}: {e}")
            return None

    async def save(self, credentials: dict[str, Any]) -> None:
        try:
            await write_json(self.name, credentials)
        except RedisError as e:
            raise CredentialStoreError(f"Failed to save credentials: {e}") from e

    async def wipe(self) -> None:
        try:
            await delete_key(self.name)
        except RedisError as e:
            raise CredentialStoreError(f"Failed to wipe credentials: {e}") from e
        logger.info("Stored credentials wiped")


def get_credential_store() -> CredentialStore:
    """Build the configured credential backend."""
    settings = get_settings()
    if settings.credential_backend == "redis":
        return RedisCredentialStore()
    return FileCredentialStore()
