"""Per-session key/value storage for the login client.

Plays the role of the browser's ``sessionStorage``: it holds the pending
PKCE verifier and the token set for one user agent session. The file
backend encrypts everything at rest so tokens survive between CLI runs.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from realty_listings.logging_config import get_logger

logger = get_logger(__name__)


class SessionStorageError(Exception):
    """Error during session storage operations."""


class SessionStorage(ABC):
    """String key/value storage scoped to a single client session."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """Return the stored value or None."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove a value; missing keys are ignored."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every stored value."""


class InMemorySessionStorage(SessionStorage):
    """Process-local storage, lost when the process exits."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_item(self, key: str) -> str | None:
        async with self._lock:
            return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            self._items[key] = value

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            self._items.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._items.clear()

    def keys(self) -> list[str]:
        """Stored keys, for inspection in tests and diagnostics."""
        return list(self._items)


class EncryptedFileSessionStorage(SessionStorage):
    """Fernet-encrypted JSON file storage.

    Writes are atomic (temp file + replace) so a crash never leaves a
    half-written session file.
    """

    def __init__(self, encryption_key: str, file_path: str | Path) -> None:
        """Initialize encrypted file storage.

        Args:
            encryption_key: Fernet-compatible encryption key
            file_path: Path to the session file

        Raises:
            SessionStorageError: If encryption key is invalid
        """
        try:
            self._fernet = Fernet(encryption_key.encode())
        except Exception as e:
            raise SessionStorageError(f"Invalid encryption key: {e}") from e

        self._file_path = Path(file_path)
        self._lock = asyncio.Lock()
        self._data: dict[str, str] = {}
        self._loaded = False

    async def _load(self) -> None:
        """Load and decrypt the session file once."""
        if self._loaded:
            return

        if not self._file_path.exists():
            self._data = {}
            self._loaded = True
            return

        try:
            decrypted = self._fernet.decrypt(self._file_path.read_bytes())
            data = json.loads(decrypted.decode())
        except InvalidToken:
            logger.error("Failed to decrypt session file - wrong key?")
            raise SessionStorageError("Failed to decrypt session file") from None
        except json.JSONDecodeError as e:
            raise SessionStorageError(f"Failed to parse session file: {e}") from e

        if not isinstance(data, dict):
            raise SessionStorageError("Session file does not contain an object")

        self._data = {str(k): str(v) for k, v in data.items()}
        self._loaded = True
        logger.debug("Loaded session storage from %s", self._file_path)

    async def _save(self) -> None:
        """Encrypt and write the session file atomically."""
        encrypted = self._fernet.encrypt(json.dumps(self._data).encode())

        dir_path = self._file_path.parent
        dir_path.mkdir(parents=True, exist_ok=True)

        fd, temp_path_str = tempfile.mkstemp(dir=dir_path)
        temp_path = Path(temp_path_str)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(encrypted)
            temp_path.replace(self._file_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    async def get_item(self, key: str) -> str | None:
        async with self._lock:
            await self._load()
            return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            await self._load()
            self._data[key] = value
            await self._save()

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            await self._load()
            if key in self._data:
                del self._data[key]
                await self._save()

    async def clear(self) -> None:
        async with self._lock:
            self._data = {}
            self._loaded = True
            if self._file_path.exists():
                self._file_path.unlink()
            logger.debug("Cleared session storage at %s", self._file_path)


def create_session_storage(
    encryption_key: str | None = None,
    file_path: str | Path | None = None,
) -> SessionStorage:
    """Pick file-backed storage when both a path and key are configured."""
    if file_path and encryption_key:
        return EncryptedFileSessionStorage(encryption_key, file_path)
    return InMemorySessionStorage()
