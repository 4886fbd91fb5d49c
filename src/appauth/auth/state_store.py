"""
Key-value persistence for serialized auth state and pending requests.

Values are stored as plain strings; nothing is encrypted at rest.
"""
import abc
import asyncio
import json
import os
from pathlib import Path
from typing import Dict, Optional

import structlog

from ..config import StorageConfig

logger = structlog.get_logger(__name__)


class StateStoreError(Exception):
    """Raised when the backing store cannot be read or written."""
    pass


class BaseStateStore(abc.ABC):
    """Abstract base class for storing serialized state under string keys."""

    @abc.abstractmethod
    async def read(self, key: str) -> Optional[str]:
        """Returns the value stored under key, or None."""
        pass

    @abc.abstractmethod
    async def write(self, key: str, value: str) -> None:
        pass

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Removes key. Deleting a missing key is not an error."""
        pass


class InMemoryStateStore(BaseStateStore):
    """Keeps values in a dict for the lifetime of the process."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    async def read(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def write(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)


class FileStateStore(BaseStateStore):
    """
    Stores all values in a single JSON object file.

    Every write rewrites the whole file through a temporary file and
    os.replace, so a reader never sees a half-written file. A corrupted file
    is treated as empty.
    """

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        self._lock = asyncio.Lock()
        self.logger = logger.bind(storage_type="file", file_path=str(self.file_path))

    def _load(self) -> Dict[str, str]:
        try:
            with open(self.file_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            self.logger.warning("State file is not valid JSON, treating it as empty", error=str(e))
            return {}
        except OSError as e:
            raise StateStoreError(f"Failed to read state file '{self.file_path}': {e}") from e
        if not isinstance(data, dict):
            self.logger.warning("State file does not hold a JSON object, treating it as empty")
            return {}
        return {key: value for key, value in data.items() if isinstance(value, str)}

    def _dump(self, data: Dict[str, str]) -> None:
        tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.file_path)
        except OSError as e:
            raise StateStoreError(f"Failed to write state file '{self.file_path}': {e}") from e

    async def read(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
        return data.get(key)

    async def write(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            data[key] = value
            await asyncio.to_thread(self._dump, data)
        self.logger.debug("Stored state", key=key)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            if data.pop(key, None) is None:
                return
            await asyncio.to_thread(self._dump, data)
        self.logger.debug("Deleted state", key=key)


def get_state_store(storage_config: StorageConfig) -> BaseStateStore:
    """
    Factory function to get a state store instance based on configuration.
    """
    if storage_config.state_store_method == "memory":
        return InMemoryStateStore()
    elif storage_config.state_store_method == "file":
        return FileStateStore(storage_config.state_file_path)
    else:
        logger.error("Unsupported state_store_method", method=storage_config.state_store_method)
        raise ValueError(f"Unsupported state_store_method: {storage_config.state_store_method}")
