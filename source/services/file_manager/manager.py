import asyncio
import json
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles

if TYPE_CHECKING:
    from source.context import Context

from source.services.manager import BaseFileServiceManager

# -------------------------------------------------------------- #
# File Manager Service
# -------------------------------------------------------------- #


class FileManagerService(BaseFileServiceManager):
    """Service for the recordings tree: session folders and JSON results."""

    def __init__(self, context: "Context", storage_path: str):
        super().__init__(context)

        self.storage_path = storage_path

        # per-path locks so concurrent writers never interleave
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, lambda: os.makedirs(self.storage_path, exist_ok=True)
        )

        await self.services.logging_service.info(
            f"FileManagerService initialized with storage path: {self.storage_path}"
        )
        return True

    async def on_close(self):
        return True

    # -------------------------------------------------------------- #
    # Path Helpers
    # -------------------------------------------------------------- #

    def _resolve(self, filepath: str) -> str:
        """Absolute paths are used as-is, relative ones are rooted at storage_path."""
        if os.path.isabs(filepath):
            return filepath
        return os.path.join(self.storage_path, filepath)

    def _lock_key(self, filepath: str) -> str:
        """
        Normalize lock key by absolute path.
        On Windows, also convert to lowercase for case-insensitive comparison.
        """
        p = Path(self._resolve(filepath)).resolve()
        return str(p).lower() if sys.platform.startswith("win") else str(p)

    def get_storage_path(self) -> str:
        """Get the storage path."""
        return self.storage_path

    @asynccontextmanager
    async def _acquire_file_lock(self, filepath: str):
        """Context manager for acquiring and releasing file locks safely."""
        key = self._lock_key(filepath)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._locks.pop(key, None)
                self._waiters.pop(key, None)

    # -------------------------------------------------------------- #
    # Public File Operations
    # -------------------------------------------------------------- #

    async def ensure_dir(self, dirpath: str) -> str:
        """
        Create a directory and its parents if they do not exist.

        Args:
            dirpath: Can be absolute path or relative to storage_path

        Returns:
            The resolved directory path
        """
        path = self._resolve(dirpath)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: os.makedirs(path, exist_ok=True))
        return path

    async def ensure_parent_dir(self, filepath: str) -> None:
        """
        Ensure the parent directory of the given filepath exists.

        Args:
            filepath: Full path to a file (not just filename)
        """
        parent_dir = os.path.dirname(self._resolve(filepath))
        if parent_dir:
            await self.ensure_dir(parent_dir)

    async def save_json(self, filepath: str, data: Any) -> str:
        """
        Write data as pretty-printed JSON, replacing any existing file.

        The payload is written to a sibling temp file first and swapped in with
        os.replace, so readers never see a half-written document.

        Args:
            filepath: Can be absolute path or relative to storage_path
            data: JSON-serializable payload

        Returns:
            The resolved file path
        """
        path = self._resolve(filepath)
        payload = json.dumps(data, indent=2, ensure_ascii=False)

        await self.ensure_parent_dir(path)

        tmp_path = f"{path}.tmp"
        async with self._acquire_file_lock(path):
            async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
                await f.write(payload)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, os.replace, tmp_path, path)

        await self.services.logging_service.info(f"Saved JSON file: {path} ({len(payload)} chars)")
        return path

    async def read_json(self, filepath: str) -> Any:
        """
        Read and decode a JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
            json.JSONDecodeError: If the file is not valid JSON
        """
        path = self._resolve(filepath)
        if not await self.file_exists(path):
            raise FileNotFoundError(f"File {filepath} does not exist.")

        async with (
            self._acquire_file_lock(path),
            aiofiles.open(path, mode="r", encoding="utf-8") as f,
        ):
            content = await f.read()

        return json.loads(content)

    async def file_exists(self, filepath: str) -> bool:
        """
        Check if a file exists.

        Args:
            filepath: Can be absolute path or relative to storage_path
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, os.path.exists, self._resolve(filepath))
