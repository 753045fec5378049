#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2025 Bookshelf MCP Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Durable storage for session actor state.

One JSON file per actor, written atomically (temp file + rename) so a crash
mid-write never leaves a torn record behind.
"""

import asyncio
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ActorStateStore:
    """
    Persists actor state to disk.

    Keys are hashed into file names, so any identity string is safe to use.
    """

    def __init__(self, storage_path: str | None = None):
        """
        Initialize the actor state store.

        Args:
            storage_path: Directory path for storing actor state
        """
        if storage_path:
            self.storage_path = Path(storage_path)
        else:
            self.storage_path = Path.home() / ".bookshelf-mcp" / "actors"

        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._storage_available = True
        except (PermissionError, OSError) as e:
            logger.warning(f"Cannot create storage directory at {self.storage_path}: {e}")
            logger.warning("Actor state will be kept in memory only")
            self._storage_available = False

        self._write_locks: dict[str, asyncio.Lock] = {}

        if self._storage_available:
            logger.info(f"Actor state storage initialized at: {self.storage_path}")

    @property
    def available(self) -> bool:
        return self._storage_available

    def _get_state_file_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.storage_path / f"actor_{digest}.json"

    def _get_write_lock(self, key: str) -> asyncio.Lock:
        if key not in self._write_locks:
            self._write_locks[key] = asyncio.Lock()
        return self._write_locks[key]

    async def save_state(self, key: str, state: dict[str, Any]) -> bool:
        """
        Save actor state in a single atomic write.

        Args:
            key: Actor key (normalized identity)
            state: Complete JSON-serializable state

        Returns:
            True if saved, False if storage is unavailable

        Raises:
            OSError: if the write fails; the caller keeps its previous state
        """
        if not self._storage_available:
            logger.debug("Storage not available, skipping save")
            return False

        async with self._get_write_lock(key):
            file_path = self._get_state_file_path(key)
            temp_path = file_path.with_suffix(".tmp")
            record = {"actor_key": key, "saved_at": time.time(), "state": state}

            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write_state_file, temp_path, record)
            await loop.run_in_executor(None, temp_path.replace, file_path)

            logger.debug(f"Actor state for {key} saved")
            return True

    def _write_state_file(self, path: Path, data: dict[str, Any]):
        """Synchronous file write for executor."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    async def load_state(self, key: str) -> dict[str, Any] | None:
        """
        Load actor state.

        Args:
            key: Actor key

        Returns:
            Stored state if found, None otherwise
        """
        if not self._storage_available:
            return None

        file_path = self._get_state_file_path(key)
        if not file_path.exists():
            logger.debug(f"No stored state for {key}")
            return None

        try:
            loop = asyncio.get_running_loop()
            record = await loop.run_in_executor(None, self._read_state_file, file_path)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load state for {key}: {e}")
            return None

        if record.get("actor_key") != key:
            logger.error(f"State file {file_path.name} belongs to another actor")
            return None
        return record.get("state")

    def _read_state_file(self, path: Path) -> dict[str, Any]:
        """Synchronous file read for executor."""
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    async def delete_state(self, key: str) -> bool:
        """
        Delete an actor's stored state.

        Returns:
            True if a file was removed
        """
        if not self._storage_available:
            return False

        async with self._get_write_lock(key):
            file_path = self._get_state_file_path(key)
            if not file_path.exists():
                return False
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, file_path.unlink)
            logger.info(f"Deleted stored state for {key}")

        self._write_locks.pop(key, None)
        return True

    async def list_actor_keys(self) -> list[str]:
        """List keys of all persisted actors, most recently saved first."""
        if not self._storage_available:
            return []

        loop = asyncio.get_running_loop()
        files = await loop.run_in_executor(None, lambda: list(self.storage_path.glob("actor_*.json")))

        entries = []
        for file_path in files:
            try:
                record = self._read_state_file(file_path)
                entries.append((record.get("saved_at", 0), record["actor_key"]))
            except (OSError, KeyError, json.JSONDecodeError) as e:
                logger.warning(f"Error reading state file {file_path}: {e}")

        entries.sort(reverse=True)
        return [key for _, key in entries]
