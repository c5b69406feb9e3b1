"""
Checkpointing of the work queue so an interrupted crawl can resume.

A checkpoint is a versioned JSON document holding the pending URLs, the URLs
that were in flight, and every URL already scheduled or done.
"""

import asyncio
import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import redis.asyncio as redis

from .work_queue import QueueSnapshot, URLRef, WorkQueue


CHECKPOINT_VERSION = 1


class CheckpointError(Exception):
    """Raised when a checkpoint cannot be decoded."""
    pass


def snapshot_to_dict(snapshot: QueueSnapshot, seed: Optional[str] = None) -> Dict[str, Any]:
    return {
        'version': CHECKPOINT_VERSION,
        'created_at': datetime.now(timezone.utc).isoformat(),
        'seed': seed,
        'pending': [ref.to_dict() for ref in snapshot.pending],
        'in_flight': [ref.to_dict() for ref in snapshot.in_flight],
        'scheduled_or_done': sorted(snapshot.scheduled_or_done)
    }


def snapshot_from_dict(data: Dict[str, Any]) -> QueueSnapshot:
    if not isinstance(data, dict):
        raise CheckpointError(f"Checkpoint must be a JSON object, got {type(data).__name__}")
    version = data.get('version')
    if version != CHECKPOINT_VERSION:
        raise CheckpointError(f"Unsupported checkpoint version: {version!r}")
    try:
        return QueueSnapshot(
            pending=[URLRef.from_dict(item) for item in data.get('pending', [])],
            in_flight=[URLRef.from_dict(item) for item in data.get('in_flight', [])],
            scheduled_or_done=set(data.get('scheduled_or_done', []))
        )
    except (KeyError, TypeError, ValueError) as e:
        raise CheckpointError(f"Malformed checkpoint: {e}") from e


class CheckpointStore:
    """Durable location for a single checkpoint document."""

    async def save(self, data: Dict[str, Any]):
        raise NotImplementedError

    async def load(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


class FileCheckpointStore(CheckpointStore):
    """Checkpoint kept in a JSON file, replaced atomically on every write."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _write(self, payload: str):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + '.tmp')
        tmp.write_text(payload, encoding='utf-8')
        os.replace(tmp, self.path)

    async def save(self, data: Dict[str, Any]):
        payload = json.dumps(data, indent=2)
        await asyncio.to_thread(self._write, payload)

    async def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        text = await asyncio.to_thread(self.path.read_text, encoding='utf-8')
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Checkpoint file {self.path} is not valid JSON: {e}") from e

    def __repr__(self) -> str:
        return f"FileCheckpointStore({str(self.path)!r})"


class RedisCheckpointStore(CheckpointStore):
    """Checkpoint kept as one JSON string value in Redis."""

    def __init__(self, client: redis.Redis, key: str = "sitemirror:checkpoint"):
        self.client = client
        self.key = key

    async def save(self, data: Dict[str, Any]):
        await self.client.set(self.key, json.dumps(data))

    async def load(self) -> Optional[Dict[str, Any]]:
        raw = await self.client.get(self.key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Checkpoint at redis key {self.key} is not valid JSON: {e}") from e

    def __repr__(self) -> str:
        return f"RedisCheckpointStore({self.key!r})"


class Checkpointer:
    """
    Periodically snapshots a WorkQueue into a CheckpointStore.

    Only the snapshot copy holds the queue lock; encoding and the write
    happen afterwards, so workers keep running during a checkpoint.
    """

    def __init__(self, store: CheckpointStore, interval_ms: int = 0,
                 seed: Optional[str] = None, logger: Optional[logging.Logger] = None):
        self.store = store
        self.interval_ms = interval_ms
        self.seed = seed
        self.logger = logger or logging.getLogger(__name__)
        self.last_checkpoint: Optional[float] = None
        self._write_lock = asyncio.Lock()
        self.stats = {
            'checkpoints_written': 0,
            'checkpoint_errors': 0
        }

    @property
    def enabled(self) -> bool:
        return self.interval_ms > 0

    def _due(self) -> bool:
        if self.last_checkpoint is None:
            return True
        return (time.monotonic() - self.last_checkpoint) * 1000 > self.interval_ms

    async def maybe_checkpoint(self, queue: WorkQueue) -> bool:
        """Write a checkpoint if the interval has elapsed since the last one."""
        if not self.enabled or not self._due():
            return False
        if self._write_lock.locked():
            return False

        async with self._write_lock:
            if not self._due():
                return False
            return await self._write(queue)

    async def checkpoint(self, queue: WorkQueue) -> bool:
        """Write a checkpoint now."""
        async with self._write_lock:
            return await self._write(queue)

    async def _write(self, queue: WorkQueue) -> bool:
        snapshot = queue.snapshot()
        self.logger.debug(
            f"Writing checkpoint: {len(snapshot.pending)} pending, "
            f"{len(snapshot.in_flight)} in flight"
        )
        try:
            await self.store.save(snapshot_to_dict(snapshot, self.seed))
        except (OSError, redis.RedisError) as e:
            self.stats['checkpoint_errors'] += 1
            self.logger.warning(f"Error writing checkpoint to {self.store}: {e}")
            return False
        finally:
            self.last_checkpoint = time.monotonic()

        self.stats['checkpoints_written'] += 1
        return True

    async def restore(self, queue: WorkQueue) -> bool:
        """
        Load the stored checkpoint into ``queue``.
        Returns False if there is no checkpoint; raises CheckpointError if it is unreadable.
        """
        data = await self.store.load()
        if data is None:
            self.logger.info(f"No checkpoint found at {self.store}")
            return False

        snapshot = snapshot_from_dict(data)
        queue.restore(snapshot.pending, snapshot.in_flight, snapshot.scheduled_or_done)
        self.logger.info(
            f"Resumed from checkpoint {self.store}: {len(snapshot.in_flight)} in-flight URLs "
            f"re-queued ahead of {len(snapshot.pending)} pending"
        )
        return True
