"""Checkpoint stores and the per-process checkpoint cache.

A store only has to honour ``load(thread_id)`` / ``save(checkpoint)`` with
last-write-wins semantics per thread id.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from langgraph.store.memory import InMemoryStore

from agentflow.utils.error_handler import CheckpointError

from .checkpoint import Checkpoint, update_checkpoint

LOGGER = logging.getLogger(__name__)

CHECKPOINT_NAMESPACE = ("agentflow", "checkpoints")


class CheckpointStore(ABC):
    """Durable conversation state, one record per thread id."""

    @abstractmethod
    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        """Return the checkpoint for ``thread_id`` or None."""

    @abstractmethod
    async def save(self, checkpoint: Checkpoint) -> None:
        """Persist ``checkpoint``, replacing any previous record for its thread."""

    async def delete(self, thread_id: str) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support delete")


class MemoryCheckpointStore(CheckpointStore):
    """In-process store backed by LangGraph's InMemoryStore.

    Checkpoints are stored in serialized form so callers never share
    message lists with the store.
    """

    def __init__(self, store: Optional[InMemoryStore] = None):
        self._store = store or InMemoryStore()

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        item = await self._store.aget(CHECKPOINT_NAMESPACE, thread_id)
        if item is None:
            return None
        return Checkpoint.from_dict(item.value)

    async def save(self, checkpoint: Checkpoint) -> None:
        await self._store.aput(CHECKPOINT_NAMESPACE, checkpoint.thread_id, checkpoint.to_dict())

    async def delete(self, thread_id: str) -> None:
        await self._store.adelete(CHECKPOINT_NAMESPACE, thread_id)


class FileCheckpointStore(CheckpointStore):
    """One JSON file per thread under ``directory``."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, thread_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", thread_id)
        return self.directory / f"{safe}.json"

    def _read(self, thread_id: str) -> Optional[Checkpoint]:
        path = self._path(thread_id)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return Checkpoint.from_dict(json.load(f))

    def _write(self, checkpoint: Checkpoint) -> None:
        path = self._path(checkpoint.thread_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(checkpoint.to_dict(), f, ensure_ascii=False, indent=2, default=str)
        tmp_path.replace(path)

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        return await asyncio.to_thread(self._read, thread_id)

    async def save(self, checkpoint: Checkpoint) -> None:
        await asyncio.to_thread(self._write, checkpoint)

    async def delete(self, thread_id: str) -> None:
        self._path(thread_id).unlink(missing_ok=True)


class CheckpointCache:
    """Read/write-through cache in front of a CheckpointStore.

    Lives for one orchestrator instance. Every storage failure is wrapped in a
    CheckpointError naming the thread and the operation.
    """

    def __init__(self, store: Optional[CheckpointStore]):
        self.store = store
        self._cache: Dict[str, Checkpoint] = {}

    @property
    def enabled(self) -> bool:
        return self.store is not None

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        if thread_id in self._cache:
            return self._cache[thread_id]
        if self.store is None:
            return None
        try:
            checkpoint = await self.store.load(thread_id)
        except Exception as e:
            raise CheckpointError(
                f"Failed to load checkpoint for thread {thread_id}: {e}",
                operation="load",
                thread_id=thread_id,
                cause=e,
            ) from e
        if checkpoint is not None:
            self._cache[thread_id] = checkpoint
        return checkpoint

    async def save(self, checkpoint: Checkpoint) -> None:
        if self.store is None:
            raise CheckpointError(
                "Cannot save checkpoint: no checkpoint store configured",
                operation="save",
                thread_id=checkpoint.thread_id,
            )
        try:
            await self.store.save(checkpoint)
        except Exception as e:
            raise CheckpointError(
                f"Failed to save checkpoint for thread {checkpoint.thread_id}: {e}",
                operation="save",
                thread_id=checkpoint.thread_id,
                cause=e,
            ) from e
        self._cache[checkpoint.thread_id] = checkpoint
        LOGGER.debug(
            f"Checkpoint saved: thread={checkpoint.thread_id} step={checkpoint.step} "
            f"messages={len(checkpoint.messages)} "
            f"pending={checkpoint.pending_interrupt.id if checkpoint.pending_interrupt else None}"
        )

    async def fork(self, thread_id: str, new_thread_id: Optional[str] = None) -> Optional[Checkpoint]:
        """Copy the checkpoint of ``thread_id`` into a new thread and save it."""

        source = await self.load(thread_id)
        if source is None:
            return None
        target_id = new_thread_id or f"{thread_id}-fork-{uuid.uuid4().hex[:8]}"
        try:
            forked = update_checkpoint(
                source,
                thread_id=target_id,
                pending_interrupt=None,
                metadata={**source.metadata, "forked_from": thread_id},
            )
            await self.store.save(forked)
        except Exception as e:
            raise CheckpointError(
                f"Failed to fork checkpoint {thread_id} into {target_id}: {e}",
                operation="fork",
                thread_id=thread_id,
                cause=e,
            ) from e
        self._cache[target_id] = forked
        LOGGER.info(f"Forked thread {thread_id} -> {target_id} at step {forked.step}")
        return forked

    def forget(self, thread_id: str) -> None:
        self._cache.pop(thread_id, None)


def build_checkpoint_store(checkpoint_dir: Optional[str] = None) -> CheckpointStore:
    """Build the checkpoint store required for interrupt/resume.

    Args:
        checkpoint_dir: Directory for JSON checkpoints; None or empty keeps
            checkpoints in memory for the lifetime of the process.
    """
    if checkpoint_dir:
        LOGGER.info(f"Using file checkpoint store at {checkpoint_dir}")
        return FileCheckpointStore(checkpoint_dir)
    return MemoryCheckpointStore()
