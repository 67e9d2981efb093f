"""Persistence utilities."""

from .checkpoint import (
    ApprovalResponse,
    Checkpoint,
    Interrupt,
    create_checkpoint,
    create_interrupt,
    interrupt_id_for,
    update_checkpoint,
)
from .store import (
    CheckpointCache,
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
    build_checkpoint_store,
)

__all__ = [
    "ApprovalResponse",
    "Checkpoint",
    "CheckpointCache",
    "CheckpointStore",
    "FileCheckpointStore",
    "Interrupt",
    "MemoryCheckpointStore",
    "build_checkpoint_store",
    "create_checkpoint",
    "create_interrupt",
    "interrupt_id_for",
    "update_checkpoint",
]
