# MIT License
# Copyright (c) 2025 Hashborn

"""
Ledger Snapshot System

Exports the full ledger state to compressed, hash-verified snapshot files
and restores it into a StorageDB.
"""

from .snapshot_manager import SnapshotManager
from .types import Snapshot, SnapshotMetadata

__all__ = ["SnapshotManager", "Snapshot", "SnapshotMetadata"]
