# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Manager

Handles creation, storage, loading, and verification of ledger snapshots.
"""

import gzip
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple
from datetime import datetime, timezone

from .types import Snapshot, SnapshotMetadata
from ..core.accounts import Account
from ..core.state import ACCOUNT_PREFIX, META_SCHEDULE, REGISTRY_PREFIX, LedgerState
from ..storage.db import StorageDB
from ...protocol.config.params import CURRENT_NETWORK

logger = logging.getLogger(__name__)


class SnapshotManager:
    """
    Manages ledger snapshots.

    Snapshots are saved as compressed JSON files:
    - snapshots/snapshot_<height>.json.gz (full snapshot)
    - snapshots/snapshot_<height>_meta.json (metadata for quick queries)
    """

    def __init__(self, snapshots_dir: str = "snapshots"):
        self.snapshots_dir = Path(snapshots_dir)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)

    def create_snapshot(
        self,
        state: LedgerState,
        height: int,
        schedule: List[Tuple[int, int]],
        network_id: Optional[str] = None
    ) -> SnapshotMetadata:
        """
        Create a snapshot from the committed ledger state.

        Args:
            state: Committed LedgerState
            height: Current block height
            schedule: (rate, cumulative_block_limit) pairs of the ledger
            network_id: Network ID (default: CURRENT_NETWORK.network_id)

        Returns:
            SnapshotMetadata for the created snapshot
        """
        logger.info(f"Creating snapshot at height {height}...")

        if network_id is None:
            network_id = CURRENT_NETWORK.network_id

        accounts_dict = {}
        for addr in state.participants():
            accounts_dict[addr] = state.get_account(addr).model_dump_json()

        snapshot = Snapshot(
            version="1.0.0",
            network_id=network_id,
            height=height,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            epoch_start_block=state.epoch_start_block,
            last_settled_block=state.last_settled_block,
            total_staked=state.total_staked,
            total_reward_pot_remaining=state.total_reward_pot_remaining,
            schedule=[tuple(pair) for pair in schedule],
            accounts=accounts_dict,
            registry=state.participants(),
            state_root=state.compute_state_root(),
        )

        snapshot.hash = snapshot.calculate_hash()

        # Save to disk (compressed)
        snapshot_path = self._get_snapshot_path(height)
        uncompressed_data = snapshot.model_dump_json(indent=None).encode()
        uncompressed_size = len(uncompressed_data)

        with gzip.open(snapshot_path, 'wb', compresslevel=6) as f:
            f.write(uncompressed_data)

        compressed_size = snapshot_path.stat().st_size

        metadata = SnapshotMetadata(
            version=snapshot.version,
            network_id=snapshot.network_id,
            height=snapshot.height,
            last_settled_block=snapshot.last_settled_block,
            timestamp=snapshot.timestamp,
            participants_count=len(snapshot.registry),
            total_staked=snapshot.total_staked,
            total_reward_pot_remaining=snapshot.total_reward_pot_remaining,
            state_root=snapshot.state_root,
            hash=snapshot.hash,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size
        )

        meta_path = self._get_metadata_path(height)
        with open(meta_path, 'w') as f:
            f.write(metadata.model_dump_json(indent=2))

        compression_ratio = (1 - compressed_size / uncompressed_size) * 100
        logger.info(
            f"Snapshot created at height {height}: "
            f"{len(accounts_dict)} participants, "
            f"{compressed_size / 1024:.2f} KB compressed ({compression_ratio:.1f}% reduction)"
        )

        return metadata

    def load_snapshot(self, height: int) -> Snapshot:
        """
        Load a snapshot from disk.

        Raises:
            FileNotFoundError: If snapshot doesn't exist
            ValueError: If snapshot hash verification fails
        """
        snapshot_path = self._get_snapshot_path(height)

        if not snapshot_path.exists():
            raise FileNotFoundError(f"Snapshot at height {height} not found")

        logger.info(f"Loading snapshot from height {height}...")

        with gzip.open(snapshot_path, 'rb') as f:
            data = f.read()

        snapshot = Snapshot.model_validate_json(data)

        if not snapshot.verify_hash():
            raise ValueError(f"Snapshot at height {height} failed hash verification!")

        logger.info(f"Snapshot loaded: {len(snapshot.registry)} participants")

        return snapshot

    def build_state(self, snapshot: Snapshot, db: StorageDB) -> LedgerState:
        """
        Rebuild the ledger state of a snapshot in memory, without touching `db`.

        Raises:
            ValueError: If registry/accounts disagree or the state root mismatches
        """
        missing = [addr for addr in snapshot.registry if addr not in snapshot.accounts]
        if missing or len(snapshot.registry) != len(snapshot.accounts):
            raise ValueError("Snapshot registry and accounts disagree")

        state = LedgerState(db, snapshot.epoch_start_block, registry=list(snapshot.registry))
        for addr in snapshot.registry:
            state._accounts[addr] = Account.model_validate_json(snapshot.accounts[addr])
        state.last_settled_block = snapshot.last_settled_block
        state.total_staked = snapshot.total_staked
        state.total_reward_pot_remaining = snapshot.total_reward_pot_remaining

        if state.compute_state_root() != snapshot.state_root:
            raise ValueError(f"Snapshot at height {snapshot.height} has a mismatching state root")
        return state

    def write_state(self, snapshot: Snapshot, state: LedgerState, db: StorageDB) -> LedgerState:
        """
        Replace the ledger keys of `db` with a state built by build_state().

        Returns:
            LedgerState loaded back from the rewritten DB
        """
        logger.info(f"Applying snapshot from height {snapshot.height}...")

        items = state.to_items()
        items[META_SCHEDULE] = json.dumps([list(pair) for pair in snapshot.schedule])
        db.replace_state(items, [ACCOUNT_PREFIX, REGISTRY_PREFIX])

        restored = LedgerState.load(db)
        logger.info(
            f"Snapshot applied: last settled block {snapshot.last_settled_block}, "
            f"{len(snapshot.registry)} participants"
        )
        return restored

    def list_snapshots(self) -> List[SnapshotMetadata]:
        """
        List all available snapshots, sorted by height (descending).
        """
        snapshots = []

        for meta_path in self.snapshots_dir.glob("snapshot_*_meta.json"):
            try:
                with open(meta_path, 'r') as f:
                    metadata = SnapshotMetadata.model_validate_json(f.read())
                    snapshots.append(metadata)
            except Exception as e:
                logger.warning(f"Failed to load metadata from {meta_path}: {e}")

        snapshots.sort(key=lambda s: s.height, reverse=True)

        return snapshots

    def delete_snapshot(self, height: int):
        snapshot_path = self._get_snapshot_path(height)
        meta_path = self._get_metadata_path(height)

        if snapshot_path.exists():
            snapshot_path.unlink()
            logger.info(f"Deleted snapshot at height {height}")

        if meta_path.exists():
            meta_path.unlink()

    def cleanup_old_snapshots(self, keep_count: int = 10):
        """
        Delete old snapshots, keeping only the N most recent.
        """
        snapshots = self.list_snapshots()

        if len(snapshots) <= keep_count:
            return

        to_delete = snapshots[keep_count:]
        for snap in to_delete:
            self.delete_snapshot(snap.height)

        logger.info(f"Cleaned up {len(to_delete)} old snapshots")

    def _get_snapshot_path(self, height: int) -> Path:
        return self.snapshots_dir / f"snapshot_{height}.json.gz"

    def _get_metadata_path(self, height: int) -> Path:
        return self.snapshots_dir / f"snapshot_{height}_meta.json"
