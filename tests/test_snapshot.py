# MIT License
# Copyright (c) 2025 Hashborn

import pytest
import os
import gzip
import json
import shutil
import tempfile
from phasestake.ledger.core.blocks import ManualBlockSource
from phasestake.ledger.core.events import EventBus
from phasestake.ledger.core.ledger import Ledger
from phasestake.ledger.core.phases import PhaseSchedule
from phasestake.ledger.core.transfer import TokenVault
from phasestake.ledger.snapshot import Snapshot, SnapshotManager
from phasestake.protocol.config.params import NetworkConfig
from phasestake.protocol.types.common import InvalidSchedule, InvariantViolation


@pytest.fixture
def node():
    temp_dir = tempfile.mkdtemp()
    blocks = ManualBlockSource()
    vault = TokenVault("custody")
    for addr in ("alice", "bob"):
        vault.mint(addr, 100_000_000)
    config = NetworkConfig(
        network_id="testnet",
        block_time_sec=1,
        precision_scale=10**6,
        check_invariants=True,
        snapshot_interval_blocks=10,
        snapshots_to_keep=2,
    )
    manager = SnapshotManager(os.path.join(temp_dir, "snapshots"))
    ledger = Ledger(
        os.path.join(temp_dir, "ledger.db"),
        PhaseSchedule.from_pairs([(10, 5), (4, 15)]),
        blocks,
        vault,
        config=config,
        events=EventBus(),
        snapshot_manager=manager,
    )
    yield ledger, blocks, manager, temp_dir
    ledger.close()
    shutil.rmtree(temp_dir)


def test_snapshot_create_and_load(node):
    ledger, blocks, manager, _ = node

    ledger.deposit("alice", 1_000_000)
    ledger.deposit("bob", 3_000_000)
    blocks.advance(4)
    ledger.request_settlement()

    meta = ledger.create_snapshot()
    assert meta.height == 4
    assert meta.participants_count == 2
    assert meta.total_staked == 4_000_040
    assert meta.state_root == ledger.state_root()

    snapshot = manager.load_snapshot(4)
    assert snapshot.verify_hash()
    assert snapshot.registry == ["alice", "bob"]
    assert snapshot.schedule == [(10, 5), (4, 15)]
    assert [m.height for m in manager.list_snapshots()] == [4]


def test_tampered_snapshot_rejected(node):
    ledger, blocks, manager, temp_dir = node

    ledger.deposit("alice", 1_000_000)
    ledger.create_snapshot()

    path = os.path.join(temp_dir, "snapshots", "snapshot_0.json.gz")
    with gzip.open(path, "rb") as f:
        data = json.loads(f.read())
    data["total_staked"] = 999_999_999
    with gzip.open(path, "wb") as f:
        f.write(json.dumps(data).encode())

    with pytest.raises(ValueError):
        manager.load_snapshot(0)


def test_missing_snapshot(node):
    ledger, blocks, manager, _ = node
    with pytest.raises(FileNotFoundError):
        manager.load_snapshot(123)


def test_restore_rewinds_state(node):
    ledger, blocks, manager, _ = node

    ledger.deposit("alice", 1_000_000)
    blocks.advance(3)
    ledger.request_settlement()
    ledger.create_snapshot()
    root = ledger.state_root()

    ledger.deposit("bob", 5_000)
    blocks.advance(2)
    ledger.withdraw_partial("alice", 100)
    assert ledger.state_root() != root

    ledger.restore_snapshot(3)
    assert ledger.state_root() == root
    assert ledger.participants() == ["alice"]
    assert ledger.last_settled_block == 3
    assert not ledger.is_known("bob")

    # Only ledger keys rewind: custody and journal keep bob's deposit
    assert ledger.transfer.balance_of("custody") == 1_004_900
    assert len(ledger.journal(participant="bob")) == 1

    # Ledger keeps working after restore
    assert ledger.get_settled_balance("alice") == 1_000_050


def test_restore_with_other_schedule_rejected(node):
    ledger, blocks, manager, temp_dir = node
    ledger.deposit("alice", 1_000)
    manager.create_snapshot(ledger.state, 0, [(1, 100)], "testnet")

    with pytest.raises(InvalidSchedule):
        ledger.restore_snapshot(0)


def test_automatic_snapshots_and_cleanup(node):
    ledger, blocks, manager, _ = node
    ledger.deposit("alice", 1_000)

    for _ in range(3):
        blocks.advance(10)
        ledger.request_settlement()

    heights = [m.height for m in manager.list_snapshots()]
    assert heights == [30, 20]


def test_inconsistent_snapshot_leaves_db_untouched(node):
    ledger, blocks, manager, temp_dir = node

    ledger.deposit("alice", 1_000)
    ledger.create_snapshot()

    # Rehashed, so it passes hash verification, but totals disagree with balances
    path = os.path.join(temp_dir, "snapshots", "snapshot_0.json.gz")
    with gzip.open(path, "rb") as f:
        snapshot = Snapshot.model_validate_json(f.read())
    snapshot.total_staked = 999_999
    snapshot.hash = snapshot.calculate_hash()
    with gzip.open(path, "wb") as f:
        f.write(snapshot.model_dump_json().encode())

    ledger.deposit("bob", 5_000)
    root = ledger.state_root()

    with pytest.raises(InvariantViolation):
        ledger.restore_snapshot(0)
    assert ledger.total_staked == 6_000
    assert ledger.state_root() == root

    # Later commits and a restart still see the pre-restore state
    ledger.deposit("alice", 10)
    ledger.close()
    reopened = Ledger(
        os.path.join(temp_dir, "ledger.db"),
        PhaseSchedule.from_pairs([(10, 5), (4, 15)]),
        blocks,
        TokenVault("custody"),
        config=ledger.config,
        events=EventBus(),
    )
    try:
        assert reopened.total_staked == 6_010
        assert reopened.participants() == ["alice", "bob"]
        assert reopened.get_balance("bob") == 5_000
    finally:
        reopened.close()
