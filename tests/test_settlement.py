import pytest
import os
import shutil
import tempfile
from phasestake.ledger.core.invariants import check_invariants, collect_violations
from phasestake.ledger.core.phases import PhaseSchedule
from phasestake.ledger.core.settlement import SettlementEngine
from phasestake.ledger.core.state import LedgerState
from phasestake.ledger.storage.db import StorageDB
from phasestake.protocol.types.common import ArithmeticOverflow, InvariantViolation, UnknownParticipant

SCALE = 10**6


@pytest.fixture
def db():
    temp_dir = tempfile.mkdtemp()
    storage = StorageDB(os.path.join(temp_dir, "ledger.db"))
    yield storage
    storage.close()
    shutil.rmtree(temp_dir)


@pytest.fixture
def engine():
    return SettlementEngine(PhaseSchedule.from_pairs([(10, 5), (4, 15)]), precision_scale=SCALE)


def _stake(state, address, amount, height=0):
    acc = state.register(address, height)
    acc.balance += amount
    state.set_account(acc)
    state.total_staked += amount


def _state(db, stakes, pot=10**12):
    state = LedgerState(db, epoch_start_block=0)
    state.total_reward_pot_remaining = pot
    for address, amount in stakes:
        _stake(state, address, amount)
    return state


def test_concrete_scenario(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    report = engine.settle(state, 8)

    assert report.runs == [(10, 5), (4, 3)]
    assert report.boundary_crossed
    assert report.rewards == {"alice": 62}
    assert state.get_account("alice").balance == 1_000_062
    assert state.total_staked == 1_000_062
    assert state.last_settled_block == 8


def test_proportional_split(db, engine):
    state = _state(db, [("alice", 1_000_000), ("bob", 3_000_000)])
    report = engine.settle(state, 4)

    assert report.rewards == {"alice": 10, "bob": 30}
    assert report.total_rewarded == 40
    assert state.total_staked == state.sum_balances() == 4_000_040


def test_equal_stakes_equal_rewards(db, engine):
    state = _state(db, [("alice", 500_000), ("bob", 500_000)])
    report = engine.settle(state, 5)
    assert report.rewards["alice"] == report.rewards["bob"] == 25


def test_visit_order_does_not_change_rewards(db, engine):
    forward = _state(db, [("alice", 1_000_000), ("bob", 2_000_000), ("carol", 7_000_000)])
    backward = _state(db, [("carol", 7_000_000), ("bob", 2_000_000), ("alice", 1_000_000)])

    assert engine.settle(forward, 12).rewards == engine.settle(backward, 12).rewards


def test_settle_is_idempotent_at_same_height(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    engine.settle(state, 8)
    report = engine.settle(state, 8)

    assert report.noop
    assert report.rewards == {}
    assert state.get_account("alice").balance == 1_000_062


def test_height_below_last_settled_is_noop(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    engine.settle(state, 8)
    report = engine.settle(state, 3)

    assert report.noop
    assert state.last_settled_block == 8


def test_empty_stake_only_advances(db, engine):
    state = _state(db, [])
    report = engine.settle(state, 7)

    assert report.rewards == {}
    assert report.runs == []
    assert state.last_settled_block == 7
    assert state.total_staked == 0


def test_zero_balance_participant_skipped(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    state.register("bob", 0)
    report = engine.settle(state, 3)

    assert "bob" not in report.rewards
    assert report.participants_visited == 2
    assert state.get_account("bob").balance == 0


def test_exhausted_pot_credits_nothing(db, engine):
    state = _state(db, [("alice", 1_000_000)], pot=0)
    report = engine.settle(state, 8)

    assert report.total_rewarded == 0
    assert state.get_account("alice").balance == 1_000_000
    assert state.last_settled_block == 8


def test_past_horizon_earns_nothing(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    engine.settle(state, 15)
    balance = state.get_account("alice").balance
    assert balance == 1_000_000 + 50 + 40

    report = engine.settle(state, 100)
    assert report.runs == [(0, 85)]
    assert state.get_account("alice").balance == balance


def test_epoch_offset(db, engine):
    state = LedgerState(db, epoch_start_block=100)
    state.total_reward_pot_remaining = 10**12
    _stake(state, "alice", 1_000_000, height=100)

    engine.settle(state, 108)
    assert state.get_account("alice").balance == 1_000_062


def test_overflow_aborts_pass(db):
    engine = SettlementEngine(PhaseSchedule.from_pairs([(10, 5)]), precision_scale=SCALE, max_amount=10**9)
    state = _state(db, [("alice", 5_000)])

    with pytest.raises(ArithmeticOverflow):
        engine.settle(state, 2)


def test_preview_leaves_state_untouched(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    assert engine.preview(state, 8) == {"alice": 62}
    assert state.get_account("alice").balance == 1_000_000
    assert state.last_settled_block == 0


def test_report_to_dict(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    data = engine.settle(state, 8).to_dict()

    assert data["blocks"] == 8
    assert data["rewards"] == {"alice": "62"}
    assert data["total_rewarded"] == "62"
    assert data["runs"] == [{"rate": "10", "blocks": 5}, {"rate": "4", "blocks": 3}]


# ═══════════════════════════════════════════════════════════════════
# STATE + INVARIANTS
# ═══════════════════════════════════════════════════════════════════

def test_require_unknown_participant(db):
    state = _state(db, [])
    with pytest.raises(UnknownParticipant):
        state.require_account("nobody")


def test_invariants_hold_after_settlement(db, engine):
    state = _state(db, [("alice", 1_000_000), ("bob", 3_000_000)])
    engine.settle(state, 9)
    assert collect_violations(state, 9) == []
    check_invariants(state, 9)


def test_invariant_violations_reported(db):
    state = _state(db, [("alice", 1_000)])
    state.total_staked = 999
    state.last_settled_block = 10

    problems = collect_violations(state, current_height=5)
    assert len(problems) == 2
    with pytest.raises(InvariantViolation):
        check_invariants(state, 5)


def test_persist_and_load_roundtrip(db, engine):
    state = _state(db, [("alice", 1_000_000), ("bob", 3_000_000)])
    engine.settle(state, 8)
    state.persist({"height": 8, "op": "SETTLE", "participant": None, "data": {}})

    loaded = LedgerState.load(db)
    assert loaded.participants() == ["alice", "bob"]
    assert loaded.total_staked == state.total_staked
    assert loaded.last_settled_block == 8
    assert loaded.compute_state_root() == state.compute_state_root()
    assert db.get_journal()[0]["op"] == "SETTLE"


def test_clone_is_independent(db, engine):
    state = _state(db, [("alice", 1_000_000)])
    work = state.clone()
    engine.settle(work, 8)

    assert state.get_account("alice").balance == 1_000_000
    assert state.last_settled_block == 0
    assert work.get_account("alice").balance == 1_000_062


def test_double_stake_earns_double_within_truncation(db, engine):
    state = _state(db, [("alice", 1_000_000), ("bob", 2_000_000)])
    report = engine.settle(state, 3)

    alice, bob = report.rewards["alice"], report.rewards["bob"]
    assert (alice, bob) == (9, 19)
    assert abs(bob - 2 * alice) <= 1
