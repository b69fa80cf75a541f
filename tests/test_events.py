import pytest
import os
import shutil
import tempfile
from phasestake.ledger.core.blocks import ManualBlockSource
from phasestake.ledger.core.events import EventBus
from phasestake.ledger.core.ledger import Ledger
from phasestake.ledger.core.phases import PhaseSchedule
from phasestake.ledger.core.transfer import TokenVault
from phasestake.protocol.config.params import NetworkConfig
from phasestake.protocol.types.common import InvalidAmount


@pytest.fixture
def setup():
    temp_dir = tempfile.mkdtemp()
    bus = EventBus()
    blocks = ManualBlockSource()
    vault = TokenVault("custody")
    vault.mint("alice", 10_000_000)
    config = NetworkConfig(network_id="testnet", block_time_sec=1, precision_scale=10**6)
    ledger = Ledger(
        os.path.join(temp_dir, "ledger.db"),
        PhaseSchedule.from_pairs([(10, 5), (4, 15)]),
        blocks,
        vault,
        config=config,
        events=bus,
    )
    yield ledger, blocks, bus
    ledger.close()
    shutil.rmtree(temp_dir)


def test_subscribe_and_emit():
    bus = EventBus()
    seen = []
    bus.subscribe("ping", lambda **data: seen.append(data))
    bus.emit("ping", value=1)
    assert seen == [{"value": 1}]


def test_unsubscribe_and_clear():
    bus = EventBus()
    seen = []
    callback = lambda **data: seen.append(data)
    bus.subscribe("ping", callback)
    bus.unsubscribe("ping", callback)
    bus.emit("ping", value=1)
    assert seen == []

    bus.subscribe("ping", callback)
    bus.clear()
    bus.emit("ping", value=2)
    assert seen == []


def test_failing_listener_is_isolated():
    bus = EventBus()
    seen = []

    def broken(**data):
        raise RuntimeError("boom")

    bus.subscribe("ping", broken)
    bus.subscribe("ping", lambda **data: seen.append(data))
    bus.emit("ping", value=3)
    assert seen == [{"value": 3}]


def test_ledger_emits_after_commit(setup):
    ledger, blocks, bus = setup
    deposits, rewards, settled = [], [], []
    bus.subscribe("deposited", lambda **d: deposits.append(d))
    bus.subscribe("rewards_calculated", lambda **d: rewards.append(d))
    bus.subscribe("settled", lambda **d: settled.append(d))

    ledger.deposit("alice", 1_000_000)
    assert deposits == [{"address": "alice", "amount": 1_000_000, "balance": 1_000_000, "height": 0}]
    assert settled == []

    blocks.advance(8)
    ledger.request_settlement()
    assert rewards == [{"address": "alice", "reward": 62, "height": 8}]
    assert settled[0]["from_block"] == 0
    assert settled[0]["to_block"] == 8
    assert settled[0]["total_rewarded"] == 62


def test_withdraw_events(setup):
    ledger, blocks, bus = setup
    withdrawn, partial = [], []
    bus.subscribe("withdrawn", lambda **d: withdrawn.append(d))
    bus.subscribe("partially_withdrawn", lambda **d: partial.append(d))

    ledger.deposit("alice", 1_000)
    ledger.withdraw_partial("alice", 400)
    ledger.withdraw("alice")

    assert [w["amount_paid"] for w in withdrawn] == [400, 600]
    assert partial == [{"address": "alice", "amount_paid": 400, "balance": 600, "height": 0}]


def test_failed_operation_emits_failure_only(setup):
    ledger, blocks, bus = setup
    deposits, failures = [], []
    bus.subscribe("deposited", lambda **d: deposits.append(d))
    bus.subscribe("operation_failed", lambda **d: failures.append(d))

    with pytest.raises(InvalidAmount):
        ledger.deposit("alice", 0)

    assert deposits == []
    assert failures == [{"op": "DEPOSIT", "address": "alice", "error": "invalid_amount"}]


def test_listener_error_does_not_undo_commit(setup):
    ledger, blocks, bus = setup

    def broken(**data):
        raise RuntimeError("listener bug")

    bus.subscribe("deposited", broken)
    ledger.deposit("alice", 1_000)
    assert ledger.get_balance("alice") == 1_000
