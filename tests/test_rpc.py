import pytest
import os
import shutil
import tempfile
from fastapi.testclient import TestClient
from phasestake.ledger.core.blocks import ManualBlockSource
from phasestake.ledger.core.events import EventBus
from phasestake.ledger.core.ledger import Ledger
from phasestake.ledger.core.phases import PhaseSchedule
from phasestake.ledger.core.transfer import TokenVault
from phasestake.ledger.rpc import api
from phasestake.ledger.snapshot import SnapshotManager
from phasestake.protocol.config.params import NetworkConfig


@pytest.fixture
def client():
    temp_dir = tempfile.mkdtemp()
    blocks = ManualBlockSource()
    vault = TokenVault("custody")
    config = NetworkConfig(
        network_id="devnet",
        block_time_sec=1,
        precision_scale=10**6,
        check_invariants=True,
        faucet_enabled=True,
        manual_blocks_enabled=True,
    )
    ledger = Ledger(
        os.path.join(temp_dir, "ledger.db"),
        PhaseSchedule.from_pairs([(10, 5), (4, 15)]),
        blocks,
        vault,
        config=config,
        events=EventBus(),
        snapshot_manager=SnapshotManager(os.path.join(temp_dir, "snapshots")),
    )
    api.ledger, api.vault, api.blocks = ledger, vault, blocks

    yield TestClient(api.app)

    api.ledger, api.vault, api.blocks = None, None, None
    ledger.close()
    shutil.rmtree(temp_dir)


def fund(client, address, amount):
    resp = client.post("/faucet", json={"address": address, "amount": str(amount)})
    assert resp.status_code == 200


def test_not_initialized():
    api.ledger = None
    resp = TestClient(api.app).get("/status")
    assert resp.status_code == 503


def test_status_and_phases(client):
    status = client.get("/status").json()
    assert status["network_id"] == "devnet"
    assert status["block_height"] == 0
    assert status["total_staked"] == "0"

    phases = client.get("/phases").json()
    assert phases["horizon"] == 15
    assert phases["phases"][0] == {"rate": "10", "cumulative_block_limit": 5}


def test_deposit_settle_withdraw_flow(client):
    fund(client, "alice", 5_000_000)

    resp = client.post("/deposit", json={"address": "alice", "amount": "1000000"})
    assert resp.status_code == 200
    assert resp.json()["balance_after"] == "1000000"

    assert client.post("/blocks/advance", json={"blocks": 8}).json()["height"] == 8

    # Plain read does not settle
    assert client.get("/balance/alice").json()["balance"] == "1000000"
    settled = client.post("/balance/alice/settle").json()
    assert settled["balance"] == "1000062"
    assert settled["last_settled_block"] == 8

    resp = client.post("/withdraw", json={"address": "alice", "amount": "62"})
    assert resp.status_code == 200
    assert resp.json()["amount_paid"] == "62"
    assert client.get("/vault/alice").json()["balance"] == "4000062"

    # No initial funding: the pot cannot cover the credited reward
    resp = client.post("/withdraw", json={"address": "alice"})
    assert resp.json()["amount_paid"] == "999938"
    assert resp.json()["unfunded"] == "62"
    assert resp.json()["balance_after"] == "62"

    assert client.get("/participants").json() == {"count": 1, "participants": ["alice"]}
    ops = [e["op"] for e in client.get("/journal").json()["entries"]]
    assert ops[0] == "WITHDRAW"


def test_errors_map_to_status_codes(client):
    resp = client.get("/balance/nobody")
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "unknown_participant"

    resp = client.post("/deposit", json={"address": "alice", "amount": "0"})
    assert resp.status_code == 400

    # alice holds no vault tokens
    resp = client.post("/deposit", json={"address": "alice", "amount": "10"})
    assert resp.status_code == 502
    assert resp.json()["detail"]["error"] == "transfer_failed"

    fund(client, "bob", 100)
    client.post("/deposit", json={"address": "bob", "amount": "100"})
    client.post("/withdraw", json={"address": "bob"})
    resp = client.post("/withdraw", json={"address": "bob"})
    assert resp.status_code == 409


def test_settle_and_fund(client):
    fund(client, "alice", 1_000_000)
    fund(client, "funder", 500)
    client.post("/deposit", json={"address": "alice", "amount": "1000000"})
    client.post("/blocks/advance", json={"blocks": 4})

    report = client.post("/settle").json()
    assert report["rewards"] == {"alice": "40"}
    assert report["boundary_crossed"] is False

    resp = client.post("/fund", json={"address": "funder", "amount": "500"})
    assert resp.status_code == 200
    assert client.get("/status").json()["reward_pot_remaining"] == "1000500"


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "phasestake_total_staked" in resp.text
    assert "phasestake_block_height" in resp.text


def test_snapshots_endpoints(client):
    fund(client, "alice", 1_000)
    client.post("/deposit", json={"address": "alice", "amount": "1000"})

    resp = client.post("/snapshots")
    assert resp.status_code == 200
    assert resp.json()["participants_count"] == 1

    listed = client.get("/snapshots").json()
    assert [s["height"] for s in listed] == [0]
