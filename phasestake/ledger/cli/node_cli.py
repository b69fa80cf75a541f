import argparse
import os
import sys
import logging
import asyncio
import json
from dataclasses import replace
from uvicorn import Config, Server
from ...protocol.config.params import NETWORKS, DECIMALS
from ...protocol.config.reward_model import REWARD_MODELS, RewardModel
from ...protocol.types.common import LedgerError
from ..core.blocks import BlockTicker, ManualBlockSource
from ..core.ledger import Ledger
from ..core.phases import PhaseSchedule
from ..core.transfer import TokenVault
from ..snapshot import SnapshotManager
from ..storage.db import StorageDB
from ..rpc.api import app as rpc_app
# rpc deps are globals in api.py
from ..rpc import api

logger = logging.getLogger(__name__)

GENESIS_FILE = "ledger_genesis.json"


def _paths(data_dir: str):
    return {
        "genesis": os.path.join(data_dir, GENESIS_FILE),
        "ledger_db": os.path.join(data_dir, "ledger.db"),
        "node_db": os.path.join(data_dir, "node.db"),
        "snapshots": os.path.join(data_dir, "snapshots"),
    }


def load_genesis(data_dir: str):
    """Returns (network_id, RewardModel, epoch_start_block) from the genesis file."""
    path = _paths(data_dir)["genesis"]
    if not os.path.exists(path):
        raise FileNotFoundError(f"No {GENESIS_FILE} in {data_dir}. Run 'init' first.")
    with open(path, "r") as f:
        data = json.load(f)
    return data["network"], RewardModel.from_dict(data["reward_model"]), int(data.get("epoch_start_block", 0))


def open_node(data_dir: str, network_id: str = None):
    """Builds (ledger, vault, blocks, node_db) for a data dir."""
    genesis_network, model, epoch_start = load_genesis(data_dir)
    network_id = network_id or genesis_network
    if network_id != genesis_network:
        raise ValueError(f"Data dir was initialized for {genesis_network}, not {network_id}")
    config = NETWORKS[network_id]
    paths = _paths(data_dir)

    node_db = StorageDB(paths["node_db"])
    blocks = ManualBlockSource(start=epoch_start, db=node_db)
    vault = TokenVault(config.custody_address, db=node_db)
    ledger = Ledger(
        paths["ledger_db"],
        PhaseSchedule.from_pairs(model.phases),
        blocks,
        vault,
        initial_reward_pot=model.initial_reward_pot,
        epoch_start_block=epoch_start,
        config=config,
        snapshot_manager=SnapshotManager(paths["snapshots"]),
    )
    return ledger, vault, blocks, node_db


def cmd_init(args):
    """Initialize node: data dir + genesis file with the reward schedule."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)
    genesis_path = _paths(data_dir)["genesis"]

    if os.path.exists(genesis_path):
        print(f"Genesis already exists at {genesis_path}")
        return

    if args.schedule:
        model = RewardModel.load(args.schedule)
    else:
        model = REWARD_MODELS[args.network]
    if args.reward_pot is not None:
        model = replace(model, initial_reward_pot=int(args.reward_pot * 10**DECIMALS))

    try:
        PhaseSchedule.from_pairs(model.phases)
    except LedgerError as e:
        print(f"Invalid schedule: {e}")
        sys.exit(1)

    genesis_data = {
        "network": args.network,
        "epoch_start_block": args.epoch_start,
        "reward_model": model.to_dict(),
    }
    with open(genesis_path, "w") as f:
        f.write(json.dumps(genesis_data, indent=2))

    print(f"Reward model: {model.name} ({len(model.phases)} phases, horizon {model.horizon_blocks} blocks)")
    print(f"Initial reward pot: {model.initial_reward_pot / 10**DECIMALS}")
    print(f"\nNode initialized in {data_dir}")


async def run_node_async(args):
    data_dir = args.datadir

    print(f"Starting PhaseStake node...")
    print(f"Data dir: {data_dir}")
    print(f"RPC: {args.host}:{args.port}")

    # 1. Initialize Core Components
    ledger, vault, blocks, node_db = open_node(data_dir, args.network)

    if args.restore_snapshot is not None:
        snapshot = ledger.snapshot_manager.load_snapshot(args.restore_snapshot)
        if blocks.current_height() < snapshot.height:
            blocks.advance(snapshot.height - blocks.current_height())
        ledger.restore_snapshot(args.restore_snapshot)
        print(f"Restored ledger from snapshot at height {args.restore_snapshot}")

    # Inject into RPC module (global vars)
    api.ledger = ledger
    api.vault = vault
    api.blocks = blocks

    # 2. Block production
    ticker = None
    block_time = args.block_time if args.block_time is not None else ledger.config.block_time_sec
    if block_time > 0:
        ticker = BlockTicker(blocks, block_time)
        ticker.start()
    else:
        logging.warning("Block ticker disabled. Advance blocks via POST /blocks/advance.")

    # 3. Serve RPC
    config = Config(app=rpc_app, host=args.host, port=args.port, log_level="info")
    server = Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass
    finally:
        if ticker:
            ticker.stop()
        ledger.close()
        node_db.close()


def cmd_run(args):
    """Wrapper to run async main."""
    try:
        asyncio.run(run_node_async(args))
    except KeyboardInterrupt:
        pass


def cmd_snapshot(args):
    """Offline snapshot of a (stopped) node's data dir."""
    ledger, _, _, node_db = open_node(args.datadir)
    try:
        meta = ledger.create_snapshot()
        print(f"Snapshot at height {meta.height}: {meta.participants_count} participants, hash {meta.hash}")
    finally:
        ledger.close()
        node_db.close()


def main():
    parser = argparse.ArgumentParser(description="PhaseStake Node CLI")
    parser.add_argument("--datadir", default="./.phasestake", help="Data directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Init command
    init_parser = subparsers.add_parser("init", help="Initialize node configuration")
    init_parser.add_argument("--network", choices=sorted(NETWORKS.keys()), default="devnet", help="Network preset")
    init_parser.add_argument("--schedule", help="Reward model JSON file (overrides the network preset)")
    init_parser.add_argument("--reward-pot", type=float, help="Initial reward pot in whole tokens")
    init_parser.add_argument("--epoch-start", type=int, default=0, help="Epoch start block")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")
    run_parser.add_argument("--network", choices=sorted(NETWORKS.keys()), help="Expected network (default: from genesis)")
    run_parser.add_argument("--block-time", type=float, help="Seconds per block (0 disables the ticker)")
    run_parser.add_argument("--restore-snapshot", type=int, help="Restore ledger from snapshot at this height")

    # Snapshot command
    subparsers.add_parser("snapshot", help="Write a snapshot of the data dir")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)
    elif args.command == "snapshot":
        cmd_snapshot(args)

if __name__ == "__main__":
    main()
