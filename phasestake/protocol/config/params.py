# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict

# Global Constants
DENOM = "stk"
DECIMALS = 18

# Fixed-point scale used for proportional shares
PRECISION_SCALE = 10**12

# Intermediate products must fit an unsigned 256-bit word
MAX_AMOUNT = 2**256 - 1

class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 block_time_sec: int,
                 precision_scale: int = PRECISION_SCALE,
                 max_amount: int = MAX_AMOUNT,
                 # Run the invariant checker before every commit
                 check_invariants: bool = False,
                 # Take a snapshot every N settled blocks (0 = disabled)
                 snapshot_interval_blocks: int = 0,
                 snapshots_to_keep: int = 10,
                 # Devnet faucet / manual block advance over RPC
                 faucet_enabled: bool = False,
                 manual_blocks_enabled: bool = False,
                 custody_address: str = "stk1custody"):
        self.network_id = network_id
        self.block_time_sec = block_time_sec
        self.precision_scale = precision_scale
        self.max_amount = max_amount
        self.check_invariants = check_invariants
        self.snapshot_interval_blocks = snapshot_interval_blocks
        self.snapshots_to_keep = snapshots_to_keep
        self.faucet_enabled = faucet_enabled
        self.manual_blocks_enabled = manual_blocks_enabled
        self.custody_address = custody_address

NETWORKS: Dict[str, NetworkConfig] = {
    "devnet": NetworkConfig(
        network_id="devnet",
        block_time_sec=5,
        check_invariants=True,
        snapshot_interval_blocks=100,
        faucet_enabled=True,
        manual_blocks_enabled=True,
    ),
    "testnet": NetworkConfig(
        network_id="testnet",
        block_time_sec=12,
        check_invariants=True,
        snapshot_interval_blocks=1_000,
    ),
    "mainnet": NetworkConfig(
        network_id="mainnet",
        block_time_sec=12,
        snapshot_interval_blocks=10_000,
        snapshots_to_keep=30,
    )
}

# Default to devnet for now
CURRENT_NETWORK = NETWORKS["devnet"]
