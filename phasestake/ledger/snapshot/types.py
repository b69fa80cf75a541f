# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Data Structures
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Tuple

from ...protocol.crypto.hash import canonical_json, sha256_hex


class SnapshotMetadata(BaseModel):
    """
    Snapshot metadata (stored separately for quick querying).
    """
    version: str = Field(default="1.0.0", description="Snapshot format version")
    network_id: str = Field(..., description="Network ID (devnet/testnet/mainnet)")
    height: int = Field(..., description="Block height at snapshot")
    last_settled_block: int = Field(..., description="Last settled block at snapshot")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    participants_count: int = Field(..., description="Number of registered participants")
    total_staked: int = Field(..., description="Sum of all balances")
    total_reward_pot_remaining: int = Field(..., description="Remaining reward pot")
    state_root: str = Field(..., description="Merkle root over (address, balance)")
    hash: str = Field(..., description="SHA256 hash of snapshot data")
    compressed_size: int = Field(..., description="Compressed file size (bytes)")
    uncompressed_size: int = Field(..., description="Uncompressed data size (bytes)")


class Snapshot(BaseModel):
    """
    Complete ledger snapshot (saved to disk, compressed).
    """
    # Metadata
    version: str = Field(default="1.0.0", description="Snapshot format version")
    network_id: str = Field(..., description="Network ID")
    height: int = Field(..., description="Block height")
    timestamp: str = Field(..., description="ISO 8601 timestamp")

    # Ledger totals
    epoch_start_block: int = Field(..., description="Epoch start block")
    last_settled_block: int = Field(..., description="Last settled block")
    total_staked: int = Field(default=0, description="Sum of all balances")
    total_reward_pot_remaining: int = Field(default=0, description="Remaining reward pot")

    # Schedule the state was accrued under
    schedule: List[Tuple[int, int]] = Field(default_factory=list, description="(rate, cumulative_block_limit) pairs")

    # State data (accounts as JSON strings, registry in insertion order)
    accounts: Dict[str, str] = Field(default_factory=dict, description="address -> Account JSON")
    registry: List[str] = Field(default_factory=list, description="Participants in insertion order")

    # Verification
    state_root: str = Field(default="", description="Merkle root over (address, balance)")
    hash: Optional[str] = Field(default=None, description="SHA256 hash of snapshot (excluding this field)")

    def calculate_hash(self) -> str:
        """
        Calculate SHA256 hash of snapshot data (excluding hash field).
        """
        data = self.model_dump(exclude={"hash"})
        return sha256_hex(canonical_json(data))

    def verify_hash(self) -> bool:
        if not self.hash:
            return False

        return self.calculate_hash() == self.hash
