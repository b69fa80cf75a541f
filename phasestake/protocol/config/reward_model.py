# MIT License
# Copyright (c) 2025 Hashborn

"""
PhaseStake Reward Model
Single source of truth for the reward schedule of a network.

A schedule is an ordered list of (rate, cumulative_block_limit) pairs:
- rate: reward units paid per block to the whole pool, split by stake share
- cumulative_block_limit: last block (counted from the epoch start) of the phase

Past the last limit the reward stream has ended (rate 0).
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from .params import DECIMALS

UNIT = 10**DECIMALS

@dataclass
class RewardModel:
    """Reward schedule and initial funding for a network."""

    name: str
    phases: List[Tuple[int, int]]           # [(rate, cumulative_block_limit), ...]
    initial_reward_pot: int                 # Reward funding present in custody at creation
    description: str = ""

    # ═══════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════

    @property
    def horizon_blocks(self) -> int:
        """Number of blocks after which no more rewards accrue."""
        return self.phases[-1][1] if self.phases else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "initial_reward_pot": str(self.initial_reward_pot),
            "phases": [
                {"rate": str(rate), "cumulative_block_limit": limit}
                for rate, limit in self.phases
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RewardModel":
        phases = [
            (int(p["rate"]), int(p["cumulative_block_limit"]))
            for p in data.get("phases", [])
        ]
        return cls(
            name=data.get("name", "custom"),
            phases=phases,
            initial_reward_pot=int(data.get("initial_reward_pot", 0)),
            description=data.get("description", ""),
        )

    def save(self, path: str):
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "RewardModel":
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))


# ═══════════════════════════════════════════════════════════════════════════
# DEVNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
DEVNET = RewardModel(
    name="devnet",
    phases=[
        (10 * UNIT, 100),           # Bootstrap: 10 STK per block
        (5 * UNIT, 1_000),          # 5 STK per block
        (2 * UNIT, 10_000),         # Tail: 2 STK per block
    ],
    initial_reward_pot=1_000_000 * UNIT,
    description="Short schedule for local testing",
)


# ═══════════════════════════════════════════════════════════════════════════
# TESTNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
TESTNET = RewardModel(
    name="testnet",
    phases=[
        (32 * UNIT, 50_000),
        (16 * UNIT, 100_000),
        (8 * UNIT, 200_000),
        (4 * UNIT, 400_000),
    ],
    initial_reward_pot=10_000_000 * UNIT,
    description="Mainnet shape compressed ~26x",
)


# ═══════════════════════════════════════════════════════════════════════════
# MAINNET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
MAINNET = RewardModel(
    name="mainnet",
    phases=[
        (32 * UNIT, 1_314_000),     # ~6 months @ 12s
        (16 * UNIT, 2_628_000),     # ~1 year
        (8 * UNIT, 5_256_000),      # ~2 years
        (4 * UNIT, 10_512_000),     # ~4 years
    ],
    initial_reward_pot=200_000_000 * UNIT,
    description="Four halving phases over ~4 years",
)


REWARD_MODELS: Dict[str, RewardModel] = {
    "devnet": DEVNET,
    "testnet": TESTNET,
    "mainnet": MAINNET,
}
