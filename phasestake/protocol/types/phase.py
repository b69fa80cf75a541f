# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field


class Phase(BaseModel):
    """One contiguous block range of the reward schedule."""
    rate: int = Field(..., ge=0)                      # Reward units per block for the whole pool
    cumulative_block_limit: int = Field(..., gt=0)    # Last block (since epoch) covered by this phase

    def as_pair(self):
        return (self.rate, self.cumulative_block_limit)
