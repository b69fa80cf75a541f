# MIT License
# Copyright (c) 2025 Hashborn

"""
Reward phase schedule.

Blocks are counted from the epoch start: block 1 is the first block after
the epoch start block. A block belongs to the first phase whose cumulative
limit is >= its index, so a phase with limit L covers blocks up to and
including L. Past the last limit the rate is zero forever.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ...protocol.types.common import InvalidSchedule
from ...protocol.types.phase import Phase


class PhaseSchedule:
    """Immutable ordered list of phases. All methods are pure."""

    def __init__(self, phases: Sequence[Phase]):
        if not phases:
            raise InvalidSchedule("Schedule must contain at least one phase")

        prev_limit = 0
        for phase in phases:
            if phase.cumulative_block_limit <= prev_limit:
                raise InvalidSchedule(
                    f"Phase limits must strictly increase: {phase.cumulative_block_limit} after {prev_limit}"
                )
            prev_limit = phase.cumulative_block_limit

        self._phases: Tuple[Phase, ...] = tuple(p.model_copy() for p in phases)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[int, int]]) -> "PhaseSchedule":
        """Builds a schedule from (rate, cumulative_block_limit) pairs."""
        try:
            phases = [Phase(rate=rate, cumulative_block_limit=limit) for rate, limit in pairs]
        except ValidationError as e:
            raise InvalidSchedule(f"Invalid phase: {e.errors()[0]['msg']}")
        return cls(phases)

    @property
    def phases(self) -> Tuple[Phase, ...]:
        return self._phases

    @property
    def horizon(self) -> int:
        """Last block (since epoch) that still earns rewards."""
        return self._phases[-1].cumulative_block_limit

    def to_pairs(self) -> List[Tuple[int, int]]:
        return [p.as_pair() for p in self._phases]

    def rate_at(self, blocks_since_epoch: int) -> Tuple[int, int]:
        """
        Returns (rate, cumulative_block_limit) of the phase that the given
        block falls into, or (0, 0) once the schedule horizon is passed.
        """
        if blocks_since_epoch < 0:
            raise ValueError(f"blocks_since_epoch must be >= 0, got {blocks_since_epoch}")

        for phase in self._phases:
            if phase.cumulative_block_limit >= blocks_since_epoch:
                return phase.rate, phase.cumulative_block_limit
        return 0, 0

    def phase_index_at(self, blocks_since_epoch: int) -> Optional[int]:
        """Zero-based index of the phase containing the block, None past the horizon."""
        if blocks_since_epoch < 0:
            raise ValueError(f"blocks_since_epoch must be >= 0, got {blocks_since_epoch}")

        for index, phase in enumerate(self._phases):
            if phase.cumulative_block_limit >= blocks_since_epoch:
                return index
        return None

    def segments(self, start: int, end: int) -> List[Tuple[int, int]]:
        """
        Splits the blocks (start, end] into runs of constant rate.

        Returns [(rate, blocks), ...] in block order. With a single boundary
        inside the interval this is the remainder of the phase the interval
        started in followed by the blocks of the phase it ends in.
        """
        if start < 0 or end < start:
            raise ValueError(f"Invalid block interval ({start}, {end}]")

        runs: List[Tuple[int, int]] = []
        cursor = start
        while cursor < end:
            rate, limit = self.rate_at(cursor + 1)
            if limit == 0:
                # Reward stream has ended
                runs.append((0, end - cursor))
                break
            run_end = min(limit, end)
            runs.append((rate, run_end - cursor))
            cursor = run_end
        return runs

    def __eq__(self, other) -> bool:
        if not isinstance(other, PhaseSchedule):
            return NotImplemented
        return self.to_pairs() == other.to_pairs()

    def __repr__(self) -> str:
        return f"PhaseSchedule({self.to_pairs()})"
