# MIT License
# Copyright (c) 2025 Hashborn

"""
Global Settlement Pass

Brings every participant's balance up to date with the blocks elapsed since
the last settlement.

Flow:
1. Nothing to do if no block elapsed since the last settlement
2. Split the elapsed blocks into runs of constant phase rate
3. For every participant (registry order) credit
       share  = balance * SCALE // total_staked      (pre-settlement total)
       reward = sum(share * rate * blocks // SCALE)  over the runs
4. total_staked becomes the sum of the new balances

The share basis is fixed for the whole pass, so the order in which
participants are visited does not change anyone's reward.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .phases import PhaseSchedule
from .precision import checked_add, scaled_share, segment_reward
from .state import LedgerState
from ...protocol.config.params import MAX_AMOUNT, PRECISION_SCALE

logger = logging.getLogger(__name__)


@dataclass
class SettlementReport:
    """
    Outcome of one settlement pass.

    Attributes:
        from_block: last settled block before the pass
        to_block: block the ledger was brought up to
        runs: [(rate, blocks)] phase runs covered by the pass
        rewards: address -> reward credited (only participants credited > 0)
        total_rewarded: sum of all credited rewards
        participants_visited: registry size at the time of the pass
    """
    from_block: int
    to_block: int
    runs: List[Tuple[int, int]] = field(default_factory=list)
    rewards: Dict[str, int] = field(default_factory=dict)
    total_rewarded: int = 0
    participants_visited: int = 0

    @property
    def blocks(self) -> int:
        return self.to_block - self.from_block

    @property
    def noop(self) -> bool:
        return self.to_block <= self.from_block

    @property
    def boundary_crossed(self) -> bool:
        return len(self.runs) > 1

    def to_dict(self) -> dict:
        return {
            "from_block": self.from_block,
            "to_block": self.to_block,
            "blocks": self.blocks,
            "runs": [{"rate": str(rate), "blocks": blocks} for rate, blocks in self.runs],
            "rewards": {addr: str(amount) for addr, amount in self.rewards.items()},
            "total_rewarded": str(self.total_rewarded),
            "participants_visited": self.participants_visited,
            "boundary_crossed": self.boundary_crossed,
        }


class SettlementEngine:
    """
    Stateless settlement algorithm.

    Operates on the LedgerState it is handed; the caller owns atomicity
    (settle a working copy, discard it on any error).
    """

    def __init__(self, schedule: PhaseSchedule,
                 precision_scale: int = PRECISION_SCALE,
                 max_amount: int = MAX_AMOUNT):
        self.schedule = schedule
        self.scale = precision_scale
        self.bound = max_amount

    def settle(self, state: LedgerState, current_height: int) -> SettlementReport:
        last = state.last_settled_block

        # 1. No blocks elapsed
        if current_height <= last:
            if current_height < last:
                logger.warning(
                    f"Settlement requested at height {current_height} below last settled block {last}, ignoring"
                )
            return SettlementReport(from_block=last, to_block=last)

        report = SettlementReport(
            from_block=last,
            to_block=current_height,
            participants_visited=state.participant_count(),
        )

        # 2. Nothing staked: there is nothing to divide
        if state.total_staked == 0:
            state.last_settled_block = current_height
            logger.debug(f"Settled {last} -> {current_height} with empty stake")
            return report

        epoch = state.epoch_start_block
        report.runs = self.schedule.segments(last - epoch, current_height - epoch)
        pot_exhausted = state.total_reward_pot_remaining == 0
        total_staked = state.total_staked

        # 3. Credit every participant against the pre-settlement total
        state.pending_total_staked = 0
        for acc in state.iter_accounts():
            if acc.balance > 0 and not pot_exhausted:
                reward = self._reward_for(acc.balance, total_staked, report.runs)
                if reward > 0:
                    acc.balance = checked_add(acc.balance, reward, self.bound)
                    state.set_account(acc)
                    report.rewards[acc.address] = reward
                    report.total_rewarded += reward
            state.pending_total_staked = checked_add(state.pending_total_staked, acc.balance, self.bound)

        # 4. Commit the pass
        state.total_staked = state.pending_total_staked
        state.pending_total_staked = 0
        state.last_settled_block = current_height

        if report.total_rewarded:
            logger.info(
                f"Settled blocks {last} -> {current_height}: credited {report.total_rewarded} "
                f"to {len(report.rewards)} participant(s) over {len(report.runs)} phase run(s)"
            )
        return report

    def _reward_for(self, balance: int, total_staked: int, runs: List[Tuple[int, int]]) -> int:
        share = scaled_share(balance, total_staked, self.scale, self.bound)
        reward = 0
        for rate, blocks in runs:
            reward += segment_reward(share, rate, blocks, self.scale, self.bound)
        return reward

    def preview(self, state: LedgerState, current_height: int) -> Dict[str, int]:
        """Rewards a pass at current_height would credit, without touching `state`."""
        return self.settle(state.clone(), current_height).rewards
