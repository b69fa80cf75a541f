# MIT License
# Copyright (c) 2025 Hashborn

"""
Ledger invariants, checked before a working state is committed.

1. sum(account balances) == total_staked
2. last_settled_block <= current block height
3. epoch_start_block <= last_settled_block
4. total_reward_pot_remaining >= 0
5. no negative balances
6. registry and account set agree
"""

from typing import List, Optional

from .state import LedgerState
from ...protocol.types.common import InvariantViolation


def collect_violations(state: LedgerState, current_height: Optional[int] = None) -> List[str]:
    """Returns a human-readable list of violated invariants (empty if all hold)."""
    problems: List[str] = []

    balance_sum = state.sum_balances()
    if balance_sum != state.total_staked:
        problems.append(f"sum of balances {balance_sum} != total_staked {state.total_staked}")

    if current_height is not None and state.last_settled_block > current_height:
        problems.append(
            f"last_settled_block {state.last_settled_block} ahead of current height {current_height}"
        )

    if state.last_settled_block < state.epoch_start_block:
        problems.append(
            f"last_settled_block {state.last_settled_block} before epoch start {state.epoch_start_block}"
        )

    if state.total_reward_pot_remaining < 0:
        problems.append(f"reward pot is negative: {state.total_reward_pot_remaining}")

    negative = [addr for addr, acc in state._accounts.items() if acc.balance < 0]
    if negative:
        problems.append(f"{len(negative)} negative balance(s), first: {negative[0]}")

    registry = state.participants()
    if len(set(registry)) != len(registry):
        problems.append("registry contains duplicate addresses")
    if set(registry) != set(state._accounts.keys()):
        problems.append("registry and account set differ")

    return problems


def check_invariants(state: LedgerState, current_height: Optional[int] = None):
    """Raises InvariantViolation listing every broken invariant."""
    problems = collect_violations(state, current_height)
    if problems:
        raise InvariantViolation("; ".join(problems))
