# MIT License
# Copyright (c) 2025 Hashborn

"""
Staking ledger: the public surface.

Every mutating call goes through `_commit`:
1. clone the committed state
2. settle the clone up to the current block height
3. apply the mutation to the now-current balances
4. check invariants (if enabled for the network)
5. move value through the transfer collaborator
6. persist dirty keys + journal row in one SQLite transaction
7. swap the clone in, emit events, update metrics

An exception anywhere in 1-6 leaves the committed state untouched. A
transfer that already happened when persistence fails is compensated.
"""

import json
import logging
import sqlite3
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .blocks import BlockHeightSource
from .events import EventBus, event_bus
from .invariants import check_invariants, collect_violations
from .phases import PhaseSchedule
from .precision import checked_add, checked_sub
from .receipts import LedgerReceipt
from .settlement import SettlementEngine, SettlementReport
from .state import LedgerState, META_SCHEDULE
from .transfer import TransferError, ValueTransfer
from ..observability.metrics import record_failure, record_operation, record_settlement, update_metrics
from ..storage.db import StorageDB
from ...protocol.config.params import CURRENT_NETWORK, NetworkConfig
from ...protocol.types.common import (
    ArithmeticOverflow,
    InvalidAmount,
    InvalidSchedule,
    InvariantViolation,
    LedgerError,
    LedgerOp,
    NothingToWithdraw,
    TransferFailed,
)

logger = logging.getLogger(__name__)

# Pending value movement: ("in" | "out", address, amount)
Transfer = Tuple[str, str, int]
# Mutation applied to the settled working copy
Mutation = Callable[[LedgerState, int], Tuple[LedgerReceipt, Optional[Transfer]]]


def _schedule_json(schedule: PhaseSchedule) -> str:
    return json.dumps([list(pair) for pair in schedule.to_pairs()])


class Ledger:
    def __init__(self,
                 db_path: str,
                 schedule: PhaseSchedule,
                 blocks: BlockHeightSource,
                 transfer: ValueTransfer,
                 initial_reward_pot: int = 0,
                 epoch_start_block: Optional[int] = None,
                 config: NetworkConfig = CURRENT_NETWORK,
                 events: EventBus = event_bus,
                 snapshot_manager=None):
        if initial_reward_pot < 0:
            raise InvalidAmount("Initial reward pot must be non-negative")

        self.db = StorageDB(db_path)
        self._lock = threading.RLock()
        self.schedule = schedule
        self.blocks = blocks
        self.transfer = transfer
        self.config = config
        self.events = events
        self.snapshot_manager = snapshot_manager
        self.engine = SettlementEngine(schedule, config.precision_scale, config.max_amount)

        state = LedgerState.load(self.db)
        if state is None:
            state = self._init_state(initial_reward_pot, epoch_start_block)
        else:
            stored = self.db.get_state(META_SCHEDULE)
            if stored is not None and stored != _schedule_json(schedule):
                self.db.close()
                raise InvalidSchedule(
                    f"Ledger at {db_path} was created with schedule {stored}, got {schedule.to_pairs()}"
                )
        self.state = state

    def _init_state(self, initial_reward_pot: int, epoch_start_block: Optional[int]) -> LedgerState:
        height = self.blocks.current_height()
        epoch = height if epoch_start_block is None else epoch_start_block
        if epoch > height:
            self.db.close()
            raise ValueError(f"Epoch start block {epoch} is ahead of current height {height}")

        state = LedgerState(self.db, epoch)
        state.total_reward_pot_remaining = initial_reward_pot
        state.persist(extra={META_SCHEDULE: _schedule_json(self.schedule)})
        logger.info(
            f"Ledger initialized: epoch start block {epoch}, "
            f"{len(self.schedule.phases)} phase(s), horizon {self.schedule.horizon}, "
            f"reward pot {initial_reward_pot}"
        )
        return state

    # --- Thread-safe wrappers ---
    def deposit(self, participant: str, amount: int) -> LedgerReceipt:
        with self._lock:
            return self._deposit_impl(participant, amount)

    def withdraw(self, participant: str) -> LedgerReceipt:
        with self._lock:
            return self._withdraw_impl(participant, None)

    def withdraw_partial(self, participant: str, amount: int) -> LedgerReceipt:
        with self._lock:
            return self._withdraw_impl(participant, amount)

    def fund_reward_pot(self, funder: str, amount: int) -> LedgerReceipt:
        with self._lock:
            return self._fund_impl(funder, amount)

    def request_settlement(self) -> SettlementReport:
        with self._lock:
            receipt = self._commit(LedgerOp.SETTLE, None, self._settle_only(None))
            return receipt.settlement

    def get_settled_balance(self, participant: str) -> int:
        with self._lock:
            self._reject(LedgerOp.SETTLE, participant, lambda: self.state.require_account(participant))
            receipt = self._commit(LedgerOp.SETTLE, participant, self._settle_only(participant))
            return receipt.balance_after

    def get_balance(self, participant: str) -> int:
        """Balance as of the last settlement. Never settles."""
        with self._lock:
            return self.state.require_account(participant).balance

    # --- Operations ---
    def _deposit_impl(self, participant: str, amount: int) -> LedgerReceipt:
        if amount <= 0:
            self._reject(LedgerOp.DEPOSIT, participant, InvalidAmount("Deposit amount must be greater than 0"))

        bound = self.config.max_amount

        def apply(work: LedgerState, height: int):
            acc = work.register(participant, height)
            acc.balance = checked_add(acc.balance, amount, bound)
            work.set_account(acc)
            work.total_staked = checked_add(work.total_staked, amount, bound)
            work.total_reward_pot_remaining = checked_add(work.total_reward_pot_remaining, amount, bound)
            receipt = LedgerReceipt(
                op=LedgerOp.DEPOSIT.value,
                participant=participant,
                block_height=height,
                amount=amount,
                balance_after=acc.balance,
            )
            return receipt, ("in", participant, amount)

        return self._commit(LedgerOp.DEPOSIT, participant, apply)

    def _withdraw_impl(self, participant: str, amount: Optional[int]) -> LedgerReceipt:
        op = LedgerOp.WITHDRAW if amount is None else LedgerOp.WITHDRAW_PARTIAL
        self._reject(op, participant, lambda: self.state.require_account(participant))
        if amount is not None and amount <= 0:
            self._reject(op, participant, InvalidAmount("Withdraw amount must be greater than 0"))

        def apply(work: LedgerState, height: int):
            acc = work.require_account(participant)
            if acc.balance == 0:
                raise NothingToWithdraw(f"{participant} has nothing to withdraw")

            requested = acc.balance if amount is None else amount
            if requested > acc.balance:
                raise InvalidAmount(
                    f"Withdraw amount is greater than staked amount ({requested} > {acc.balance})"
                )

            payout = min(requested, work.total_reward_pot_remaining)
            acc.balance = checked_sub(acc.balance, payout)
            work.set_account(acc)
            work.total_staked = checked_sub(work.total_staked, payout)
            work.total_reward_pot_remaining = checked_sub(work.total_reward_pot_remaining, payout)

            if payout < requested:
                logger.warning(
                    f"Reward pot covers only {payout} of {requested} requested by {participant}"
                )

            receipt = LedgerReceipt(
                op=op.value,
                participant=participant,
                block_height=height,
                amount=requested,
                amount_paid=payout,
                unfunded=requested - payout,
                balance_after=acc.balance,
            )
            return receipt, ("out", participant, payout) if payout > 0 else None

        return self._commit(op, participant, apply)

    def _fund_impl(self, funder: str, amount: int) -> LedgerReceipt:
        if amount <= 0:
            self._reject(LedgerOp.FUND_POT, funder, InvalidAmount("Funding amount must be greater than 0"))

        bound = self.config.max_amount

        def apply(work: LedgerState, height: int):
            work.total_reward_pot_remaining = checked_add(work.total_reward_pot_remaining, amount, bound)
            receipt = LedgerReceipt(
                op=LedgerOp.FUND_POT.value,
                participant=funder,
                block_height=height,
                amount=amount,
            )
            return receipt, ("in", funder, amount)

        return self._commit(LedgerOp.FUND_POT, funder, apply)

    def _settle_only(self, participant: Optional[str]) -> Mutation:
        def apply(work: LedgerState, height: int):
            balance = work.require_account(participant).balance if participant else 0
            receipt = LedgerReceipt(
                op=LedgerOp.SETTLE.value,
                participant=participant,
                block_height=height,
                balance_after=balance,
            )
            return receipt, None
        return apply

    # --- Single mutation path ---
    def _commit(self, op: LedgerOp, participant: Optional[str], apply: Mutation) -> LedgerReceipt:
        height = self.blocks.current_height()
        work = self.state.clone()
        moved: Optional[Transfer] = None
        try:
            started = time.perf_counter()
            report = self.engine.settle(work, height)
            settle_time = time.perf_counter() - started

            receipt, pending = apply(work, height)
            receipt.settlement = report

            if self.config.check_invariants:
                check_invariants(work, height)

            if pending is not None:
                self._move(pending)
                moved = pending

            # No-op settlement requests leave no journal row
            journal_entry = None
            if op != LedgerOp.SETTLE or not report.noop:
                journal_entry = {
                    "height": height,
                    "op": op.value,
                    "participant": participant,
                    "data": {
                        "amount": str(receipt.amount),
                        "amount_paid": str(receipt.amount_paid),
                        "unfunded": str(receipt.unfunded),
                        "balance_after": str(receipt.balance_after),
                        "settled_from": report.from_block,
                        "settled_to": report.to_block,
                        "total_rewarded": str(report.total_rewarded),
                    },
                }

            try:
                work.persist(journal_entry)
            except sqlite3.Error as e:
                logger.error(f"Failed to persist {op.value} for {participant}: {e}")
                if moved is not None:
                    self._compensate(moved)
                record_failure(op.value, "persistence_error")
                raise
        except LedgerError as e:
            self._log_failure(op, participant, e)
            raise

        prev_settled = self.state.last_settled_block
        self.state = work

        record_operation(op.value)
        record_settlement(report, settle_time)
        self._emit(op, receipt, report)
        update_metrics(self)
        self._maybe_snapshot(prev_settled, height)

        if op != LedgerOp.SETTLE:
            logger.info(
                f"{op.value} {participant} amount={receipt.amount} paid={receipt.amount_paid} "
                f"balance={receipt.balance_after} at block {height}"
            )
        return receipt

    def _reject(self, op: LedgerOp, participant: Optional[str], failure):
        """Raises `failure` (or what the callable raises) through the failure accounting path."""
        try:
            if isinstance(failure, LedgerError):
                raise failure
            failure()
        except LedgerError as e:
            self._log_failure(op, participant, e)
            raise

    def _log_failure(self, op: LedgerOp, participant: Optional[str], error: LedgerError):
        record_failure(op.value, error.code)
        if isinstance(error, (ArithmeticOverflow, InvariantViolation)):
            logger.error(f"{op.value} for {participant} rolled back: {error}")
        else:
            logger.warning(f"{op.value} for {participant} rejected: {error}")
        self.events.emit('operation_failed', op=op.value, address=participant, error=error.code)

    def _move(self, pending: Transfer):
        direction, address, amount = pending
        try:
            if direction == "in":
                self.transfer.transfer_in(address, amount)
            else:
                self.transfer.transfer_out(address, amount)
        except TransferError as e:
            raise TransferFailed(f"Transfer {direction} of {amount} for {address} failed: {e}") from e

    def _compensate(self, moved: Transfer):
        direction, address, amount = moved
        try:
            if direction == "in":
                self.transfer.transfer_out(address, amount)
            else:
                self.transfer.transfer_in(address, amount)
            logger.warning(f"Compensated transfer {direction} of {amount} for {address}")
        except TransferError as e:
            logger.error(f"Compensation of transfer {direction} of {amount} for {address} failed: {e}")

    def _emit(self, op: LedgerOp, receipt: LedgerReceipt, report: SettlementReport):
        if not report.noop:
            self.events.emit(
                'settled',
                from_block=report.from_block,
                to_block=report.to_block,
                total_rewarded=report.total_rewarded,
                participants=report.participants_visited,
            )
            for address, reward in report.rewards.items():
                self.events.emit('rewards_calculated', address=address, reward=reward, height=report.to_block)

        if op == LedgerOp.DEPOSIT:
            self.events.emit(
                'deposited',
                address=receipt.participant,
                amount=receipt.amount,
                balance=receipt.balance_after,
                height=receipt.block_height,
            )
        elif op in (LedgerOp.WITHDRAW, LedgerOp.WITHDRAW_PARTIAL):
            self.events.emit(
                'withdrawn',
                address=receipt.participant,
                amount_paid=receipt.amount_paid,
                amount_requested=receipt.amount,
                unfunded=receipt.unfunded,
                height=receipt.block_height,
            )
            if op == LedgerOp.WITHDRAW_PARTIAL:
                self.events.emit(
                    'partially_withdrawn',
                    address=receipt.participant,
                    amount_paid=receipt.amount_paid,
                    balance=receipt.balance_after,
                    height=receipt.block_height,
                )
        elif op == LedgerOp.FUND_POT:
            self.events.emit(
                'pot_funded',
                funder=receipt.participant,
                amount=receipt.amount,
                pot=self.state.total_reward_pot_remaining,
                height=receipt.block_height,
            )

    def _maybe_snapshot(self, prev_settled: int, height: int):
        interval = self.config.snapshot_interval_blocks
        if self.snapshot_manager is None or interval <= 0:
            return
        if self.state.last_settled_block // interval == prev_settled // interval:
            return
        try:
            self.create_snapshot()
            self.snapshot_manager.cleanup_old_snapshots(self.config.snapshots_to_keep)
        except (OSError, ValueError) as e:
            logger.error(f"Automatic snapshot at height {height} failed: {e}")

    # --- Queries ---
    @property
    def total_staked(self) -> int:
        with self._lock:
            return self.state.total_staked

    @property
    def reward_pot_remaining(self) -> int:
        with self._lock:
            return self.state.total_reward_pot_remaining

    @property
    def last_settled_block(self) -> int:
        with self._lock:
            return self.state.last_settled_block

    @property
    def epoch_start_block(self) -> int:
        return self.state.epoch_start_block

    def participants(self) -> List[str]:
        with self._lock:
            return self.state.participants()

    def is_known(self, participant: str) -> bool:
        with self._lock:
            return self.state.is_known(participant)

    def state_root(self) -> str:
        with self._lock:
            return self.state.compute_state_root()

    def journal(self, limit: int = 100, participant: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.db.get_journal(limit, participant)

    def preview_rewards(self) -> Dict[str, int]:
        """Rewards a settlement at the current height would credit."""
        with self._lock:
            return self.engine.preview(self.state, self.blocks.current_height())

    def current_phase(self) -> Dict[str, int]:
        height = self.blocks.current_height()
        since_epoch = max(0, height - self.state.epoch_start_block)
        rate, limit = self.schedule.rate_at(since_epoch)
        index = self.schedule.phase_index_at(since_epoch)
        return {
            "index": -1 if index is None else index,
            "rate": rate,
            "cumulative_block_limit": limit,
            "blocks_since_epoch": since_epoch,
        }

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "network_id": self.config.network_id,
                "block_height": self.blocks.current_height(),
                "epoch_start_block": self.state.epoch_start_block,
                "last_settled_block": self.state.last_settled_block,
                "total_staked": self.state.total_staked,
                "reward_pot_remaining": self.state.total_reward_pot_remaining,
                "participants": self.state.participant_count(),
                "horizon": self.schedule.horizon,
                "current_phase": self.current_phase(),
                "state_root": self.state.compute_state_root(),
            }

    # --- Snapshots ---
    def create_snapshot(self):
        if self.snapshot_manager is None:
            raise RuntimeError("No snapshot manager attached")
        with self._lock:
            return self.snapshot_manager.create_snapshot(
                self.state,
                self.blocks.current_height(),
                self.schedule.to_pairs(),
                self.config.network_id,
            )

    def restore_snapshot(self, height: int):
        """
        Replaces the ledger state with the snapshot taken at `height`.

        Operator tool for a stopped or quiesced node. Only ledger keys are
        rewound: the transfer collaborator's balances and the journal keep
        everything that happened after the snapshot.
        """
        if self.snapshot_manager is None:
            raise RuntimeError("No snapshot manager attached")
        with self._lock:
            snapshot = self.snapshot_manager.load_snapshot(height)
            if [tuple(p) for p in snapshot.schedule] != self.schedule.to_pairs():
                raise InvalidSchedule(f"Snapshot at height {height} uses schedule {snapshot.schedule}")
            current = self.blocks.current_height()
            if snapshot.last_settled_block > current:
                raise InvariantViolation(
                    f"Snapshot settled up to block {snapshot.last_settled_block}, block source is at {current}"
                )
            candidate = self.snapshot_manager.build_state(snapshot, self.db)
            problems = collect_violations(candidate, current)
            if problems:
                raise InvariantViolation("; ".join(problems))
            self.state = self.snapshot_manager.write_state(snapshot, candidate, self.db)
            update_metrics(self)
            logger.info(f"Ledger restored from snapshot at height {height}")

    def close(self):
        self.db.close()
