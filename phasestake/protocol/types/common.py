# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum


class LedgerOp(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    WITHDRAW_PARTIAL = "WITHDRAW_PARTIAL"
    FUND_POT = "FUND_POT"           # Reward pot top-up by a funder
    SETTLE = "SETTLE"               # Explicit settlement request


class LedgerError(Exception):
    """Base class for every failure surfaced by a ledger operation."""
    code = "ledger_error"


class InvalidAmount(LedgerError):
    code = "invalid_amount"


class UnknownParticipant(LedgerError):
    code = "unknown_participant"


class NothingToWithdraw(LedgerError):
    code = "nothing_to_withdraw"


class TransferFailed(LedgerError):
    code = "transfer_failed"


class ArithmeticOverflow(LedgerError):
    code = "arithmetic_overflow"


class InvalidSchedule(LedgerError):
    code = "invalid_schedule"


class InvariantViolation(LedgerError):
    code = "invariant_violation"
