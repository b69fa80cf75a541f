"""
Operation receipts.

Every committed ledger operation returns a LedgerReceipt describing what
was moved and the settlement pass that preceded it.
"""
from dataclasses import dataclass
from typing import Optional

from .settlement import SettlementReport


@dataclass
class LedgerReceipt:
    """
    Result of a committed ledger operation.

    Attributes:
        op: operation name (see LedgerOp)
        participant: address the operation acted for
        block_height: height the operation was settled at
        amount: amount requested by the caller (deposit / withdraw_partial / fund)
        amount_paid: amount transferred out (withdrawals only)
        unfunded: part of the requested withdrawal the reward pot could not cover
        balance_after: participant balance after the operation
        settlement: the settlement pass run before the operation
    """
    op: str
    participant: Optional[str]
    block_height: int
    amount: int = 0
    amount_paid: int = 0
    unfunded: int = 0
    balance_after: int = 0
    settlement: Optional[SettlementReport] = None

    def to_dict(self) -> dict:
        """Convert receipt to dictionary for API response."""
        return {
            "op": self.op,
            "participant": self.participant,
            "block_height": self.block_height,
            "amount": str(self.amount),
            "amount_paid": str(self.amount_paid),
            "unfunded": str(self.unfunded),
            "balance_after": str(self.balance_after),
            "settlement": self.settlement.to_dict() if self.settlement else None,
        }
