# MIT License
# Copyright (c) 2025 Hashborn

"""
Value-transfer collaborator.

The ledger never moves tokens itself. Before a deposit (or pot funding)
commits it asks the collaborator to pull the amount into custody, and before
a withdrawal commits it asks it to release the payout. A collaborator signals
rejection by raising TransferError; the ledger then rolls the whole
operation back.
"""

import logging
import threading
from typing import Dict, Optional

from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

VAULT_PREFIX = "vault:"


class TransferError(Exception):
    """Raised by a collaborator that refuses to move value."""
    pass


class ValueTransfer:
    """Interface expected by the ledger."""

    def transfer_in(self, sender: str, amount: int) -> None:
        """Moves `amount` from `sender` into ledger custody."""
        raise NotImplementedError

    def transfer_out(self, recipient: str, amount: int) -> None:
        """Releases `amount` from ledger custody to `recipient`."""
        raise NotImplementedError


class TokenVault(ValueTransfer):
    """
    In-process token balances with a custody account.

    Used by devnet nodes and tests. When a StorageDB is given, balances are
    written through to it under the `vault:` prefix.
    """

    def __init__(self, custody_address: str = "stk1custody", db: Optional[StorageDB] = None,
                 balances: Optional[Dict[str, int]] = None):
        self.custody_address = custody_address
        self.db = db
        self._lock = threading.Lock()
        self._balances: Dict[str, int] = dict(balances) if balances else {}
        if db is not None:
            for key, value in db.get_state_by_prefix(VAULT_PREFIX).items():
                self._balances[key[len(VAULT_PREFIX):]] = int(value)

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address, 0)

    @property
    def custody_balance(self) -> int:
        return self.balance_of(self.custody_address)

    def mint(self, address: str, amount: int):
        """Creates tokens out of thin air (faucet / test setup)."""
        if amount <= 0:
            raise TransferError("Mint amount must be greater than 0")
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + amount
            self._write_through(address)
        logger.info(f"Minted {amount} to {address}")

    def transfer(self, sender: str, recipient: str, amount: int):
        if amount <= 0:
            raise TransferError("Transfer amount must be greater than 0")
        with self._lock:
            have = self._balances.get(sender, 0)
            if have < amount:
                raise TransferError(f"Insufficient balance: {sender} has {have}, needs {amount}")
            self._balances[sender] = have - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
            self._write_through(sender, recipient)

    def transfer_in(self, sender: str, amount: int) -> None:
        self.transfer(sender, self.custody_address, amount)

    def transfer_out(self, recipient: str, amount: int) -> None:
        self.transfer(self.custody_address, recipient, amount)

    def _write_through(self, *addresses: str):
        if self.db is None:
            return
        items = {f"{VAULT_PREFIX}{addr}": str(self._balances.get(addr, 0)) for addr in addresses}
        self.db.commit_batch(items)
