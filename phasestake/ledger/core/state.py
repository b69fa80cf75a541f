# MIT License
# Copyright (c) 2025 Hashborn

from typing import Any, Dict, Iterator, List, Optional, Set
import logging
from .accounts import Account
from ...protocol.crypto.hash import balance_leaf, merkle_root
from ...protocol.types.common import UnknownParticipant
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

# Storage keys
META_EPOCH_START = "meta:epoch_start_block"
META_LAST_SETTLED = "meta:last_settled_block"
META_TOTAL_STAKED = "meta:total_staked"
META_REWARD_POT = "meta:total_reward_pot_remaining"
META_SCHEDULE = "meta:schedule"
ACCOUNT_PREFIX = "acc:"
REGISTRY_PREFIX = "reg:"

def _registry_key(index: int) -> str:
    # Zero padded so prefix scans return insertion order
    return f"{REGISTRY_PREFIX}{index:012d}"

class LedgerState:
    """
    Exclusively owned ledger state: accounts, participant registry and totals.

    Mutations happen on a clone() and become visible only when the owner
    swaps the clone in and calls persist().
    """

    def __init__(self, db: StorageDB, epoch_start_block: int = 0,
                 accounts: Dict[str, Account] = None, registry: List[str] = None):
        self.db = db
        # address -> Account
        self._accounts: Dict[str, Account] = accounts if accounts is not None else {}
        # Insertion ordered list of every address that ever deposited
        self._registry: List[str] = registry if registry is not None else []
        self._dirty: Set[str] = set()
        self._persisted_registry_len = len(self._registry)

        self.epoch_start_block = epoch_start_block
        self.last_settled_block = epoch_start_block
        self.total_staked = 0
        self.total_reward_pot_remaining = 0
        # Accumulator used while a settlement pass runs
        self.pending_total_staked = 0

    def clone(self) -> 'LedgerState':
        """Creates a working copy of the state."""
        new_accounts = {k: v.model_copy() for k, v in self._accounts.items()}
        cloned = LedgerState(self.db, self.epoch_start_block, new_accounts, list(self._registry))
        cloned._dirty = set(self._dirty)
        cloned._persisted_registry_len = self._persisted_registry_len
        cloned.last_settled_block = self.last_settled_block
        cloned.total_staked = self.total_staked
        cloned.total_reward_pot_remaining = self.total_reward_pot_remaining
        cloned.pending_total_staked = self.pending_total_staked
        return cloned

    # --- Accounts ---
    def is_known(self, address: str) -> bool:
        return address in self._accounts

    def get_account(self, address: str) -> Optional[Account]:
        return self._accounts.get(address)

    def require_account(self, address: str) -> Account:
        acc = self._accounts.get(address)
        if acc is None:
            raise UnknownParticipant(f"{address} hasn't staked any tokens yet")
        return acc

    def register(self, address: str, height: int) -> Account:
        """Adds a participant to the registry (no-op if already known)."""
        acc = self._accounts.get(address)
        if acc is not None:
            return acc
        acc = Account(address=address, balance=0, joined_height=height)
        self._accounts[address] = acc
        self._registry.append(address)
        self._dirty.add(address)
        return acc

    def set_account(self, account: Account):
        """Updates account in local cache and marks it for persistence."""
        self._accounts[account.address] = account
        self._dirty.add(account.address)

    def participants(self) -> List[str]:
        return list(self._registry)

    def iter_accounts(self) -> Iterator[Account]:
        """Accounts in registry order."""
        for address in self._registry:
            yield self._accounts[address]

    def participant_count(self) -> int:
        return len(self._registry)

    def sum_balances(self) -> int:
        return sum(acc.balance for acc in self._accounts.values())

    # --- Persistence ---
    def _meta_items(self) -> Dict[str, str]:
        return {
            META_EPOCH_START: str(self.epoch_start_block),
            META_LAST_SETTLED: str(self.last_settled_block),
            META_TOTAL_STAKED: str(self.total_staked),
            META_REWARD_POT: str(self.total_reward_pot_remaining),
        }

    def dirty_items(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Key/value pairs that changed since the last persist()."""
        items = self._meta_items()
        for addr in self._dirty:
            items[f"{ACCOUNT_PREFIX}{addr}"] = self._accounts[addr].model_dump_json()
        for index in range(self._persisted_registry_len, len(self._registry)):
            items[_registry_key(index)] = self._registry[index]
        if extra:
            items.update(extra)
        return items

    def persist(self, journal_entry: Optional[Dict[str, Any]] = None, extra: Optional[Dict[str, str]] = None):
        """Writes modified accounts, new registry entries and totals in one transaction."""
        items = self.dirty_items(extra)
        self.db.commit_batch(items, journal_entry)
        logger.debug(f"Persisted {len(items)} state keys")
        self._dirty.clear()
        self._persisted_registry_len = len(self._registry)

    def to_items(self) -> Dict[str, str]:
        """Full key/value image of the state (used by snapshots)."""
        items = self._meta_items()
        for addr, acc in self._accounts.items():
            items[f"{ACCOUNT_PREFIX}{addr}"] = acc.model_dump_json()
        for index, addr in enumerate(self._registry):
            items[_registry_key(index)] = addr
        return items

    @staticmethod
    def load(db: StorageDB) -> Optional['LedgerState']:
        """Loads the persisted state, or None if the DB holds no ledger yet."""
        raw_epoch = db.get_state(META_EPOCH_START)
        if raw_epoch is None:
            return None

        registry = list(db.get_state_by_prefix(REGISTRY_PREFIX).values())
        accounts: Dict[str, Account] = {}
        for key, raw_json in db.get_state_by_prefix(ACCOUNT_PREFIX).items():
            acc = Account.model_validate_json(raw_json)
            accounts[acc.address] = acc

        missing = [addr for addr in registry if addr not in accounts]
        if missing:
            raise ValueError(f"Registry references {len(missing)} unknown accounts (first: {missing[0]})")

        state = LedgerState(db, int(raw_epoch), accounts, registry)
        state.last_settled_block = int(db.get_state(META_LAST_SETTLED) or raw_epoch)
        state.total_staked = int(db.get_state(META_TOTAL_STAKED) or 0)
        state.total_reward_pot_remaining = int(db.get_state(META_REWARD_POT) or 0)
        logger.info(
            f"Loaded ledger state: {len(registry)} participants, "
            f"last settled block {state.last_settled_block}"
        )
        return state

    def compute_state_root(self) -> str:
        """Computes Merkle root over (address, balance) of every participant, sorted by address."""
        leaves = [
            balance_leaf(addr, self._accounts[addr].balance)
            for addr in sorted(self._accounts.keys())
        ]
        return merkle_root(leaves).hex()
