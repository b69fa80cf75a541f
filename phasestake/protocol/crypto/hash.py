import hashlib
import json
from typing import Any, List

def sha256(data: bytes) -> bytes:
    """Returns SHA256 hash of bytes."""
    return hashlib.sha256(data).digest()

def sha256_hex(data: bytes) -> str:
    """Returns SHA256 hash of bytes as hex string."""
    return sha256(data).hex()

def canonical_json(data: Any) -> bytes:
    """Sorted-key, whitespace-free JSON encoding used for every content hash."""
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode("utf-8")

def balance_leaf(address: str, balance: int) -> bytes:
    """Leaf hash of one ledger account."""
    return sha256(f"{address}:{balance}".encode("utf-8"))

def merkle_root(hashes: List[bytes]) -> bytes:
    """Calculates Merkle Root for a list of hashes (odd nodes are paired with themselves)."""
    if not hashes:
        return b'\x00' * 32

    if len(hashes) == 1:
        return hashes[0]

    new_level = []
    for i in range(0, len(hashes), 2):
        left = hashes[i]
        right = hashes[i+1] if i+1 < len(hashes) else left
        new_level.append(sha256(left + right))

    return merkle_root(new_level)
