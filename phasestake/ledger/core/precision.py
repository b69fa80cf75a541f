# MIT License
# Copyright (c) 2025 Hashborn

"""
Fixed-point helpers for proportional reward math.

Shares are integers scaled by `scale`:

    share  = balance * scale // total_staked
    reward = share * rate * blocks // scale

Every intermediate value is checked against `bound`; exceeding it raises
ArithmeticOverflow instead of saturating, so a participant's share is never
silently misreported.
"""

from ...protocol.config.params import MAX_AMOUNT, PRECISION_SCALE
from ...protocol.types.common import ArithmeticOverflow


def _check(value: int, bound: int, what: str) -> int:
    if value < 0:
        raise ArithmeticOverflow(f"{what} underflow: {value}")
    if value > bound:
        raise ArithmeticOverflow(f"{what} exceeds {bound.bit_length()}-bit range")
    return value


def checked_add(a: int, b: int, bound: int = MAX_AMOUNT) -> int:
    return _check(a + b, bound, "addition")


def checked_sub(a: int, b: int, bound: int = MAX_AMOUNT) -> int:
    return _check(a - b, bound, "subtraction")


def checked_mul(a: int, b: int, bound: int = MAX_AMOUNT) -> int:
    _check(a, bound, "operand")
    _check(b, bound, "operand")
    return _check(a * b, bound, "multiplication")


def scaled_share(balance: int, total_staked: int,
                 scale: int = PRECISION_SCALE, bound: int = MAX_AMOUNT) -> int:
    """Fraction balance / total_staked, scaled by `scale` and truncated."""
    if total_staked <= 0:
        raise ValueError("total_staked must be positive to compute a share")
    return checked_mul(balance, scale, bound) // total_staked


def segment_reward(share: int, rate: int, blocks: int,
                   scale: int = PRECISION_SCALE, bound: int = MAX_AMOUNT) -> int:
    """Reward for `blocks` blocks at `rate` for a scaled share."""
    if blocks == 0 or rate == 0 or share == 0:
        return 0
    return checked_mul(checked_mul(share, rate, bound), blocks, bound) // scale


def proportional_reward(balance: int, total_staked: int, rate: int, blocks: int,
                        scale: int = PRECISION_SCALE, bound: int = MAX_AMOUNT) -> int:
    share = scaled_share(balance, total_staked, scale, bound)
    return segment_reward(share, rate, blocks, scale, bound)
