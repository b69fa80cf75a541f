import pytest
from phasestake.ledger.core.precision import (
    checked_add,
    checked_mul,
    checked_sub,
    proportional_reward,
    scaled_share,
    segment_reward,
)
from phasestake.protocol.config.params import MAX_AMOUNT
from phasestake.protocol.types.common import ArithmeticOverflow

SCALE = 10**6


def test_scaled_share_truncates():
    assert scaled_share(1, 3, SCALE) == 333333
    assert scaled_share(3, 3, SCALE) == SCALE
    assert scaled_share(0, 3, SCALE) == 0


def test_scaled_share_requires_stake():
    with pytest.raises(ValueError):
        scaled_share(1, 0, SCALE)


def test_multiply_before_divide():
    share = scaled_share(1, 3, SCALE)
    # 333333 * 10 * 5 // 10**6
    assert segment_reward(share, 10, 5, SCALE) == 16
    assert proportional_reward(1, 3, 10, 5, SCALE) == 16
    # Sole participant earns rate * blocks exactly
    assert proportional_reward(1_000_000, 1_000_000, 4, 3, SCALE) == 12


def test_zero_inputs_short_circuit():
    assert segment_reward(SCALE, 0, 100, SCALE) == 0
    assert segment_reward(SCALE, 10, 0, SCALE) == 0
    assert segment_reward(0, 10, 100, SCALE) == 0


def test_overflow_is_raised_not_saturated():
    with pytest.raises(ArithmeticOverflow):
        checked_add(MAX_AMOUNT, 1)
    with pytest.raises(ArithmeticOverflow):
        checked_mul(2**200, 2**100)
    with pytest.raises(ArithmeticOverflow):
        scaled_share(2**255, 2**255, 10**12)
    with pytest.raises(ArithmeticOverflow):
        segment_reward(10**6, 10**6, 10**6, SCALE, bound=10**9)


def test_underflow():
    with pytest.raises(ArithmeticOverflow):
        checked_sub(1, 2)
    assert checked_sub(2, 2) == 0


def test_custom_bound():
    assert checked_add(5, 5, bound=10) == 10
    with pytest.raises(ArithmeticOverflow):
        checked_add(5, 6, bound=10)
