"""
Fixed-point constants and checked integer arithmetic for YieldLock.

All amounts are unsigned integers in base units.  Reward rates are
expressed with 18 decimal places of precision:

    reward = principal × reward_rate_per_second × lock_duration / SCALE

so a rate of ``SCALE`` (10**18) pays one reward unit per staked unit per
second.  Division always truncates toward zero (floor, since every
operand is non-negative).

Every intermediate result is confined to the unsigned 256-bit range;
anything outside it raises ``ArithmeticOverflow`` instead of wrapping.
"""

from __future__ import annotations

from yieldlock_core.errors import ArithmeticOverflow

# Precision scaling constant for the per-second reward rate.
SCALE: int = 10 ** 18

# Early-close penalty: 30 % of principal, returned to the reserve.
EARLY_CLOSE_PENALTY_PCT: int = 30
PCT_DENOMINATOR: int = 100

# Largest representable unsigned amount.
UINT256_MAX: int = 2 ** 256 - 1

# Decimal places used when formatting amounts for display.
TOKEN_DECIMALS: int = 18


def is_uint(value: object) -> bool:
    """True for ints (not bools) in ``[0, UINT256_MAX]``."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= UINT256_MAX
    )


def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"{a} + {b} overflows uint256")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticOverflow(f"{a} - {b} underflows uint256")
    return a - b


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"{a} * {b} overflows uint256")
    return result


def compute_reward(principal: int, rate_per_second: int, lock_duration: int) -> int:
    """Upfront reward for a stake: ``floor(principal * rate * duration / SCALE)``.

    >>> compute_reward(100, SCALE, 10)
    1000
    >>> compute_reward(3, SCALE // 2, 1)
    1
    """
    scaled = checked_mul(checked_mul(principal, rate_per_second), lock_duration)
    return scaled // SCALE


def compute_penalty(principal: int) -> tuple[int, int]:
    """Early-close split of *principal*.

    Returns ``(payout, penalty)`` where ``penalty = floor(principal * 30 / 100)``.

    >>> compute_penalty(100)
    (70, 30)
    >>> compute_penalty(7)
    (5, 2)
    """
    penalty = checked_mul(principal, EARLY_CLOSE_PENALTY_PCT) // PCT_DENOMINATOR
    return checked_sub(principal, penalty), penalty


def format_amount(value: int, symbol: str = "", decimals: int = TOKEN_DECIMALS) -> str:
    """Render base units as a decimal string, e.g. ``1.5 RWD``."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10 ** decimals)
    text = f"{sign}{whole}"
    if frac:
        text += "." + f"{frac:0{decimals}d}".rstrip("0")
    return f"{text} {symbol}" if symbol else text
