"""
Error kinds raised by the YieldLock stake ledger.

Every error aborts the enclosing ledger operation; the ledger restores
its pre-call state before the exception reaches the caller.

All kinds derive from ``LedgerError`` (itself a ``ValueError``) and carry
a stable ``code`` string used by the API layer and the logs.
"""

from __future__ import annotations


class LedgerError(ValueError):
    """Base class for all ledger failures."""
    code: str = "LedgerError"


class InvalidAmount(LedgerError):
    """Zero, negative or otherwise disallowed principal / amount."""
    code = "InvalidAmount"


class InvalidDuration(LedgerError):
    """Zero, negative or non-integer lock duration."""
    code = "InvalidDuration"


class InsufficientReserve(LedgerError):
    """Reward or withdrawal exceeds the available reserve balance."""
    code = "InsufficientReserve"


class IndexOutOfRange(LedgerError):
    """Position index does not address one of the caller's positions."""
    code = "IndexOutOfRange"


class AlreadySettled(LedgerError):
    """Attempt to close a position that is already settled."""
    code = "AlreadySettled"


class PermissionDenied(LedgerError):
    """Caller is not allowed to perform the operation."""
    code = "PermissionDenied"


class ArithmeticOverflow(LedgerError):
    """Unsigned 256-bit arithmetic overflowed or underflowed."""
    code = "ArithmeticOverflow"


class TransferFailed(LedgerError):
    """An asset ledger reported a failed transfer."""
    code = "TransferFailed"


class InvariantViolation(LedgerError):
    """A post-operation invariant check failed."""
    code = "InvariantViolation"

