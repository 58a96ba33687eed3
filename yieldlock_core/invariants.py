"""
Post-operation invariant checks for the YieldLock stake ledger.

  - The reserve balance is never negative
  - Reserve conservation: balance == deposited + penalties - rewards - withdrawn
  - The reserve only moves by the matching cumulative counters
  - Position lists are append-only; recorded fields are immutable
  - ``settled`` is a one-way flag
  - The reward rate never changes

The ledger captures the reserve before each mutating operation, registers
every account (and position) it is about to touch with ``watch()``, and
verifies afterwards.  Position checks cover the watched accounts only, so
a check costs the same however many accounts the ledger holds.  If any
invariant fails, the operation is rolled back and rejected with
``InvariantViolation``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# (principal, opened_at, lock_duration, upfront_reward, settled)
PositionFields = tuple[int, int, int, int, bool]


@dataclass
class WatchedAccount:
    """Position count and touched positions of one account before an operation."""
    count: int
    positions: dict[int, PositionFields] = field(default_factory=dict)


@dataclass
class LedgerSnapshot:
    """Snapshot of the reserve and the watched accounts before an operation."""
    balance: int = 0
    reward_rate_per_second: int = 0
    total_deposited: int = 0
    total_withdrawn: int = 0
    total_rewards_paid: int = 0
    total_penalties: int = 0
    watched: dict[str, WatchedAccount] = field(default_factory=dict)


def _fields(p) -> PositionFields:
    return (p.principal, p.opened_at, p.lock_duration, p.upfront_reward, p.settled)


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the ledger and validates
    invariants after the operation body has run.
    """

    def __init__(self):
        self._snapshot: LedgerSnapshot | None = None

    def capture(self, ledger) -> None:
        reserve = ledger.reserve
        self._snapshot = LedgerSnapshot(
            balance=reserve.balance,
            reward_rate_per_second=reserve.reward_rate_per_second,
            total_deposited=reserve.total_deposited,
            total_withdrawn=reserve.total_withdrawn,
            total_rewards_paid=reserve.total_rewards_paid,
            total_penalties=reserve.total_penalties,
        )

    def watch(self, ledger, user: str, index: int | None = None) -> None:
        """Record *user*'s position count, and position *index* if given."""
        if self._snapshot is None:
            return
        positions = ledger.accounts.get(user, [])
        account = self._snapshot.watched.get(user)
        if account is None:
            account = self._snapshot.watched[user] = WatchedAccount(len(positions))
        if index is not None and index not in account.positions:
            account.positions[index] = _fields(positions[index])

    def verify(self, ledger) -> tuple[bool, str]:
        """
        Verify all invariants against the current ledger state.
        Returns (passed, error_message).
        """
        if self._snapshot is None:
            return True, ""

        errors: list[str] = []
        for check in (
            self._check_solvency,
            self._check_conservation,
            self._check_reserve_delta,
            self._check_rate_unchanged,
            self._check_positions_append_only,
        ):
            ok, msg = check(ledger)
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_solvency(self, ledger) -> tuple[bool, str]:
        if ledger.reserve.balance < 0:
            return False, f"Negative reserve balance: {ledger.reserve.balance}"
        return True, ""

    def _check_conservation(self, ledger) -> tuple[bool, str]:
        """balance == deposited + penalties - rewards_paid - withdrawn."""
        r = ledger.reserve
        expected = (r.total_deposited + r.total_penalties
                    - r.total_rewards_paid - r.total_withdrawn)
        if r.balance != expected:
            return (False,
                    f"Reserve conservation violated: balance {r.balance} != "
                    f"{r.total_deposited} + {r.total_penalties} - "
                    f"{r.total_rewards_paid} - {r.total_withdrawn}")
        return True, ""

    def _check_reserve_delta(self, ledger) -> tuple[bool, str]:
        """Inflows and outflows are monotone and explain the balance change."""
        snap = self._snapshot
        r = ledger.reserve
        inflow = (r.total_deposited - snap.total_deposited) + (r.total_penalties - snap.total_penalties)
        outflow = (r.total_rewards_paid - snap.total_rewards_paid) + (r.total_withdrawn - snap.total_withdrawn)
        if min(r.total_deposited - snap.total_deposited,
               r.total_penalties - snap.total_penalties,
               r.total_rewards_paid - snap.total_rewards_paid,
               r.total_withdrawn - snap.total_withdrawn) < 0:
            return False, "Reserve counters decreased"
        if r.balance - snap.balance != inflow - outflow:
            return (False,
                    f"Reserve moved by {r.balance - snap.balance}, "
                    f"expected {inflow - outflow}")
        return True, ""

    def _check_rate_unchanged(self, ledger) -> tuple[bool, str]:
        if ledger.reserve.reward_rate_per_second != self._snapshot.reward_rate_per_second:
            return False, "Reward rate changed"
        return True, ""

    def _check_positions_append_only(self, ledger) -> tuple[bool, str]:
        """Watched positions keep their fields; settled never reverts."""
        for user, before in self._snapshot.watched.items():
            after = ledger.accounts.get(user, [])
            if len(after) < before.count:
                return False, f"Positions removed for {user}"
            for idx, old in before.positions.items():
                new = _fields(after[idx])
                if new[:4] != old[:4]:
                    return False, f"Position {user}[{idx}] mutated"
                if old[4] and not new[4]:
                    return False, f"Position {user}[{idx}] un-settled"
            if any(p.settled for p in after[before.count:]):
                return False, f"New position for {user} created settled"
        return True, ""
