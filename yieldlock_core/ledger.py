"""
Yield-upfront stake ledger for YieldLock.

A user locks principal for a chosen duration and is paid the whole reward
immediately, out of a reserve funded by liquidity providers:

    reward = floor(principal × reward_rate_per_second × lock_duration / 10**18)

Closing a position at or after ``opened_at + lock_duration`` returns the
full principal.  Closing earlier forfeits 30 % of the principal, which is
credited back to the reserve:

    penalty = floor(principal × 30 / 100)
    payout  = principal − penalty

Transaction model
─────────────────
Every mutating operation runs under one ledger-wide lock inside a
transaction.  The reserve record is copied, each asset ledger opens a
checkpoint, and the operation registers an undo step for every position
it appends or settles.  Any failure (including a failed transfer halfway
through, or a post-operation invariant violation) replays those steps
before the error reaches the caller.  Nothing is copied per existing
position or holder, so an operation costs the same however large the
ledger grows.  Events are published only after commit.

Entry points:
  ``open_stake()``      — lock principal, pay the upfront reward
  ``close_stake()``     — settle a position (full or penalized)
  ``add_reserve()``     — fund the reward reserve (any caller)
  ``remove_reserve()``  — withdraw from the reserve (privileged caller)
  ``list_positions()``  — snapshot of a user's positions
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Iterator, Optional

from yieldlock_core.asset import AssetLedger
from yieldlock_core.errors import (
    AlreadySettled,
    IndexOutOfRange,
    InsufficientReserve,
    InvalidAmount,
    InvalidDuration,
    InvariantViolation,
    TransferFailed,
)
from yieldlock_core.events import (
    EventLog,
    LedgerEvent,
    ReserveAdded,
    ReserveRemoved,
    StakeClosed,
    StakeOpened,
)
from yieldlock_core.identity import Authorizer
from yieldlock_core.invariants import InvariantChecker
from yieldlock_core.precision import (
    checked_add,
    checked_sub,
    compute_penalty,
    compute_reward,
    is_uint,
)

logger = logging.getLogger("yieldlock_ledger")

DEFAULT_CUSTODY_ADDRESS = "yLedgerCustody"


# ── Records ─────────────────────────────────────────────────────────────

@dataclass
class StakePosition:
    """
    One deposit event.

    ``principal``, ``opened_at``, ``lock_duration`` and ``upfront_reward``
    never change after creation.  ``settled`` flips to True exactly once;
    ``payout`` / ``penalty`` / ``settled_at`` record how it was settled.
    """
    principal: int
    opened_at: int
    lock_duration: int
    upfront_reward: int
    settled: bool = False
    payout: int = 0
    penalty: int = 0
    settled_at: int = 0

    @property
    def unlock_time(self) -> int:
        return self.opened_at + self.lock_duration

    def is_mature(self, now: int) -> bool:
        """Inclusive on the matured side: ``now == unlock_time`` is mature."""
        return now >= self.unlock_time

    def to_dict(self, now: Optional[int] = None) -> dict:
        if now is None:
            now = int(time.time())
        if self.settled:
            status = "Settled"
        elif self.is_mature(now):
            status = "Ready"
        else:
            status = "Active"
        return {
            "principal": self.principal,
            "opened_at": self.opened_at,
            "lock_duration": self.lock_duration,
            "unlock_time": self.unlock_time,
            "upfront_reward": self.upfront_reward,
            "settled": self.settled,
            "settled_at": self.settled_at,
            "payout": self.payout,
            "penalty": self.penalty,
            "status": status,
        }


@dataclass
class ReserveState:
    """The reward pool plus cumulative flow counters."""
    reward_rate_per_second: int
    balance: int = 0
    total_deposited: int = 0
    total_withdrawn: int = 0
    total_rewards_paid: int = 0
    total_penalties: int = 0

    def to_dict(self) -> dict:
        return {
            "balance": self.balance,
            "reward_rate_per_second": self.reward_rate_per_second,
            "total_deposited": self.total_deposited,
            "total_withdrawn": self.total_withdrawn,
            "total_rewards_paid": self.total_rewards_paid,
            "total_penalties": self.total_penalties,
        }


# ── Input validation ────────────────────────────────────────────────────

def _require_amount(amount: object, *, allow_zero: bool) -> int:
    if not is_uint(amount) or (amount == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise InvalidAmount(f"Amount must be a {qualifier} integer, got {amount!r}")
    return amount  # type: ignore[return-value]


def _require_duration(lock_duration: object) -> int:
    if not is_uint(lock_duration) or lock_duration == 0:
        raise InvalidDuration(
            f"Lock duration must be a positive number of seconds, got {lock_duration!r}"
        )
    return lock_duration  # type: ignore[return-value]


# ── Transaction journal ─────────────────────────────────────────────────

class _Transaction:
    """Events and undo steps collected while one operation runs."""

    __slots__ = ("events", "undo_log")

    def __init__(self) -> None:
        self.events: list[LedgerEvent] = []
        self.undo_log: list[Callable[[], None]] = []

    def on_rollback(self, undo: Callable[[], None]) -> None:
        self.undo_log.append(undo)


# ── StakeLedger ─────────────────────────────────────────────────────────

class StakeLedger:
    """
    Owns the reserve and every user's positions.

    ``staking_asset`` holds locked principal, ``reward_asset`` funds the
    reserve; they may be the same ledger.  Both are debited and credited
    through ``custody_address``.  The privileged identity (reserve
    withdrawals) defaults to *initializer*.
    """

    def __init__(
        self,
        staking_asset: AssetLedger,
        reward_asset: AssetLedger,
        reward_rate_per_second: int,
        initializer: str,
        *,
        privileged: Optional[str] = None,
        authorizer: Optional[Authorizer] = None,
        custody_address: str = DEFAULT_CUSTODY_ADDRESS,
        clock: Optional[Callable[[], float]] = None,
        events: Optional[EventLog] = None,
    ) -> None:
        if not is_uint(reward_rate_per_second):
            raise ValueError(
                f"reward_rate_per_second must be an unsigned integer, "
                f"got {reward_rate_per_second!r}"
            )
        self.staking_asset = staking_asset
        self.reward_asset = reward_asset
        self.custody = custody_address
        self.initializer = initializer
        self.authorizer = authorizer or Authorizer(privileged or initializer)
        self.reserve = ReserveState(reward_rate_per_second=reward_rate_per_second)
        self.accounts: dict[str, list[StakePosition]] = {}
        self.events = events if events is not None else EventLog()
        self._clock = clock or time.time
        self._lock = threading.RLock()
        self._checker = InvariantChecker()

    # ── transaction boundary ────────────────────────────────────────

    def _assets(self) -> list[AssetLedger]:
        if self.reward_asset is self.staking_asset:
            return [self.staking_asset]
        return [self.staking_asset, self.reward_asset]

    def _now(self, now: Optional[float]) -> int:
        return int(self._clock() if now is None else now)

    @contextmanager
    def _transaction(self, op: str) -> Iterator[_Transaction]:
        """All-or-nothing wrapper around one mutating operation."""
        with self._lock:
            tx = _Transaction()
            reserve = replace(self.reserve)
            checkpoints = [(asset, asset.snapshot()) for asset in self._assets()]
            self._checker.capture(self)
            try:
                yield tx
                ok, msg = self._checker.verify(self)
                if not ok:
                    raise InvariantViolation(msg)
            except Exception as exc:
                for undo in reversed(tx.undo_log):
                    undo()
                self.reserve = reserve
                for asset, checkpoint in reversed(checkpoints):
                    asset.restore(checkpoint)
                code = getattr(exc, "code", type(exc).__name__)
                logger.warning(f"{op} rolled back ({code}): {exc}")
                raise
            for asset, checkpoint in checkpoints:
                asset.release(checkpoint)
            self.events.publish(tx.events)

    # ── core operations ─────────────────────────────────────────────

    def open_stake(
        self,
        caller: str,
        principal: int,
        lock_duration: int,
        now: Optional[float] = None,
    ) -> int:
        """
        Lock *principal* for *lock_duration* seconds and pay the upfront
        reward.  Returns the new position's index in the caller's list.
        """
        with self._transaction("open_stake") as tx:
            caller = self.authorizer.resolve(caller)
            _require_amount(principal, allow_zero=False)
            _require_duration(lock_duration)
            opened_at = self._now(now)

            if not self.staking_asset.transfer_from(self.custody, caller, self.custody, principal):
                raise TransferFailed(
                    f"Could not move {principal} {self.staking_asset.symbol} "
                    f"from {caller} into custody"
                )

            reward = compute_reward(principal, self.reserve.reward_rate_per_second, lock_duration)
            if self.reserve.balance < reward:
                raise InsufficientReserve(
                    f"Reward {reward} exceeds reserve balance {self.reserve.balance}"
                )
            self.reserve.balance = checked_sub(self.reserve.balance, reward)
            self.reserve.total_rewards_paid = checked_add(self.reserve.total_rewards_paid, reward)

            if not self.reward_asset.transfer(self.custody, caller, reward):
                raise TransferFailed(
                    f"Could not pay reward {reward} {self.reward_asset.symbol} to {caller}"
                )

            checked_add(opened_at, lock_duration)
            self._checker.watch(self, caller)
            positions = self.accounts.get(caller)
            if positions is None:
                positions = self.accounts[caller] = []
                tx.on_rollback(lambda: self.accounts.pop(caller, None))
            tx.on_rollback(positions.pop)
            positions.append(StakePosition(
                principal=principal,
                opened_at=opened_at,
                lock_duration=lock_duration,
                upfront_reward=reward,
            ))
            index = len(positions) - 1
            tx.events.append(StakeOpened(
                user=caller, amount=principal, reward=reward, duration=lock_duration,
            ))

        logger.info(
            f"Stake opened: {caller}[{index}] principal={principal} "
            f"duration={lock_duration}s reward={reward}"
        )
        return index

    def close_stake(
        self,
        caller: str,
        position_index: int,
        now: Optional[float] = None,
    ) -> tuple[int, int]:
        """
        Settle one of the caller's positions.

        Returns ``(payout, penalty)``; penalty is zero at or after maturity.
        """
        with self._transaction("close_stake") as tx:
            caller = self.authorizer.resolve(caller)
            positions = self.accounts.get(caller, [])
            if (
                not isinstance(position_index, int)
                or isinstance(position_index, bool)
                or not 0 <= position_index < len(positions)
            ):
                raise IndexOutOfRange(
                    f"{caller} has no position at index {position_index!r}"
                )
            position = positions[position_index]
            if position.settled:
                raise AlreadySettled(f"Position {caller}[{position_index}] already settled")

            closed_at = self._now(now)
            unlock_time = checked_add(position.opened_at, position.lock_duration)
            if closed_at >= unlock_time:
                payout, penalty = position.principal, 0
            else:
                payout, penalty = compute_penalty(position.principal)
                self.reserve.balance = checked_add(self.reserve.balance, penalty)
                self.reserve.total_penalties = checked_add(self.reserve.total_penalties, penalty)

            self._checker.watch(self, caller, position_index)
            before = replace(position)
            tx.on_rollback(lambda: positions.__setitem__(position_index, before))
            position.settled = True
            position.payout = payout
            position.penalty = penalty
            position.settled_at = closed_at

            if not self.staking_asset.transfer(self.custody, caller, payout):
                raise TransferFailed(
                    f"Could not return {payout} {self.staking_asset.symbol} to {caller}"
                )
            tx.events.append(StakeClosed(
                user=caller, position_index=position_index, payout=payout, penalty=penalty,
            ))

        if penalty:
            logger.info(
                f"Stake closed early: {caller}[{position_index}] "
                f"payout={payout} penalty={penalty}"
            )
        else:
            logger.info(f"Stake closed: {caller}[{position_index}] payout={payout}")
        return payout, penalty

    def add_reserve(self, caller: str, amount: int) -> None:
        """Fund the reward reserve.  Any caller; zero is a no-op."""
        with self._transaction("add_reserve") as tx:
            caller = self.authorizer.resolve(caller)
            _require_amount(amount, allow_zero=True)
            if not self.reward_asset.transfer_from(self.custody, caller, self.custody, amount):
                raise TransferFailed(
                    f"Could not move {amount} {self.reward_asset.symbol} "
                    f"from {caller} into the reserve"
                )
            self.reserve.balance = checked_add(self.reserve.balance, amount)
            self.reserve.total_deposited = checked_add(self.reserve.total_deposited, amount)
            tx.events.append(ReserveAdded(provider=caller, amount=amount))

        logger.info(f"Reserve added: {caller} +{amount} (balance {self.reserve.balance})")

    def remove_reserve(self, caller: str, amount: int) -> None:
        """Withdraw from the reward reserve.  Privileged caller only."""
        with self._transaction("remove_reserve") as tx:
            caller = self.authorizer.resolve(caller)
            self.authorizer.require_privileged(caller)
            _require_amount(amount, allow_zero=True)
            if amount > self.reserve.balance:
                raise InsufficientReserve(
                    f"Withdrawal {amount} exceeds reserve balance {self.reserve.balance}"
                )
            self.reserve.balance = checked_sub(self.reserve.balance, amount)
            self.reserve.total_withdrawn = checked_add(self.reserve.total_withdrawn, amount)
            if not self.reward_asset.transfer(self.custody, caller, amount):
                raise TransferFailed(
                    f"Could not send {amount} {self.reward_asset.symbol} to {caller}"
                )
            tx.events.append(ReserveRemoved(provider=caller, amount=amount))

        logger.info(f"Reserve removed: {caller} -{amount} (balance {self.reserve.balance})")

    # ── queries ─────────────────────────────────────────────────────

    def list_positions(self, user: str) -> list[StakePosition]:
        """Copies of every position of *user*, settled ones included."""
        with self._lock:
            return [replace(p) for p in self.accounts.get(user, [])]

    def get_position(self, user: str, position_index: int) -> StakePosition:
        with self._lock:
            positions = self.accounts.get(user, [])
            if (
                not isinstance(position_index, int)
                or isinstance(position_index, bool)
                or not 0 <= position_index < len(positions)
            ):
                raise IndexOutOfRange(f"{user} has no position at index {position_index!r}")
            return replace(positions[position_index])

    def quote_reward(self, principal: int, lock_duration: int) -> int:
        """Reward ``open_stake`` would pay right now (reserve not checked)."""
        _require_amount(principal, allow_zero=False)
        _require_duration(lock_duration)
        return compute_reward(principal, self.reserve.reward_rate_per_second, lock_duration)

    def get_reserve(self) -> ReserveState:
        with self._lock:
            return replace(self.reserve)

    def get_staking_summary(self, user: str, now: Optional[float] = None) -> dict:
        now_ts = self._now(now)
        positions = self.list_positions(user)
        active = [p for p in positions if not p.settled]
        return {
            "address": user,
            "positions": [p.to_dict(now_ts) for p in positions],
            "active_positions": len(active),
            "total_locked": sum(p.principal for p in active),
            "total_rewards": sum(p.upfront_reward for p in positions),
        }

    def get_summary(self, now: Optional[float] = None) -> dict:
        now_ts = self._now(now)
        with self._lock:
            all_positions = [p for ps in self.accounts.values() for p in ps]
            active = [p for p in all_positions if not p.settled]
            summary = self.reserve.to_dict()
            summary.update({
                "total_locked": sum(p.principal for p in active),
                "active_positions": len(active),
                "ready_positions": sum(1 for p in active if p.is_mature(now_ts)),
                "total_positions": len(all_positions),
                "users": len(self.accounts),
                "staking_asset": self.staking_asset.symbol,
                "reward_asset": self.reward_asset.symbol,
                "custody_address": self.custody,
                "privileged": self.authorizer.privileged,
            })
            return summary
