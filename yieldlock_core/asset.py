"""
Fungible asset ledgers used by the stake ledger.

The stake ledger only depends on the ``AssetLedger`` protocol:

    transfer(sender, recipient, amount)            -> bool
    transfer_from(spender, owner, recipient, amount) -> bool
    snapshot() / restore(checkpoint) / release(checkpoint)

A ``False`` return is a failed transfer and leaves balances untouched.
``snapshot`` opens a checkpoint, ``restore`` undoes everything written
since it and ``release`` keeps the writes.  This gives the stake ledger
the transaction boundary it needs to undo transfers when a later step of
an operation fails.

``TokenLedger`` is the in-memory implementation with ERC-20 style
balances and allowances.  Its checkpoints are an undo journal of the
entries actually written, so their cost does not depend on the number of
holders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from yieldlock_core.precision import UINT256_MAX, is_uint


@runtime_checkable
class AssetLedger(Protocol):
    symbol: str

    def transfer(self, sender: str, recipient: str, amount: int) -> bool: ...

    def transfer_from(
        self, spender: str, owner: str, recipient: str, amount: int,
    ) -> bool: ...

    def balance_of(self, address: str) -> int: ...

    def snapshot(self) -> Any: ...

    def restore(self, checkpoint: Any) -> None: ...

    def release(self, checkpoint: Any) -> None: ...


@dataclass(frozen=True)
class Checkpoint:
    """Position in a token's undo journal."""
    mark: int


# Journal entry: (table, key, previous value or None when the key was absent)
_JournalEntry = tuple[str, Any, Optional[int]]


@dataclass
class TokenLedger:
    """In-memory token with balances and spender allowances."""
    symbol: str
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[tuple[str, str], int] = field(default_factory=dict)
    total_supply: int = 0
    _journal: Optional[list[_JournalEntry]] = field(
        default=None, init=False, repr=False, compare=False,
    )

    # ── supply ──────────────────────────────────────────────────────

    def mint(self, address: str, amount: int) -> None:
        """Create *amount* new units for *address* (genesis / faucet)."""
        if not is_uint(amount) or self.total_supply + amount > UINT256_MAX:
            raise ValueError(f"Invalid mint amount: {amount!r}")
        self._set_balance(address, self.balance_of(address) + amount)
        if self._journal is not None:
            self._journal.append(("supply", None, self.total_supply))
        self.total_supply += amount

    # ── queries ─────────────────────────────────────────────────────

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    # ── transfers ───────────────────────────────────────────────────

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if not is_uint(amount):
            return False
        self._set_allowance((owner, spender), amount)
        return True

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if not is_uint(amount):
            return False
        if self.balance_of(sender) < amount:
            return False
        self._move(sender, recipient, amount)
        return True

    def transfer_from(
        self, spender: str, owner: str, recipient: str, amount: int,
    ) -> bool:
        """Move *amount* from *owner* to *recipient* against *spender*'s allowance."""
        if not is_uint(amount):
            return False
        allowed = self.allowance(owner, spender)
        if allowed < amount or self.balance_of(owner) < amount:
            return False
        self._set_allowance((owner, spender), allowed - amount)
        self._move(owner, recipient, amount)
        return True

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        if amount == 0:
            return
        self._set_balance(sender, self.balance_of(sender) - amount)
        self._set_balance(recipient, self.balance_of(recipient) + amount)

    # ── journaled writes ────────────────────────────────────────────

    def _set_balance(self, address: str, value: int) -> None:
        if self._journal is not None:
            self._journal.append(("balance", address, self.balances.get(address)))
        self.balances[address] = value

    def _set_allowance(self, key: tuple[str, str], value: int) -> None:
        if self._journal is not None:
            self._journal.append(("allowance", key, self.allowances.get(key)))
        self.allowances[key] = value

    # ── transaction boundary ────────────────────────────────────────

    def snapshot(self) -> Checkpoint:
        """Open a checkpoint; writes from here on are journaled."""
        if self._journal is None:
            self._journal = []
        return Checkpoint(len(self._journal))

    def restore(self, checkpoint: Checkpoint) -> None:
        """Undo every write made since *checkpoint*, newest first."""
        journal = self._journal or []
        while len(journal) > checkpoint.mark:
            table, key, previous = journal.pop()
            if table == "supply":
                self.total_supply = previous
                continue
            target = self.balances if table == "balance" else self.allowances
            if previous is None:
                target.pop(key, None)
            else:
                target[key] = previous
        self.release(checkpoint)

    def release(self, checkpoint: Checkpoint) -> None:
        """Keep the writes made since *checkpoint*; the outermost one stops journaling."""
        if checkpoint.mark == 0:
            self._journal = None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "total_supply": self.total_supply,
            "holders": sum(1 for v in self.balances.values() if v > 0),
        }
