"""
Observable events emitted by the stake ledger.

Events are published only after an operation commits; a rolled-back
operation emits nothing.  They exist for external indexing and are never
consumed by the ledger itself.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Union

logger = logging.getLogger("yieldlock_events")


@dataclass(frozen=True)
class StakeOpened:
    user: str
    amount: int
    reward: int
    duration: int
    name: str = field(default="StakeOpened", init=False)


@dataclass(frozen=True)
class StakeClosed:
    user: str
    position_index: int
    payout: int
    penalty: int
    name: str = field(default="StakeClosed", init=False)


@dataclass(frozen=True)
class ReserveAdded:
    provider: str
    amount: int
    name: str = field(default="ReserveAdded", init=False)


@dataclass(frozen=True)
class ReserveRemoved:
    provider: str
    amount: int
    name: str = field(default="ReserveRemoved", init=False)


LedgerEvent = Union[StakeOpened, StakeClosed, ReserveAdded, ReserveRemoved]
Subscriber = Callable[[LedgerEvent], None]


@dataclass
class EventRecord:
    """An event with its position in the log and commit time."""
    sequence: int
    timestamp: float
    event: LedgerEvent

    def to_dict(self) -> dict:
        d = asdict(self.event)
        d["sequence"] = self.sequence
        d["timestamp"] = self.timestamp
        return d


class EventLog:
    """Append-only event history with synchronous subscribers."""

    def __init__(self, max_history: int = 10_000):
        self.max_history = max_history
        self.history: list[EventRecord] = []
        self._subscribers: list[Subscriber] = []
        self._sequence = 0

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, events: list[LedgerEvent]) -> None:
        for event in events:
            self._sequence += 1
            self.history.append(EventRecord(self._sequence, time.time(), event))
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception:
                    logger.exception(f"Event subscriber failed on {event.name}")
        if len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]

    def recent(self, limit: int = 50) -> list[EventRecord]:
        if limit <= 0:
            return []
        return self.history[-limit:]

    @property
    def sequence(self) -> int:
        """Sequence number of the last published event (total ever published)."""
        return self._sequence

    def __len__(self) -> int:
        return len(self.history)
