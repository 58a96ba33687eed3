"""
Shared pytest fixtures for the YieldLock test suite.
"""

import pytest

from yieldlock_core.asset import TokenLedger
from yieldlock_core.ledger import StakeLedger
from yieldlock_core.precision import SCALE, UINT256_MAX

ADMIN = "yAdmin"
ALICE = "yAlice"
BOB = "yBob"
PROVIDER = "yProvider"

START_TIME = 1_700_000_000


class FakeClock:
    """Manually advanced clock for deterministic maturity checks."""

    def __init__(self, start: int = START_TIME):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FlakyToken(TokenLedger):
    """Token whose outgoing transfers can be switched off."""

    def __init__(self, symbol: str):
        super().__init__(symbol)
        self.fail_transfer = False
        self.fail_transfer_from = False

    def transfer(self, sender, recipient, amount):
        if self.fail_transfer:
            return False
        return super().transfer(sender, recipient, amount)

    def transfer_from(self, spender, owner, recipient, amount):
        if self.fail_transfer_from:
            return False
        return super().transfer_from(spender, owner, recipient, amount)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stake_token():
    return FlakyToken("STK")


@pytest.fixture
def reward_token():
    return FlakyToken("RWD")


@pytest.fixture
def ledger(stake_token, reward_token, clock):
    """Ledger paying 1 reward unit per staked unit per second."""
    return StakeLedger(stake_token, reward_token, SCALE, initializer=ADMIN, clock=clock)


@pytest.fixture
def fund(stake_token, reward_token):
    """Mint tokens to an address and approve the ledger custody for both assets."""

    def _fund(ledger, address, staking=0, reward=0):
        if staking:
            stake_token.mint(address, staking)
        if reward:
            reward_token.mint(address, reward)
        stake_token.approve(address, ledger.custody, UINT256_MAX)
        reward_token.approve(address, ledger.custody, UINT256_MAX)

    return _fund


@pytest.fixture
def funded_ledger(ledger, fund):
    """Alice and Bob hold 10k STK; the reserve holds 50k RWD."""
    fund(ledger, ALICE, staking=10_000)
    fund(ledger, BOB, staking=10_000)
    fund(ledger, PROVIDER, reward=100_000)
    fund(ledger, ADMIN)
    ledger.add_reserve(PROVIDER, 50_000)
    return ledger
