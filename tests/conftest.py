"""
conftest.py - Shared pytest fixtures for trustbond tests

Provides common fixtures used across unit, functional and conformance tests:
- A test-mode settlement ledger
- A deployed protocol with funded users
- Bonds in pending and active states
- A liquid lending pool
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from trustbond import (
    Ledger, settlement_asset, deploy_protocol,
)


T0 = datetime(2025, 1, 1)
USERS = ("alice", "bob", "carol", "dave")
STARTING_BALANCE = Decimal("1000")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def advance_days(ledger: Ledger, days) -> None:
    """Move the ledger clock forward by a number of days."""
    ledger.advance_time(ledger.current_time + timedelta(days=days))


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Test-mode ledger at 2025-01-01 with the ETH settlement asset."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(settlement_asset("ETH", "Ether"))
    return ledger


@pytest.fixture
def advance(ledger):
    """advance(days) moves the ledger clock forward."""
    def _advance(days):
        advance_days(ledger, days)
    return _advance


@pytest.fixture
def balance(ledger):
    """balance(wallet) returns the wallet's ETH balance."""
    def _balance(wallet: str) -> Decimal:
        return ledger.get_balance(wallet, "ETH")
    return _balance


@pytest.fixture
def protocol(ledger):
    """Deployed protocol; each user holds 1000 ETH and the admin 10000 ETH."""
    protocol = deploy_protocol(ledger, owner="admin", verbose=False)
    for user in USERS:
        ledger.register_wallet(user)
        ledger.set_balance(user, "ETH", STARTING_BALANCE)
    ledger.set_balance("admin", "ETH", Decimal("10000"))
    return protocol


@pytest.fixture
def bonds(protocol):
    return protocol.bonds


@pytest.fixture
def scorer(protocol):
    return protocol.scorer


@pytest.fixture
def pool(protocol):
    return protocol.pool


# =============================================================================
# BOND FIXTURES
# =============================================================================

@pytest.fixture
def pending_bond(bonds):
    """alice staked 10 with bob; bob has not staked yet."""
    return bonds.create_bond("alice", "bob", Decimal("10"))


@pytest.fixture
def active_bond(bonds, pending_bond):
    """alice 10 / bob 5, active from 2025-01-01."""
    bonds.add_stake("bob", "alice", Decimal("5"))
    return pending_bond


# =============================================================================
# POOL FIXTURES
# =============================================================================

@pytest.fixture
def liquid_pool(pool):
    """Lending pool holding 500 ETH of liquidity."""
    pool.deposit_liquidity("admin", Decimal("500"))
    return pool


@pytest.fixture
def seasoned_borrower(protocol, liquid_pool):
    """
    alice holds two active bonds (with bob and carol) that are 30 days old,
    with cached scores refreshed, ready to borrow.
    """
    bonds = protocol.bonds
    bonds.create_bond("alice", "bob", Decimal("10"))
    bonds.add_stake("bob", "alice", Decimal("5"))
    bonds.create_bond("alice", "carol", Decimal("20"))
    bonds.add_stake("carol", "alice", Decimal("20"))
    advance_days(protocol.ledger, 30)
    return protocol
