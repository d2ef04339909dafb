"""
test_value_conservation.py - Book-keeping identities over full protocol runs

After every operation:
- Total ETH supply is unchanged (yield is issued by the system wallet)
- Escrow holds exactly the stakes of open bonds
- The treasury holds exactly the penalties charged
- The system wallet is short exactly the yield paid out
- Pool liquidity equals deposits less principal out plus repayments
- Every loan record has zero net supply
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from trustbond import BorrowLimitExceeded, InsufficientLiquidity


ESCROW = "bond_ledger"
TREASURY = "bond_ledger:treasury"
MONTH = timedelta(days=30)
USERS = ("alice", "bob", "carol", "dave")
SUPPLY = Decimal("14000")  # 4 users at 1000 and the admin at 10000


def check_books(protocol, net_deposits: Decimal) -> None:
    ledger, bonds, pool = protocol.ledger, protocol.bonds, protocol.pool

    result = ledger.verify_double_entry({"ETH": SUPPLY})
    assert result['valid'], f"Conservation violated: {result['discrepancies']}"
    for symbol, supply in result['supplies'].items():
        if symbol.startswith("LOAN-"):
            assert supply == Decimal("0"), symbol

    open_keys = {}
    for user in USERS:
        for key in bonds.get_user_bonds(user):
            bond = bonds.get_bond(key)
            if not bond.is_cleared:
                open_keys[key] = bond
    escrow = sum((b.total_stake for b in open_keys.values()), Decimal("0"))
    assert ledger.get_balance(ESCROW, "ETH") == escrow

    accounts = [bonds.get_user_account(u) for u in USERS]
    penalties = sum((a.total_penalties_paid for a in accounts), Decimal("0"))
    assert ledger.get_balance(TREASURY, "ETH") == penalties

    paid_yield = sum((a.total_yield_received for a in accounts), Decimal("0"))
    assert -ledger.get_balance("system", "ETH") == paid_yield

    stats = pool.get_pool_stats()
    assert stats.liquidity == net_deposits - stats.total_borrowed + stats.total_repaid


class TestBondBooks:

    def test_books_balance_through_bond_lifecycle(self, protocol, advance):
        bonds = protocol.bonds
        check_books(protocol, Decimal("0"))

        bonds.create_bond("alice", "bob", Decimal("10"))
        check_books(protocol, Decimal("0"))
        bonds.add_stake("bob", "alice", Decimal("3"))
        bonds.create_bond("carol", "alice", Decimal("7.5"))
        bonds.add_stake("alice", "carol", Decimal("2.25"))
        bonds.create_bond("dave", "carol", Decimal("1"))
        check_books(protocol, Decimal("0"))

        advance(7)
        bonds.exit("bob", "alice")
        check_books(protocol, Decimal("0"))

        advance(11)
        bonds.defect("carol", "alice")
        check_books(protocol, Decimal("0"))

        bonds.create_bond("alice", "bob", Decimal("4"))
        bonds.add_stake("bob", "alice", Decimal("4"))
        advance(3)
        bonds.exit("alice", "bob")
        check_books(protocol, Decimal("0"))

    def test_rounded_yield_split_leaves_no_dust(self, protocol, advance, balance):
        bonds = protocol.bonds
        bonds.create_bond("alice", "bob", Decimal("1"))
        bonds.add_stake("bob", "alice", Decimal("2.000000000000000001"))
        advance(1)
        bonds.exit("alice", "bob")
        assert balance(ESCROW) == Decimal("0")
        check_books(protocol, Decimal("0"))


class TestPoolBooks:

    def test_books_balance_through_loan_lifecycle(self, seasoned_borrower, advance):
        pool, bonds = seasoned_borrower.pool, seasoned_borrower.bonds
        deposits = Decimal("500")
        check_books(seasoned_borrower, deposits)

        first = pool.borrow("alice", Decimal("25"), MONTH)
        check_books(seasoned_borrower, deposits)
        advance(12)
        pool.repay("alice", first.loan_id, Decimal("40"))
        check_books(seasoned_borrower, deposits)

        second = pool.borrow("alice", Decimal("12"), MONTH)
        pool.borrow("bob", Decimal("2"), MONTH)
        advance(31)
        pool.liquidate("admin", second.loan_id)
        check_books(seasoned_borrower, deposits)

        bonds.exit("alice", "carol")
        pool.deposit_liquidity("admin", Decimal("100"))
        pool.withdraw_liquidity("admin", Decimal("50"))
        check_books(seasoned_borrower, deposits + Decimal("50"))

    def test_rejected_operations_leave_books_untouched(self, seasoned_borrower):
        pool = seasoned_borrower.pool
        ledger = seasoned_borrower.ledger
        before = ledger.get_wallet_balances(pool.address)
        with pytest.raises(BorrowLimitExceeded):
            pool.borrow("alice", Decimal("1000"), MONTH)
        with pytest.raises(InsufficientLiquidity):
            pool.withdraw_liquidity("admin", Decimal("501"))
        assert ledger.get_wallet_balances(pool.address) == before
        check_books(seasoned_borrower, Decimal("500"))
