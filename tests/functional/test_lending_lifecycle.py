"""
test_lending_lifecycle.py - Functional tests for loans against trust bonds

Scenarios:
- Borrow and repay with interest; the pool earns the interest
- Default: the pool loses principal, participants keep stake and yield
- Two borrowers sharing one bond as collateral
- Bonds opened mid-loan are not collateral
- Credit grows as bonds age
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from trustbond import BondFrozen, LoanStatus
from trustbond.units.trust_loan import calculate_interest_owed


MONTH = timedelta(days=30)
POOL = "lending_pool"


class TestRepaidLoan:

    def test_pool_earns_interest(self, seasoned_borrower, advance, balance):
        pool = seasoned_borrower.pool
        loan = pool.borrow("alice", Decimal("30"), MONTH)
        advance(15)
        owed = pool.get_amount_owed(loan.loan_id)
        interest = calculate_interest_owed(Decimal("30"), 550, Decimal(15 * 86400), 18)
        assert owed == Decimal("30") + interest

        result = pool.repay("alice", loan.loan_id, owed)
        assert result.interest == interest
        assert balance(POOL) == Decimal("500") + interest
        stats = pool.get_pool_stats()
        assert stats.total_repaid == owed
        assert stats.outstanding_principal == Decimal("0")

    def test_bonds_free_to_exit_after_repay(self, seasoned_borrower, advance, balance):
        pool, bonds = seasoned_borrower.pool, seasoned_borrower.bonds
        loan = pool.borrow("alice", Decimal("10"), MONTH)
        with pytest.raises(BondFrozen):
            bonds.exit("alice", "carol")
        advance(10)
        pool.repay("alice", loan.loan_id, Decimal("11"))
        bonds.exit("alice", "carol")
        assert [b.key for b in bonds.get_active_bonds("alice")] == [bonds.get_bond_key("alice", "bob")]


class TestDefaultedLoan:

    def test_default_costs_the_pool_its_principal(self, seasoned_borrower, advance, balance):
        pool, bonds = seasoned_borrower.pool, seasoned_borrower.bonds
        loan = pool.borrow("alice", Decimal("30"), MONTH)
        advance(31)
        pool.liquidate("admin", loan.loan_id)

        assert balance(POOL) == Decimal("470")
        assert pool.get_loan(loan.loan_id).status == LoanStatus.DEFAULTED
        # the borrower keeps the principal and every bond
        assert balance("alice") > Decimal("1000")
        assert len(bonds.get_active_bonds("alice")) == 2

    def test_borrower_may_borrow_again_after_default(self, seasoned_borrower, advance):
        pool = seasoned_borrower.pool
        loan = pool.borrow("alice", Decimal("5"), MONTH)
        advance(31)
        pool.liquidate("admin", loan.loan_id)
        again = pool.borrow("alice", Decimal("5"), MONTH)
        assert again.loan_id == 2
        assert pool.get_active_loan("alice") == again

    def test_bonds_keep_accruing_after_liquidation(self, seasoned_borrower, advance):
        pool, bonds = seasoned_borrower.pool, seasoned_borrower.bonds
        loan = pool.borrow("alice", Decimal("5"), MONTH)
        advance(31)
        pool.liquidate("admin", loan.loan_id)
        assert bonds.get_accrued_yield("alice", "bob") == Decimal("0")
        advance(1)
        assert bonds.get_accrued_yield("alice", "bob") == Decimal("0.15")


class TestSharedCollateral:

    def test_bond_stays_frozen_until_both_loans_settle(self, seasoned_borrower):
        pool, bonds = seasoned_borrower.pool, seasoned_borrower.bonds
        shared = bonds.get_bond_key("alice", "bob")

        alice_loan = pool.borrow("alice", Decimal("20"), MONTH)
        bob_loan = pool.borrow("bob", Decimal("5"), MONTH)
        assert bonds.get_bond(shared).frozen_for == ("alice", "bob")

        released = pool.repay("alice", alice_loan.loan_id, Decimal("20")).released_bonds
        assert set(released) == {shared, bonds.get_bond_key("alice", "carol")}
        assert bonds.get_bond(shared).frozen_for == ("bob",)
        with pytest.raises(BondFrozen):
            bonds.exit("alice", "bob")
        bonds.exit("alice", "carol")

        pool.repay("bob", bob_loan.loan_id, Decimal("5"))
        assert not bonds.get_bond(shared).frozen
        bonds.exit("alice", "bob")


class TestCollateralSet:

    def test_bonds_opened_mid_loan_are_not_collateral(self, seasoned_borrower):
        pool, bonds = seasoned_borrower.pool, seasoned_borrower.bonds
        loan = pool.borrow("alice", Decimal("10"), MONTH)
        bonds.create_bond("alice", "dave", Decimal("3"))
        bonds.add_stake("dave", "alice", Decimal("3"))
        fresh = bonds.get_bond_key("alice", "dave")
        assert not bonds.get_bond(fresh).frozen

        result = pool.repay("alice", loan.loan_id, Decimal("10"))
        assert set(result.released_bonds) == set(loan.collateral_bonds)
        assert fresh not in result.released_bonds

    def test_credit_grows_with_age(self, protocol, liquid_pool, advance):
        bonds = protocol.bonds
        bonds.create_bond("alice", "bob", Decimal("50"))
        bonds.add_stake("bob", "alice", Decimal("50"))
        day_zero = liquid_pool.get_max_borrowable_amount("alice")
        advance(60)
        assert liquid_pool.get_max_borrowable_amount("alice") > day_zero
