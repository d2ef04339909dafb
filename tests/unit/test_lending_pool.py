"""
test_lending_pool.py - Unit tests for the LendingPool component

Tests:
- borrow: limits, liquidity, duration, one active loan per borrower
- repay: authorization, short payment, refund, collateral release
- liquidate: owner only, expiry, yield recovery, failed claim reporting
- Owner liquidity management and queries
- Receive-hook re-entrancy during the principal payout
- Hooks raising non-ledger errors during borrow and liquidate
"""

import pytest
from datetime import timedelta
from decimal import Decimal, ROUND_DOWN

from trustbond import (
    LoanStatus, ReentrancyError, InvalidAmount, InvalidDuration, ActiveLoanExists,
    BorrowLimitExceeded, InsufficientLiquidity, InsufficientPayment,
    LoanStateError, LoanNotFound, LoanNotExpired, TransferFailed, Unauthorized, BondFrozen,
)
from trustbond.lending_pool import LOAN_ORIGINATED


MONTH = timedelta(days=30)
POOL = "lending_pool"
OWED_AFTER_30_DAYS = Decimal("30.135616438356164384")


@pytest.fixture
def loan(seasoned_borrower):
    """alice borrows 30 for 30 days against both of her bonds."""
    return seasoned_borrower.pool.borrow("alice", Decimal("30"), MONTH)


class TestBorrowLimits:

    def test_max_borrowable_is_ltv_bound(self, seasoned_borrower):
        pool = seasoned_borrower.pool
        # collateral 12.25 + 26 = 38.25, 80% LTV
        assert seasoned_borrower.bonds.get_user_total_value("alice") == Decimal("38.25")
        assert pool.get_max_borrowable_amount("alice") == Decimal("30.6")

    def test_score_bound_applies_to_large_young_bonds(self, bonds, liquid_pool, scorer):
        bonds.create_bond("carol", "dave", Decimal("500"))
        bonds.add_stake("dave", "carol", Decimal("500"))
        limit = liquid_pool.get_max_borrowable_amount("carol")
        assert limit < Decimal("400")
        assert limit == (scorer.score("carol") * 10).quantize(Decimal("1e-18"), rounding=ROUND_DOWN)

    def test_no_bonds_no_credit(self, seasoned_borrower):
        pool = seasoned_borrower.pool
        assert pool.get_max_borrowable_amount("dave") == Decimal("0")
        with pytest.raises(BorrowLimitExceeded):
            pool.borrow("dave", Decimal("1"), MONTH)

    def test_above_limit(self, seasoned_borrower):
        with pytest.raises(BorrowLimitExceeded):
            seasoned_borrower.pool.borrow("alice", Decimal("30.61"), MONTH)

    def test_interest_rate_for_small_scores(self, seasoned_borrower):
        assert seasoned_borrower.pool.get_interest_rate("alice") == 550


class TestBorrow:

    def test_borrow_pays_out_and_records(self, seasoned_borrower, loan, ledger, balance):
        assert loan.loan_id == 1
        assert loan.principal == Decimal("30")
        assert loan.rate_bps == 550
        assert loan.status == LoanStatus.ACTIVE
        assert loan.collateral_value == Decimal("38.25")
        assert len(loan.collateral_bonds) == 2
        assert balance("alice") == Decimal("1000")
        assert balance(POOL) == Decimal("470")
        assert ledger.get_balance("alice", "LOAN-1") == Decimal("1")
        assert len(ledger.transactions_for(LOAN_ORIGINATED)) == 1

    def test_borrow_freezes_all_active_bonds(self, seasoned_borrower, loan):
        bonds = seasoned_borrower.bonds
        for key in loan.collateral_bonds:
            assert bonds.get_bond(key).frozen_for == ("alice",)

    def test_one_active_loan(self, seasoned_borrower, loan):
        pool = seasoned_borrower.pool
        with pytest.raises(ActiveLoanExists):
            pool.borrow("alice", Decimal("0.5"), MONTH)
        assert pool.get_max_borrowable_amount("alice") == Decimal("0")

    def test_duration_too_short(self, seasoned_borrower):
        with pytest.raises(InvalidDuration):
            seasoned_borrower.pool.borrow("alice", Decimal("1"), timedelta(hours=23))

    def test_duration_must_be_timedelta(self, seasoned_borrower):
        with pytest.raises(InvalidDuration):
            seasoned_borrower.pool.borrow("alice", Decimal("1"), 30)

    def test_invalid_amount(self, seasoned_borrower):
        with pytest.raises(InvalidAmount):
            seasoned_borrower.pool.borrow("alice", Decimal("0"), MONTH)

    def test_insufficient_liquidity(self, seasoned_borrower):
        pool = seasoned_borrower.pool
        pool.withdraw_liquidity("admin", Decimal("490"))
        with pytest.raises(InsufficientLiquidity):
            pool.borrow("alice", Decimal("20"), MONTH)
        assert seasoned_borrower.bonds.get_bond(seasoned_borrower.bonds.get_bond_key("alice", "bob")).frozen_for == ()

    def test_partner_of_frozen_bond_cannot_exit(self, seasoned_borrower, loan):
        with pytest.raises(BondFrozen):
            seasoned_borrower.bonds.exit("bob", "alice")


class TestRepay:

    def test_repay_exact(self, seasoned_borrower, loan, advance, ledger, balance):
        pool = seasoned_borrower.pool
        advance(30)
        assert pool.get_amount_owed(loan.loan_id) == OWED_AFTER_30_DAYS
        result = pool.repay("alice", loan.loan_id, OWED_AFTER_30_DAYS)
        assert result.refund == Decimal("0")
        assert result.interest == OWED_AFTER_30_DAYS - Decimal("30")
        assert balance(POOL) == Decimal("470") + OWED_AFTER_30_DAYS
        assert ledger.get_balance("alice", "LOAN-1") == Decimal("0")
        assert pool.get_loan(loan.loan_id).status == LoanStatus.REPAID
        assert pool.get_amount_owed(loan.loan_id) == Decimal("0")
        assert pool.get_active_loan("alice") is None

    def test_overpayment_refunded(self, seasoned_borrower, loan, advance, balance):
        advance(30)
        before = balance("alice")
        result = seasoned_borrower.pool.repay("alice", loan.loan_id, Decimal("31"))
        assert result.refund == Decimal("31") - OWED_AFTER_30_DAYS
        assert balance("alice") == before - OWED_AFTER_30_DAYS

    def test_repay_releases_collateral(self, seasoned_borrower, loan):
        bonds = seasoned_borrower.bonds
        result = seasoned_borrower.pool.repay("alice", loan.loan_id, Decimal("30"))
        assert set(result.released_bonds) == set(loan.collateral_bonds)
        for key in loan.collateral_bonds:
            assert not bonds.get_bond(key).frozen
        bonds.exit("alice", "bob")

    def test_only_borrower_repays(self, seasoned_borrower, loan):
        with pytest.raises(Unauthorized):
            seasoned_borrower.pool.repay("bob", loan.loan_id, Decimal("40"))

    def test_short_payment(self, seasoned_borrower, loan, advance):
        advance(30)
        with pytest.raises(InsufficientPayment):
            seasoned_borrower.pool.repay("alice", loan.loan_id, Decimal("30"))
        assert seasoned_borrower.pool.get_loan(loan.loan_id).is_active

    def test_cannot_repay_twice(self, seasoned_borrower, loan):
        pool = seasoned_borrower.pool
        pool.repay("alice", loan.loan_id, Decimal("30"))
        with pytest.raises(LoanStateError):
            pool.repay("alice", loan.loan_id, Decimal("30"))

    def test_unknown_loan(self, pool):
        with pytest.raises(LoanNotFound):
            pool.repay("alice", 99, Decimal("1"))

    def test_borrow_again_after_repay(self, seasoned_borrower, loan):
        pool = seasoned_borrower.pool
        pool.repay("alice", loan.loan_id, Decimal("30"))
        second = pool.borrow("alice", Decimal("1"), MONTH)
        assert second.loan_id == 2
        assert [l.loan_id for l in pool.get_user_loans("alice")] == [1, 2]


class TestLiquidate:

    def test_owner_only(self, seasoned_borrower, loan, advance):
        advance(31)
        with pytest.raises(Unauthorized):
            seasoned_borrower.pool.liquidate("bob", loan.loan_id)

    def test_not_before_expiry(self, seasoned_borrower, loan, advance):
        pool = seasoned_borrower.pool
        advance(30)
        assert not pool.is_liquidatable(loan.loan_id)
        with pytest.raises(LoanNotExpired):
            pool.liquidate("admin", loan.loan_id)

    def test_liquidation_recovers_yield_to_participants(self, seasoned_borrower, loan, advance, balance):
        pool = seasoned_borrower.pool
        advance(31)
        assert pool.is_liquidatable(loan.loan_id)
        result = pool.liquidate("admin", loan.loan_id)
        # 61 days of yield: 15 * 0.61 + 40 * 0.61
        assert result.recovered_yield == Decimal("33.55")
        assert result.claim_error is None
        assert balance("alice") == Decimal("1018.3")
        assert balance("bob") == Decimal("998.05")
        assert balance("carol") == Decimal("992.2")
        assert pool.total_recovered_yield == Decimal("33.55")

    def test_liquidation_marks_default_and_releases(self, seasoned_borrower, loan, advance, ledger):
        pool = seasoned_borrower.pool
        bonds = seasoned_borrower.bonds
        advance(31)
        result = pool.liquidate("admin", loan.loan_id)
        assert set(result.released_bonds) == set(loan.collateral_bonds)
        assert pool.get_loan(loan.loan_id).status == LoanStatus.DEFAULTED
        assert ledger.get_balance("alice", "LOAN-1") == Decimal("0")
        for key in loan.collateral_bonds:
            bond = bonds.get_bond(key)
            assert bond.active
            assert not bond.frozen
            assert bond.accrued_yield == Decimal("0")

    def test_principal_is_never_seized(self, seasoned_borrower, loan, advance):
        bonds = seasoned_borrower.bonds
        advance(31)
        seasoned_borrower.pool.liquidate("admin", loan.loan_id)
        assert bonds.total_value_locked() == Decimal("55")

    def test_failed_claim_is_reported(self, seasoned_borrower, loan, advance, ledger):
        pool = seasoned_borrower.pool

        def refuse(wallet, unit, qty):
            raise ReentrancyError("bob refuses")

        ledger.set_receive_hook("bob", refuse)
        advance(31)
        result = pool.liquidate("admin", loan.loan_id)
        assert result.recovered_yield == Decimal("0")
        assert "bob refuses" in result.claim_error
        assert pool.get_loan(loan.loan_id).status == LoanStatus.DEFAULTED
        for key in loan.collateral_bonds:
            assert not seasoned_borrower.bonds.get_bond(key).frozen

    def test_settled_loan_cannot_be_liquidated(self, seasoned_borrower, loan, advance):
        pool = seasoned_borrower.pool
        pool.repay("alice", loan.loan_id, Decimal("30"))
        advance(31)
        assert not pool.is_liquidatable(loan.loan_id)
        with pytest.raises(LoanStateError):
            pool.liquidate("admin", loan.loan_id)


class TestLiquidity:

    def test_deposit_owner_only(self, pool):
        with pytest.raises(Unauthorized):
            pool.deposit_liquidity("alice", Decimal("1"))

    def test_deposit_and_withdraw(self, pool, balance):
        pool.deposit_liquidity("admin", Decimal("100"))
        pool.withdraw_liquidity("admin", Decimal("40"))
        assert pool.available_liquidity() == Decimal("60")
        assert balance("admin") == Decimal("9940")

    def test_cannot_withdraw_more_than_held(self, liquid_pool):
        with pytest.raises(InsufficientLiquidity):
            liquid_pool.withdraw_liquidity("admin", Decimal("500.000000000000000001"))

    def test_unfunded_deposit(self, pool):
        with pytest.raises(TransferFailed):
            pool.deposit_liquidity("admin", Decimal("20000"))


class TestPoolStats:

    def test_stats_track_loans(self, seasoned_borrower, loan):
        stats = seasoned_borrower.pool.get_pool_stats()
        assert stats.liquidity == Decimal("470")
        assert stats.outstanding_principal == Decimal("30")
        assert stats.total_borrowed == Decimal("30")
        assert stats.active_loans == 1
        assert stats.utilization == Decimal("0.06")

    def test_stats_after_default(self, seasoned_borrower, loan, advance):
        pool = seasoned_borrower.pool
        advance(31)
        pool.liquidate("admin", loan.loan_id)
        stats = pool.get_pool_stats()
        assert stats.total_defaulted == Decimal("30")
        assert stats.outstanding_principal == Decimal("0")
        assert stats.total_recovered_yield == Decimal("33.55")
        assert stats.active_loans == 0

    def test_empty_pool(self, pool):
        stats = pool.get_pool_stats()
        assert stats.utilization == Decimal("0")
        assert stats.active_loans == 0


class TestReentrancy:

    def test_borrower_hook_cannot_borrow_again(self, seasoned_borrower, ledger):
        pool = seasoned_borrower.pool
        bonds = seasoned_borrower.bonds

        def greedy(wallet, unit, qty):
            pool.borrow("alice", Decimal("1"), MONTH)

        ledger.set_receive_hook("alice", greedy)
        with pytest.raises(TransferFailed, match="ReentrancyError"):
            pool.borrow("alice", Decimal("30"), MONTH)

        assert pool.get_active_loan("alice") is None
        assert pool.available_liquidity() == Decimal("500")
        for bond in bonds.get_active_bonds("alice"):
            assert not bond.frozen

        ledger.set_receive_hook("alice", None)
        assert pool.borrow("alice", Decimal("30"), MONTH).loan_id == 1


class TestHookErrors:
    """A hook raising a non-ledger error propagates without leaving partial state."""

    @staticmethod
    def _crash(wallet, unit, qty):
        raise RuntimeError(f"{wallet} crashed")

    def test_borrow_leaves_no_loan_or_freeze(self, seasoned_borrower, ledger):
        pool = seasoned_borrower.pool
        bonds = seasoned_borrower.bonds
        ledger.set_receive_hook("alice", self._crash)

        with pytest.raises(RuntimeError, match="alice crashed"):
            pool.borrow("alice", Decimal("1"), timedelta(days=7))

        assert not ledger.has_unit("LOAN-1")
        assert pool.get_active_loan("alice") is None
        assert pool.available_liquidity() == Decimal("500")
        assert not any(b.frozen for b in bonds.get_active_bonds("alice"))

        ledger.set_receive_hook("alice", None)
        assert pool.borrow("alice", Decimal("1"), timedelta(days=7)).loan_id == 1

    def test_liquidate_still_releases_collateral(self, seasoned_borrower, loan, advance, ledger):
        pool = seasoned_borrower.pool
        bonds = seasoned_borrower.bonds
        ledger.set_receive_hook("bob", self._crash)
        advance(38)

        with pytest.raises(RuntimeError, match="bob crashed"):
            pool.liquidate("admin", loan.loan_id)

        assert pool.get_loan(loan.loan_id).status == LoanStatus.DEFAULTED
        assert pool.get_active_loan("alice") is None
        for key in loan.collateral_bonds:
            assert not bonds.get_bond(key).frozen

        ledger.set_receive_hook("bob", None)
        assert bonds.exit("alice", "bob").caller_payout > Decimal("0")
