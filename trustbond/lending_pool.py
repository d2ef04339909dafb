"""
lending_pool.py - Lending Pool

Originates loans against a borrower's trust score and bond collateral, and
settles them by repayment or liquidation. The pool owns its liquidity (the
balance of its wallet) and every loan record.

A loan freezes all of the borrower's active bonds for its lifetime. Repayment
releases them; liquidation after expiry recovers the bonds' accrued yield
through the Bond Ledger and then releases them. Bond principal is never
seized.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .access import AccessControl, non_reentrant, require_identity
from .bond_ledger import BondLedger
from .config import PoolParameters
from .core import (
    Move, PendingTransaction, TransactionOrigin, OriginType, ExecuteResult,
    DEFAULT_ASSET_DECIMAL_PLACES,
    ActiveLoanExists, BorrowLimitExceeded, InsufficientLiquidity, InsufficientPayment,
    InvalidDuration, LoanNotExpired, LoanStateError, TransferFailed, Unauthorized,
    build_transaction, require_positive_amount,
)
from .ledger import Ledger
from .trust_scorer import TrustScorer
from .units.trust_loan import (
    TrustLoan, LoanStatus,
    load_loan,
    calculate_max_borrow, calculate_interest_rate, calculate_amount_owed, is_expired,
    compute_origination, compute_repayment, compute_default,
)


ZERO = Decimal("0")

# Event types recorded in TransactionOrigin.event_type
LOAN_ORIGINATED = "LOAN_ORIGINATED"
LOAN_REPAID = "LOAN_REPAID"
LOAN_DEFAULTED = "LOAN_DEFAULTED"
LIQUIDITY_DEPOSIT = "LIQUIDITY_DEPOSIT"
LIQUIDITY_WITHDRAWAL = "LIQUIDITY_WITHDRAWAL"


@dataclass(frozen=True)
class Repayment:
    loan_id: int
    owed: Decimal
    interest: Decimal
    payment: Decimal
    refund: Decimal
    released_bonds: Tuple[str, ...]


@dataclass(frozen=True)
class Liquidation:
    """Outcome of a liquidation. A failed yield claim is reported in claim_error."""
    loan_id: int
    recovered_yield: Decimal
    claim_error: Optional[str]
    released_bonds: Tuple[str, ...]


@dataclass(frozen=True)
class PoolStats:
    liquidity: Decimal
    outstanding_principal: Decimal
    total_borrowed: Decimal
    total_repaid: Decimal
    total_defaulted: Decimal
    total_recovered_yield: Decimal
    active_loans: int
    utilization: Decimal  # outstanding / (liquidity + outstanding)


class LendingPool:
    """
    Trust-score lending against frozen bond collateral.

    Example:
        pool = LendingPool(ledger, bonds, scorer, "pool", owner="admin", currency="ETH")
        pool.deposit_liquidity("admin", Decimal("100"))
        loan = pool.borrow("alice", Decimal("5"), timedelta(days=30))
        pool.repay("alice", loan.loan_id, pool.get_amount_owed(loan.loan_id))
    """

    def __init__(
        self,
        ledger: Ledger,
        bond_ledger: BondLedger,
        scorer: TrustScorer,
        address: str,
        owner: str,
        currency: str,
        params: Optional[PoolParameters] = None,
        verbose: bool = True,
    ):
        self.ledger = ledger
        self.bond_ledger = bond_ledger
        self.scorer = scorer
        self.address = require_identity(address, "address")
        self.currency = currency
        self.params = params or PoolParameters()
        self.access = AccessControl(owner)
        self.verbose = verbose
        self.total_recovered_yield = ZERO
        self._next_loan_id = 1
        self._loans_by_user: Dict[str, List[int]] = {}
        self._active_by_user: Dict[str, int] = {}
        self._seq = 0
        self._entered = False

        unit = ledger.get_unit(currency)
        self.decimal_places = unit.decimal_places if unit.decimal_places is not None else DEFAULT_ASSET_DECIMAL_PLACES
        if not ledger.is_registered(self.address):
            ledger.register_wallet(self.address)

    @property
    def owner(self) -> str:
        return self.access.owner

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[{self.address}] {message}")

    def _origin(
        self,
        event_type: str,
        actor: str,
        unit_symbol: Optional[str] = None,
        origin_type: OriginType = OriginType.USER_ACTION,
    ) -> TransactionOrigin:
        self._seq += 1
        return TransactionOrigin(
            origin_type=origin_type,
            source_id=f"{self.address}#{self._seq}",
            unit_symbol=unit_symbol,
            event_type=event_type,
            actor=actor,
        )

    def _submit(self, pending: PendingTransaction, action: str) -> None:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            reason = self.ledger.last_rejection_reason
            self._log(f"✗ {action} rejected: {reason}")
            raise TransferFailed(f"{action}: {reason}")

    def _require_active(self, loan: TrustLoan) -> None:
        if loan.status != LoanStatus.ACTIVE:
            raise LoanStateError(f"Loan {loan.loan_id} is {loan.status.value}")

    # ========================================================================
    # BORROWER OPERATIONS
    # ========================================================================

    @non_reentrant
    def borrow(self, caller: str, amount, duration: timedelta) -> TrustLoan:
        """
        Originate a loan and freeze every active bond of the borrower.

        Raises:
            InvalidAmount, InvalidDuration: Bad inputs
            ActiveLoanExists: The caller already has an active loan
            BorrowLimitExceeded: amount above the score and LTV limits
            InsufficientLiquidity: Pool balance below amount
            TransferFailed: The ledger rejected the payout (freeze reverted)
        """
        require_identity(caller, "caller")
        value = require_positive_amount(amount, self.decimal_places)
        if not isinstance(duration, timedelta):
            raise InvalidDuration(f"duration must be a timedelta, got {duration!r}")
        if duration < self.params.min_duration:
            raise InvalidDuration(f"duration {duration} below minimum {self.params.min_duration}")
        if caller in self._active_by_user:
            raise ActiveLoanExists(f"{caller} already has active loan {self._active_by_user[caller]}")

        score = self.scorer.score(caller)
        collateral_value = self.bond_ledger.get_user_total_value(caller)
        max_borrow = calculate_max_borrow(
            score, collateral_value, self.params.score_factor, self.params.max_ltv_bps, self.decimal_places
        )
        if value > max_borrow:
            raise BorrowLimitExceeded(f"{caller} may borrow at most {max_borrow}, asked {value}")
        if self.available_liquidity() < value:
            raise InsufficientLiquidity(f"pool holds {self.available_liquidity()}, asked {value}")

        rate_bps = calculate_interest_rate(score, self.params.base_rate_bps, self.params.min_rate_bps)
        collateral = tuple(b.key for b in self.bond_ledger.get_active_bonds(caller))
        self.bond_ledger.freeze(self.address, caller, True)

        loan = TrustLoan(
            loan_id=self._next_loan_id,
            borrower=caller,
            principal=value,
            rate_bps=rate_bps,
            duration_seconds=int(duration.total_seconds()),
            start_time=self.ledger.current_time,
            currency=self.currency,
            pool_wallet=self.address,
            collateral_bonds=collateral,
            collateral_value=collateral_value,
            trust_score=score,
        )
        origin = self._origin(LOAN_ORIGINATED, caller, loan.symbol)
        try:
            result = self.ledger.execute(compute_origination(self.ledger, loan, origin))
        except BaseException:
            self.bond_ledger.freeze(self.address, caller, False)
            raise
        if result == ExecuteResult.REJECTED:
            reason = self.ledger.last_rejection_reason
            self.bond_ledger.freeze(self.address, caller, False)
            self._log(f"✗ borrow rejected: {reason}")
            raise TransferFailed(f"borrow: {reason}")

        self._next_loan_id += 1
        self._loans_by_user.setdefault(caller, []).append(loan.loan_id)
        self._active_by_user[caller] = loan.loan_id
        self._log(f"loan {loan.loan_id} to {caller}: {value} at {rate_bps} bps, {len(collateral)} bond(s) frozen")
        return loan

    @non_reentrant
    def repay(self, caller: str, loan_id: int, payment) -> Repayment:
        """
        Repay an active loan in full; overpayment is refunded in the same
        transaction and the borrower's bonds are released.
        """
        loan = load_loan(self.ledger, loan_id)
        if caller != loan.borrower:
            raise Unauthorized(f"repay: {caller} is not the borrower of loan {loan_id}")
        self._require_active(loan)
        value = require_positive_amount(payment, self.decimal_places, "payment")
        owed, interest = calculate_amount_owed(loan, self.ledger.current_time, self.decimal_places)
        if value < owed:
            raise InsufficientPayment(f"loan {loan_id}: payment {value} below owed {owed}")

        origin = self._origin(LOAN_REPAID, caller, loan.symbol)
        self._submit(compute_repayment(self.ledger, loan, value, owed, origin), "repay")
        self._active_by_user.pop(loan.borrower, None)

        released = self.bond_ledger.freeze(self.address, loan.borrower, False)
        self._log(f"loan {loan_id} repaid: owed {owed} (interest {interest})")
        return Repayment(
            loan_id=loan_id,
            owed=owed,
            interest=interest,
            payment=value,
            refund=value - owed,
            released_bonds=tuple(released),
        )

    # ========================================================================
    # OWNER OPERATIONS
    # ========================================================================

    @non_reentrant
    def liquidate(self, caller: str, loan_id: int) -> Liquidation:
        """
        Default an expired loan, recover its collateral's accrued yield and
        release the collateral.
        """
        self.access.require_owner(caller, "liquidate")
        loan = load_loan(self.ledger, loan_id)
        self._require_active(loan)
        if not is_expired(loan, self.ledger.current_time):
            raise LoanNotExpired(f"loan {loan_id} is due at {loan.due_at}")

        origin = self._origin(LOAN_DEFAULTED, caller, loan.symbol, OriginType.ADMIN)
        self._submit(compute_default(self.ledger, loan, origin), "liquidate")
        self._active_by_user.pop(loan.borrower, None)

        recovered = ZERO
        claim_error = None
        try:
            recovered = self.bond_ledger.claim_yield(self.address, loan.borrower)
        except TransferFailed as e:
            claim_error = str(e)
            self._log(f"yield claim for loan {loan_id} failed: {claim_error}")
        finally:
            released = self.bond_ledger.freeze(self.address, loan.borrower, False)

        self.total_recovered_yield += recovered
        self._log(f"loan {loan_id} defaulted: recovered {recovered}")
        return Liquidation(
            loan_id=loan_id,
            recovered_yield=recovered,
            claim_error=claim_error,
            released_bonds=tuple(released),
        )

    def _liquidity_move(self, caller: str, amount, event_type: str, source: str, dest: str) -> Decimal:
        value = require_positive_amount(amount, self.decimal_places)
        origin = self._origin(event_type, caller, self.currency, OriginType.ADMIN)
        move = Move(
            quantity=value,
            unit_symbol=self.currency,
            source=source,
            dest=dest,
            contract_id=f"{event_type.lower()}_{self._seq}",
        )
        self._submit(build_transaction(self.ledger, [move], origin=origin), event_type.lower())
        return value

    @non_reentrant
    def deposit_liquidity(self, caller: str, amount) -> Decimal:
        self.access.require_owner(caller, "deposit_liquidity")
        value = self._liquidity_move(caller, amount, LIQUIDITY_DEPOSIT, caller, self.address)
        self._log(f"liquidity deposited: {value}")
        return value

    @non_reentrant
    def withdraw_liquidity(self, caller: str, amount) -> Decimal:
        self.access.require_owner(caller, "withdraw_liquidity")
        value = require_positive_amount(amount, self.decimal_places)
        if self.available_liquidity() < value:
            raise InsufficientLiquidity(f"pool holds {self.available_liquidity()}, asked {value}")
        self._liquidity_move(caller, value, LIQUIDITY_WITHDRAWAL, self.address, caller)
        self._log(f"liquidity withdrawn: {value}")
        return value

    # ========================================================================
    # QUERIES
    # ========================================================================

    def available_liquidity(self) -> Decimal:
        return self.ledger.get_balance(self.address, self.currency)

    def get_loan(self, loan_id: int) -> TrustLoan:
        return load_loan(self.ledger, loan_id)

    def get_active_loan(self, user: str) -> Optional[TrustLoan]:
        loan_id = self._active_by_user.get(user)
        return load_loan(self.ledger, loan_id) if loan_id is not None else None

    def get_user_loans(self, user: str) -> List[TrustLoan]:
        return [load_loan(self.ledger, i) for i in self._loans_by_user.get(user, [])]

    def get_max_borrowable_amount(self, user: str) -> Decimal:
        """Same limit borrow() enforces; zero while the user has an active loan."""
        if user in self._active_by_user:
            return ZERO
        return calculate_max_borrow(
            self.scorer.score(user),
            self.bond_ledger.get_user_total_value(user),
            self.params.score_factor,
            self.params.max_ltv_bps,
            self.decimal_places,
        )

    def get_interest_rate(self, user: str) -> int:
        return calculate_interest_rate(
            self.scorer.score(user), self.params.base_rate_bps, self.params.min_rate_bps
        )

    def get_amount_owed(self, loan_id: int) -> Decimal:
        """Principal plus interest to date; zero once the loan is settled."""
        loan = load_loan(self.ledger, loan_id)
        if not loan.is_active:
            return ZERO
        owed, _ = calculate_amount_owed(loan, self.ledger.current_time, self.decimal_places)
        return owed

    def is_liquidatable(self, loan_id: int) -> bool:
        loan = load_loan(self.ledger, loan_id)
        return loan.is_active and is_expired(loan, self.ledger.current_time)

    def get_pool_stats(self) -> PoolStats:
        loans = [load_loan(self.ledger, i) for i in range(1, self._next_loan_id)]
        outstanding = sum((l.principal for l in loans if l.status == LoanStatus.ACTIVE), ZERO)
        liquidity = self.available_liquidity()
        capital = liquidity + outstanding
        return PoolStats(
            liquidity=liquidity,
            outstanding_principal=outstanding,
            total_borrowed=sum((l.principal for l in loans), ZERO),
            total_repaid=sum((l.amount_repaid for l in loans if l.status == LoanStatus.REPAID), ZERO),
            total_defaulted=sum((l.principal for l in loans if l.status == LoanStatus.DEFAULTED), ZERO),
            total_recovered_yield=self.total_recovered_yield,
            active_loans=len(self._active_by_user),
            utilization=outstanding / capital if capital > ZERO else ZERO,
        )
