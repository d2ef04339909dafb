"""
trust_loan.py - Trust Loan Units

A trust loan is an uncollateralized-by-asset loan from the Lending Pool,
sized by the borrower's trust score and the value of the bonds frozen as its
collateral. The loan unit carries the record; one unit of it is held by the
borrower while the loan is ACTIVE and returned to the system wallet when the
loan is settled, like any other extinguished liability record.

Key Formulas:
    max_borrow = min(score * score_factor, collateral_value * max_ltv_bps / 10000)
    rate_bps   = max(min_rate_bps, base_rate_bps - floor(score / 100))
    interest   = principal * rate_bps/10000 * elapsed_seconds / 365 days   (rounded up)

Lifecycle:
    ACTIVE -> REPAID | DEFAULTED (both terminal)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, Unit, UnitStateChange,
    SYSTEM_WALLET, UNIT_TYPE_TRUST_LOAN, BPS_DENOMINATOR, SECONDS_PER_DAY, SECONDS_PER_YEAR,
    LoanNotFound, LoanStateError,
    build_transaction, quantize, _freeze_state,
)


ZERO = Decimal("0")


class LoanStatus(str, Enum):
    """Status of a trust loan."""
    ACTIVE = "active"           # Principal out, bonds frozen
    REPAID = "repaid"           # Principal and interest returned, bonds released
    DEFAULTED = "defaulted"     # Liquidated after expiry, yield recovered


def loan_symbol(loan_id: int) -> str:
    return f"LOAN-{loan_id}"


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TrustLoan:
    """Immutable snapshot of a loan record."""
    loan_id: int
    borrower: str
    principal: Decimal
    rate_bps: int
    duration_seconds: int
    start_time: datetime
    currency: str
    pool_wallet: str
    status: LoanStatus = LoanStatus.ACTIVE
    collateral_bonds: Tuple[str, ...] = ()
    collateral_value: Decimal = ZERO
    trust_score: Decimal = ZERO
    amount_repaid: Decimal = ZERO
    repaid_at: Optional[datetime] = None
    defaulted_at: Optional[datetime] = None

    @property
    def symbol(self) -> str:
        return loan_symbol(self.loan_id)

    @property
    def due_at(self) -> datetime:
        return self.start_time + timedelta(seconds=self.duration_seconds)

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE


def load_loan(view: LedgerView, loan_id: int) -> TrustLoan:
    """
    Load a loan record from ledger state.

    Raises:
        LoanNotFound: If no loan unit exists for this id
    """
    symbol = loan_symbol(loan_id)
    if not view.has_unit(symbol):
        raise LoanNotFound(f"No loan {loan_id}")
    raw = view.get_unit_state(symbol)
    return TrustLoan(
        loan_id=raw['loan_id'],
        borrower=raw['borrower'],
        principal=Decimal(str(raw['principal'])),
        rate_bps=raw['rate_bps'],
        duration_seconds=raw['duration_seconds'],
        start_time=raw['start_time'],
        currency=raw['currency'],
        pool_wallet=raw['pool_wallet'],
        status=LoanStatus(raw['status']),
        collateral_bonds=tuple(raw.get('collateral_bonds', ())),
        collateral_value=Decimal(str(raw.get('collateral_value', ZERO))),
        trust_score=Decimal(str(raw.get('trust_score', ZERO))),
        amount_repaid=Decimal(str(raw.get('amount_repaid', ZERO))),
        repaid_at=raw.get('repaid_at'),
        defaulted_at=raw.get('defaulted_at'),
    )


def to_state_dict(loan: TrustLoan) -> Dict[str, Any]:
    return {
        'loan_id': loan.loan_id,
        'borrower': loan.borrower,
        'principal': loan.principal,
        'rate_bps': loan.rate_bps,
        'duration_seconds': loan.duration_seconds,
        'start_time': loan.start_time,
        'currency': loan.currency,
        'pool_wallet': loan.pool_wallet,
        'status': loan.status.value,
        'collateral_bonds': tuple(loan.collateral_bonds),
        'collateral_value': loan.collateral_value,
        'trust_score': loan.trust_score,
        'amount_repaid': loan.amount_repaid,
        'repaid_at': loan.repaid_at,
        'defaulted_at': loan.defaulted_at,
    }


def create_loan_unit(loan: TrustLoan) -> Unit:
    """A single-unit record: borrowers hold 0 or 1 of it."""
    return Unit(
        symbol=loan.symbol,
        name=f"Trust loan {loan.loan_id}: {loan.principal} {loan.currency} to {loan.borrower}",
        unit_type=UNIT_TYPE_TRUST_LOAN,
        min_balance=ZERO,
        max_balance=Decimal("1"),
        decimal_places=0,
        _frozen_state=_freeze_state(to_state_dict(loan)),
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_max_borrow(
    trust_score: Decimal,
    collateral_value: Decimal,
    score_factor: int,
    max_ltv_bps: int,
    decimal_places: int,
) -> Decimal:
    """
    Lesser of the score-based and the LTV-based limits, rounded down.

    Example:
        score 50, factor 10, collateral 100, 80% LTV -> min(500, 80) = 80
    """
    if trust_score <= ZERO or collateral_value <= ZERO:
        return ZERO
    by_score = trust_score * Decimal(score_factor)
    by_ltv = collateral_value * Decimal(max_ltv_bps) / BPS_DENOMINATOR
    return quantize(min(by_score, by_ltv), decimal_places, ROUND_DOWN)


def calculate_interest_rate(trust_score: Decimal, base_rate_bps: int, min_rate_bps: int) -> int:
    """Base rate less one bp per full 100 points of score, floored at the minimum."""
    discount = int(max(trust_score, ZERO) // Decimal(100))
    return max(min_rate_bps, base_rate_bps - discount)


def calculate_interest_owed(
    principal: Decimal,
    rate_bps: int,
    elapsed_seconds: Decimal,
    decimal_places: int,
) -> Decimal:
    """
    Simple interest on a 365-day year, rounded up.

    Example:
        100 at 550 bps for 365 days -> 5.5
    """
    if principal <= ZERO or elapsed_seconds <= ZERO or rate_bps <= 0:
        return ZERO
    raw = principal * Decimal(rate_bps) / BPS_DENOMINATOR * elapsed_seconds / SECONDS_PER_YEAR
    return quantize(raw, decimal_places, ROUND_UP)


def calculate_amount_owed(loan: TrustLoan, now: datetime, decimal_places: int) -> Tuple[Decimal, Decimal]:
    """Return (owed, interest) for an active loan at `now`."""
    elapsed = ZERO
    if now > loan.start_time:
        delta = now - loan.start_time
        elapsed = Decimal(delta.days) * SECONDS_PER_DAY + Decimal(delta.seconds) + Decimal(delta.microseconds) / Decimal(1_000_000)
    interest = calculate_interest_owed(loan.principal, loan.rate_bps, elapsed, decimal_places)
    return loan.principal + interest, interest


def is_expired(loan: TrustLoan, now: datetime) -> bool:
    """Strictly past start + duration."""
    return now > loan.due_at


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def _record_move(loan: TrustLoan, source: str, dest: str, tag: str) -> Move:
    return Move(
        quantity=Decimal("1"),
        unit_symbol=loan.symbol,
        source=source,
        dest=dest,
        contract_id=f"{tag}_{loan.symbol}",
    )


def compute_origination(view: LedgerView, loan: TrustLoan, origin: TransactionOrigin) -> PendingTransaction:
    """Create the loan unit, assign it to the borrower and pay out the principal."""
    moves = [
        Move(
            quantity=loan.principal,
            unit_symbol=loan.currency,
            source=loan.pool_wallet,
            dest=loan.borrower,
            contract_id=f"principal_{loan.symbol}",
        ),
        _record_move(loan, SYSTEM_WALLET, loan.borrower, "originate"),
    ]
    return build_transaction(view, moves, [], origin, units_to_create=(create_loan_unit(loan),))


def compute_repayment(
    view: LedgerView,
    loan: TrustLoan,
    payment: Decimal,
    owed: Decimal,
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Settle an active loan: the payment goes to the pool, the excess over
    `owed` is refunded and the record is extinguished.
    """
    if not loan.is_active:
        raise LoanStateError(f"Loan {loan.loan_id} is {loan.status.value}")
    if payment < owed:
        raise ValueError(f"payment {payment} below amount owed {owed}")
    moves = [
        Move(
            quantity=payment,
            unit_symbol=loan.currency,
            source=loan.borrower,
            dest=loan.pool_wallet,
            contract_id=f"repay_{loan.symbol}",
        ),
    ]
    refund = payment - owed
    if refund > ZERO:
        moves.append(Move(
            quantity=refund,
            unit_symbol=loan.currency,
            source=loan.pool_wallet,
            dest=loan.borrower,
            contract_id=f"refund_{loan.symbol}",
        ))
    moves.append(_record_move(loan, loan.borrower, SYSTEM_WALLET, "repaid"))
    repaid = replace(
        loan,
        status=LoanStatus.REPAID,
        amount_repaid=owed,
        repaid_at=view.current_time,
    )
    state_changes = [UnitStateChange(unit=loan.symbol, old_state=view.get_unit_state(loan.symbol), new_state=to_state_dict(repaid))]
    return build_transaction(view, moves, state_changes, origin)


def compute_default(view: LedgerView, loan: TrustLoan, origin: TransactionOrigin) -> PendingTransaction:
    """Mark an active loan DEFAULTED and extinguish its record."""
    if not loan.is_active:
        raise LoanStateError(f"Loan {loan.loan_id} is {loan.status.value}")
    defaulted = replace(loan, status=LoanStatus.DEFAULTED, defaulted_at=view.current_time)
    state_changes = [UnitStateChange(unit=loan.symbol, old_state=view.get_unit_state(loan.symbol), new_state=to_state_dict(defaulted))]
    moves: List[Move] = [_record_move(loan, loan.borrower, SYSTEM_WALLET, "defaulted")]
    return build_transaction(view, moves, state_changes, origin)
