"""
Units module - bond and loan records held in the settlement ledger.

- Trust bonds: one unit per participant pair, reused across generations
- Trust loans: one unit per loan, held by the borrower while active

All unit factories and related functions are re-exported here for convenience.
"""

# Trust bond units
from .trust_bond import (
    TrustBond,
    BondPhase,
    CloseReason,
    ExitSettlement,
    DefectSettlement,
    bond_key,
    canonical_pair,
    create_trust_bond_unit,
    load_bond,
    bond_from_state,
    accrue,
    calculate_pending_yield,
    calculate_yield_split,
    calculate_exit_penalty,
    calculate_defect_penalty,
    calculate_exit_settlement,
    calculate_defect_settlement,
    calculate_user_value,
    calculate_projected_yield,
    compute_open_bond,
    compute_add_stake,
    compute_exit,
    compute_defect,
    compute_set_freeze,
    compute_claim_yield,
)

# Trust loan units
from .trust_loan import (
    TrustLoan,
    LoanStatus,
    loan_symbol,
    create_loan_unit,
    load_loan,
    calculate_max_borrow,
    calculate_interest_rate,
    calculate_interest_owed,
    calculate_amount_owed,
    is_expired,
    compute_origination,
    compute_repayment,
    compute_default,
)
