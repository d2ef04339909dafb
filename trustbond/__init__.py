"""
trustbond - Pairwise trust bonds, trust scoring and trust-score lending

Usage:
    from trustbond import Ledger, deploy_protocol, Move, build_transaction, SYSTEM_WALLET

    ledger = Ledger("main", datetime(2025, 1, 1))
    protocol = deploy_protocol(ledger, owner="admin")
    for user in ("alice", "bob"):
        ledger.register_wallet(user)
        ledger.execute(build_transaction(ledger, [
            Move(Decimal("100"), "ETH", SYSTEM_WALLET, user, f"fund_{user}")
        ]))

    protocol.bonds.create_bond("alice", "bob", Decimal("10"))
    protocol.bonds.add_stake("bob", "alice", Decimal("5"))
    ledger.advance_time(datetime(2025, 1, 31))
    protocol.bonds.exit("alice", "bob")
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    settlement_asset,
    SYSTEM_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_TRUST_BOND,
    UNIT_TYPE_TRUST_LOAN,
    # Exceptions
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    TransferFailed,
    Unauthorized,
    ReentrancyError,
    InvalidAmount,
    InvalidCounterparty,
    BondStateError,
    BondNotFound,
    DuplicateBond,
    BondFrozen,
    LoanStateError,
    LoanNotFound,
    ActiveLoanExists,
    LoanNotExpired,
    InvalidDuration,
    BorrowLimitExceeded,
    InsufficientLiquidity,
    InsufficientPayment,
)

# Ledger
from .ledger import Ledger

# Configuration
from .config import BondParameters, ScoreWeights, PoolParameters

# Components
from .access import AccessControl, non_reentrant
from .bond_ledger import BondLedger, UserAccount
from .trust_scorer import TrustScorer, ScoreRecord
from .lending_pool import LendingPool, Repayment, Liquidation, PoolStats
from .protocol import TrustProtocol, deploy_protocol

# Units
from .units import (
    TrustBond,
    ExitSettlement,
    DefectSettlement,
    bond_key,
    TrustLoan,
    LoanStatus,
)

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'settlement_asset',
    'SYSTEM_WALLET', 'UNIT_TYPE_CASH', 'UNIT_TYPE_TRUST_BOND', 'UNIT_TYPE_TRUST_LOAN',
    # Exceptions
    'LedgerError', 'UnitNotRegistered', 'WalletNotRegistered',
    'TransferFailed', 'Unauthorized', 'ReentrancyError', 'InvalidAmount',
    'InvalidCounterparty', 'BondStateError', 'BondNotFound', 'DuplicateBond', 'BondFrozen',
    'LoanStateError', 'LoanNotFound', 'ActiveLoanExists', 'LoanNotExpired',
    'InvalidDuration', 'BorrowLimitExceeded', 'InsufficientLiquidity', 'InsufficientPayment',
    # Ledger
    'Ledger',
    # Configuration
    'BondParameters', 'ScoreWeights', 'PoolParameters',
    # Components
    'AccessControl', 'non_reentrant',
    'BondLedger', 'UserAccount',
    'TrustScorer', 'ScoreRecord',
    'LendingPool', 'Repayment', 'Liquidation', 'PoolStats',
    'TrustProtocol', 'deploy_protocol',
    # Units
    'TrustBond', 'ExitSettlement', 'DefectSettlement', 'bond_key',
    'TrustLoan', 'LoanStatus',
]

__version__ = '0.1.0'
