"""
Core types and pure functions for the trust bond system.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the bond, loan and access error types
4. Type aliases: Positions, BalanceMap, UnitState
5. Amount helpers: Decimal coercion and quantization to asset precision
6. Unit factories: the settlement asset

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext, InvalidOperation
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Optional, Callable, Any, Protocol,
    Tuple, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Bond accounting requires deterministic Decimal arithmetic.
# The global context is configured once at module load time.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
#   - prec=50: enough headroom for 18-decimal amounts times rates and seconds
#   - rounding=ROUND_HALF_EVEN: banker's rounding for intermediate results
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance. Cooperation yield is issued from here.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_TRUST_BOND = "TRUST_BOND"
UNIT_TYPE_TRUST_LOAN = "TRUST_LOAN"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

# Smallest-unit precision of the default settlement asset (wei-style).
DEFAULT_ASSET_DECIMAL_PLACES = 18

BPS_DENOMINATOR = Decimal("10000")
SECONDS_PER_DAY = Decimal("86400")
SECONDS_PER_YEAR = Decimal("31536000")  # 365 days

DECIMAL_ROUNDING = {
    UNIT_TYPE_CASH: ROUND_HALF_EVEN,
    UNIT_TYPE_TRUST_BOND: ROUND_DOWN,
    UNIT_TYPE_TRUST_LOAN: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: bond or loan terms and lifecycle fields.
UnitState = Dict[str, Any]

# Called with (wallet_id, unit_symbol, quantity) before a credit is applied.
ReceiveHook = Callable[[str, str, Decimal], None]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pure bond and loan functions accept a LedgerView to declare that they only
    read. The Ledger class implements this protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def has_unit(self, unit_symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent).
    REJECTED: Transaction failed validation; nothing was applied.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"       # End user call (create, stake, exit, borrow...)
    CONTRACT = "contract"             # Component-to-component call (freeze, claim)
    ADMIN = "admin"                   # Owner-only operations
    SYSTEM = "system"                 # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all trustbond errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered with the ledger."""
    pass


class TransferFailed(LedgerError):
    """Raised when the ledger rejects the transaction staged by an operation."""
    pass


class Unauthorized(LedgerError):
    """Raised when the caller fails an owner, allow-list or identity check."""
    pass


class ReentrancyError(LedgerError):
    """Raised on a re-entrant call into a component that is mid-operation."""
    pass


class InvalidAmount(LedgerError, ValueError):
    """Zero, negative, non-finite, or finer than the asset precision."""
    pass


class InvalidCounterparty(LedgerError, ValueError):
    """Empty partner identifier or self-partnering."""
    pass


class BondStateError(LedgerError):
    """Operation not allowed in the bond's current lifecycle state."""
    pass


class BondNotFound(BondStateError):
    pass


class DuplicateBond(BondStateError):
    pass


class BondFrozen(BondStateError):
    """Exit or defect attempted while the bond is loan collateral."""
    pass


class LoanStateError(LedgerError):
    """Operation not allowed in the loan's current lifecycle state."""
    pass


class LoanNotFound(LoanStateError):
    pass


class ActiveLoanExists(LoanStateError):
    pass


class LoanNotExpired(LoanStateError):
    pass


class InvalidDuration(LedgerError, ValueError):
    pass


class BorrowLimitExceeded(LedgerError):
    pass


class InsufficientLiquidity(LedgerError):
    pass


class InsufficientPayment(LedgerError):
    pass


# ============================================================================
# AMOUNT HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Coerce int/float/str to Decimal via str() so floats keep their repr."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidAmount(f"amount must be numeric, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"amount must be numeric, got {value!r}") from exc


def quantize(value: Decimal, decimal_places: int, rounding: str = ROUND_DOWN) -> Decimal:
    """Quantize to a number of decimal places (ROUND_DOWN by default)."""
    return value.quantize(Decimal(10) ** -decimal_places, rounding=rounding)


def require_positive_amount(value: Any, decimal_places: int, name: str = "amount") -> Decimal:
    """
    Validate a caller-supplied amount and return it as a Decimal.

    Raises:
        InvalidAmount: if the value is not finite, not positive, or carries
                       more precision than the settlement asset allows.
    """
    amount = to_decimal(value)
    if amount.is_nan() or amount.is_infinite():
        raise InvalidAmount(f"{name} must be finite, got {amount}")
    if amount <= Decimal("0"):
        raise InvalidAmount(f"{name} must be positive, got {amount}")
    if quantize(amount, decimal_places) != amount:
        raise InvalidAmount(
            f"{name} {amount} has more than {decimal_places} decimal places"
        )
    return amount


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin. This is the event record.

    Attributes:
        origin_type: Classification of the origin (USER_ACTION, CONTRACT, ...)
        source_id: Component identity plus operation sequence ("bonds#12")
        unit_symbol: Bond key or loan symbol the operation acted on
        event_type: e.g. "BOND_EXIT", "LOAN_REPAID"
        actor: The caller identity that triggered the operation
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None
    actor: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        if self.actor:
            parts.append(f"actor={self.actor}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change, with complete before/after snapshots.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: State before the change (dict, or None for a new unit)
        new_state: State after the change
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The symbol of the unit being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Based solely on moves, state changes, origin and units to create, never on
    execution time. Used for idempotency checking.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")
    if origin.actor:
        content_parts.append(f"actor:{origin.actor}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by the compute_* functions and submitted to Ledger.execute(), which
    applies every move, state change and unit creation or none of them.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Units to register before executing moves
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state changes.

    State snapshots are deep-copied so later mutation by the caller cannot
    leak into the staged transaction.

    Example:
        old_state = view.get_unit_state(key)
        new_state = {**old_state, 'active': False}
        changes = [UnitStateChange(unit=key, old_state=old_state, new_state=new_state)]
        pending = build_transaction(view, moves, changes, origin)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction for operations with nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        units_to_create: Units registered by this transaction
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")

    @property
    def event_type(self) -> Optional[str]:
        return self.origin.event_type

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + repr(self.origin))}│",
        ]
        for unit in self.units_to_create:
            lines.append(f"│{pad('   + unit ' + unit.symbol + ' [' + unit.unit_type + ']')}│")
        lines.append(f"├{bar}┤")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sorted(sc.changed_fields().items()):
                lines.append(f"│{pad(f'   {sc.unit[:12]}.{field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: the settlement asset, a bond or a loan.

    Attributes:
        symbol: Identifier (asset code, bond key, or "LOAN-1").
        name: Human-readable name.
        unit_type: CASH, TRUST_BOND or TRUST_LOAN.
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Rounding precision (None = no rounding).
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's decimal precision."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return quantize(value, self.decimal_places, rounding_mode)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def settlement_asset(
    symbol: str = "ETH",
    name: str = "Ether",
    decimal_places: int = DEFAULT_ASSET_DECIMAL_PLACES,
) -> Unit:
    """
    Create the settlement asset that stakes, yield, penalties and loans use.

    Balances may not go negative: every outgoing transfer must be funded.
    Only the system wallet (yield issuance) is exempt.
    """
    if decimal_places < 0:
        raise ValueError(f"decimal_places cannot be negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET}),
    )
