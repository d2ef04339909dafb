"""
trust_bond.py - Trust Bond Units

A trust bond is a pairwise, stake-backed position between two participants.
Both lock settlement asset in the Bond Ledger escrow; while both remain staked
the bond accrues cooperation yield. It ends by exit (fair unwind, mild
penalty) or defect (the defector sweeps the bond, heavy penalty).

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS: TrustBond, a typed snapshot of the unit state
2. ADAPTERS: load_bond() / to_state_dict()
3. PURE CALCULATIONS (calculate_*): yield accrual, yield split, penalties,
   exit and defect settlements, collateral value
4. BUILDERS (compute_*): turn a decision into a PendingTransaction of moves
   and state changes for Ledger.execute()

Key Formulas:
    pending_yield = total_stake * daily_bps/10000 * elapsed_seconds/86400
    exit_penalty  = total * min(exit_bps * sqrt(prior_exits + 1), max_exit_bps) / 10000
    defect_penalty = total * min(defect_bps * sqrt(prior_defects + 1), max_defect_bps) / 10000

Lifecycle:
    PENDING (one slot staked) -> ACTIVE (both staked, accruing) -> CLOSED (EXIT | DEFECT)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from enum import Enum
import hashlib
from typing import Any, Dict, List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, Unit, UnitStateChange,
    SYSTEM_WALLET, UNIT_TYPE_TRUST_BOND, BPS_DENOMINATOR, SECONDS_PER_DAY,
    BondNotFound, BondStateError,
    build_transaction, quantize, _freeze_state,
)


ZERO = Decimal("0")


class BondPhase(str, Enum):
    """Lifecycle phase of a trust bond slot."""
    EMPTY = "empty"         # Never opened, or closed and cleared
    PENDING = "pending"     # One participant staked, waiting for the other
    ACTIVE = "active"       # Both staked, accruing yield


class CloseReason(str, Enum):
    EXIT = "exit"
    DEFECT = "defect"


# ============================================================================
# KEYS
# ============================================================================

def canonical_pair(a: str, b: str) -> Tuple[str, str]:
    """Sort two identifiers into (low, high) order."""
    return (a, b) if a <= b else (b, a)


def bond_key(a: str, b: str) -> str:
    """
    Order-independent bond key: "0x" + sha256("len(low):low|high").

    Length-prefixed, so distinct pairs never share an encoding.

    Example:
        bond_key("alice", "bob") == bond_key("bob", "alice")
    """
    low, high = canonical_pair(a, b)
    return "0x" + hashlib.sha256(f"{len(low)}:{low}|{high}".encode()).hexdigest()


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TrustBond:
    """
    Immutable snapshot of one bond slot.

    Terms (currency, escrow, treasury, daily rate) are fixed when the unit is
    first registered; the rest changes over the lifecycle.
    """
    key: str
    participant_low: str
    participant_high: str
    currency: str
    escrow_wallet: str
    treasury_wallet: str
    daily_yield_bps: int
    stake_low: Decimal = ZERO
    stake_high: Decimal = ZERO
    accrued_yield: Decimal = ZERO
    created_at: Optional[datetime] = None
    last_yield_update: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    active: bool = False
    frozen_for: Tuple[str, ...] = ()
    closed_at: Optional[datetime] = None
    close_reason: Optional[str] = None
    generation: int = 0

    @property
    def frozen(self) -> bool:
        return bool(self.frozen_for)

    @property
    def total_stake(self) -> Decimal:
        return self.stake_low + self.stake_high

    @property
    def is_cleared(self) -> bool:
        """A slot can be (re)opened only when inactive with both stakes zero."""
        return not self.active and self.stake_low == ZERO and self.stake_high == ZERO

    @property
    def phase(self) -> BondPhase:
        if self.active:
            return BondPhase.ACTIVE
        if self.is_cleared:
            return BondPhase.EMPTY
        return BondPhase.PENDING

    @property
    def participants(self) -> Tuple[str, str]:
        return (self.participant_low, self.participant_high)

    def is_participant(self, user: str) -> bool:
        return user == self.participant_low or user == self.participant_high

    def partner_of(self, user: str) -> str:
        if user == self.participant_low:
            return self.participant_high
        if user == self.participant_high:
            return self.participant_low
        raise BondStateError(f"{user} is not a participant of bond {self.key}")

    def stake_of(self, user: str) -> Decimal:
        if user == self.participant_low:
            return self.stake_low
        if user == self.participant_high:
            return self.stake_high
        raise BondStateError(f"{user} is not a participant of bond {self.key}")

    def with_stake(self, user: str, stake: Decimal) -> 'TrustBond':
        if user == self.participant_low:
            return replace(self, stake_low=stake)
        if user == self.participant_high:
            return replace(self, stake_high=stake)
        raise BondStateError(f"{user} is not a participant of bond {self.key}")


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def load_bond(view: LedgerView, key: str) -> TrustBond:
    """
    Load a bond from ledger state as a frozen TrustBond.

    Raises:
        BondNotFound: If no bond unit is registered under this key
    """
    if not view.has_unit(key):
        raise BondNotFound(f"No bond {key}")
    return bond_from_state(key, view.get_unit_state(key))


def bond_from_state(key: str, raw: Dict[str, Any]) -> TrustBond:
    return TrustBond(
        key=key,
        participant_low=raw['participant_low'],
        participant_high=raw['participant_high'],
        currency=raw['currency'],
        escrow_wallet=raw['escrow_wallet'],
        treasury_wallet=raw['treasury_wallet'],
        daily_yield_bps=raw['daily_yield_bps'],
        stake_low=_dec(raw.get('stake_low')),
        stake_high=_dec(raw.get('stake_high')),
        accrued_yield=_dec(raw.get('accrued_yield')),
        created_at=raw.get('created_at'),
        last_yield_update=raw.get('last_yield_update'),
        activated_at=raw.get('activated_at'),
        active=raw.get('active', False),
        frozen_for=tuple(raw.get('frozen_for', ())),
        closed_at=raw.get('closed_at'),
        close_reason=raw.get('close_reason'),
        generation=raw.get('generation', 0),
    )


def to_state_dict(bond: TrustBond) -> Dict[str, Any]:
    """Inverse of load_bond(): the dict stored as the unit's state."""
    return {
        'participant_low': bond.participant_low,
        'participant_high': bond.participant_high,
        'currency': bond.currency,
        'escrow_wallet': bond.escrow_wallet,
        'treasury_wallet': bond.treasury_wallet,
        'daily_yield_bps': bond.daily_yield_bps,
        'stake_low': bond.stake_low,
        'stake_high': bond.stake_high,
        'accrued_yield': bond.accrued_yield,
        'created_at': bond.created_at,
        'last_yield_update': bond.last_yield_update,
        'activated_at': bond.activated_at,
        'active': bond.active,
        'frozen_for': tuple(sorted(bond.frozen_for)),
        'closed_at': bond.closed_at,
        'close_reason': bond.close_reason,
        'generation': bond.generation,
    }


def create_trust_bond_unit(
    a: str,
    b: str,
    currency: str,
    escrow_wallet: str,
    treasury_wallet: str,
    daily_yield_bps: int,
) -> Unit:
    """
    Create the unit that holds a pair's bond state.

    The unit is registered once per pair and reused when the slot is
    reopened after termination. Nobody holds a balance of it; value sits in
    the escrow wallet in the settlement currency.
    """
    low, high = canonical_pair(a, b)
    key = bond_key(low, high)
    empty = TrustBond(
        key=key,
        participant_low=low,
        participant_high=high,
        currency=currency,
        escrow_wallet=escrow_wallet,
        treasury_wallet=treasury_wallet,
        daily_yield_bps=daily_yield_bps,
    )
    return Unit(
        symbol=key,
        name=f"Trust bond {low}/{high}",
        unit_type=UNIT_TYPE_TRUST_BOND,
        min_balance=ZERO,
        max_balance=ZERO,
        decimal_places=0,
        _frozen_state=_freeze_state(to_state_dict(empty)),
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_pending_yield(
    total_stake: Decimal,
    daily_yield_bps: int,
    elapsed_seconds: Decimal,
    decimal_places: int,
) -> Decimal:
    """
    Linear yield accrued over elapsed_seconds, rounded down.

    Example:
        15 staked at 100 bps/day for 30 days -> 4.5
    """
    if total_stake <= ZERO or elapsed_seconds <= ZERO or daily_yield_bps <= 0:
        return ZERO
    raw = total_stake * Decimal(daily_yield_bps) / BPS_DENOMINATOR * elapsed_seconds / SECONDS_PER_DAY
    return quantize(raw, decimal_places, ROUND_DOWN)


def _elapsed_seconds(start: Optional[datetime], now: datetime) -> Decimal:
    if start is None or now <= start:
        return ZERO
    delta = now - start
    return Decimal(delta.days) * SECONDS_PER_DAY + Decimal(delta.seconds) + Decimal(delta.microseconds) / Decimal(1_000_000)


def calculate_bond_pending_yield(bond: TrustBond, now: datetime, decimal_places: int) -> Decimal:
    """Yield accrued since last_yield_update and not yet folded into accrued_yield."""
    if not bond.active:
        return ZERO
    return calculate_pending_yield(
        bond.total_stake,
        bond.daily_yield_bps,
        _elapsed_seconds(bond.last_yield_update, now),
        decimal_places,
    )


def accrue(bond: TrustBond, now: datetime, decimal_places: int) -> TrustBond:
    """
    Fold pending yield into accrued_yield and advance last_yield_update.

    Inactive bonds are returned unchanged.
    """
    if not bond.active:
        return bond
    pending = calculate_bond_pending_yield(bond, now, decimal_places)
    return replace(bond, accrued_yield=bond.accrued_yield + pending, last_yield_update=now)


def calculate_yield_split(
    accrued: Decimal,
    caller_stake: Decimal,
    total_stake: Decimal,
    decimal_places: int,
) -> Tuple[Decimal, Decimal]:
    """
    Split yield pro rata to stake. The caller's share is rounded down and the
    partner receives the remainder, so the two always sum to accrued.
    """
    if accrued <= ZERO or total_stake <= ZERO:
        return ZERO, ZERO
    caller_share = quantize(accrued * caller_stake / total_stake, decimal_places, ROUND_DOWN)
    return caller_share, accrued - caller_share


def _penalty_rate_bps(base_bps: int, max_bps: int, prior_count: int) -> Decimal:
    if prior_count < 0:
        raise ValueError(f"prior_count cannot be negative, got {prior_count}")
    scaled = Decimal(base_bps) * Decimal(prior_count + 1).sqrt()
    return min(scaled, Decimal(max_bps))


def calculate_exit_penalty(
    total: Decimal,
    prior_exits: int,
    exit_penalty_bps: int,
    max_exit_penalty_bps: int,
    decimal_places: int,
) -> Decimal:
    """
    Mild penalty that grows with the square root of the caller's exit count.

    Example:
        total 19.5, first exit, 100 bps -> 0.195
    """
    rate = _penalty_rate_bps(exit_penalty_bps, max_exit_penalty_bps, prior_exits)
    return quantize(total * rate / BPS_DENOMINATOR, decimal_places, ROUND_DOWN)


def calculate_defect_penalty(
    total: Decimal,
    prior_defects: int,
    defect_penalty_bps: int,
    max_defect_penalty_bps: int,
    decimal_places: int,
) -> Decimal:
    """
    Heavy penalty that grows with the square root of the caller's defect count.

    Example:
        total 19.5, first defect, 2000 bps -> 3.9
    """
    rate = _penalty_rate_bps(defect_penalty_bps, max_defect_penalty_bps, prior_defects)
    return quantize(total * rate / BPS_DENOMINATOR, decimal_places, ROUND_DOWN)


@dataclass(frozen=True, slots=True)
class ExitSettlement:
    """Payouts of an exit. caller_payout + partner_payout + penalty == total."""
    caller_payout: Decimal
    partner_payout: Decimal
    penalty: Decimal
    caller_yield: Decimal
    partner_yield: Decimal
    total: Decimal


@dataclass(frozen=True, slots=True)
class DefectSettlement:
    """Payouts of a defect. defector_payout + penalty == total; partner gets nothing."""
    defector_payout: Decimal
    penalty: Decimal
    total: Decimal


def calculate_exit_settlement(
    bond: TrustBond,
    caller: str,
    prior_exits: int,
    exit_penalty_bps: int,
    max_exit_penalty_bps: int,
    decimal_places: int,
) -> ExitSettlement:
    """
    Settle an exit on an already-accrued bond.

    The penalty is charged against the caller's side only and is capped at
    the caller's gross withdrawal.
    """
    caller_stake = bond.stake_of(caller)
    partner_stake = bond.stake_of(bond.partner_of(caller))
    total = bond.total_stake + bond.accrued_yield
    caller_yield, partner_yield = calculate_yield_split(
        bond.accrued_yield, caller_stake, bond.total_stake, decimal_places
    )
    caller_gross = caller_stake + caller_yield
    penalty = calculate_exit_penalty(
        total, prior_exits, exit_penalty_bps, max_exit_penalty_bps, decimal_places
    )
    penalty = min(penalty, caller_gross)
    return ExitSettlement(
        caller_payout=caller_gross - penalty,
        partner_payout=partner_stake + partner_yield,
        penalty=penalty,
        caller_yield=caller_yield,
        partner_yield=partner_yield,
        total=total,
    )


def calculate_defect_settlement(
    bond: TrustBond,
    prior_defects: int,
    defect_penalty_bps: int,
    max_defect_penalty_bps: int,
    decimal_places: int,
) -> DefectSettlement:
    """Settle a defect on an already-accrued bond."""
    total = bond.total_stake + bond.accrued_yield
    penalty = calculate_defect_penalty(
        total, prior_defects, defect_penalty_bps, max_defect_penalty_bps, decimal_places
    )
    return DefectSettlement(defector_payout=total - penalty, penalty=penalty, total=total)


def calculate_user_value(bond: TrustBond, user: str, now: datetime, decimal_places: int) -> Decimal:
    """
    Collateral value of one bond to one participant: own stake plus half of
    the currently accruable yield. Zero for inactive bonds.
    """
    if not bond.active:
        return ZERO
    accruable = bond.accrued_yield + calculate_bond_pending_yield(bond, now, decimal_places)
    return bond.stake_of(user) + quantize(accruable / 2, decimal_places, ROUND_DOWN)


def calculate_age_days(bond: TrustBond, now: datetime) -> int:
    """Whole days since activation (0 for bonds that never activated)."""
    if bond.activated_at is None or now <= bond.activated_at:
        return 0
    return (now - bond.activated_at).days


def calculate_raw_trust_contribution(bond: TrustBond, now: datetime) -> Decimal:
    """Fallback score term: sqrt(age_days + 1) * tvl / 100."""
    if not bond.active:
        return ZERO
    age_days = calculate_age_days(bond, now)
    return Decimal(age_days + 1).sqrt() * bond.total_stake / Decimal(100)


def calculate_projected_yield(bond: TrustBond, now: datetime, days: int, decimal_places: int) -> Decimal:
    """Yield the bond would hold after `days` more days if nothing changes."""
    if days < 0:
        raise ValueError(f"days cannot be negative, got {days}")
    accruable = bond.accrued_yield + calculate_bond_pending_yield(bond, now, decimal_places)
    if not bond.active:
        return accruable
    future = calculate_pending_yield(
        bond.total_stake, bond.daily_yield_bps, Decimal(days) * SECONDS_PER_DAY, decimal_places
    )
    return accruable + future


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def _state_change(view: LedgerView, key: str, new_bond: TrustBond) -> UnitStateChange:
    return UnitStateChange(unit=key, old_state=view.get_unit_state(key), new_state=to_state_dict(new_bond))


def _move(quantity: Decimal, bond: TrustBond, source: str, dest: str, tag: str) -> Move:
    return Move(
        quantity=quantity,
        unit_symbol=bond.currency,
        source=source,
        dest=dest,
        contract_id=f"{tag}_{bond.key[:18]}_g{bond.generation}",
    )


def compute_open_bond(
    view: LedgerView,
    bond: TrustBond,
    initiator: str,
    stake: Decimal,
    origin: TransactionOrigin,
    unit: Optional[Unit] = None,
) -> PendingTransaction:
    """
    Open a cleared slot with the initiator's stake.

    Pass `unit` when the pair's bond unit does not exist yet; it is created
    in the same transaction.
    """
    if not bond.is_cleared:
        raise BondStateError(f"Bond {bond.key} is not cleared")
    now = view.current_time
    opened = replace(
        bond,
        stake_low=ZERO,
        stake_high=ZERO,
        accrued_yield=ZERO,
        created_at=now,
        last_yield_update=None,
        activated_at=None,
        active=False,
        frozen_for=(),
        closed_at=None,
        close_reason=None,
        generation=bond.generation + 1,
    ).with_stake(initiator, stake)

    moves = [_move(stake, opened, initiator, opened.escrow_wallet, "stake")]
    if unit is not None:
        # The unit's initial state is the cleared bond; record the opening as a change on it.
        state_changes = [UnitStateChange(unit=bond.key, old_state=None, new_state=to_state_dict(opened))]
        return build_transaction(view, moves, state_changes, origin, units_to_create=(unit,))
    return build_transaction(view, moves, [_state_change(view, bond.key, opened)], origin)


def compute_add_stake(
    view: LedgerView,
    bond: TrustBond,
    staker: str,
    amount: Decimal,
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Fill the staker's empty slot of a pending bond. The bond activates when
    both slots are filled and accrual starts at this instant.
    """
    if bond.active or bond.is_cleared:
        raise BondStateError(f"Bond {bond.key} is not pending")
    if bond.stake_of(staker) != ZERO:
        raise BondStateError(f"{staker} already staked in bond {bond.key}")
    now = view.current_time
    staked = bond.with_stake(staker, amount)
    if staked.stake_low > ZERO and staked.stake_high > ZERO:
        staked = replace(staked, active=True, activated_at=now, last_yield_update=now)
    moves = [_move(amount, staked, staker, staked.escrow_wallet, "stake")]
    return build_transaction(view, moves, [_state_change(view, bond.key, staked)], origin)


def _closed(bond: TrustBond, now: datetime, reason: CloseReason) -> TrustBond:
    return replace(
        bond,
        stake_low=ZERO,
        stake_high=ZERO,
        accrued_yield=ZERO,
        active=False,
        frozen_for=(),
        last_yield_update=now,
        closed_at=now,
        close_reason=reason.value,
    )


def compute_exit(
    view: LedgerView,
    accrued: TrustBond,
    caller: str,
    settlement: ExitSettlement,
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Close an accrued bond by exit.

    Yield is issued from the system wallet into escrow, then escrow pays both
    participants and the treasury.
    """
    partner = accrued.partner_of(caller)
    moves: List[Move] = []
    if accrued.accrued_yield > ZERO:
        moves.append(_move(accrued.accrued_yield, accrued, SYSTEM_WALLET, accrued.escrow_wallet, "yield"))
    if settlement.caller_payout > ZERO:
        moves.append(_move(settlement.caller_payout, accrued, accrued.escrow_wallet, caller, "exit_caller"))
    if settlement.partner_payout > ZERO:
        moves.append(_move(settlement.partner_payout, accrued, accrued.escrow_wallet, partner, "exit_partner"))
    if settlement.penalty > ZERO:
        moves.append(_move(settlement.penalty, accrued, accrued.escrow_wallet, accrued.treasury_wallet, "exit_penalty"))
    closed = _closed(accrued, view.current_time, CloseReason.EXIT)
    return build_transaction(view, moves, [_state_change(view, accrued.key, closed)], origin)


def compute_defect(
    view: LedgerView,
    accrued: TrustBond,
    caller: str,
    settlement: DefectSettlement,
    origin: TransactionOrigin,
) -> PendingTransaction:
    """Close an accrued bond by defect; the partner receives nothing."""
    moves: List[Move] = []
    if accrued.accrued_yield > ZERO:
        moves.append(_move(accrued.accrued_yield, accrued, SYSTEM_WALLET, accrued.escrow_wallet, "yield"))
    if settlement.defector_payout > ZERO:
        moves.append(_move(settlement.defector_payout, accrued, accrued.escrow_wallet, caller, "defect_payout"))
    if settlement.penalty > ZERO:
        moves.append(_move(settlement.penalty, accrued, accrued.escrow_wallet, accrued.treasury_wallet, "defect_penalty"))
    closed = _closed(accrued, view.current_time, CloseReason.DEFECT)
    return build_transaction(view, moves, [_state_change(view, accrued.key, closed)], origin)


def compute_set_freeze(
    view: LedgerView,
    bonds: List[TrustBond],
    user: str,
    on: bool,
    origin: TransactionOrigin,
    decimal_places: int,
) -> PendingTransaction:
    """
    Add or remove `user`'s freeze on each bond, accruing each first so the
    rate segment before the freeze change is settled.
    """
    now = view.current_time
    state_changes = []
    for bond in bonds:
        holders = set(bond.frozen_for)
        if on:
            holders.add(user)
        else:
            holders.discard(user)
        updated = replace(accrue(bond, now, decimal_places), frozen_for=tuple(sorted(holders)))
        state_changes.append(_state_change(view, bond.key, updated))
    return build_transaction(view, [], state_changes, origin)


def compute_claim_yield(
    view: LedgerView,
    bonds: List[TrustBond],
    origin: TransactionOrigin,
    decimal_places: int,
) -> Tuple[PendingTransaction, Decimal, Dict[str, Decimal]]:
    """
    Pay out the accrued yield of each bond to its two participants pro rata.

    Returns:
        (pending, total_paid, paid_by_user)
    """
    now = view.current_time
    moves: List[Move] = []
    state_changes = []
    total = ZERO
    paid: Dict[str, Decimal] = {}
    for bond in bonds:
        accrued = accrue(bond, now, decimal_places)
        low_share, high_share = calculate_yield_split(
            accrued.accrued_yield, accrued.stake_low, accrued.total_stake, decimal_places
        )
        for user, share in ((accrued.participant_low, low_share), (accrued.participant_high, high_share)):
            if share > ZERO:
                moves.append(_move(share, accrued, SYSTEM_WALLET, user, "yield_claim"))
                paid[user] = paid.get(user, ZERO) + share
        total += accrued.accrued_yield
        state_changes.append(_state_change(view, bond.key, replace(accrued, accrued_yield=ZERO)))
    return build_transaction(view, moves, state_changes, origin), total, paid
