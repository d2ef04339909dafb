"""
bond_ledger.py - Bond Ledger

Owns every trust bond and the per-user account history. End users create,
stake, exit and defect; the owner and allow-listed components (the Lending
Pool) freeze bonds as collateral and claim their yield.

Each mutating operation:
    1. validates its preconditions (raising before anything is staged)
    2. accrues the bond's yield
    3. builds one PendingTransaction with the pure trust_bond functions
    4. submits it to the settlement ledger; a rejection raises TransferFailed
    5. updates the user accounts and notifies the Trust Scorer
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .access import AccessControl, non_reentrant, require_identity
from .config import BondParameters
from .core import (
    PendingTransaction, TransactionOrigin, OriginType, ExecuteResult,
    DEFAULT_ASSET_DECIMAL_PLACES,
    BondNotFound, BondStateError, BondFrozen, DuplicateBond, InvalidCounterparty,
    TransferFailed,
    require_positive_amount,
)
from .ledger import Ledger
from .units.trust_bond import (
    TrustBond, ExitSettlement, DefectSettlement,
    bond_key, bond_from_state, create_trust_bond_unit, load_bond, accrue,
    calculate_exit_settlement, calculate_defect_settlement,
    calculate_user_value, calculate_raw_trust_contribution,
    calculate_projected_yield, calculate_bond_pending_yield,
    compute_open_bond, compute_add_stake, compute_exit, compute_defect,
    compute_set_freeze, compute_claim_yield,
)

if TYPE_CHECKING:
    from .trust_scorer import TrustScorer


ZERO = Decimal("0")

# Event types recorded in TransactionOrigin.event_type
BOND_CREATED = "BOND_CREATED"
STAKE_ADDED = "STAKE_ADDED"
BOND_ACTIVATED = "BOND_ACTIVATED"
BOND_EXIT = "BOND_EXIT"
BOND_DEFECT = "BOND_DEFECT"
BOND_FREEZE = "BOND_FREEZE"
BOND_UNFREEZE = "BOND_UNFREEZE"
YIELD_CLAIMED = "YIELD_CLAIMED"


@dataclass(frozen=True)
class UserAccount:
    """History of one user across all bonds. Keys are never removed."""
    user: str
    bond_keys: Tuple[str, ...] = ()
    defect_count: int = 0
    exit_count: int = 0
    total_penalties_paid: Decimal = ZERO
    total_yield_received: Decimal = ZERO


class BondLedger:
    """
    Bond lifecycle and accounting engine.

    The component's address is its escrow wallet: all stakes sit there while
    a bond is open. Penalties are retained in the treasury wallet. Yield is
    issued from the system wallet when it is paid out.

    Example:
        bonds = BondLedger(ledger, "bonds", owner="admin", currency="ETH")
        key = bonds.create_bond("alice", "bob", Decimal("10"))
        bonds.add_stake("bob", "alice", Decimal("5"))
    """

    def __init__(
        self,
        ledger: Ledger,
        address: str,
        owner: str,
        currency: str,
        treasury: Optional[str] = None,
        params: Optional[BondParameters] = None,
        verbose: bool = True,
    ):
        self.ledger = ledger
        self.address = require_identity(address, "address")
        self.treasury = treasury or f"{address}:treasury"
        self.currency = currency
        self.params = params or BondParameters()
        self.access = AccessControl(owner)
        self.scorer: Optional[TrustScorer] = None
        self.verbose = verbose
        self._accounts: Dict[str, UserAccount] = {}
        self._seq = 0
        self._entered = False

        unit = ledger.get_unit(currency)
        self.decimal_places = unit.decimal_places if unit.decimal_places is not None else DEFAULT_ASSET_DECIMAL_PLACES
        for wallet in (self.address, self.treasury):
            if not ledger.is_registered(wallet):
                ledger.register_wallet(wallet)

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    @property
    def owner(self) -> str:
        return self.access.owner

    def authorize(self, caller: str, account: str) -> None:
        self.access.authorize(caller, account)
        self._log(f"authorized {account}")

    def revoke(self, caller: str, account: str) -> None:
        self.access.revoke(caller, account)
        self._log(f"revoked {account}")

    def attach_scorer(self, caller: str, scorer: 'TrustScorer') -> None:
        self.access.require_owner(caller, "attach_scorer")
        self.scorer = scorer
        self._log(f"scorer attached: {scorer.address}")

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

    def _account(self, user: str) -> UserAccount:
        return self._accounts.get(user) or UserAccount(user=user)

    def _update_account(self, user: str, **changes) -> None:
        self._accounts[user] = replace(self._account(user), **changes)

    def _track_key(self, user: str, key: str) -> None:
        account = self._account(user)
        if key not in account.bond_keys:
            self._update_account(user, bond_keys=account.bond_keys + (key,))

    def _require_partner(self, caller: str, partner: str) -> None:
        require_identity(caller, "caller")
        if not isinstance(partner, str) or not partner.strip():
            raise InvalidCounterparty("partner cannot be empty")
        if partner == caller:
            raise InvalidCounterparty(f"{caller} cannot bond with itself")

    def _require_open_active(self, caller: str, partner: str, action: str) -> TrustBond:
        self._require_partner(caller, partner)
        bond = self._load_open(caller, partner)
        if not bond.active:
            raise BondStateError(f"{action}: bond {bond.key} is not active")
        if bond.frozen:
            raise BondFrozen(f"{action}: bond {bond.key} is frozen as loan collateral")
        return bond

    def _load_open(self, a: str, b: str) -> TrustBond:
        bond = load_bond(self.ledger, bond_key(a, b))
        if bond.is_cleared:
            raise BondNotFound(f"No open bond between {a} and {b}")
        return bond

    # ========================================================================
    # BOND LIFECYCLE (end users)
    # ========================================================================

    @non_reentrant
    def create_bond(self, caller: str, partner: str, stake) -> str:
        """
        Open a bond with `partner`, staking `stake` into escrow.

        Returns:
            The bond key

        Raises:
            InvalidCounterparty: Empty partner or self-partnering
            InvalidAmount: Non-positive or over-precise stake
            DuplicateBond: An uncleared bond already exists for the pair
            TransferFailed: The ledger rejected the stake transfer
        """
        self._require_partner(caller, partner)
        amount = require_positive_amount(stake, self.decimal_places, "stake")
        key = bond_key(caller, partner)

        unit = None
        if self.ledger.has_unit(key):
            bond = load_bond(self.ledger, key)
            if not bond.is_cleared:
                raise DuplicateBond(f"Bond {key} between {caller} and {partner} already exists")
        else:
            unit = create_trust_bond_unit(
                caller, partner, self.currency, self.address, self.treasury, self.params.daily_yield_bps
            )
            bond = bond_from_state(key, unit.state)

        origin = self._origin(BOND_CREATED, caller, key)
        self._submit(compute_open_bond(self.ledger, bond, caller, amount, origin, unit=unit), "create_bond")

        self._track_key(caller, key)
        self._track_key(partner, key)
        self._log(f"bond created {key[:10]} {caller}->{partner} stake={amount}")
        return key

    @non_reentrant
    def add_stake(self, caller: str, partner: str, amount) -> str:
        """
        Fill the caller's empty slot of a pending bond; the bond activates
        once both slots hold stake.

        Raises:
            BondNotFound: No open bond for the pair
            BondStateError: Bond already active or caller's slot already filled
        """
        self._require_partner(caller, partner)
        value = require_positive_amount(amount, self.decimal_places, "amount")
        bond = self._load_open(caller, partner)
        if bond.active:
            raise BondStateError(f"Bond {bond.key} is already active")
        if bond.stake_of(caller) != ZERO:
            raise BondStateError(f"{caller} already staked in bond {bond.key}")

        activates = bond.stake_of(partner) > ZERO
        event = BOND_ACTIVATED if activates else STAKE_ADDED
        origin = self._origin(event, caller, bond.key)
        self._submit(compute_add_stake(self.ledger, bond, caller, value, origin), "add_stake")

        self._log(f"stake added {bond.key[:10]} {caller}={value}{' (active)' if activates else ''}")
        if activates and self.scorer is not None:
            self.scorer.refresh(self.address, caller)
            self.scorer.refresh(self.address, partner)
        return bond.key

    @non_reentrant
    def exit(self, caller: str, partner: str) -> ExitSettlement:
        """
        Unwind an active bond fairly.

        Both participants receive their stake plus a pro rata yield share;
        the caller pays the exit penalty to the treasury.
        """
        bond = self._require_open_active(caller, partner, "exit")
        accrued = accrue(bond, self.ledger.current_time, self.decimal_places)
        account = self._account(caller)
        bond_score = self.scorer.score_bond(caller, accrued) if self.scorer else ZERO

        settlement = calculate_exit_settlement(
            accrued,
            caller,
            account.exit_count,
            self.params.exit_penalty_bps,
            self.params.max_exit_penalty_bps,
            self.decimal_places,
        )
        origin = self._origin(BOND_EXIT, caller, bond.key)
        self._submit(compute_exit(self.ledger, accrued, caller, settlement, origin), "exit")

        self._update_account(
            caller,
            exit_count=account.exit_count + 1,
            total_penalties_paid=account.total_penalties_paid + settlement.penalty,
            total_yield_received=account.total_yield_received + settlement.caller_yield,
        )
        partner_account = self._account(partner)
        self._update_account(
            partner,
            total_yield_received=partner_account.total_yield_received + settlement.partner_yield,
        )
        self._log(
            f"exit {bond.key[:10]} by {caller}: paid {settlement.caller_payout}/"
            f"{settlement.partner_payout} penalty={settlement.penalty}"
        )

        if self.scorer is not None:
            self.scorer.apply_exit_penalty(self.address, caller, bond_score, accrued.total_stake)
            self.scorer.refresh(self.address, caller)
            self.scorer.refresh(self.address, partner)
        return settlement

    @non_reentrant
    def defect(self, caller: str, partner: str) -> DefectSettlement:
        """
        Sweep an active bond to the caller under the defect penalty; the
        partner receives nothing.
        """
        bond = self._require_open_active(caller, partner, "defect")
        accrued = accrue(bond, self.ledger.current_time, self.decimal_places)
        account = self._account(caller)
        bond_score = self.scorer.score_bond(caller, accrued) if self.scorer else ZERO

        settlement = calculate_defect_settlement(
            accrued,
            account.defect_count,
            self.params.defect_penalty_bps,
            self.params.max_defect_penalty_bps,
            self.decimal_places,
        )
        origin = self._origin(BOND_DEFECT, caller, bond.key)
        self._submit(compute_defect(self.ledger, accrued, caller, settlement, origin), "defect")

        self._update_account(
            caller,
            defect_count=account.defect_count + 1,
            total_penalties_paid=account.total_penalties_paid + settlement.penalty,
            total_yield_received=account.total_yield_received + accrued.accrued_yield,
        )
        self._log(
            f"defect {bond.key[:10]} by {caller}: paid {settlement.defector_payout} "
            f"penalty={settlement.penalty}"
        )

        if self.scorer is not None:
            self.scorer.apply_defect_penalty(self.address, caller, bond_score, accrued.total_stake)
            self.scorer.refresh(self.address, caller)
            self.scorer.refresh(self.address, partner)
        return settlement

    # ========================================================================
    # COLLATERAL CONTROL (owner and allow-list)
    # ========================================================================

    @non_reentrant
    def freeze(self, caller: str, user: str, on: bool) -> List[str]:
        """
        Set (on=True) or clear (on=False) the freeze `user` holds on each of
        the user's active bonds.

        A bond stays frozen while any user holds a freeze on it.

        Returns:
            Keys of the bonds whose freeze set changed
        """
        self.access.require_authorized(caller, "freeze")
        require_identity(user, "user")
        if on:
            targets = [b for b in self.get_active_bonds(user) if user not in b.frozen_for]
        else:
            targets = [b for b in self.get_active_bonds(user) if user in b.frozen_for]
        if not targets:
            return []

        event = BOND_FREEZE if on else BOND_UNFREEZE
        unit_symbol = targets[0].key if len(targets) == 1 else None
        origin = self._origin(event, caller, unit_symbol, OriginType.CONTRACT)
        pending = compute_set_freeze(self.ledger, targets, user, on, origin, self.decimal_places)
        self._submit(pending, "freeze" if on else "unfreeze")

        keys = [b.key for b in targets]
        self._log(f"{'froze' if on else 'unfroze'} {len(keys)} bond(s) for {user}")
        return keys

    @non_reentrant
    def claim_yield(self, caller: str, user: str) -> Decimal:
        """
        Pay out the accrued yield of every frozen, active bond of `user` to
        the bonds' participants.

        Returns:
            Total yield paid
        """
        self.access.require_authorized(caller, "claim_yield")
        require_identity(user, "user")
        targets = [b for b in self.get_active_bonds(user) if b.frozen]
        if not targets:
            return ZERO

        origin = self._origin(YIELD_CLAIMED, caller, None, OriginType.CONTRACT)
        pending, total, paid = compute_claim_yield(self.ledger, targets, origin, self.decimal_places)
        if pending.is_empty() or total == ZERO:
            return ZERO
        self._submit(pending, "claim_yield")

        for participant, amount in paid.items():
            account = self._account(participant)
            self._update_account(participant, total_yield_received=account.total_yield_received + amount)
        self._log(f"yield claimed for {user}: {total}")
        return total

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_bond_key(self, a: str, b: str) -> str:
        return bond_key(a, b)

    def get_bond(self, key: str) -> TrustBond:
        return load_bond(self.ledger, key)

    def get_bond_between(self, a: str, b: str) -> TrustBond:
        return load_bond(self.ledger, bond_key(a, b))

    def get_user_bonds(self, user: str) -> List[str]:
        """All bond keys the user ever participated in, in creation order."""
        return list(self._account(user).bond_keys)

    def get_active_bonds(self, user: str) -> List[TrustBond]:
        bonds = []
        for key in self._account(user).bond_keys:
            bond = load_bond(self.ledger, key)
            if bond.active:
                bonds.append(bond)
        return bonds

    def get_user_account(self, user: str) -> UserAccount:
        return self._account(user)

    def get_user_total_value(self, user: str) -> Decimal:
        """Collateral value: own stake plus half the accruable yield, over active bonds."""
        now = self.ledger.current_time
        return sum(
            (calculate_user_value(b, user, now, self.decimal_places) for b in self.get_active_bonds(user)),
            ZERO,
        )

    def get_trust_score_raw(self, user: str) -> Decimal:
        """Fallback score, independent of the Trust Scorer."""
        now = self.ledger.current_time
        return sum(
            (calculate_raw_trust_contribution(b, now) for b in self.get_active_bonds(user)),
            ZERO,
        )

    def get_accrued_yield(self, a: str, b: str) -> Decimal:
        """Accrued plus pending yield, without accruing."""
        bond = self.get_bond_between(a, b)
        return bond.accrued_yield + calculate_bond_pending_yield(bond, self.ledger.current_time, self.decimal_places)

    def get_projected_yield(self, a: str, b: str, days: int) -> Decimal:
        bond = self.get_bond_between(a, b)
        return calculate_projected_yield(bond, self.ledger.current_time, days, self.decimal_places)

    def total_value_locked(self) -> Decimal:
        """Stakes currently held in escrow."""
        return self.ledger.get_balance(self.address, self.currency)
