"""
trust_scorer.py - Trust Scorer

Reputation score per user, computed from the user's active bonds and reduced
by a penalty offset that only ever grows. Penalties and cached scores are
written exclusively in response to calls made by the Bond Ledger.

Key Formulas:
    per_bond = w_size * ln(1 + tvl) + w_age * sqrt(age_days)
               + w_partner * (partner_cached_score / 100 * partner_stake_share)
    score    = max(0, sum(per_bond) * sqrt(active_bond_count) - penalty_offset)

    defect penalty = bond_score + sqrt(tvl * defect_count)
    exit penalty   = sqrt(tvl + exit_count)

Partner scores are read from the cache rather than recomputed, so two
participants' scores never depend on each other recursively.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Optional

from .access import non_reentrant, require_identity
from .config import ScoreWeights
from .core import Unauthorized, to_decimal
from .units.trust_bond import TrustBond, calculate_age_days

if TYPE_CHECKING:
    from .bond_ledger import BondLedger


ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ScoreRecord:
    defect_count: int = 0
    exit_count: int = 0
    penalty_offset: Decimal = ZERO
    cached_score: Decimal = ZERO
    cached_at: Optional[datetime] = None


def calculate_bond_score(
    tvl: Decimal,
    age_days: int,
    partner_score: Decimal,
    partner_share: Decimal,
    weights: ScoreWeights,
) -> Decimal:
    """Per-bond score term."""
    size_term = (ONE + max(tvl, ZERO)).ln()
    age_term = Decimal(max(age_days, 0)).sqrt()
    partner_term = max(partner_score, ZERO) / HUNDRED * partner_share
    return weights.size * size_term + weights.age * age_term + weights.partner * partner_term


def calculate_score(bond_scores, penalty_offset: Decimal) -> Decimal:
    """Aggregate per-bond terms, scale by sqrt(count), subtract penalties, floor at 0."""
    scores = list(bond_scores)
    if not scores:
        return max(ZERO, -penalty_offset)
    total = sum(scores, ZERO) * Decimal(len(scores)).sqrt()
    return max(ZERO, total - penalty_offset)


def calculate_defect_penalty_points(bond_score: Decimal, tvl: Decimal, defect_count: int) -> Decimal:
    return bond_score + (max(tvl, ZERO) * Decimal(defect_count)).sqrt()


def calculate_exit_penalty_points(tvl: Decimal, exit_count: int) -> Decimal:
    return (max(tvl, ZERO) + Decimal(exit_count)).sqrt()


class TrustScorer:
    """
    Score queries are public and never write. apply_defect_penalty,
    apply_exit_penalty and refresh accept only the Bond Ledger as caller.
    """

    def __init__(
        self,
        bond_ledger: 'BondLedger',
        address: str,
        weights: Optional[ScoreWeights] = None,
        verbose: bool = True,
    ):
        self.bond_ledger = bond_ledger
        self.address = require_identity(address, "address")
        self.weights = weights or ScoreWeights()
        self.verbose = verbose
        self._records: Dict[str, ScoreRecord] = {}
        self._entered = False

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[{self.address}] {message}")

    def _require_bond_ledger(self, caller: str, action: str) -> None:
        if caller != self.bond_ledger.address:
            raise Unauthorized(f"{action}: {caller} is not the bond ledger")

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_record(self, user: str) -> ScoreRecord:
        return self._records.get(user) or ScoreRecord()

    def get_penalty_offset(self, user: str) -> Decimal:
        return self.get_record(user).penalty_offset

    def get_cached_score(self, user: str) -> Decimal:
        return self.get_record(user).cached_score

    def score_bond(self, user: str, bond: TrustBond) -> Decimal:
        """Score term of one bond from `user`'s side."""
        tvl = bond.total_stake
        partner = bond.partner_of(user)
        share = bond.stake_of(partner) / tvl if tvl > ZERO else ZERO
        return calculate_bond_score(
            tvl,
            calculate_age_days(bond, self.bond_ledger.ledger.current_time),
            self.get_cached_score(partner),
            share,
            self.weights,
        )

    def score(self, user: str) -> Decimal:
        bonds = self.bond_ledger.get_active_bonds(user)
        return calculate_score(
            (self.score_bond(user, b) for b in bonds),
            self.get_penalty_offset(user),
        )

    # ========================================================================
    # BOND LEDGER ENTRYPOINTS
    # ========================================================================

    @non_reentrant
    def apply_defect_penalty(self, caller: str, user: str, bond_score, tvl) -> Decimal:
        self._require_bond_ledger(caller, "apply_defect_penalty")
        record = self.get_record(user)
        defect_count = record.defect_count + 1
        penalty = calculate_defect_penalty_points(to_decimal(bond_score), to_decimal(tvl), defect_count)
        self._records[user] = replace(
            record,
            defect_count=defect_count,
            penalty_offset=record.penalty_offset + penalty,
        )
        self._log(f"defect penalty {user}: +{penalty}")
        return penalty

    @non_reentrant
    def apply_exit_penalty(self, caller: str, user: str, bond_score, tvl) -> Decimal:
        """Record an exit; the penalty depends on tvl and the exit count only."""
        self._require_bond_ledger(caller, "apply_exit_penalty")
        record = self.get_record(user)
        exit_count = record.exit_count + 1
        penalty = calculate_exit_penalty_points(to_decimal(tvl), exit_count)
        self._records[user] = replace(
            record,
            exit_count=exit_count,
            penalty_offset=record.penalty_offset + penalty,
        )
        self._log(f"exit penalty {user}: +{penalty}")
        return penalty

    @non_reentrant
    def refresh(self, caller: str, user: str) -> Decimal:
        """Recompute and cache the user's score."""
        self._require_bond_ledger(caller, "refresh")
        value = self.score(user)
        self._records[user] = replace(
            self.get_record(user),
            cached_score=value,
            cached_at=self.bond_ledger.ledger.current_time,
        )
        return value
