"""
config.py - Protocol parameters.

Formula constants for bonds, scoring and lending. Each parameter set is a
frozen dataclass validated on construction; defaults come from the module
constants below.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from .core import BPS_DENOMINATOR


# =============================================================================
# CONSTANTS
# =============================================================================

# Cooperation yield per day on total stake (100 bps = 1% per day)
DEFAULT_DAILY_YIELD_BPS = 100

# Exit penalty grows with sqrt(prior exits + 1), capped
DEFAULT_EXIT_PENALTY_BPS = 100
DEFAULT_MAX_EXIT_PENALTY_BPS = 1000

# Defect penalty grows with sqrt(prior defects + 1), capped
DEFAULT_DEFECT_PENALTY_BPS = 2000
DEFAULT_MAX_DEFECT_PENALTY_BPS = 9000

# Per-bond score weights: size, age, partner reputation
DEFAULT_SIZE_WEIGHT = Decimal("0.4")
DEFAULT_AGE_WEIGHT = Decimal("0.3")
DEFAULT_PARTNER_WEIGHT = Decimal("0.3")

# Lending: 80% max loan-to-value, 5.5% base APR floored at 2%
DEFAULT_MAX_LTV_BPS = 8000
DEFAULT_SCORE_FACTOR = 10
DEFAULT_BASE_RATE_BPS = 550
DEFAULT_MIN_RATE_BPS = 200
DEFAULT_MIN_LOAN_DURATION = timedelta(days=1)


def _require_bps(name: str, value: int, upper: int = int(BPS_DENOMINATOR)) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an int number of basis points, got {value!r}")
    if value < 0 or value > upper:
        raise ValueError(f"{name} must be within [0, {upper}], got {value}")


@dataclass(frozen=True)
class BondParameters:
    daily_yield_bps: int = DEFAULT_DAILY_YIELD_BPS
    exit_penalty_bps: int = DEFAULT_EXIT_PENALTY_BPS
    max_exit_penalty_bps: int = DEFAULT_MAX_EXIT_PENALTY_BPS
    defect_penalty_bps: int = DEFAULT_DEFECT_PENALTY_BPS
    max_defect_penalty_bps: int = DEFAULT_MAX_DEFECT_PENALTY_BPS

    def __post_init__(self):
        _require_bps("daily_yield_bps", self.daily_yield_bps)
        _require_bps("exit_penalty_bps", self.exit_penalty_bps)
        _require_bps("max_exit_penalty_bps", self.max_exit_penalty_bps)
        _require_bps("defect_penalty_bps", self.defect_penalty_bps)
        _require_bps("max_defect_penalty_bps", self.max_defect_penalty_bps)
        if self.exit_penalty_bps > self.max_exit_penalty_bps:
            raise ValueError("exit_penalty_bps cannot exceed max_exit_penalty_bps")
        if self.defect_penalty_bps > self.max_defect_penalty_bps:
            raise ValueError("defect_penalty_bps cannot exceed max_defect_penalty_bps")


@dataclass(frozen=True)
class ScoreWeights:
    """Weights of the size, age and partner terms of a bond's score."""
    size: Decimal = DEFAULT_SIZE_WEIGHT
    age: Decimal = DEFAULT_AGE_WEIGHT
    partner: Decimal = DEFAULT_PARTNER_WEIGHT

    def __post_init__(self):
        for name in ("size", "age", "partner"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                value = Decimal(str(value))
                object.__setattr__(self, name, value)
            if value < 0:
                raise ValueError(f"{name} weight cannot be negative, got {value}")
        if self.size + self.age + self.partner != Decimal("1"):
            raise ValueError(
                f"score weights must sum to 1, got {self.size + self.age + self.partner}"
            )


@dataclass(frozen=True)
class PoolParameters:
    max_ltv_bps: int = DEFAULT_MAX_LTV_BPS
    score_factor: int = DEFAULT_SCORE_FACTOR
    base_rate_bps: int = DEFAULT_BASE_RATE_BPS
    min_rate_bps: int = DEFAULT_MIN_RATE_BPS
    min_duration: timedelta = DEFAULT_MIN_LOAN_DURATION

    def __post_init__(self):
        _require_bps("max_ltv_bps", self.max_ltv_bps)
        _require_bps("base_rate_bps", self.base_rate_bps)
        _require_bps("min_rate_bps", self.min_rate_bps)
        if self.min_rate_bps > self.base_rate_bps:
            raise ValueError("min_rate_bps cannot exceed base_rate_bps")
        if not isinstance(self.score_factor, int) or self.score_factor < 0:
            raise ValueError(f"score_factor must be a non-negative int, got {self.score_factor!r}")
        if self.min_duration <= timedelta(0):
            raise ValueError(f"min_duration must be positive, got {self.min_duration}")
