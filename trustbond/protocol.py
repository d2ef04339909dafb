"""
protocol.py - Wiring of the three components onto one settlement ledger.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .bond_ledger import BondLedger
from .config import BondParameters, PoolParameters, ScoreWeights
from .core import Unit, settlement_asset
from .ledger import Ledger
from .lending_pool import LendingPool
from .trust_scorer import TrustScorer


@dataclass
class TrustProtocol:
    ledger: Ledger
    bonds: BondLedger
    scorer: TrustScorer
    pool: LendingPool

    @property
    def currency(self) -> str:
        return self.bonds.currency


def deploy_protocol(
    ledger: Ledger,
    owner: str,
    asset: Optional[Unit] = None,
    bond_params: Optional[BondParameters] = None,
    weights: Optional[ScoreWeights] = None,
    pool_params: Optional[PoolParameters] = None,
    bonds_address: str = "bond_ledger",
    scorer_address: str = "trust_scorer",
    pool_address: str = "lending_pool",
    verbose: Optional[bool] = None,
) -> TrustProtocol:
    """
    Register the settlement asset and wallets, construct the components,
    attach the scorer to the Bond Ledger and allow-list the Lending Pool.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1))
        protocol = deploy_protocol(ledger, owner="admin")
        protocol.bonds.create_bond("alice", "bob", Decimal("1"))
    """
    asset = asset or settlement_asset()
    if verbose is None:
        verbose = ledger.verbose
    if not ledger.has_unit(asset.symbol):
        ledger.register_unit(asset)
    if not ledger.is_registered(owner):
        ledger.register_wallet(owner)

    bonds = BondLedger(ledger, bonds_address, owner, asset.symbol, params=bond_params, verbose=verbose)
    scorer = TrustScorer(bonds, scorer_address, weights=weights, verbose=verbose)
    pool = LendingPool(ledger, bonds, scorer, pool_address, owner, asset.symbol, params=pool_params, verbose=verbose)

    bonds.attach_scorer(owner, scorer)
    bonds.authorize(owner, pool.address)
    return TrustProtocol(ledger=ledger, bonds=bonds, scorer=scorer, pool=pool)
