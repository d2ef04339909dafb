"""
fake_view.py - Test Helper for LedgerView

Provides a minimal LedgerView implementation for testing the pure bond and
loan functions without requiring a full Ledger instance.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Any

from trustbond.core import Unit, UnitNotRegistered


UnitState = Dict[str, Any]


class FakeView:
    """
    Minimal LedgerView implementation for testing builder functions.

    Example:
        view = FakeView(
            balances={'alice': {'ETH': Decimal("10")}},
            states={key: to_state_dict(bond)},
            time=datetime(2025, 1, 1)
        )
    """

    def __init__(
        self,
        balances: Optional[Dict[str, Dict[str, Decimal]]] = None,
        states: Optional[Dict[str, UnitState]] = None,
        time: Optional[datetime] = None,
        units: Optional[Dict[str, Unit]] = None
    ):
        self._balances = balances or {}
        self._states = states or {}
        self._time = time or datetime(2025, 1, 1)
        self._units = units or {}

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, unit: str) -> Decimal:
        return self._balances.get(wallet, {}).get(unit, Decimal("0"))

    def get_unit_state(self, unit: str) -> UnitState:
        return dict(self._states.get(unit, {}))

    def has_unit(self, unit: str) -> bool:
        return unit in self._states or unit in self._units

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self._units:
            raise UnitNotRegistered(symbol)
        return self._units[symbol]
