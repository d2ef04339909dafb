"""
Operation Atomicity Conformance Tests

INVARIANT: A rejected operation leaves no trace.

    ∀ operation op, state S:
        op raises ⟹ balances(S') = balances(S)
                     unit states(S') = unit states(S)
                     accounts, score records, loans(S') = those of S

This covers validation failures raised before any transfer and transfers
the ledger rejects (insufficient balance, refusing receive hooks).
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal
from datetime import timedelta

from trustbond import LedgerError

from tests.protocol_harness import new_protocol, advance, USERS


MONTH = timedelta(days=30)


def snapshot(protocol):
    ledger, bonds, scorer, pool = protocol.ledger, protocol.bonds, protocol.scorer, protocol.pool
    return {
        'balances': {
            (w, u): q for w, b in ledger.balances.items() for u, q in b.items() if q != 0
        },
        'units': {u: ledger.get_unit_state(u) for u in ledger.list_units()},
        'log': len(ledger.transaction_log),
        'accounts': {u: bonds.get_user_account(u) for u in USERS},
        'scores': {u: scorer.get_record(u) for u in USERS},
        'loans': {u: pool.get_active_loan(u) for u in USERS},
        'recovered': pool.total_recovered_yield,
    }


def refuse(wallet, unit, qty):
    raise LedgerError(f"{wallet} refuses {qty} {unit}")


def seeded_protocol():
    """alice-bob 10/5 and alice-carol 20/20, aged 30 days, alice borrowed 10."""
    protocol = new_protocol(balance=Decimal("100"), liquidity=Decimal("500"))
    bonds = protocol.bonds
    bonds.create_bond("alice", "bob", Decimal("10"))
    bonds.add_stake("bob", "alice", Decimal("5"))
    bonds.create_bond("alice", "carol", Decimal("20"))
    bonds.add_stake("carol", "alice", Decimal("20"))
    bonds.create_bond("carol", "dave", Decimal("1"))
    advance(protocol, 30)
    protocol.pool.borrow("alice", Decimal("10"), MONTH)
    return protocol


FAILING_OPERATIONS = {
    "stake more than balance": lambda p, x: p.bonds.create_bond("bob", "dave", Decimal("200") + x),
    "duplicate bond": lambda p, x: p.bonds.create_bond("bob", "alice", x),
    "self bond": lambda p, x: p.bonds.create_bond("dave", "dave", x),
    "exit frozen bond": lambda p, x: p.bonds.exit("bob", "alice"),
    "defect frozen bond": lambda p, x: p.bonds.defect("carol", "alice"),
    "stake twice": lambda p, x: p.bonds.add_stake("carol", "dave", x),
    "outsider freeze": lambda p, x: p.bonds.freeze("bob", "carol", True),
    "second loan": lambda p, x: p.pool.borrow("alice", x, MONTH),
    "borrow above limit": lambda p, x: p.pool.borrow("bob", Decimal("1000") + x, MONTH),
    "underpay": lambda p, x: p.pool.repay("alice", 1, Decimal("9")),
    "repay for another": lambda p, x: p.pool.repay("bob", 1, Decimal("20")),
    "liquidate early": lambda p, x: p.pool.liquidate("admin", 1),
    "withdraw too much": lambda p, x: p.pool.withdraw_liquidity("admin", Decimal("491") + x),
    "scorer from outside": lambda p, x: p.scorer.apply_defect_penalty("alice", "bob", x, x),
}


class TestRejectedOperations:

    @given(
        st.sampled_from(sorted(FAILING_OPERATIONS)),
        st.decimals(min_value=Decimal("0.01"), max_value=Decimal("50"), places=2,
                    allow_nan=False, allow_infinity=False),
    )
    @settings(max_examples=100, deadline=None)
    def test_failed_operation_changes_nothing(self, name, amount):
        protocol = seeded_protocol()
        before = snapshot(protocol)
        with pytest.raises(LedgerError):
            FAILING_OPERATIONS[name](protocol, amount)
        assert snapshot(protocol) == before

    @given(st.sampled_from(["bob", "carol"]), st.integers(min_value=0, max_value=60))
    @settings(max_examples=30, deadline=None)
    def test_refused_payout_changes_nothing(self, refuser, days):
        protocol = new_protocol()
        bonds = protocol.bonds
        bonds.create_bond("alice", refuser, Decimal("10"))
        bonds.add_stake(refuser, "alice", Decimal("10"))
        advance(protocol, days)
        protocol.ledger.set_receive_hook(refuser, refuse)

        before = snapshot(protocol)
        with pytest.raises(LedgerError):
            bonds.exit("alice", refuser)
        assert snapshot(protocol) == before
        assert "refuses" in protocol.ledger.last_rejection_reason

        protocol.ledger.set_receive_hook(refuser, None)
        bonds.exit("alice", refuser)
        assert bonds.get_bond_between("alice", refuser).phase.value == "empty"
