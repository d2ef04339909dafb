"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the trust-bond protocol.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_bond_keys.py - Order-independent, collision-free bond identity
2. test_exit_conservation.py - Settlements pay out exactly the bond's value
3. test_yield_monotonicity.py - Yield and age never decrease while active
4. test_borrow_limits.py - Loans respect score and LTV limits; freeze sets are exact
5. test_operation_atomicity.py - Rejected operations change nothing
6. test_ledger_idempotency.py - Duplicate execution is detected

These tests use hypothesis for property-based testing.
"""
