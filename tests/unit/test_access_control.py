"""
test_access_control.py - Unit tests for AccessControl and non_reentrant
"""

import pytest

from trustbond import AccessControl, non_reentrant, Unauthorized, ReentrancyError, InvalidCounterparty
from trustbond.access import require_identity


class Counter:
    def __init__(self):
        self.calls = 0
        self.callback = None

    @non_reentrant
    def bump(self):
        self.calls += 1
        if self.callback is not None:
            self.callback()
        return self.calls

    @non_reentrant
    def other(self):
        return "other"

    @non_reentrant
    def explode(self):
        raise RuntimeError("boom")


class TestAccessControl:

    def test_owner_is_always_authorized(self):
        acl = AccessControl("admin")
        assert acl.is_owner("admin")
        assert acl.is_authorized("admin")
        assert not acl.is_authorized("pool")

    def test_authorize_and_revoke(self):
        acl = AccessControl("admin")
        acl.authorize("admin", "pool")
        assert acl.is_authorized("pool")
        assert acl.allowed == frozenset({"pool"})
        acl.revoke("admin", "pool")
        assert not acl.is_authorized("pool")

    def test_only_owner_manages_the_list(self):
        acl = AccessControl("admin")
        with pytest.raises(Unauthorized, match="not the owner"):
            acl.authorize("mallory", "mallory")
        assert not acl.is_authorized("mallory")

    def test_require_authorized_message(self):
        acl = AccessControl("admin")
        with pytest.raises(Unauthorized, match="freeze: mallory"):
            acl.require_authorized("mallory", "freeze")

    def test_empty_owner_rejected(self):
        with pytest.raises(InvalidCounterparty):
            AccessControl("  ")

    def test_require_identity(self):
        assert require_identity("alice") == "alice"
        with pytest.raises(InvalidCounterparty):
            require_identity("")
        with pytest.raises(InvalidCounterparty):
            require_identity(None, "partner")


class TestNonReentrant:

    def test_plain_calls(self):
        counter = Counter()
        assert counter.bump() == 1
        assert counter.bump() == 2

    def test_reentry_into_same_method(self):
        counter = Counter()
        counter.callback = counter.bump
        with pytest.raises(ReentrancyError, match="Counter.bump"):
            counter.bump()

    def test_reentry_into_sibling_method(self):
        """The guard is per component, not per method."""
        counter = Counter()
        counter.callback = counter.other
        with pytest.raises(ReentrancyError):
            counter.bump()

    def test_flag_released_after_exception(self):
        counter = Counter()
        with pytest.raises(RuntimeError):
            counter.explode()
        assert counter.other() == "other"

    def test_instances_are_independent(self):
        a, b = Counter(), Counter()
        a.callback = b.bump
        assert a.bump() == 1
        assert b.calls == 1
