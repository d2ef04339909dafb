"""
access.py - Caller authorization and re-entrancy protection.

Every component has an owner and may keep an allow-list of identities that
are permitted to call its restricted entrypoints. Checks raise Unauthorized;
the non_reentrant decorator raises ReentrancyError when a component is
entered again while one of its mutating operations is still running.
"""

from __future__ import annotations
from functools import wraps
from typing import Callable, FrozenSet, Set, TypeVar

from .core import Unauthorized, ReentrancyError, InvalidCounterparty


F = TypeVar("F", bound=Callable)


def require_identity(value: str, name: str = "identity") -> str:
    """Identifiers are opaque but must be non-empty strings."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidCounterparty(f"{name} must be a non-empty string, got {value!r}")
    return value


class AccessControl:
    """
    Owner plus allow-list authorization for one component.

    The owner can always call restricted entrypoints; other identities must
    be authorized first.
    """

    def __init__(self, owner: str):
        self.owner = require_identity(owner, "owner")
        self._allowed: Set[str] = set()

    @property
    def allowed(self) -> FrozenSet[str]:
        return frozenset(self._allowed)

    def is_owner(self, caller: str) -> bool:
        return caller == self.owner

    def is_authorized(self, caller: str) -> bool:
        return caller == self.owner or caller in self._allowed

    def require_owner(self, caller: str, action: str) -> None:
        if not self.is_owner(caller):
            raise Unauthorized(f"{action}: {caller} is not the owner")

    def require_authorized(self, caller: str, action: str) -> None:
        if not self.is_authorized(caller):
            raise Unauthorized(f"{action}: {caller} is not authorized")

    def authorize(self, caller: str, account: str) -> None:
        self.require_owner(caller, "authorize")
        self._allowed.add(require_identity(account, "account"))

    def revoke(self, caller: str, account: str) -> None:
        self.require_owner(caller, "revoke")
        self._allowed.discard(account)


def non_reentrant(method: F) -> F:
    """
    Guard a component method against re-entry.

    The component holds one flag for all of its guarded methods, so a call
    into any of them while another is running raises ReentrancyError.
    """
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        if getattr(self, "_entered", False):
            raise ReentrancyError(
                f"{type(self).__name__}.{method.__name__}: re-entrant call"
            )
        self._entered = True
        try:
            return method(self, *args, **kwargs)
        finally:
            self._entered = False
    return wrapper  # type: ignore[return-value]
