"""
Remote IAM service contract and an in-memory implementation.

`IamService` is the boundary the engine talks to. Every method is one atomic,
independently retryable call. Adapters raise `RemoteCallFailed` (with
``retryable=True`` for throttling and transient faults).

`InMemoryIamService` backs dry-run planning and the test-suite. It supports
fault injection:

    svc = InMemoryIamService()
    svc.fail("create_user", "mscott", code="EntityAlreadyExists")
    svc.throttle("set_group_membership", "Education", times=2)
    svc.delay("create_user", "dschrute", seconds=0.5)
"""

from __future__ import annotations

import secrets
import string
import threading
import time
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Set, Tuple

from .errors import RemoteCallFailed
from .models import ObservedUser, Secret

PASSWORD_LENGTH = 20
_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()-_=+"


def generate_password(length: int = PASSWORD_LENGTH) -> Secret:
    """Random password with at least one lower, upper, digit and symbol."""
    if length < 8:
        raise ValueError("password length must be >= 8")
    while True:
        value = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if (
            any(c.islower() for c in value)
            and any(c.isupper() for c in value)
            and any(c.isdigit() for c in value)
            and any(c in "!@#$%^&*()-_=+" for c in value)
        ):
            return Secret(value)


class IamService(Protocol):
    def account_id(self) -> str: ...

    def list_users(self) -> Dict[str, ObservedUser]: ...

    def list_group_memberships(self) -> Dict[str, FrozenSet[str]]: ...

    def create_group(self, name: str) -> None: ...

    def create_user(self, key: str, tags: Mapping[str, str]) -> None: ...

    def update_user_tags(self, key: str, tags: Mapping[str, str]) -> None: ...

    def enable_console_access(self, key: str) -> Secret: ...

    def set_group_membership(self, group: str, member_keys: Iterable[str]) -> None: ...


class InMemoryIamService:
    """Thread-safe in-memory IAM account."""

    def __init__(
        self,
        *,
        account: str = "000000000000",
        users: Optional[Iterable[ObservedUser]] = None,
        groups: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self._account = account
        self._lock = threading.Lock()
        self._users: Dict[str, Dict[str, str]] = {}
        self._console: Set[str] = set()
        self._groups: Dict[str, Set[str]] = {}
        for u in users or []:
            self._users[u.key] = dict(u.tags)
            if u.console_access:
                self._console.add(u.key)
        for g, members in (groups or {}).items():
            self._groups[g] = set(members)

        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str], Tuple[str, bool]] = {}
        self._throttles: Dict[Tuple[str, str], int] = {}
        self._delays: Dict[Tuple[str, str], float] = {}

    # ------------- fault injection -------------

    def fail(self, method: str, resource: str, *, code: str = "ServiceFailure", retryable: bool = False) -> None:
        self._failures[(method, resource)] = (code, retryable)

    def throttle(self, method: str, resource: str, *, times: int = 1) -> None:
        self._throttles[(method, resource)] = times

    def delay(self, method: str, resource: str, *, seconds: float) -> None:
        self._delays[(method, resource)] = seconds

    def _enter(self, method: str, resource: str) -> None:
        with self._lock:
            self.calls.append((method, resource))
            delay = self._delays.get((method, resource), 0.0)
            remaining = self._throttles.get((method, resource), 0)
            if remaining:
                self._throttles[(method, resource)] = remaining - 1
            failure = self._failures.get((method, resource))
        if delay:
            time.sleep(delay)
        if remaining:
            raise RemoteCallFailed(method, resource, "Rate exceeded", retryable=True, code="Throttling")
        if failure:
            code, retryable = failure
            raise RemoteCallFailed(method, resource, f"injected {code}", retryable=retryable, code=code)

    def calls_to(self, method: str) -> List[str]:
        return [r for m, r in self.calls if m == method]

    # ------------- reads -------------

    def account_id(self) -> str:
        return self._account

    def list_users(self) -> Dict[str, ObservedUser]:
        self._enter("list_users", "*")
        with self._lock:
            return {
                k: ObservedUser(key=k, tags=dict(tags), console_access=k in self._console)
                for k, tags in self._users.items()
            }

    def list_group_memberships(self) -> Dict[str, FrozenSet[str]]:
        self._enter("list_group_memberships", "*")
        with self._lock:
            return {g: frozenset(m) for g, m in self._groups.items()}

    # ------------- writes -------------

    def create_group(self, name: str) -> None:
        self._enter("create_group", name)
        with self._lock:
            if name in self._groups:
                raise RemoteCallFailed("create_group", name, "group exists", code="EntityAlreadyExists")
            self._groups[name] = set()

    def create_user(self, key: str, tags: Mapping[str, str]) -> None:
        self._enter("create_user", key)
        with self._lock:
            if key in self._users:
                raise RemoteCallFailed("create_user", key, "user exists", code="EntityAlreadyExists")
            self._users[key] = dict(tags)

    def update_user_tags(self, key: str, tags: Mapping[str, str]) -> None:
        self._enter("update_user_tags", key)
        with self._lock:
            if key not in self._users:
                raise RemoteCallFailed("update_user_tags", key, "no such user", code="NoSuchEntity")
            self._users[key].update(tags)

    def enable_console_access(self, key: str) -> Secret:
        self._enter("enable_console_access", key)
        with self._lock:
            if key not in self._users:
                raise RemoteCallFailed("enable_console_access", key, "no such user", code="NoSuchEntity")
            if key in self._console:
                raise RemoteCallFailed("enable_console_access", key, "login profile exists", code="EntityAlreadyExists")
            self._console.add(key)
        return generate_password()

    def set_group_membership(self, group: str, member_keys: Iterable[str]) -> None:
        self._enter("set_group_membership", group)
        wanted = set(member_keys)
        with self._lock:
            if group not in self._groups:
                raise RemoteCallFailed("set_group_membership", group, "no such group", code="NoSuchEntity")
            unknown = sorted(wanted - set(self._users))
            if unknown:
                raise RemoteCallFailed(
                    "set_group_membership", group, "no such user(s): " + ", ".join(unknown), code="NoSuchEntity"
                )
            self._groups[group] = wanted
