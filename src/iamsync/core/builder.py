"""
Desired-state builder.

Keyed identities + static group taxonomy -> DesiredState.

Memberships are recomputed from scratch on every run: the member set of a
group is always the complete set of users mapped to it (full replacement),
so moving someone to another department moves them out of the old group on
the next reconciliation.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .errors import GraphIntegrityViolation
from .models import (
    TAG_DEPARTMENT,
    TAG_DISPLAY_NAME,
    TAG_JOB_TITLE,
    DesiredMembership,
    DesiredState,
    DesiredUser,
    GroupName,
    KeyedIdentity,
)

log = logging.getLogger(__name__)

DEFAULT_GROUPS: Dict[str, str] = {
    "Education": "Education",
    "Managers": "Managers",
    "Engineering": "Engineers",
    "Engineers": "Engineers",
}
DEFAULT_UNASSIGNED = "Unassigned"


class GroupTaxonomy:
    """Total function department -> group name.

    Departments are matched case-insensitively after trimming. Anything not in
    the table lands in the unassigned bucket.
    """

    def __init__(
        self,
        table: Optional[Mapping[str, str]] = None,
        unassigned: str = DEFAULT_UNASSIGNED,
    ) -> None:
        if not unassigned or not str(unassigned).strip():
            raise ValueError("unassigned group name must not be empty")
        source = DEFAULT_GROUPS if table is None else table
        self.unassigned = str(unassigned).strip()
        self._table: Dict[str, str] = {}
        for dept, group in source.items():
            g = str(group).strip()
            if not g:
                raise ValueError(f"empty group name for department {dept!r}")
            self._table[str(dept).strip().casefold()] = g

    def __call__(self, department: str) -> GroupName:
        return self._table.get(department.strip().casefold(), self.unassigned)

    @property
    def groups(self) -> List[GroupName]:
        """Every group the taxonomy can produce, unassigned bucket last."""
        out = list(dict.fromkeys(self._table.values()))
        if self.unassigned not in out:
            out.append(self.unassigned)
        return out


def build_user(keyed: KeyedIdentity, group: GroupName, *, console_access: bool = True) -> DesiredUser:
    ident = keyed.identity
    return DesiredUser(
        key=keyed.key,
        display_name=ident.display_name,
        tags={
            TAG_DEPARTMENT: ident.department,
            TAG_JOB_TITLE: ident.job_title,
            TAG_DISPLAY_NAME: ident.display_name,
        },
        console_access=console_access,
        group=group,
        index=ident.index,
    )


def build_desired_state(
    keyed: Iterable[KeyedIdentity],
    taxonomy: Optional[GroupTaxonomy] = None,
    *,
    console_access: bool = True,
) -> DesiredState:
    taxonomy = taxonomy or GroupTaxonomy()

    users: Dict[str, DesiredUser] = {}
    members: Dict[GroupName, Set[str]] = {g: set() for g in taxonomy.groups}

    for k in keyed:
        if k.key in users:
            raise GraphIntegrityViolation(f"duplicate user key '{k.key}'")
        group = taxonomy(k.identity.department)
        user = build_user(k, group, console_access=console_access)
        users[user.key] = user
        members.setdefault(group, set()).add(user.key)

    state = DesiredState(
        users=users,
        memberships={g: DesiredMembership(group=g, members=frozenset(m)) for g, m in members.items()},
    )
    check_integrity(state)
    log.debug("Desired state: %d user(s), %d group(s)", len(users), len(state.memberships))
    return state


def check_integrity(state: DesiredState) -> None:
    """Every membership key is a desired user, and every user sits in exactly its own group."""
    seen: Dict[str, str] = {}
    for group, membership in state.memberships.items():
        if membership.group != group:
            raise GraphIntegrityViolation(
                f"membership indexed as '{group}' declares group '{membership.group}'"
            )
        for key in membership.members:
            user = state.users.get(key)
            if user is None:
                raise GraphIntegrityViolation(f"group '{group}' references unknown user '{key}'")
            if user.group != group:
                raise GraphIntegrityViolation(
                    f"user '{key}' belongs to '{user.group}' but is listed in '{group}'"
                )
            if key in seen:
                raise GraphIntegrityViolation(
                    f"user '{key}' listed in both '{seen[key]}' and '{group}'"
                )
            seen[key] = group
    orphans = sorted(set(state.users) - set(seen))
    if orphans:
        raise GraphIntegrityViolation("user(s) without a group membership: " + ", ".join(orphans))
