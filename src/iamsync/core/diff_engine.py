"""
Diff engine: DesiredState x ObservedState -> ChangeSet.

Provides a minimal decision model (`decide`) for subset comparison of a
desired and an existing representation, and `compute_changeset`, which
applies it per resource class:

  rank 0  CREATE_GROUP, CREATE_USER, UPDATE_USER_TAGS
  rank 1  ENABLE_CONSOLE_ACCESS, SET_GROUP_MEMBERSHIP

No delete operation exists. Observed users absent from the desired graph are
left alone, as are observed groups outside the taxonomy and remote tags
outside the managed tag set. Console access is only ever enabled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Literal, Mapping, Optional, Sequence

from .models import (
    KIND_ORDER,
    MANAGED_TAGS,
    ChangeSet,
    DesiredState,
    ObservedState,
    Operation,
    Unchanged,
)

log = logging.getLogger(__name__)

Op = Literal["NOOP", "CREATE", "UPDATE"]

RANK_RESOURCES = 0
RANK_ATTACHMENTS = 1


@dataclass(frozen=True)
class Decision:
    """Diff outcome for a single desired item.

    Attributes:
        op: ``"CREATE"``, ``"UPDATE"`` or ``"NOOP"``.
        reason: Human-friendly explanation of the decision.
        changed: Keys whose desired value differs from (or is missing in) the existing one.
    """
    op: Op
    reason: str
    changed: Sequence[str] = ()


def decide(
    desired: Mapping[str, Any],
    existing: Optional[Mapping[str, Any]],
    *,
    compare_keys: Sequence[str],
) -> Decision:
    """Compare ``desired`` and ``existing`` on ``compare_keys`` only.

    Keys outside ``compare_keys`` are ignored so remote-managed or manually
    added fields never trigger an update.
    """
    if existing is None:
        return Decision(op="CREATE", reason="Not found", changed=tuple(k for k in compare_keys if k in desired))

    changed = tuple(k for k in compare_keys if k in desired and desired.get(k) != existing.get(k))
    if changed:
        return Decision(op="UPDATE", reason="Field differs: " + ", ".join(changed), changed=changed)
    return Decision(op="NOOP", reason="Identical subset")


def _sort_key(op: Operation):
    return (op.rank, KIND_ORDER[op.kind], op.resource)


def compute_changeset(desired: DesiredState, observed: ObservedState) -> ChangeSet:
    ops: List[Operation] = []
    unchanged: List[Unchanged] = []
    created: set = set()

    # Groups
    for group in desired.groups:
        if group not in observed.memberships:
            ops.append(Operation(kind="CREATE_GROUP", resource=group, rank=RANK_RESOURCES))

    # Users
    for key, user in desired.users.items():
        current = observed.users.get(key)
        decision = decide(user.tags, current.tags if current else None, compare_keys=MANAGED_TAGS)

        if decision.op == "CREATE":
            created.add(key)
            ops.append(Operation(kind="CREATE_USER", resource=key, rank=RANK_RESOURCES, tags=dict(user.tags)))
            if user.console_access:
                ops.append(Operation(
                    kind="ENABLE_CONSOLE_ACCESS",
                    resource=key,
                    rank=RANK_ATTACHMENTS,
                    depends_on=frozenset({key}),
                ))
            continue

        user_changed = False
        if decision.op == "UPDATE":
            user_changed = True
            log.debug("User %s: %s", key, decision.reason)
            ops.append(Operation(
                kind="UPDATE_USER_TAGS",
                resource=key,
                rank=RANK_RESOURCES,
                tags={k: user.tags[k] for k in decision.changed},
            ))
        if user.console_access and not current.console_access:
            user_changed = True
            ops.append(Operation(kind="ENABLE_CONSOLE_ACCESS", resource=key, rank=RANK_ATTACHMENTS))
        if not user_changed:
            unchanged.append(Unchanged(kind="USER", resource=key))

    # Memberships (full replacement)
    for group, membership in desired.memberships.items():
        current_members = observed.memberships.get(group)
        if current_members is not None and frozenset(current_members) == membership.members:
            unchanged.append(Unchanged(kind="GROUP_MEMBERSHIP", resource=group))
            continue
        if current_members is None and not membership.members:
            # new empty group: CREATE_GROUP already converges it
            continue
        ops.append(Operation(
            kind="SET_GROUP_MEMBERSHIP",
            resource=group,
            rank=RANK_ATTACHMENTS,
            members=membership.members,
            depends_on=frozenset(membership.members & created),
        ))

    ops.sort(key=_sort_key)
    log.info(
        "Change set: %d operation(s), %d unchanged resource(s)",
        len(ops), len(unchanged),
    )
    return ChangeSet(operations=tuple(ops), unchanged=tuple(unchanged))
