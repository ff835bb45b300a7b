"""
Typed data model shared by the validator, key deriver, builder, diff engine
and reconciler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

from .errors import RecordError

RawRecord = Mapping[str, Any]
ResourceKey = str
GroupName = str
Tags = Dict[str, str]

TAG_DEPARTMENT = "Department"
TAG_JOB_TITLE = "JobTitle"
TAG_DISPLAY_NAME = "DisplayName"
MANAGED_TAGS: Tuple[str, ...] = (TAG_DEPARTMENT, TAG_JOB_TITLE, TAG_DISPLAY_NAME)

REDACTED = "***REDACTED***"


class Secret:
    """Opaque sensitive string (generated console password).

    ``str()`` and ``repr()`` never show the value; use :meth:`reveal`.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"Secret({REDACTED})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Secret) and other._value == self._value

    def __hash__(self) -> int:
        return hash(self._value)


# ---------- Desired side ----------

@dataclass(frozen=True)
class Identity:
    """A validated person record."""
    index: int
    first_name: str
    last_name: str
    department: str
    job_title: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class KeyedIdentity:
    identity: Identity
    key: ResourceKey


@dataclass(frozen=True)
class DesiredUser:
    key: ResourceKey
    display_name: str
    tags: Mapping[str, str]
    console_access: bool
    group: GroupName
    index: int


@dataclass(frozen=True)
class DesiredMembership:
    group: GroupName
    members: FrozenSet[ResourceKey]


@dataclass(frozen=True)
class DesiredState:
    """Complete target graph for one run."""
    users: Mapping[ResourceKey, DesiredUser]
    memberships: Mapping[GroupName, DesiredMembership]

    @property
    def groups(self) -> List[GroupName]:
        return list(self.memberships.keys())


# ---------- Observed side ----------

@dataclass(frozen=True)
class ObservedUser:
    key: ResourceKey
    tags: Mapping[str, str] = field(default_factory=dict)
    console_access: bool = False


@dataclass(frozen=True)
class ObservedState:
    """Remote snapshot. A group exists remotely iff it is a key of ``memberships``."""
    users: Mapping[ResourceKey, ObservedUser] = field(default_factory=dict)
    memberships: Mapping[GroupName, FrozenSet[ResourceKey]] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "ObservedState":
        return cls(users={}, memberships={})


# ---------- Change set ----------

OpKind = Literal[
    "CREATE_GROUP",
    "CREATE_USER",
    "UPDATE_USER_TAGS",
    "ENABLE_CONSOLE_ACCESS",
    "SET_GROUP_MEMBERSHIP",
]

# Tie-break order inside a rank.
KIND_ORDER: Dict[str, int] = {
    "CREATE_GROUP": 0,
    "CREATE_USER": 1,
    "UPDATE_USER_TAGS": 2,
    "ENABLE_CONSOLE_ACCESS": 3,
    "SET_GROUP_MEMBERSHIP": 4,
}


@dataclass(frozen=True)
class Operation:
    """One remote mutation.

    Attributes:
        kind: Operation type.
        resource: User key or group name.
        rank: Causal rank; every rank-N operation settles before rank N+1 starts.
        tags: Tags to write (CREATE_USER: full set; UPDATE_USER_TAGS: changed subset).
        members: Full member set (SET_GROUP_MEMBERSHIP only).
        depends_on: User keys created in this change set that must apply first.
    """
    kind: OpKind
    resource: str
    rank: int
    tags: Mapping[str, str] = field(default_factory=dict)
    members: FrozenSet[ResourceKey] = frozenset()
    depends_on: FrozenSet[ResourceKey] = frozenset()

    def describe(self) -> str:
        if self.kind == "SET_GROUP_MEMBERSHIP":
            return f"{self.kind}({self.resource}, {sorted(self.members)})"
        if self.tags:
            return f"{self.kind}({self.resource}, {dict(sorted(self.tags.items()))})"
        return f"{self.kind}({self.resource})"


@dataclass(frozen=True)
class Unchanged:
    """A resource that already matches its desired state."""
    kind: Literal["USER", "GROUP_MEMBERSHIP"]
    resource: str


@dataclass(frozen=True)
class ChangeSet:
    operations: Tuple[Operation, ...] = ()
    unchanged: Tuple[Unchanged, ...] = ()

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)

    def ranks(self) -> List[int]:
        return sorted({op.rank for op in self.operations})

    def of_kind(self, kind: str) -> List[Operation]:
        return [op for op in self.operations if op.kind == kind]


# ---------- Outcomes ----------

Status = Literal["APPLIED", "SKIPPED", "FAILED", "DEPENDENCY_SKIPPED", "CANCELLED"]
STATUSES: Tuple[str, ...] = ("APPLIED", "SKIPPED", "FAILED", "DEPENDENCY_SKIPPED", "CANCELLED")


@dataclass(frozen=True)
class Outcome:
    kind: str
    resource: str
    status: Status
    reason: str = ""
    attempts: int = 0
    operation: Optional[Operation] = None


@dataclass
class RunReport:
    """Aggregate result of one provisioning run."""
    outcomes: List[Outcome] = field(default_factory=list)
    rejected: List[RecordError] = field(default_factory=list)
    created: List[ResourceKey] = field(default_factory=list)
    secrets: Dict[ResourceKey, Secret] = field(default_factory=dict)
    account_id: str = ""
    changeset: ChangeSet = field(default_factory=ChangeSet)

    @property
    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for o in self.outcomes:
            out[o.status] = out.get(o.status, 0) + 1
        if self.rejected:
            out["REJECTED"] = len(self.rejected)
        return out

    @property
    def any_failed(self) -> bool:
        return any(o.status in ("FAILED", "DEPENDENCY_SKIPPED", "CANCELLED") for o in self.outcomes)
