from iamsync.core.builder import build_desired_state
from iamsync.core.diff_engine import compute_changeset, decide
from iamsync.core.keys import derive_keys
from iamsync.core.models import ObservedState, ObservedUser
from iamsync.core.validator import validate_records


def desired_from(rows):
    identities, _ = validate_records(rows)
    keyed, _ = derive_keys(identities)
    return build_desired_state(keyed)


def observed_after(desired):
    """Observed state that mirrors a fully applied desired state."""
    return ObservedState(
        users={
            k: ObservedUser(key=k, tags=dict(u.tags), console_access=u.console_access)
            for k, u in desired.users.items()
        },
        memberships={g: m.members for g, m in desired.memberships.items()},
    )


def test_decide_subset_compare():
    assert decide({"a": 1}, None, compare_keys=["a"]).op == "CREATE"
    d = decide({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 9}, compare_keys=["a", "b"])
    assert d.op == "UPDATE" and d.changed == ("b",)
    assert decide({"a": 1}, {"a": 1, "x": 0}, compare_keys=["a"]).op == "NOOP"


def test_office_scenario_against_empty_account(office_rows):
    cs = compute_changeset(desired_from(office_rows), ObservedState.empty())

    users = cs.of_kind("CREATE_USER")
    assert {op.resource for op in users} == {"mscott", "dschrute"}
    assert all(op.rank == 0 for op in users)
    mscott = next(op for op in users if op.resource == "mscott")
    assert mscott.tags["Department"] == "Education"

    memberships = {op.resource: op for op in cs.of_kind("SET_GROUP_MEMBERSHIP")}
    assert set(memberships) == {"Education", "Unassigned"}
    assert memberships["Education"].members == frozenset({"mscott"})
    assert memberships["Unassigned"].members == frozenset({"dschrute"})
    assert memberships["Education"].depends_on == frozenset({"mscott"})
    assert all(op.rank == 1 for op in memberships.values())

    # every create precedes every membership
    kinds = [op.kind for op in cs if op.kind in ("CREATE_USER", "SET_GROUP_MEMBERSHIP")]
    assert kinds == ["CREATE_USER", "CREATE_USER", "SET_GROUP_MEMBERSHIP", "SET_GROUP_MEMBERSHIP"]

    # taxonomy groups are created, empty ones get no membership op
    assert {op.resource for op in cs.of_kind("CREATE_GROUP")} == {
        "Education", "Managers", "Engineers", "Unassigned",
    }
    consoles = cs.of_kind("ENABLE_CONSOLE_ACCESS")
    assert {op.resource for op in consoles} == {"mscott", "dschrute"}
    assert all(op.depends_on == frozenset({op.resource}) for op in consoles)


def test_rerun_after_apply_is_empty(office_rows):
    desired = desired_from(office_rows)
    cs = compute_changeset(desired, observed_after(desired))
    assert len(cs) == 0
    assert {u.resource for u in cs.unchanged if u.kind == "USER"} == {"mscott", "dschrute"}


def test_ranks_are_ordered(office_rows):
    cs = compute_changeset(desired_from(office_rows), ObservedState.empty())
    ranks = [op.rank for op in cs]
    assert ranks == sorted(ranks)
    assert cs.ranks() == [0, 1]


def test_tag_update_carries_only_changed_tags(office_rows):
    desired = desired_from(office_rows)
    observed = observed_after(desired)
    stale = dict(observed.users["mscott"].tags, JobTitle="Salesman", CostCenter="42")
    users = dict(observed.users)
    users["mscott"] = ObservedUser(key="mscott", tags=stale, console_access=True)
    cs = compute_changeset(desired, ObservedState(users=users, memberships=observed.memberships))

    assert [op.kind for op in cs] == ["UPDATE_USER_TAGS"]
    assert cs.operations[0].tags == {"JobTitle": "Regional Manager"}


def test_unmanaged_remote_resources_are_never_deleted(office_rows):
    desired = desired_from(office_rows)
    observed = observed_after(desired)
    users = dict(observed.users)
    users["tflenderson"] = ObservedUser(key="tflenderson", tags={"Department": "HR"})
    memberships = dict(observed.memberships)
    memberships["HR"] = frozenset({"tflenderson"})
    cs = compute_changeset(desired, ObservedState(users=users, memberships=memberships))
    assert len(cs) == 0


def test_membership_is_full_replacement(office_rows):
    desired = desired_from(office_rows)
    observed = observed_after(desired)
    memberships = dict(observed.memberships)
    memberships["Education"] = frozenset({"mscott", "tflenderson"})
    cs = compute_changeset(desired, ObservedState(users=observed.users, memberships=memberships))

    (op,) = cs.operations
    assert op.kind == "SET_GROUP_MEMBERSHIP"
    assert op.members == frozenset({"mscott"})
    assert op.depends_on == frozenset()


def test_console_access_enabled_for_existing_user(office_rows):
    desired = desired_from(office_rows)
    observed = observed_after(desired)
    users = dict(observed.users)
    users["dschrute"] = ObservedUser(key="dschrute", tags=dict(users["dschrute"].tags), console_access=False)
    cs = compute_changeset(desired, ObservedState(users=users, memberships=observed.memberships))
    (op,) = cs.operations
    assert (op.kind, op.resource, op.rank, op.depends_on) == ("ENABLE_CONSOLE_ACCESS", "dschrute", 1, frozenset())
