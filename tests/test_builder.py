import pytest

from iamsync.core.builder import GroupTaxonomy, build_desired_state, check_integrity
from iamsync.core.errors import GraphIntegrityViolation
from iamsync.core.models import DesiredMembership, DesiredState, Identity, KeyedIdentity


def keyed(i, key, dept, first="A", last="B", title="T"):
    return KeyedIdentity(
        identity=Identity(index=i, first_name=first, last_name=last, department=dept, job_title=title),
        key=key,
    )


def test_taxonomy_is_total_and_case_insensitive():
    tax = GroupTaxonomy()
    assert tax("Education") == "Education"
    assert tax("  engineering ") == "Engineers"
    assert tax("MANAGERS") == "Managers"
    assert tax("Sales") == "Unassigned"
    assert tax("") == "Unassigned"


def test_taxonomy_groups_has_unassigned_last():
    tax = GroupTaxonomy({"Ops": "Operators", "Dev": "Engineers"}, unassigned="Misc")
    assert tax.groups == ["Operators", "Engineers", "Misc"]


def test_taxonomy_rejects_empty_names():
    with pytest.raises(ValueError):
        GroupTaxonomy(unassigned=" ")
    with pytest.raises(ValueError):
        GroupTaxonomy({"Ops": ""})


def test_build_desired_state_places_every_user_in_one_group():
    state = build_desired_state([
        keyed(0, "mscott", "Education", "Michael", "Scott", "Regional Manager"),
        keyed(1, "dschrute", "Sales", "Dwight", "Schrute", "Assistant"),
    ])
    assert state.memberships["Education"].members == frozenset({"mscott"})
    assert state.memberships["Unassigned"].members == frozenset({"dschrute"})
    assert state.memberships["Engineers"].members == frozenset()
    user = state.users["mscott"]
    assert user.group == "Education"
    assert user.tags == {
        "Department": "Education",
        "JobTitle": "Regional Manager",
        "DisplayName": "Michael Scott",
    }
    assert user.console_access is True


def test_console_access_flag_is_carried():
    state = build_desired_state([keyed(0, "pb", "Sales")], console_access=False)
    assert state.users["pb"].console_access is False


def test_duplicate_key_is_an_integrity_violation():
    with pytest.raises(GraphIntegrityViolation):
        build_desired_state([keyed(0, "same", "Sales"), keyed(1, "same", "Education")])


def test_check_integrity_catches_dangling_and_orphans():
    state = build_desired_state([keyed(0, "mscott", "Education")])
    broken = DesiredState(
        users=state.users,
        memberships={"Education": DesiredMembership("Education", frozenset({"mscott", "ghost"}))},
    )
    with pytest.raises(GraphIntegrityViolation, match="ghost"):
        check_integrity(broken)

    orphaned = DesiredState(users=state.users, memberships={})
    with pytest.raises(GraphIntegrityViolation, match="mscott"):
        check_integrity(orphaned)
