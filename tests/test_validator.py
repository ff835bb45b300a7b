import pytest

from iamsync.core.errors import InvalidRecord
from iamsync.core.validator import canonical_field, canonicalize, validate_record, validate_records

from conftest import person


def test_canonical_field_variants():
    assert canonical_field("First Name") == "first_name"
    assert canonical_field(" first-name ") == "first_name"
    assert canonical_field("FIRST_NAME") == "first_name"
    assert canonical_field("Job  Title") == "job_title"


def test_canonicalize_trims_values_and_keeps_first_header():
    row = {"First Name": "  Michael  ", "first_name": "Other", "Department": "Edu  cation"}
    out = canonicalize(row)
    assert out["first_name"] == "Michael"
    assert out["department"] == "Edu cation"


def test_validate_record_builds_identity():
    ident = validate_record(0, person(" Michael ", "Scott", "Education", "Regional Manager"))
    assert ident.first_name == "Michael"
    assert ident.display_name == "Michael Scott"
    assert ident.index == 0


def test_validate_record_lists_every_offending_field():
    with pytest.raises(InvalidRecord) as ei:
        validate_record(4, {"First Name": "Pam", "Last Name": "   ", "Job Title": None})
    err = ei.value
    assert err.index == 4
    assert err.fields == ("last_name", "department", "job_title")
    assert str(err).startswith("row 4:")


def test_unknown_columns_are_ignored():
    ident = validate_record(0, person("Jim", "Halpert", "Sales", "Rep", Phone="555-0100"))
    assert ident.last_name == "Halpert"


def test_validate_records_collects_all_errors():
    rows = [
        person("Michael", "Scott", "Education", "Regional Manager"),
        person("Toby", "", "HR", "Rep"),
        person("", "", "", ""),
        person("Dwight", "Schrute", "Sales", "Assistant"),
    ]
    identities, errors = validate_records(rows)
    assert [i.first_name for i in identities] == ["Michael", "Dwight"]
    assert [e.index for e in errors] == [1, 2]
    assert errors[0].fields == ("last_name",)
    assert len(errors[1].fields) == 4
