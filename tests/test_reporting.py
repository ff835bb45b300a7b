import io
import json
import os
import stat

from iamsync.core.errors import InvalidRecord
from iamsync.core.models import ChangeSet, Operation, Outcome, RunReport, Secret
from iamsync.core.reporting import print_plan, print_report, summarize_counts, write_secrets


def _report():
    return RunReport(
        outcomes=[
            Outcome("CREATE_USER", "mscott", "APPLIED", attempts=1),
            Outcome("ENABLE_CONSOLE_ACCESS", "mscott", "APPLIED", attempts=1),
            Outcome("CREATE_USER", "dschrute", "FAILED", "AccessDenied", attempts=1),
            Outcome("USER", "jhalpert", "SKIPPED", "no-op"),
        ],
        rejected=[InvalidRecord(3, ("last_name",))],
        created=["mscott"],
        secrets={"mscott": Secret("pa55-Word!xyz")},
        account_id="123456789012",
    )


def test_summarize_counts_is_stable():
    line = summarize_counts({"FAILED": 1, "APPLIED": 2})
    assert line.startswith("APPLIED=2 | SKIPPED=0 | FAILED=1")
    assert line.endswith("REJECTED=0")


def test_print_plan_table_and_empty():
    cs = ChangeSet(operations=(
        Operation("CREATE_USER", "mscott", 0, tags={"Department": "Education"}),
        Operation("SET_GROUP_MEMBERSHIP", "Education", 1, members=frozenset({"mscott"})),
    ))
    buf = io.StringIO()
    print_plan(cs, out=buf)
    text = buf.getvalue()
    assert "CREATE_USER" in text and "Department=Education" in text
    assert "SET_GROUP_MEMBERSHIP" in text

    empty = io.StringIO()
    print_plan(ChangeSet(), out=empty)
    assert empty.getvalue() == "No changes.\n"


def test_print_report_json_never_leaks_secrets():
    buf = io.StringIO()
    print_report(_report(), fmt="json", out=buf)
    doc = json.loads(buf.getvalue())
    assert doc["account_id"] == "123456789012"
    assert doc["console_passwords_issued"] == ["mscott"]
    assert doc["counts"] == {"APPLIED": 2, "FAILED": 1, "SKIPPED": 1, "REJECTED": 1}
    assert any(r["status"] == "REJECTED" and r["resource"] == "row 3" for r in doc["outcomes"])
    assert "pa55-Word!xyz" not in buf.getvalue()


def test_print_report_table_has_summary():
    buf = io.StringIO()
    print_report(_report(), out=buf)
    text = buf.getvalue()
    assert "account=123456789012 created=1 passwords=1" in text
    assert "FAILED=1" in text
    assert "pa55-Word!xyz" not in text


def test_write_secrets_is_owner_only(tmp_path):
    path = tmp_path / "passwords.json"
    write_secrets({"mscott": Secret("pa55-Word!xyz")}, str(path))
    assert json.loads(path.read_text(encoding="utf-8")) == {"mscott": "pa55-Word!xyz"}
    if os.name == "posix":
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
