import pandas as pd
import pytest

from iamsync.core.errors import SourceError
from iamsync.core.sources import read_records


def test_read_csv_keeps_strings_and_blanks(tmp_path):
    p = tmp_path / "users.csv"
    p.write_text(
        "First Name,Last Name,Department,Job Title,Badge\n"
        "Michael,Scott,Education,Regional Manager,007\n"
        "Toby,,HR,Rep,\n",
        encoding="utf-8",
    )
    rows = read_records(str(p))
    assert rows[0] == {
        "First Name": "Michael",
        "Last Name": "Scott",
        "Department": "Education",
        "Job Title": "Regional Manager",
        "Badge": "007",
    }
    assert rows[1]["Last Name"] == ""


def test_read_csv_with_bom_and_empty_file(tmp_path):
    p = tmp_path / "bom.csv"
    p.write_bytes("\ufeffFirst Name,Last Name\nPam,Beesly\n".encode("utf-8"))
    assert read_records(str(p)) == [{"First Name": "Pam", "Last Name": "Beesly"}]

    empty = tmp_path / "empty.csv"
    empty.write_text("", encoding="utf-8")
    assert read_records(str(empty)) == []


def test_read_xlsx_with_sheet(tmp_path):
    p = tmp_path / "users.xlsx"
    with pd.ExcelWriter(p, engine="openpyxl") as xw:
        pd.DataFrame([{"Name": "ignored"}]).to_excel(xw, sheet_name="Notes", index=False)
        pd.DataFrame([
            {"First Name": "Dwight", "Last Name": "Schrute", "Department": "Sales", "Job Title": "Assistant"},
        ]).to_excel(xw, sheet_name="Users", index=False)

    rows = read_records(str(p), sheet="Users")
    assert rows == [{"First Name": "Dwight", "Last Name": "Schrute", "Department": "Sales", "Job Title": "Assistant"}]

    with pytest.raises(SourceError):
        read_records(str(p), sheet="Missing")


def test_missing_file(tmp_path):
    with pytest.raises(SourceError, match="not found"):
        read_records(str(tmp_path / "nope.csv"))
