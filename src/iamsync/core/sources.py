"""
Tabular input readers (CSV / XLSX) built on pandas.

Every cell is read as a string; empty cells become "". Row order is the
file order. Header names are left untouched (the validator canonicalises them).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .errors import SourceError

log = logging.getLogger(__name__)

RawRow = Dict[str, str]


def _frame_to_rows(df: pd.DataFrame) -> List[RawRow]:
    df = df.fillna("")
    df.columns = [str(c) for c in df.columns]
    return [{k: str(v) for k, v in rec.items()} for rec in df.to_dict(orient="records")]


def read_csv(path: str) -> List[RawRow]:
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig", skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        return []
    except (OSError, UnicodeDecodeError, pd.errors.ParserError) as exc:
        raise SourceError(f"Failed to read {path}: {exc}") from exc
    return _frame_to_rows(df)


def read_xlsx(path: str, sheet: Optional[str] = None) -> List[RawRow]:
    try:
        df = pd.read_excel(
            path,
            sheet_name=sheet if sheet else 0,
            dtype=str,
            keep_default_na=False,
            engine="openpyxl",
        )
    except (OSError, ValueError, KeyError) as exc:
        raise SourceError(f"Failed to read {path}: {exc}") from exc
    return _frame_to_rows(df)


def read_records(path: str, sheet: Optional[str] = None) -> List[RawRow]:
    """Auto-detect reader by file extension (.xlsx/.xlsm, otherwise CSV)."""
    p = Path(path)
    if not p.is_file():
        raise SourceError(f"Records file not found: {path}")
    if p.suffix.lower() in (".xlsx", ".xlsm"):
        rows = read_xlsx(str(p), sheet)
    else:
        rows = read_csv(str(p))
    log.info("Loaded %d input row(s) from %s", len(rows), path)
    return rows
