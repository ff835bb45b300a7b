"""
Reporting helpers (table or JSON) for plans and run reports.

Secrets are never rendered; only the keys that received one are listed.
"""
from __future__ import annotations

import json
import os
import sys
from typing import Any, Dict, List, Mapping, Optional, TextIO

from .models import STATUSES, ChangeSet, RunReport, Secret


def summarize_counts(counts: Mapping[str, int]) -> str:
    # stable order for readability
    keys = list(STATUSES) + ["REJECTED"]
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in keys)


def _fmt(value: Any) -> str:
    if value is None or value == "" or value == []:
        return "-"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join(sorted(map(str, value))) or "-"
    if isinstance(value, dict):
        return ", ".join(f"{k}={v}" for k, v in sorted(value.items())) or "-"
    return str(value)


def _table(rows: List[Dict[str, Any]], cols: List[str], out: TextIO) -> None:
    widths = {c: len(c) for c in cols}
    for r in rows:
        for c in cols:
            widths[c] = max(widths[c], len(_fmt(r.get(c))))
    out.write("| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |\n")
    out.write("| " + " | ".join("-" * widths[c] for c in cols) + " |\n")
    for r in rows:
        out.write("| " + " | ".join(_fmt(r.get(c)).ljust(widths[c]) for c in cols) + " |\n")


def plan_rows(changeset: ChangeSet) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for op in changeset.operations:
        rows.append({
            "rank": op.rank,
            "operation": op.kind,
            "resource": op.resource,
            "tags": dict(op.tags),
            "members": sorted(op.members) if op.kind == "SET_GROUP_MEMBERSHIP" else None,
        })
    return rows


def report_rows(report: RunReport) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for o in report.outcomes:
        rows.append({
            "operation": o.kind,
            "resource": o.resource,
            "status": o.status,
            "attempts": o.attempts,
            "reason": o.reason,
        })
    for err in report.rejected:
        rows.append({
            "operation": "RECORD",
            "resource": f"row {err.index}",
            "status": "REJECTED",
            "attempts": 0,
            "reason": f"{type(err).__name__}: {err}",
        })
    return rows


def print_plan(changeset: ChangeSet, fmt: str = "table", out: Optional[TextIO] = None) -> None:
    out = out or sys.stdout
    rows = plan_rows(changeset)
    if fmt == "json":
        out.write(json.dumps(rows, indent=2) + "\n")
        return
    if not rows:
        out.write("No changes.\n")
        return
    _table(rows, ["rank", "operation", "resource", "tags", "members"], out)


def print_report(report: RunReport, fmt: str = "table", out: Optional[TextIO] = None) -> None:
    """Render a RunReport as a table or JSON."""
    out = out or sys.stdout
    rows = report_rows(report)
    if fmt == "json":
        doc = {
            "account_id": report.account_id,
            "created": list(report.created),
            "console_passwords_issued": sorted(report.secrets),
            "counts": report.counts,
            "outcomes": rows,
        }
        out.write(json.dumps(doc, indent=2) + "\n")
        return
    if rows:
        _table(rows, ["operation", "resource", "status", "attempts", "reason"], out)
    out.write(f"account={report.account_id or '-'} created={len(report.created)} "
              f"passwords={len(report.secrets)}\n")
    out.write(summarize_counts(report.counts) + "\n")


def write_secrets(secrets: Mapping[str, Secret], path: str) -> None:
    """Write key -> password as JSON to a file readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump({k: s.reveal() for k, s in sorted(secrets.items())}, fh, indent=2)
        fh.write("\n")
