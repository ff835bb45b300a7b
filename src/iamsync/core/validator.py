"""
Record validator: raw rows -> Identity values.

Collect-all pass. Every row is checked; a row with missing or blank
required fields yields one InvalidRecord listing all offending fields.
Unknown columns are ignored.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .errors import InvalidRecord
from .models import Identity

log = logging.getLogger(__name__)

REQUIRED_FIELDS: Tuple[str, ...] = ("first_name", "last_name", "department", "job_title")


def norm_str(value: Any) -> str:
    """Trim and collapse whitespace; preserve case."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def canonical_field(name: Any) -> str:
    """'First Name' / 'first-name' / ' FIRST_NAME ' -> 'first_name'."""
    return re.sub(r"[\s\-]+", "_", norm_str(name)).casefold()


def canonicalize(row: Mapping[str, Any]) -> Dict[str, str]:
    """Canonical header names and normalised values; first occurrence of a header wins."""
    out: Dict[str, str] = {}
    for k, v in row.items():
        out.setdefault(canonical_field(k), norm_str(v))
    return out


def validate_record(index: int, row: Mapping[str, Any]) -> Identity:
    """Validate a single row. Raises InvalidRecord."""
    values = canonicalize(row)
    missing = tuple(f for f in REQUIRED_FIELDS if not values.get(f))
    if missing:
        raise InvalidRecord(index, missing)
    return Identity(
        index=index,
        first_name=values["first_name"],
        last_name=values["last_name"],
        department=values["department"],
        job_title=values["job_title"],
    )


def validate_records(rows: Iterable[Mapping[str, Any]]) -> Tuple[List[Identity], List[InvalidRecord]]:
    identities: List[Identity] = []
    errors: List[InvalidRecord] = []
    for idx, row in enumerate(rows):
        try:
            identities.append(validate_record(idx, row))
        except InvalidRecord as e:
            log.warning("Record rejected: %s", e)
            errors.append(e)
    log.debug("Validated %d record(s), %d rejected", len(identities), len(errors))
    return identities, errors
