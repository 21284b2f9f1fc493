"""Trial-log export as CSV or JSON."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Sequence
from dataclasses import asdict, fields
from enum import Enum
from pathlib import Path

from .rhythm_test import TrialRecord

DEFAULT_EXPORT_STEM = "visual_rhythm_results"


def _plain(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


def _record_dict(record: TrialRecord) -> dict[str, object]:
    return {k: _plain(v) for k, v in asdict(record).items()}


def _csv_cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return f"{value:.4f}"
    return str(value)


def trial_log_to_csv(records: Sequence[TrialRecord]) -> str:
    if not records:
        return ""
    headers = [f.name for f in fields(TrialRecord)]
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(headers)
    for record in records:
        row = _record_dict(record)
        writer.writerow([_csv_cell(row[h]) for h in headers])
    return buf.getvalue()


def trial_log_to_json(records: Sequence[TrialRecord]) -> str:
    return json.dumps([_record_dict(r) for r in records], indent=2)


def write_trial_log(path: Path, records: Sequence[TrialRecord]) -> Path:
    """Write ``records`` to ``path``; the suffix (.csv or .json) picks the format."""

    suffix = path.suffix.lower()
    if suffix == ".csv":
        content = trial_log_to_csv(records)
    elif suffix == ".json":
        content = trial_log_to_json(records)
    else:
        raise ValueError(f"unsupported export format {path.suffix!r}; use .csv or .json")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
