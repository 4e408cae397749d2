"""Parse an uploaded assignment CSV into ``ImportRow`` objects.

Expected columns (case-insensitive, surrounding whitespace ignored):

- ``SubjectCode`` (alias ``SubjectId``)
- ``EvaluatorCode`` (alias ``EvaluatorId``)
- ``Relationship`` (alias ``Label``)

Every cell is read as a string; blank cells become empty strings so row
validation can report them with the right row number.
"""
from __future__ import annotations

from pathlib import Path
from typing import BinaryIO

import pandas as pd

from feedback360.assignment.bulk_import import ImportRow

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "subject_code": ("subjectcode", "subjectid", "subject_code", "subject_id", "subject"),
    "evaluator_code": ("evaluatorcode", "evaluatorid", "evaluator_code", "evaluator_id", "evaluator"),
    "relationship": ("relationship", "label", "relationshiptype", "relationship_type"),
}


def _match_columns(columns: list[str]) -> dict[str, str]:
    normalized = {str(col).strip().lower(): col for col in columns}
    matched: dict[str, str] = {}
    for field_name, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                matched[field_name] = normalized[alias]
                break
    missing = sorted(set(COLUMN_ALIASES) - set(matched))
    if missing:
        raise ValueError(f"CSV is missing required column(s): {', '.join(missing)}")
    return matched


def parse_assignment_csv(source: str | Path | BinaryIO) -> list[ImportRow]:
    """Read *source* and return one ``ImportRow`` per data line, in file order."""
    try:
        frame = pd.read_csv(source, dtype=str, keep_default_na=False, skipinitialspace=True)
    except pd.errors.EmptyDataError as exc:
        raise ValueError("CSV file is empty") from exc
    except UnicodeDecodeError as exc:
        raise ValueError("CSV file is not valid UTF-8") from exc
    except pd.errors.ParserError as exc:
        raise ValueError(f"CSV file could not be parsed: {exc}") from exc

    columns = _match_columns(list(frame.columns))
    return [
        ImportRow(
            subject_code=record[columns["subject_code"]],
            evaluator_code=record[columns["evaluator_code"]],
            relationship=record[columns["relationship"]],
        )
        for record in frame.to_dict(orient="records")
    ]
