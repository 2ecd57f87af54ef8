from __future__ import annotations

import csv
import json
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd

from alchemist.prioritization import Weights
from alchemist.validation.errors import ValidationError


def rows_to_csv(rows: Sequence[Mapping[str, Any]]) -> str:
    """Quoted CSV with CRLF line endings; columns follow the first row."""
    if not rows:
        raise ValueError("NO_DATA")
    columns = list(rows[0].keys())
    frame = pd.DataFrame([{column: row.get(column) for column in columns} for row in rows], columns=columns)
    frame = frame.astype(object).where(frame.notna(), "")
    return frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\r\n")


def csv_file_name(entity: str) -> str:
    return f"{entity}_cleaned.csv"


def rules_document(rules: Iterable[Mapping[str, Any]], weights: Weights) -> list[dict[str, Any]]:
    document = [{"type": rule["type"], "config": rule["config"]} for rule in rules]
    document.append({"type": "weights", "config": weights.model_dump()})
    return document


def errors_document(errors: Iterable[ValidationError]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in errors]


def to_json(document: Any) -> str:
    return json.dumps(document, indent=2, default=str)
