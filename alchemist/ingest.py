from __future__ import annotations

import io
import zipfile
import logging
import re
from pathlib import Path
from typing import Any

import pandas as pd

from alchemist.validation.errors import EntityType

logger = logging.getLogger(__name__)


ENTITY_SCHEMAS: dict[str, list[str]] = {
    "clients": ["ClientID", "ClientName", "PriorityLevel", "RequestedTaskIDs", "GroupTag", "AttributesJSON"],
    "workers": [
        "WorkerID",
        "WorkerName",
        "Skills",
        "AvailableSlots",
        "MaxLoadPerPhase",
        "WorkerGroup",
        "QualificationLevel",
    ],
    "tasks": ["TaskID", "TaskName", "Category", "Duration", "RequiredSkills", "PreferredPhases", "MaxConcurrent"],
}

# Whitespace-free lowercase header -> canonical header.
HEADER_MAP: dict[str, str] = {
    header.lower(): header for headers in ENTITY_SCHEMAS.values() for header in headers
}

SUPPORTED_SUFFIXES = (".csv", ".xlsx")


def normalize_headers(raw: list[Any]) -> list[str]:
    seen: dict[str, int] = {}
    headers: list[str] = []
    for header in raw:
        text = str(header)
        key = re.sub(r"\s+", "", text).lower()
        base = HEADER_MAP.get(key, text)
        seen[base] = seen.get(base, 0) + 1
        headers.append(base if seen[base] == 1 else f"{base}_{seen[base]}")
    return headers


def detect_entity(file_name: str) -> str:
    lowered = Path(file_name).name.lower()
    for needle, entity in (("client", EntityType.CLIENTS), ("worker", EntityType.WORKERS), ("task", EntityType.TASKS)):
        if needle in lowered:
            return entity.value
    raise ValueError("UNKNOWN_ENTITY")


def _frame_to_rows(frame: pd.DataFrame) -> list[dict[str, Any]]:
    frame = frame.dropna(how="all")
    frame.columns = normalize_headers(list(frame.columns))
    frame = frame.astype(object).where(frame.notna(), "")
    return frame.to_dict(orient="records")


def read_table(file_name: str, content: bytes) -> list[dict[str, Any]]:
    """Parse an uploaded CSV or XLSX file into row mappings.

    Cells are read as text; validators do their own coercion.
    """
    suffix = Path(file_name).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError("UNSUPPORTED_FILE_TYPE")
    try:
        if suffix == ".csv":
            frame = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False, skip_blank_lines=True)
            frame = frame.replace("", pd.NA)
        else:
            frame = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str, engine="openpyxl")
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, UnicodeDecodeError, ValueError, zipfile.BadZipFile) as exc:
        logger.warning("could not parse %s: %s", file_name, exc)
        raise ValueError("UNREADABLE_FILE") from exc

    rows = _frame_to_rows(frame)
    logger.info("parsed %s: %d row(s), columns=%s", file_name, len(rows), list(rows[0]) if rows else [])
    return rows


def read_path(path: str | Path) -> list[dict[str, Any]]:
    path = Path(path)
    return read_table(path.name, path.read_bytes())
