"""Boundary coercion of raw row mappings into typed records.

Rows arrive from file parsing or from an editing grid as string-keyed maps
whose values are strings, already-parsed numbers, or JSON-encoded strings.
Everything here is total: malformed values become ``None`` or an invalid
``JsonField``, never an exception.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class JsonField:
    present: bool
    valid: bool
    value: Any = None


def _reject_constant(token: str) -> Any:
    raise ValueError(f"non-standard JSON constant {token}")


def as_text(value: Any) -> str | None:
    """Stripped text form of a scalar, ``None`` when absent or blank."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            value = int(value)
    try:
        text = str(value).strip()
    except ValueError:
        # int too long to render as decimal text
        return None
    return text or None


def as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def as_json(value: Any) -> JsonField:
    if value is None:
        return JsonField(present=False, valid=False)
    if isinstance(value, (dict, list, int, float)) and not isinstance(value, bool):
        return JsonField(present=True, valid=True, value=value)
    if not isinstance(value, str):
        return JsonField(present=True, valid=False)
    try:
        decoded = json.loads(value, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        return JsonField(present=True, valid=False)
    return JsonField(present=True, valid=True, value=decoded)


def as_token_list(value: Any) -> list[str] | None:
    """Comma-separated text (or an already-split list) as trimmed tokens.

    Blank tokens are kept so callers can report them.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [as_text(item) or "" for item in value]
    text = as_text(value) if not isinstance(value, str) else value
    if text is None:
        return None
    return [token.strip() for token in text.split(",")]


def as_tags(value: Any) -> list[str]:
    """JSON-encoded list of tags, deduplicated in order.

    Anything absent or unparsable counts as no tags.
    """
    field = as_json(value)
    if not field.valid or not isinstance(field.value, list):
        return []
    tags: list[str] = []
    for item in field.value:
        tag = as_text(item)
        if tag is not None and tag not in tags:
            tags.append(tag)
    return tags


def is_numeric(value: Any) -> bool:
    return as_number(value) is not None


@dataclass(frozen=True)
class ClientRecord:
    client_id: str | None
    priority_level: float | None
    requested_task_ids: list[str] | None
    group_tag: str | None
    attributes: JsonField

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ClientRecord":
        return cls(
            client_id=as_text(row.get("ClientID")),
            priority_level=as_number(row.get("PriorityLevel")),
            requested_task_ids=as_token_list(row.get("RequestedTaskIDs")),
            group_tag=as_text(row.get("GroupTag")),
            attributes=as_json(row.get("AttributesJSON")),
        )


@dataclass(frozen=True)
class WorkerRecord:
    worker_id: str | None
    skills: list[str]
    available_slots: JsonField
    max_load_per_phase: float | None
    worker_group: str | None
    qualification_level: str | None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WorkerRecord":
        return cls(
            worker_id=as_text(row.get("WorkerID")),
            skills=as_tags(row.get("Skills")),
            available_slots=as_json(row.get("AvailableSlots")),
            max_load_per_phase=as_number(row.get("MaxLoadPerPhase")),
            worker_group=as_text(row.get("WorkerGroup")),
            qualification_level=as_text(row.get("QualificationLevel")),
        )


@dataclass(frozen=True)
class TaskRecord:
    task_id: str | None
    duration: float | None
    required_skills: list[str]
    preferred_phases: Any
    max_concurrent: float | None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TaskRecord":
        return cls(
            task_id=as_text(row.get("TaskID")),
            duration=as_number(row.get("Duration")),
            required_skills=as_tags(row.get("RequiredSkills")),
            preferred_phases=row.get("PreferredPhases"),
            max_concurrent=as_number(row.get("MaxConcurrent")),
        )
