from __future__ import annotations

import re
from typing import Any, Callable, Iterable, Mapping, Sequence

from alchemist.validation.errors import TABLE_LEVEL_ROW, EntityType, ValidationError, error
from alchemist.validation.records import ClientRecord, TaskRecord, WorkerRecord, is_numeric

Row = Mapping[str, Any]

REQUIRED_COLUMNS: dict[EntityType, tuple[str, ...]] = {
    EntityType.CLIENTS: ("ClientID", "PriorityLevel", "RequestedTaskIDs", "GroupTag", "AttributesJSON"),
    EntityType.WORKERS: ("WorkerID", "AvailableSlots", "Skills", "MaxLoadPerPhase"),
    EntityType.TASKS: ("TaskID", "Duration", "PreferredPhases", "RequiredSkills", "MaxConcurrent"),
}

PRIORITY_RANGE = (1, 5)

_PHASE_LIST_LITERAL = re.compile(r"\[.*\]")
_PHASE_RANGE_LIST = re.compile(r"\d+(-\d+)?(,\d+(-\d+)?)*", re.ASCII)


def validate_structure(rows: Sequence[Row], entity: EntityType | str) -> list[ValidationError]:
    """One error per required column missing from the first row."""
    if not rows:
        return []
    entity = EntityType(entity)
    columns = rows[0].keys()
    return [
        error(entity, TABLE_LEVEL_ROW, column, f"{column} column is missing")
        for column in REQUIRED_COLUMNS.get(entity, ())
        if column not in columns
    ]


def _check_identifier(
    errors: list[ValidationError],
    seen: set[str | None],
    entity: EntityType,
    index: int,
    field: str,
    value: str | None,
) -> None:
    if value is None:
        errors.append(error(entity, index, field, f"{field} is required"))
    elif value in seen:
        errors.append(error(entity, index, field, f"Duplicate {field}"))
    seen.add(value)


def _below_one(value: float | None) -> bool:
    return value is None or value < 1


def is_valid_phase_spec(value: str) -> bool:
    return bool(_PHASE_LIST_LITERAL.fullmatch(value) or _PHASE_RANGE_LIST.fullmatch(value))


def validate_clients(rows: Sequence[Row]) -> list[ValidationError]:
    entity = EntityType.CLIENTS
    errors: list[ValidationError] = []
    seen: set[str | None] = set()
    low, high = PRIORITY_RANGE

    for index, record in enumerate(ClientRecord.from_row(row) for row in rows):
        _check_identifier(errors, seen, entity, index, "ClientID", record.client_id)

        priority = record.priority_level
        if priority is None or priority < low or priority > high:
            errors.append(
                error(entity, index, "PriorityLevel", f"PriorityLevel must be between {low} and {high}")
            )

        requested = record.requested_task_ids
        if not requested or any(not task_id for task_id in requested):
            errors.append(error(entity, index, "RequestedTaskIDs", "Missing or invalid RequestedTaskIDs"))

        if not record.attributes.valid:
            errors.append(error(entity, index, "AttributesJSON", "Malformed JSON in AttributesJSON"))

    return errors


def validate_workers(rows: Sequence[Row]) -> list[ValidationError]:
    entity = EntityType.WORKERS
    errors: list[ValidationError] = []
    seen: set[str | None] = set()

    for index, record in enumerate(WorkerRecord.from_row(row) for row in rows):
        _check_identifier(errors, seen, entity, index, "WorkerID", record.worker_id)

        slots = record.available_slots
        if not slots.valid or not isinstance(slots.value, list) or not all(is_numeric(s) for s in slots.value):
            errors.append(error(entity, index, "AvailableSlots", "Malformed list in AvailableSlots"))

        if _below_one(record.max_load_per_phase):
            errors.append(error(entity, index, "MaxLoadPerPhase", "MaxLoadPerPhase must be >= 1"))

    return errors


def validate_tasks(rows: Sequence[Row]) -> list[ValidationError]:
    entity = EntityType.TASKS
    errors: list[ValidationError] = []
    seen: set[str | None] = set()

    for index, record in enumerate(TaskRecord.from_row(row) for row in rows):
        _check_identifier(errors, seen, entity, index, "TaskID", record.task_id)

        if _below_one(record.duration):
            errors.append(error(entity, index, "Duration", "Duration must be >= 1"))

        if _below_one(record.max_concurrent):
            errors.append(error(entity, index, "MaxConcurrent", "MaxConcurrent must be >= 1"))

        # Format check only; phase numbers are not resolved against a calendar.
        phases = record.preferred_phases
        if phases and isinstance(phases, str) and not is_valid_phase_spec(phases):
            errors.append(error(entity, index, "PreferredPhases", "Invalid format in PreferredPhases"))

    return errors


ENTITY_VALIDATORS: dict[EntityType, Callable[[Sequence[Row]], list[ValidationError]]] = {
    EntityType.CLIENTS: validate_clients,
    EntityType.WORKERS: validate_workers,
    EntityType.TASKS: validate_tasks,
}


def validate_rows(entity: EntityType | str, rows: Iterable[Row]) -> list[ValidationError]:
    return ENTITY_VALIDATORS[EntityType(entity)](list(rows))
