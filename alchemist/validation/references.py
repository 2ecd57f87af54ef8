from __future__ import annotations

from typing import Any, Mapping, Sequence

from alchemist.validation.errors import EntityType, ValidationError, error
from alchemist.validation.records import ClientRecord, TaskRecord, WorkerRecord


def validate_cross_references(
    clients: Sequence[Mapping[str, Any]],
    tasks: Sequence[Mapping[str, Any]],
    workers: Sequence[Mapping[str, Any]],
) -> list[ValidationError]:
    """Referential integrity between the three tables.

    Clients may only request known task IDs, and every skill a task requires
    must be held by at least one worker. Skill lists that are missing or not
    valid JSON contribute nothing instead of failing the check.
    """
    errors: list[ValidationError] = []

    task_ids = {record.task_id for record in map(TaskRecord.from_row, tasks) if record.task_id}
    worker_skills: set[str] = set()
    for record in map(WorkerRecord.from_row, workers):
        worker_skills.update(record.skills)

    for index, record in enumerate(map(ClientRecord.from_row, clients)):
        reported: set[str] = set()
        for task_id in record.requested_task_ids or []:
            # Blank tokens are already reported by the client validator.
            if not task_id or task_id in task_ids or task_id in reported:
                continue
            reported.add(task_id)
            errors.append(
                error(EntityType.CLIENTS, index, "RequestedTaskIDs", f"Unknown task ID: {task_id}")
            )

    for index, record in enumerate(map(TaskRecord.from_row, tasks)):
        for skill in record.required_skills:
            if skill not in worker_skills:
                errors.append(
                    error(EntityType.TASKS, index, "RequiredSkills", f"No worker has skill '{skill}'")
                )

    return errors
