from __future__ import annotations

from typing import Any, Mapping, Sequence

from alchemist.validation.records import as_token_list

# A task must be requested by more than this many clients to be a candidate.
POPULARITY_THRESHOLD = 2
MAX_CO_RUN_TASKS = 3


def suggest_rules_from_clients(clients: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Propose co-running the tasks that many clients ask for."""
    counts: dict[str, int] = {}
    for row in clients:
        for task_id in as_token_list(row.get("RequestedTaskIDs")) or []:
            if task_id:
                counts[task_id] = counts.get(task_id, 0) + 1

    popular = [task_id for task_id, count in counts.items() if count > POPULARITY_THRESHOLD]
    if len(popular) < 2:
        return []
    return [{"type": "coRun", "config": {"tasks": popular[:MAX_CO_RUN_TASKS]}}]
