"""Checks over scheduling rules.

``validate_rule_set`` looks for contradictions across the whole rule list,
``validate_rule`` checks one rule against the uploaded tables.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence

from alchemist.validation.errors import TABLE_LEVEL_ROW, EntityType, ValidationError, error
from alchemist.validation.records import as_text
from alchemist.validation.rule_types import CoRunRule, Rule, parse_rule

# task -> [(neighbour task, index of the rule that links them)]
CoRunGraph = dict[str, list[tuple[str, int]]]


def _as_rule(item: Any) -> Rule | None:
    try:
        return parse_rule(item)
    except ValueError:
        return None


def _unique(items: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(items))


def build_co_run_graph(rules: Sequence[Any]) -> CoRunGraph:
    graph: CoRunGraph = {}
    for rule_index, item in enumerate(rules):
        rule = _as_rule(item)
        if not isinstance(rule, CoRunRule):
            continue
        tasks = _unique(rule.config.tasks)
        for first in tasks:
            for second in tasks:
                if first != second:
                    graph.setdefault(first, []).append((second, rule_index))
    return graph


@dataclass
class _Frame:
    node: str
    entered_via: int | None
    edges: Iterator[tuple[str, int]]


def _find_cycle(graph: CoRunGraph, start: str, visited: set[str]) -> str | None:
    on_path = {start}
    visited.add(start)
    stack = [_Frame(start, None, iter(graph.get(start, ())))]

    while stack:
        frame = stack[-1]
        descended = False
        for neighbour, rule_index in frame.edges:
            # Tasks of one rule form a single group, not a loop.
            if rule_index == frame.entered_via:
                continue
            if neighbour in on_path:
                return neighbour
            if neighbour in visited:
                continue
            visited.add(neighbour)
            on_path.add(neighbour)
            stack.append(_Frame(neighbour, rule_index, iter(graph.get(neighbour, ()))))
            descended = True
            break
        if not descended:
            stack.pop()
            on_path.discard(frame.node)

    return None


def validate_rule_set(rules: Sequence[Any]) -> list[ValidationError]:
    """Report the first circular co-run group, if any.

    Scanning stops at the first cycle, so at most one error is returned.
    Payloads that are not valid rules are ignored here.
    """
    graph = build_co_run_graph(rules)
    visited: set[str] = set()
    for node in graph:
        if node in visited:
            continue
        cycle_at = _find_cycle(graph, node, visited)
        if cycle_at is not None:
            return [
                error(
                    EntityType.RULES,
                    TABLE_LEVEL_ROW,
                    "coRun",
                    f"Circular co-run group involving {cycle_at}",
                )
            ]
    return []


def validate_rule(rule: Rule, datasets: Mapping[str, Sequence[Mapping[str, Any]]]) -> str | None:
    """Message describing why ``rule`` does not fit the datasets, or None."""
    if isinstance(rule, CoRunRule):
        known = {as_text(row.get("TaskID")) for row in datasets.get(EntityType.TASKS.value) or ()}
        tasks = rule.config.tasks

        missing = _unique([task_id for task_id in tasks if task_id not in known])
        if missing:
            return f"Invalid TaskIDs: {', '.join(missing)} not found in uploaded tasks"

        duplicates = _unique([task_id for index, task_id in enumerate(tasks) if task_id in tasks[:index]])
        if duplicates:
            return f"Duplicate TaskIDs: {', '.join(duplicates)}"

    return None
