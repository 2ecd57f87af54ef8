from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from alchemist.ingest import ENTITY_SCHEMAS
from alchemist.validation.records import as_number, as_text

OPERATORS = (">=", "<=", "=", ">", "<")

_CLAUSE = re.compile(r"(\w+)\s*(>=|<=|=|>|<)\s*(.+)")
_AND = re.compile(r"\s+AND\s+", re.IGNORECASE)


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "op": self.op, "value": self.value}


def _literal(raw: str) -> Any:
    text = raw.strip()
    number = as_number(text)
    if number is None:
        return text
    return int(number) if number.is_integer() else number


def parse_query(query: str | None) -> list[Condition]:
    """``PriorityLevel > 3 AND GroupTag = GroupA`` style search text.

    Clauses that do not parse are dropped.
    """
    conditions: list[Condition] = []
    for clause in _AND.split(query or ""):
        match = _CLAUSE.search(clause)
        if match is None:
            continue
        field, op, raw = match.groups()
        conditions.append(Condition(field=field, op=op, value=_literal(raw)))
    return conditions


def matches(row: Mapping[str, Any], condition: Condition) -> bool:
    cell = row.get(condition.field)
    if cell is None:
        return False
    if condition.op == "=":
        return as_text(cell) == as_text(condition.value)

    left = as_number(cell)
    right = as_number(condition.value)
    if left is None or right is None:
        return False
    if condition.op == ">":
        return left > right
    if condition.op == "<":
        return left < right
    if condition.op == ">=":
        return left >= right
    if condition.op == "<=":
        return left <= right
    return False


def apply_filters(rows: Iterable[Mapping[str, Any]], conditions: Sequence[Condition]) -> list[Mapping[str, Any]]:
    if not conditions:
        return list(rows)
    return [row for row in rows if all(matches(row, condition) for condition in conditions)]


def levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (0 if char_a == char_b else 1),
                )
            )
        previous = current
    return previous[-1]


def resolve_field(field: str, entity: str) -> str:
    """Map a loosely written field name onto the entity's canonical columns."""
    schema = ENTITY_SCHEMAS.get(entity) or ENTITY_SCHEMAS["clients"]
    lowered = field.lower()
    for candidate in schema:
        if candidate.lower() == lowered:
            return candidate
    for candidate in schema:
        if lowered in candidate.lower():
            return candidate
    return min(schema, key=lambda candidate: levenshtein(lowered, candidate.lower()))


def conditions_from_payload(items: Iterable[Any], entity: str) -> list[Condition]:
    conditions: list[Condition] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        field, op = item.get("field"), item.get("op")
        if not isinstance(field, str) or op not in OPERATORS:
            continue
        conditions.append(Condition(field=resolve_field(field, entity), op=op, value=item.get("value")))
    return conditions
