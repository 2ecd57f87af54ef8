from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable


class EntityType(str, Enum):
    CLIENTS = "clients"
    WORKERS = "workers"
    TASKS = "tasks"
    RULES = "rules"


TABLE_ENTITIES = (EntityType.CLIENTS, EntityType.WORKERS, EntityType.TASKS)

TABLE_LEVEL_ROW = -1


@dataclass(frozen=True)
class ValidationError:
    """One field-scoped finding produced by a validator.

    ``row_index`` is the zero-based row position, or -1 for findings that
    concern a whole table or the whole rule set. Serialized records use the
    camel-case ``rowIndex`` key of the exported error list.
    """

    entity: str
    row_index: int
    field: str
    message: str
    kind: str = "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "rowIndex": self.row_index,
            "field": self.field,
            "message": self.message,
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ValidationError":
        return cls(
            entity=payload["entity"],
            row_index=int(payload["rowIndex"]),
            field=payload["field"],
            message=payload["message"],
            kind=payload.get("kind", "error"),
        )


def error(entity: EntityType | str, row_index: int, field: str, message: str) -> ValidationError:
    return ValidationError(entity=EntityType(entity).value, row_index=row_index, field=field, message=message)


def merge_errors(
    previous: Iterable[ValidationError],
    entity: EntityType | str,
    fresh: Iterable[ValidationError],
) -> list[ValidationError]:
    """Drop every previous entry for ``entity`` and append ``fresh``.

    Entries of other entities keep their relative order.
    """
    key = EntityType(entity).value
    return [item for item in previous if item.entity != key] + list(fresh)
