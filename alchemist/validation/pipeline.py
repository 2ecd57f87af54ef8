from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from alchemist.validation.entities import validate_rows, validate_structure
from alchemist.validation.errors import TABLE_ENTITIES, EntityType, ValidationError, merge_errors
from alchemist.validation.references import validate_cross_references

Datasets = Mapping[str, Sequence[Mapping[str, Any]]]


def validate_entity(entity: EntityType | str, rows: Sequence[Mapping[str, Any]]) -> list[ValidationError]:
    return validate_structure(rows, entity) + validate_rows(entity, rows)


def validate_datasets(datasets: Datasets) -> dict[str, list[ValidationError]]:
    """Fresh errors for every loaded table, keyed by entity name.

    Cross-reference errors are added only when all three tables are loaded.
    """
    loaded = [entity.value for entity in TABLE_ENTITIES if datasets.get(entity.value) is not None]
    fresh = {entity: validate_entity(entity, datasets[entity]) for entity in loaded}

    if len(loaded) == len(TABLE_ENTITIES):
        for item in validate_cross_references(
            datasets[EntityType.CLIENTS.value],
            datasets[EntityType.TASKS.value],
            datasets[EntityType.WORKERS.value],
        ):
            fresh[item.entity].append(item)

    return fresh


def revalidate(previous: Iterable[ValidationError], datasets: Datasets) -> list[ValidationError]:
    """Replace the errors of every loaded table, keeping everything else."""
    merged = list(previous)
    for entity, errors in validate_datasets(datasets).items():
        merged = merge_errors(merged, entity, errors)
    return merged
