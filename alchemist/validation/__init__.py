from alchemist.validation.entities import (
    REQUIRED_COLUMNS,
    validate_clients,
    validate_rows,
    validate_structure,
    validate_tasks,
    validate_workers,
)
from alchemist.validation.errors import EntityType, ValidationError, merge_errors
from alchemist.validation.pipeline import revalidate, validate_datasets, validate_entity
from alchemist.validation.references import validate_cross_references
from alchemist.validation.rule_types import Rule, parse_rule, rule_to_dict
from alchemist.validation.rules import validate_rule, validate_rule_set

__all__ = [
    "REQUIRED_COLUMNS",
    "EntityType",
    "Rule",
    "ValidationError",
    "merge_errors",
    "parse_rule",
    "revalidate",
    "rule_to_dict",
    "validate_clients",
    "validate_cross_references",
    "validate_datasets",
    "validate_entity",
    "validate_rows",
    "validate_rule",
    "validate_rule_set",
    "validate_structure",
    "validate_tasks",
    "validate_workers",
]
