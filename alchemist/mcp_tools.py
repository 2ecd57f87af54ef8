from __future__ import annotations

from typing import Any

from alchemist.export import errors_document, rules_document
from alchemist.filters import apply_filters, parse_query
from alchemist.ingest import detect_entity, read_path
from alchemist.prioritization import Weights, preset_weights
from alchemist.store import STORE, SqlStore
from alchemist.suggest import suggest_rules_from_clients


def _store(s: SqlStore | None) -> SqlStore:
    return s or STORE


def create_workspace(name: str, store: SqlStore | None = None) -> dict[str, Any]:
    return _store(store).create_workspace(name=name)


def get_workspace(workspace_id: str, store: SqlStore | None = None) -> dict[str, Any]:
    workspace = _store(store).get_workspace(workspace_id)
    if workspace is None:
        raise KeyError("WORKSPACE_NOT_FOUND")
    return workspace


def list_workspaces(store: SqlStore | None = None) -> list[dict[str, Any]]:
    return _store(store).list_workspaces()


def replace_dataset(
    workspace_id: str,
    entity: str,
    rows: list[dict[str, Any]],
    file_name: str | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    return _store(store).replace_dataset(workspace_id, entity, rows, file_name=file_name, caused_by="mcp")


def load_file(
    workspace_id: str,
    path: str,
    entity: str | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    """Read a CSV/XLSX file from disk into the workspace."""
    target = entity or detect_entity(path)
    rows = read_path(path)
    return _store(store).replace_dataset(workspace_id, target, rows, file_name=path, caused_by="mcp")


def get_dataset(
    workspace_id: str,
    entity: str,
    query: str | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    dataset = _store(store).get_dataset(workspace_id, entity)
    if dataset is None:
        raise KeyError("DATASET_NOT_FOUND")
    conditions = parse_query(query)
    dataset["total_count"] = dataset["row_count"]
    if conditions:
        dataset["rows"] = [dict(row) for row in apply_filters(dataset["rows"], conditions)]
        dataset["row_count"] = len(dataset["rows"])
    dataset["conditions"] = [condition.to_dict() for condition in conditions]
    return dataset


def update_row(
    workspace_id: str,
    entity: str,
    row_index: int,
    row: dict[str, Any],
    store: SqlStore | None = None,
) -> dict[str, Any]:
    return _store(store).update_row(workspace_id, entity, row_index, row, caused_by="mcp")


def list_errors(workspace_id: str, entity: str | None = None, store: SqlStore | None = None) -> list[dict[str, Any]]:
    return _store(store).list_errors(workspace_id, entity)


def add_rule(
    workspace_id: str,
    type: str,
    config: dict[str, Any],
    store: SqlStore | None = None,
) -> dict[str, Any]:
    return _store(store).add_rule(workspace_id, {"type": type, "config": config}, caused_by="mcp")


def list_rules(workspace_id: str, store: SqlStore | None = None) -> list[dict[str, Any]]:
    return _store(store).list_rules(workspace_id)


def delete_rule(workspace_id: str, rule_id: str, store: SqlStore | None = None) -> dict[str, Any]:
    return _store(store).delete_rule(workspace_id, rule_id, caused_by="mcp")


def suggest_rules(workspace_id: str, store: SqlStore | None = None) -> list[dict[str, Any]]:
    """Heuristic suggestions only; nothing is added until add_rule is called."""
    snapshot = _store(store).export_snapshot(workspace_id)
    return suggest_rules_from_clients(snapshot["datasets"].get("clients") or [])


def set_weights(
    workspace_id: str,
    preset: str | None = None,
    priority: int | None = None,
    fairness: int | None = None,
    load: int | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    base = preset_weights(preset) if preset else _store(store).get_weights(workspace_id)
    overrides = {
        key: value
        for key, value in (("priority", priority), ("fairness", fairness), ("load", load))
        if value is not None
    }
    weights = Weights(**{**base.model_dump(), **overrides})
    return _store(store).set_weights(workspace_id, weights, caused_by="mcp").model_dump()


def export_rules(workspace_id: str, store: SqlStore | None = None) -> list[dict[str, Any]]:
    snapshot = _store(store).export_snapshot(workspace_id)
    return rules_document(snapshot["rules"], snapshot["weights"])


def export_errors(workspace_id: str, store: SqlStore | None = None) -> list[dict[str, Any]]:
    return errors_document(_store(store).export_snapshot(workspace_id)["errors"])
