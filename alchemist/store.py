from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select

from alchemist.db import SessionLocal, init_db, reset_db
from alchemist.models import (
    DatasetEntity,
    DatasetModel,
    EventLogModel,
    RuleModel,
    RuleSource,
    RuleType,
    WorkspaceModel,
)
from alchemist.prioritization import Weights
from alchemist.validation import (
    EntityType,
    ValidationError,
    merge_errors,
    parse_rule,
    revalidate,
    rule_to_dict,
    validate_entity,
    validate_rule,
    validate_rule_set,
)

logger = logging.getLogger(__name__)


class RuleRejected(ValueError):
    """A rule that parsed but does not fit the uploaded data."""

    def __init__(self, message: str) -> None:
        super().__init__("INVALID_RULE_SHAPE", message)
        self.message = message


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


def _table_entity(entity: str) -> DatasetEntity:
    try:
        return DatasetEntity(entity)
    except ValueError:
        raise ValueError("UNKNOWN_ENTITY") from None


def _errors_of(model: WorkspaceModel) -> list[ValidationError]:
    return [ValidationError.from_dict(item) for item in model.validation_errors or []]


def _dump_errors(errors: list[ValidationError]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in errors]


def _dataset_to_dict(model: DatasetModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "workspace_id": model.workspace_id,
        "entity": model.entity.value,
        "file_name": model.file_name,
        "rows": list(model.rows or []),
        "row_count": len(model.rows or []),
        "version": model.version,
        "created_at": _iso(model.created_at),
        "updated_at": _iso(model.updated_at),
    }


def _rule_to_dict(model: RuleModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "workspace_id": model.workspace_id,
        "position": model.position,
        "type": model.rule_type.value,
        "config": model.config,
        "source": model.source.value,
        "created_at": _iso(model.created_at),
    }


def _event_to_dict(model: EventLogModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "workspace_id": model.workspace_id,
        "entity_type": model.entity_type,
        "entity_id": model.entity_id,
        "event_type": model.event_type,
        "payload": model.payload,
        "caused_by": model.caused_by,
        "created_at": _iso(model.created_at),
    }


class SqlStore:
    def __init__(self) -> None:
        init_db()

    def reset(self) -> None:
        reset_db()

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    def _workspace(self, session, workspace_id: str) -> WorkspaceModel:
        workspace = session.get(WorkspaceModel, workspace_id)
        if workspace is None:
            raise KeyError("WORKSPACE_NOT_FOUND")
        return workspace

    def _workspace_to_dict(self, session, model: WorkspaceModel) -> dict[str, Any]:
        datasets = self._datasets(session, model.id)
        rule_count = session.execute(
            select(func.count()).select_from(RuleModel).where(RuleModel.workspace_id == model.id)
        ).scalar_one()
        return {
            "id": model.id,
            "name": model.name,
            "weights": Weights(**(model.weights or {})).model_dump(),
            "datasets": {entity: len(dataset.rows or []) for entity, dataset in datasets.items()},
            "rule_count": rule_count,
            "error_count": len(model.validation_errors or []),
            "created_at": _iso(model.created_at),
            "updated_at": _iso(model.updated_at),
        }

    def workspace_exists(self, workspace_id: str) -> bool:
        with SessionLocal() as session:
            return (
                session.execute(select(WorkspaceModel.id).where(WorkspaceModel.id == workspace_id)).first()
                is not None
            )

    def create_workspace(self, name: str) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            workspace = WorkspaceModel(name=name, weights=Weights().model_dump(), validation_errors=[])
            session.add(workspace)
            session.flush()
            return self._workspace_to_dict(session, workspace)

    def get_workspace(self, workspace_id: str) -> dict[str, Any] | None:
        with SessionLocal() as session:
            workspace = session.get(WorkspaceModel, workspace_id)
            if workspace is None:
                return None
            return self._workspace_to_dict(session, workspace)

    def list_workspaces(self) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            workspaces = session.execute(
                select(WorkspaceModel).order_by(WorkspaceModel.created_at, WorkspaceModel.id)
            ).scalars().all()
            return [self._workspace_to_dict(session, workspace) for workspace in workspaces]

    def _log_event(
        self,
        session,
        workspace_id: str,
        entity_type: str,
        entity_id: str | None,
        event_type: str,
        payload: dict[str, Any],
        caused_by: str | None = None,
    ) -> None:
        session.add(
            EventLogModel(
                workspace_id=workspace_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                payload=payload,
                caused_by=caused_by,
            )
        )
        logger.info("workspace %s: %s %s %s", workspace_id, event_type, entity_type, payload)

    def list_events(self, workspace_id: str) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            self._workspace(session, workspace_id)
            events = session.execute(
                select(EventLogModel)
                .where(EventLogModel.workspace_id == workspace_id)
                .order_by(EventLogModel.id)
            ).scalars().all()
            return [_event_to_dict(event) for event in events]

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    def _datasets(self, session, workspace_id: str) -> dict[str, DatasetModel]:
        rows = session.execute(
            select(DatasetModel).where(DatasetModel.workspace_id == workspace_id)
        ).scalars().all()
        return {dataset.entity.value: dataset for dataset in rows}

    def _tables(self, session, workspace_id: str) -> dict[str, list[dict[str, Any]]]:
        return {entity: list(dataset.rows or []) for entity, dataset in self._datasets(session, workspace_id).items()}

    def _revalidate_tables(self, session, workspace: WorkspaceModel) -> list[ValidationError]:
        errors = revalidate(_errors_of(workspace), self._tables(session, workspace.id))
        workspace.validation_errors = _dump_errors(errors)
        workspace.updated_at = _now()
        return errors

    def _write_dataset(
        self,
        session,
        workspace: WorkspaceModel,
        entity: DatasetEntity,
        rows: list[dict[str, Any]],
        file_name: str | None,
    ) -> DatasetModel:
        dataset = self._datasets(session, workspace.id).get(entity.value)
        if dataset is None:
            dataset = DatasetModel(workspace_id=workspace.id, entity=entity, file_name=file_name, rows=rows, version=1)
            session.add(dataset)
        else:
            dataset.rows = rows
            dataset.version += 1
            dataset.updated_at = _now()
            if file_name is not None:
                dataset.file_name = file_name
        session.flush()
        return dataset

    def replace_dataset(
        self,
        workspace_id: str,
        entity: str,
        rows: list[dict[str, Any]],
        file_name: str | None = None,
        caused_by: str | None = None,
    ) -> dict[str, Any]:
        table = _table_entity(entity)
        with SessionLocal.begin() as session:
            workspace = self._workspace(session, workspace_id)
            dataset = self._write_dataset(session, workspace, table, [dict(row) for row in rows], file_name)
            errors = self._revalidate_tables(session, workspace)
            self._log_event(
                session,
                workspace_id,
                table.value,
                dataset.id,
                "dataset_replaced",
                {"row_count": len(rows), "file_name": file_name, "version": dataset.version},
                caused_by,
            )
            return {"dataset": _dataset_to_dict(dataset), "errors": _dump_errors(errors)}

    def get_dataset(self, workspace_id: str, entity: str) -> dict[str, Any] | None:
        table = _table_entity(entity)
        with SessionLocal() as session:
            self._workspace(session, workspace_id)
            dataset = self._datasets(session, workspace_id).get(table.value)
            if dataset is None:
                return None
            return _dataset_to_dict(dataset)

    def update_row(
        self,
        workspace_id: str,
        entity: str,
        row_index: int,
        row: dict[str, Any],
        caused_by: str | None = None,
    ) -> dict[str, Any]:
        table = _table_entity(entity)
        with SessionLocal.begin() as session:
            workspace = self._workspace(session, workspace_id)
            dataset = self._datasets(session, workspace_id).get(table.value)
            if dataset is None:
                raise KeyError("DATASET_NOT_FOUND")
            rows = list(dataset.rows or [])
            if row_index < 0 or row_index >= len(rows):
                raise ValueError("ROW_OUT_OF_RANGE")
            rows[row_index] = dict(row)
            dataset = self._write_dataset(session, workspace, table, rows, None)
            errors = self._revalidate_tables(session, workspace)
            self._log_event(
                session,
                workspace_id,
                table.value,
                dataset.id,
                "row_updated",
                {"row_index": row_index, "version": dataset.version},
                caused_by,
            )
            return {"dataset": _dataset_to_dict(dataset), "errors": _dump_errors(errors)}

    def preview_row_errors(
        self,
        workspace_id: str,
        entity: str,
        row_index: int,
        row: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Errors ``row`` would still carry if it replaced the stored row."""
        table = _table_entity(entity)
        with SessionLocal() as session:
            self._workspace(session, workspace_id)
            tables = self._tables(session, workspace_id)
        rows = tables.get(table.value)
        if rows is None:
            raise KeyError("DATASET_NOT_FOUND")
        if row_index < 0 or row_index >= len(rows):
            raise ValueError("ROW_OUT_OF_RANGE")
        rows[row_index] = dict(row)
        return [
            item.to_dict()
            for item in validate_entity(table.value, rows)
            if item.row_index == row_index
        ]

    def list_errors(self, workspace_id: str, entity: str | None = None) -> list[dict[str, Any]]:
        if entity is not None:
            try:
                entity = EntityType(entity).value
            except ValueError:
                raise ValueError("UNKNOWN_ENTITY") from None
        with SessionLocal() as session:
            workspace = self._workspace(session, workspace_id)
            errors = list(workspace.validation_errors or [])
        if entity is None:
            return errors
        return [item for item in errors if item["entity"] == entity]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _rule_models(self, session, workspace_id: str) -> list[RuleModel]:
        return list(
            session.execute(
                select(RuleModel).where(RuleModel.workspace_id == workspace_id).order_by(RuleModel.position)
            ).scalars().all()
        )

    def _recheck_rules(self, session, workspace: WorkspaceModel) -> list[ValidationError]:
        rules = [{"type": model.rule_type.value, "config": model.config} for model in self._rule_models(session, workspace.id)]
        rule_errors = validate_rule_set(rules)
        workspace.validation_errors = _dump_errors(merge_errors(_errors_of(workspace), EntityType.RULES, rule_errors))
        workspace.updated_at = _now()
        return rule_errors

    def add_rule(
        self,
        workspace_id: str,
        payload: Any,
        source: str = RuleSource.MANUAL.value,
        caused_by: str | None = None,
    ) -> dict[str, Any]:
        rule = parse_rule(payload)
        with SessionLocal.begin() as session:
            workspace = self._workspace(session, workspace_id)
            message = validate_rule(rule, self._tables(session, workspace_id))
            if message is not None:
                raise RuleRejected(message)

            last_position = session.execute(
                select(func.max(RuleModel.position)).where(RuleModel.workspace_id == workspace_id)
            ).scalar_one()
            body = rule_to_dict(rule)
            model = RuleModel(
                workspace_id=workspace_id,
                position=(last_position or 0) + 1,
                rule_type=RuleType(body["type"]),
                config=body["config"],
                source=RuleSource(source),
            )
            session.add(model)
            session.flush()
            rule_errors = self._recheck_rules(session, workspace)
            self._log_event(session, workspace_id, "rule", model.id, "rule_added", body, caused_by)
            return {"rule": _rule_to_dict(model), "errors": _dump_errors(rule_errors)}

    def list_rules(self, workspace_id: str) -> list[dict[str, Any]]:
        with SessionLocal() as session:
            self._workspace(session, workspace_id)
            return [_rule_to_dict(model) for model in self._rule_models(session, workspace_id)]

    def delete_rule(self, workspace_id: str, rule_id: str, caused_by: str | None = None) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            workspace = self._workspace(session, workspace_id)
            model = session.get(RuleModel, rule_id)
            if model is None or model.workspace_id != workspace_id:
                raise KeyError("RULE_NOT_FOUND")
            removed = _rule_to_dict(model)
            session.delete(model)
            session.flush()
            rule_errors = self._recheck_rules(session, workspace)
            self._log_event(
                session,
                workspace_id,
                "rule",
                rule_id,
                "rule_deleted",
                {"type": removed["type"], "config": removed["config"]},
                caused_by,
            )
            return {"rule": removed, "errors": _dump_errors(rule_errors)}

    # ------------------------------------------------------------------
    # Prioritization
    # ------------------------------------------------------------------

    def get_weights(self, workspace_id: str) -> Weights:
        with SessionLocal() as session:
            workspace = self._workspace(session, workspace_id)
            return Weights(**(workspace.weights or {}))

    def set_weights(self, workspace_id: str, weights: Weights, caused_by: str | None = None) -> Weights:
        with SessionLocal.begin() as session:
            workspace = self._workspace(session, workspace_id)
            workspace.weights = weights.model_dump()
            workspace.updated_at = _now()
            self._log_event(session, workspace_id, "weights", None, "weights_updated", weights.model_dump(), caused_by)
            return weights

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_snapshot(self, workspace_id: str) -> dict[str, Any]:
        with SessionLocal() as session:
            workspace = self._workspace(session, workspace_id)
            return {
                "datasets": self._tables(session, workspace_id),
                "rules": [_rule_to_dict(model) for model in self._rule_models(session, workspace_id)],
                "weights": Weights(**(workspace.weights or {})),
                "errors": _errors_of(workspace),
            }


STORE = SqlStore()
