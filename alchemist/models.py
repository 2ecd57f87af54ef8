from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Integer, JSON, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DatasetEntity(str, Enum):
    CLIENTS = "clients"
    WORKERS = "workers"
    TASKS = "tasks"


class RuleType(str, Enum):
    CO_RUN = "coRun"
    SLOT_RESTRICTION = "slotRestriction"
    LOAD_LIMIT = "loadLimit"
    PHASE_WINDOW = "phaseWindow"


class RuleSource(str, Enum):
    MANUAL = "manual"
    ASSISTANT = "assistant"
    SUGGESTED = "suggested"


UUID_TEXT = Uuid(as_uuid=False)
JSON_DOC = JSON().with_variant(JSONB, "postgresql")


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class WorkspaceModel(Base):
    __tablename__ = "workspace"

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    weights: Mapped[dict] = mapped_column(JSON_DOC, nullable=False, default=dict)
    validation_errors: Mapped[list] = mapped_column(JSON_DOC, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class DatasetModel(Base):
    __tablename__ = "dataset"
    __table_args__ = (UniqueConstraint("workspace_id", "entity", name="uq_dataset_workspace_entity"),)

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("workspace.id", ondelete="CASCADE"), nullable=False
    )
    entity: Mapped[DatasetEntity] = mapped_column(
        SAEnum(DatasetEntity, values_callable=_enum_values), nullable=False
    )
    file_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    rows: Mapped[list] = mapped_column(JSON_DOC, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class RuleModel(Base):
    __tablename__ = "rule"

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("workspace.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    rule_type: Mapped[RuleType] = mapped_column(SAEnum(RuleType, values_callable=_enum_values), nullable=False)
    config: Mapped[dict] = mapped_column(JSON_DOC, nullable=False, default=dict)
    source: Mapped[RuleSource] = mapped_column(
        SAEnum(RuleSource, values_callable=_enum_values), nullable=False, default=RuleSource.MANUAL
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class EventLogModel(Base):
    __tablename__ = "event_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("workspace.id", ondelete="CASCADE"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str | None] = mapped_column(UUID_TEXT, nullable=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON_DOC, nullable=False, default=dict)
    caused_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
