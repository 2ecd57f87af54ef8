from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from alchemist.prioritization import PresetName, Weights


class ApiError(BaseModel):
    code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ApiError


EntityName = Literal["clients", "workers", "tasks"]


class CreateWorkspaceRequest(BaseModel):
    name: str = Field(min_length=1)


class Workspace(BaseModel):
    id: str
    name: str
    weights: Weights
    datasets: dict[str, int] = Field(default_factory=dict)
    rule_count: int = 0
    error_count: int = 0
    created_at: str
    updated_at: str


class ValidationErrorItem(BaseModel):
    entity: str
    rowIndex: int
    field: str
    message: str
    kind: str = "error"


class ReplaceDatasetRequest(BaseModel):
    rows: list[dict[str, Any]]
    file_name: str | None = None


class Dataset(BaseModel):
    id: str
    workspace_id: str
    entity: EntityName
    file_name: str | None = None
    rows: list[dict[str, Any]]
    row_count: int
    version: int
    created_at: str
    updated_at: str


class DatasetResponse(BaseModel):
    dataset: Dataset
    errors: list[ValidationErrorItem]


class FilteredDataset(BaseModel):
    entity: EntityName
    rows: list[dict[str, Any]]
    row_count: int
    total_count: int
    conditions: list[dict[str, Any]] = Field(default_factory=list)


class UpdateRowRequest(BaseModel):
    row: dict[str, Any]


class CreateRuleRequest(BaseModel):
    type: str
    config: dict[str, Any]
    source: Literal["manual", "assistant", "suggested"] = "manual"


class Rule(BaseModel):
    id: str
    workspace_id: str
    position: int
    type: str
    config: dict[str, Any]
    source: str
    created_at: str


class RuleResponse(BaseModel):
    rule: Rule
    errors: list[ValidationErrorItem]


class ParseRuleRequest(BaseModel):
    text: str = Field(min_length=1)


class ParseRuleResponse(BaseModel):
    rule: dict[str, Any] | None = None


class SuggestRulesRequest(BaseModel):
    use_assistant: bool = False


class SuggestRulesResponse(BaseModel):
    rules: list[dict[str, Any]]


class ParseFilterRequest(BaseModel):
    entity: EntityName
    query: str = Field(min_length=1)
    use_assistant: bool = True


class ParseFilterResponse(BaseModel):
    conditions: list[dict[str, Any]]


class SuggestFixResponse(BaseModel):
    entity: EntityName
    rowIndex: int
    row: dict[str, Any]
    remaining_errors: list[ValidationErrorItem]


class UpdateWeightsRequest(BaseModel):
    preset: PresetName | None = None
    priority: int | None = Field(default=None, ge=0, le=10)
    fairness: int | None = Field(default=None, ge=0, le=10)
    load: int | None = Field(default=None, ge=0, le=10)


class Event(BaseModel):
    id: int
    workspace_id: str
    entity_type: str
    entity_id: str | None = None
    event_type: str
    payload: dict[str, Any]
    caused_by: str | None = None
    created_at: str
