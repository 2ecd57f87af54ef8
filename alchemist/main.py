from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, PlainTextResponse

from alchemist.assistant import (
    AssistantClient,
    AssistantError,
    AssistantUnavailable,
    filter_prompt,
    filters_from_output,
    fix_prompt,
    fixed_row_from_output,
    get_assistant_client,
    rule_from_output,
    rule_prompt,
    rules_from_output,
    suggestion_prompt,
)
from alchemist.export import csv_file_name, errors_document, rows_to_csv, rules_document, to_json
from alchemist.filters import apply_filters, parse_query
from alchemist.ingest import detect_entity, read_table
from alchemist.prioritization import Weights, preset_weights
from alchemist.schemas import (
    CreateRuleRequest,
    CreateWorkspaceRequest,
    DatasetResponse,
    EntityName,
    ErrorResponse,
    Event,
    FilteredDataset,
    ParseFilterRequest,
    ParseFilterResponse,
    ParseRuleRequest,
    ParseRuleResponse,
    ReplaceDatasetRequest,
    Rule,
    RuleResponse,
    SuggestFixResponse,
    SuggestRulesRequest,
    SuggestRulesResponse,
    UpdateRowRequest,
    UpdateWeightsRequest,
    ValidationErrorItem,
    Workspace,
)
from alchemist.store import STORE, RuleRejected
from alchemist.suggest import suggest_rules_from_clients
from alchemist.validation import parse_rule, rule_to_dict

logger = logging.getLogger(__name__)

app = FastAPI(title="Alchemist")


_ERROR_STATUS: dict[str, tuple[int, str]] = {
    "WORKSPACE_NOT_FOUND": (404, "Workspace not found"),
    "DATASET_NOT_FOUND": (404, "Dataset not uploaded"),
    "RULE_NOT_FOUND": (404, "Rule not found"),
    "ROW_OUT_OF_RANGE": (404, "Row index out of range"),
    "UNKNOWN_ENTITY": (422, "Unknown entity"),
    "UNKNOWN_PRESET": (422, "Unknown weight preset"),
    "INVALID_RULE": (422, "Rule payload does not match any rule type"),
    "INVALID_RULE_SHAPE": (422, "Rule does not fit the uploaded data"),
    "UNSUPPORTED_FILE_TYPE": (422, "Only .csv and .xlsx files are supported"),
    "UNREADABLE_FILE": (422, "File could not be parsed"),
    "NO_DATA": (409, "No rows to export"),
}


def _error(status_code: int, code: str, message: str, retryable: bool = False, details=None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            error={"code": code, "message": message, "retryable": retryable, "details": details}
        ).model_dump(),
    )


def _domain_error(exc: Exception) -> NoReturn:
    code = str(exc.args[0]) if exc.args else "INVARIANT_VIOLATION"
    if isinstance(exc, RuleRejected):
        raise _error(422, code, exc.message)
    if code not in _ERROR_STATUS:
        raise _error(409, "INVARIANT_VIOLATION", code)
    status_code, message = _ERROR_STATUS[code]
    raise _error(status_code, code, message)


def _workspace_or_404(workspace_id: str) -> dict:
    workspace = STORE.get_workspace(workspace_id)
    if workspace is None:
        raise _error(404, "WORKSPACE_NOT_FOUND", "Workspace not found")
    return workspace


def get_assistant() -> AssistantClient | None:
    try:
        return get_assistant_client()
    except AssistantUnavailable as exc:
        logger.info("assistant disabled: %s", exc)
        return None


def _require(client: AssistantClient | None) -> AssistantClient:
    if client is None:
        raise _error(503, "ASSISTANT_UNAVAILABLE", "No language model is configured")
    return client


def _complete(client: AssistantClient | None, prompt: str) -> str:
    try:
        return _require(client).complete(prompt)
    except AssistantError as exc:
        logger.warning("assistant call failed: %s", exc)
        raise _error(502, "ASSISTANT_FAILED", "Language model request failed", retryable=True)


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------

@app.post("/v1/workspaces", response_model=Workspace, status_code=status.HTTP_201_CREATED)
def create_workspace(payload: CreateWorkspaceRequest) -> Workspace:
    return Workspace(**STORE.create_workspace(payload.name))


@app.get("/v1/workspaces", response_model=list[Workspace])
def list_workspaces() -> list[Workspace]:
    return [Workspace(**item) for item in STORE.list_workspaces()]


@app.get("/v1/workspaces/{workspace_id}", response_model=Workspace)
def get_workspace(workspace_id: str) -> Workspace:
    return Workspace(**_workspace_or_404(workspace_id))


@app.get("/v1/workspaces/{workspace_id}/events", response_model=list[Event])
def list_events(workspace_id: str) -> list[Event]:
    try:
        events = STORE.list_events(workspace_id)
    except KeyError as exc:
        _domain_error(exc)
    return [Event(**item) for item in events]


# ---------------------------------------------------------------------------
# Datasets
# ---------------------------------------------------------------------------

@app.put("/v1/workspaces/{workspace_id}/datasets/{entity}", response_model=DatasetResponse)
def replace_dataset(workspace_id: str, entity: EntityName, payload: ReplaceDatasetRequest) -> DatasetResponse:
    try:
        result = STORE.replace_dataset(workspace_id, entity, payload.rows, file_name=payload.file_name)
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    return DatasetResponse(**result)


@app.post("/v1/workspaces/{workspace_id}/uploads", response_model=DatasetResponse)
async def upload_dataset(
    workspace_id: str,
    file: UploadFile = File(...),
    entity: EntityName | None = Form(default=None),
) -> DatasetResponse:
    _workspace_or_404(workspace_id)
    file_name = file.filename or ""
    content = await file.read()
    try:
        target = entity or detect_entity(file_name)
        rows = read_table(file_name, content)
        result = STORE.replace_dataset(workspace_id, target, rows, file_name=file_name)
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    return DatasetResponse(**result)


@app.get("/v1/workspaces/{workspace_id}/datasets/{entity}", response_model=FilteredDataset)
def get_dataset(workspace_id: str, entity: EntityName, q: str | None = None) -> FilteredDataset:
    try:
        dataset = STORE.get_dataset(workspace_id, entity)
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    if dataset is None:
        raise _error(404, "DATASET_NOT_FOUND", "Dataset not uploaded")
    conditions = parse_query(q)
    rows = apply_filters(dataset["rows"], conditions) if conditions else dataset["rows"]
    return FilteredDataset(
        entity=entity,
        rows=[dict(row) for row in rows],
        row_count=len(rows),
        total_count=dataset["row_count"],
        conditions=[condition.to_dict() for condition in conditions],
    )


@app.patch("/v1/workspaces/{workspace_id}/datasets/{entity}/rows/{row_index}", response_model=DatasetResponse)
def update_row(workspace_id: str, entity: EntityName, row_index: int, payload: UpdateRowRequest) -> DatasetResponse:
    try:
        result = STORE.update_row(workspace_id, entity, row_index, payload.row)
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    return DatasetResponse(**result)


@app.post(
    "/v1/workspaces/{workspace_id}/datasets/{entity}/rows/{row_index}/suggest-fix",
    response_model=SuggestFixResponse,
)
def suggest_fix(
    workspace_id: str,
    entity: EntityName,
    row_index: int,
    client: AssistantClient | None = Depends(get_assistant),
) -> SuggestFixResponse:
    try:
        dataset = STORE.get_dataset(workspace_id, entity)
        if dataset is None:
            raise KeyError("DATASET_NOT_FOUND")
        if row_index < 0 or row_index >= dataset["row_count"]:
            raise ValueError("ROW_OUT_OF_RANGE")
        original = dataset["rows"][row_index]
        problems = [item for item in STORE.list_errors(workspace_id, entity) if item["rowIndex"] == row_index]
    except (KeyError, ValueError) as exc:
        _domain_error(exc)

    fixed = fixed_row_from_output(_complete(client, fix_prompt(entity, original, problems)), original)
    try:
        remaining = STORE.preview_row_errors(workspace_id, entity, row_index, fixed)
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    return SuggestFixResponse(entity=entity, rowIndex=row_index, row=fixed, remaining_errors=remaining)


@app.get("/v1/workspaces/{workspace_id}/errors", response_model=list[ValidationErrorItem])
def list_errors(workspace_id: str, entity: str | None = None) -> list[ValidationErrorItem]:
    try:
        errors = STORE.list_errors(workspace_id, entity)
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    return [ValidationErrorItem(**item) for item in errors]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@app.post("/v1/workspaces/{workspace_id}/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def add_rule(workspace_id: str, payload: CreateRuleRequest) -> RuleResponse:
    try:
        result = STORE.add_rule(
            workspace_id,
            {"type": payload.type, "config": payload.config},
            source=payload.source,
        )
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    return RuleResponse(**result)


@app.get("/v1/workspaces/{workspace_id}/rules", response_model=list[Rule])
def list_rules(workspace_id: str) -> list[Rule]:
    try:
        rules = STORE.list_rules(workspace_id)
    except KeyError as exc:
        _domain_error(exc)
    return [Rule(**item) for item in rules]


@app.delete("/v1/workspaces/{workspace_id}/rules/{rule_id}", response_model=RuleResponse)
def delete_rule(workspace_id: str, rule_id: str) -> RuleResponse:
    try:
        result = STORE.delete_rule(workspace_id, rule_id)
    except KeyError as exc:
        _domain_error(exc)
    return RuleResponse(**result)


@app.post("/v1/rules/parse", response_model=ParseRuleResponse)
def parse_rule_text(
    payload: ParseRuleRequest,
    client: AssistantClient | None = Depends(get_assistant),
) -> ParseRuleResponse:
    candidate = rule_from_output(_complete(client, rule_prompt(payload.text)))
    if candidate is None:
        return ParseRuleResponse(rule=None)
    try:
        return ParseRuleResponse(rule=rule_to_dict(parse_rule(candidate)))
    except ValueError:
        logger.warning("model proposed an invalid rule: %s", candidate)
        return ParseRuleResponse(rule=None)


@app.post("/v1/workspaces/{workspace_id}/rules/suggest", response_model=SuggestRulesResponse)
def suggest_rules(
    workspace_id: str,
    payload: SuggestRulesRequest | None = None,
    client: AssistantClient | None = Depends(get_assistant),
) -> SuggestRulesResponse:
    _workspace_or_404(workspace_id)
    snapshot = STORE.export_snapshot(workspace_id)
    datasets = snapshot["datasets"]
    suggestions = suggest_rules_from_clients(datasets.get("clients") or [])

    if payload is not None and payload.use_assistant:
        for candidate in rules_from_output(_complete(client, suggestion_prompt(datasets))):
            try:
                rule = rule_to_dict(parse_rule(candidate))
            except ValueError:
                logger.warning("dropping invalid suggested rule: %s", candidate)
                continue
            if rule not in suggestions:
                suggestions.append(rule)
    return SuggestRulesResponse(rules=suggestions)


@app.post("/v1/filters/parse", response_model=ParseFilterResponse)
def parse_filter(
    payload: ParseFilterRequest,
    client: AssistantClient | None = Depends(get_assistant),
) -> ParseFilterResponse:
    if payload.use_assistant:
        conditions = filters_from_output(_complete(client, filter_prompt(payload.query, payload.entity)), payload.entity)
    else:
        conditions = parse_query(payload.query)
    return ParseFilterResponse(conditions=[condition.to_dict() for condition in conditions])


# ---------------------------------------------------------------------------
# Prioritization
# ---------------------------------------------------------------------------

@app.get("/v1/workspaces/{workspace_id}/weights", response_model=Weights)
def get_weights(workspace_id: str) -> Weights:
    try:
        return STORE.get_weights(workspace_id)
    except KeyError as exc:
        _domain_error(exc)


@app.put("/v1/workspaces/{workspace_id}/weights", response_model=Weights)
def update_weights(workspace_id: str, payload: UpdateWeightsRequest) -> Weights:
    try:
        base = preset_weights(payload.preset) if payload.preset else STORE.get_weights(workspace_id)
        overrides = payload.model_dump(exclude={"preset"}, exclude_none=True)
        weights = Weights(**{**base.model_dump(), **overrides})
        return STORE.set_weights(workspace_id, weights)
    except (KeyError, ValueError) as exc:
        _domain_error(exc)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _attachment(body: str, file_name: str, media_type: str) -> PlainTextResponse:
    return PlainTextResponse(
        body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@app.get("/v1/workspaces/{workspace_id}/exports/rules.json")
def export_rules(workspace_id: str) -> PlainTextResponse:
    try:
        snapshot = STORE.export_snapshot(workspace_id)
    except KeyError as exc:
        _domain_error(exc)
    body = to_json(rules_document(snapshot["rules"], snapshot["weights"]))
    return _attachment(body, "rules.json", "application/json")


@app.get("/v1/workspaces/{workspace_id}/exports/validation_errors.json")
def export_errors(workspace_id: str) -> PlainTextResponse:
    try:
        snapshot = STORE.export_snapshot(workspace_id)
    except KeyError as exc:
        _domain_error(exc)
    return _attachment(to_json(errors_document(snapshot["errors"])), "validation_errors.json", "application/json")


@app.get("/v1/workspaces/{workspace_id}/exports/datasets/{entity}")
def export_dataset(workspace_id: str, entity: EntityName) -> PlainTextResponse:
    try:
        dataset = STORE.get_dataset(workspace_id, entity)
        body = rows_to_csv(dataset["rows"] if dataset else [])
    except (KeyError, ValueError) as exc:
        _domain_error(exc)
    return _attachment(body, csv_file_name(entity), "text/csv")
