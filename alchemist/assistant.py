"""Language-model collaborator.

The model only ever proposes: rules, filters and row fixes coming back from
here are untrusted and go through the same validation as manual input.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Mapping, Protocol, Sequence

import requests

from alchemist.filters import Condition, conditions_from_payload
from alchemist.ingest import ENTITY_SCHEMAS

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-1.5-flash"

_FENCE = re.compile(r"```(?:json)?")


class AssistantError(RuntimeError):
    pass


class AssistantUnavailable(AssistantError):
    pass


class AssistantClient(Protocol):
    def complete(self, prompt: str) -> str: ...


def _api_key() -> str | None:
    for name in ("ALCHEMIST_GEMINI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        value = os.getenv(name)
        if value:
            return value
    return None


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model or os.getenv("ALCHEMIST_ASSISTANT_MODEL", DEFAULT_MODEL)
        self.base_url = (base_url or os.getenv("ALCHEMIST_ASSISTANT_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.timeout = timeout if timeout is not None else float(os.getenv("ALCHEMIST_ASSISTANT_TIMEOUT", "30"))
        self.session = session or requests.Session()

    def complete(self, prompt: str) -> str:
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        try:
            response = self.session.post(
                url,
                params={"key": self.api_key},
                json={"contents": [{"parts": [{"text": prompt}]}]},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise AssistantError(f"model request failed: {exc}") from exc

        try:
            return body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.warning("model response had no candidate text")
            return ""


def get_assistant_client() -> AssistantClient:
    api_key = _api_key()
    if not api_key:
        raise AssistantUnavailable("no model API key configured")
    return GeminiClient(api_key)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

_MISSING = object()


def extract_json(raw: str) -> Any:
    """Decode model output, tolerating markdown code fences.

    Returns ``_MISSING`` when the text is not JSON.
    """
    text = _FENCE.sub("", raw or "").strip()
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        logger.warning("model output is not JSON: %.200s", text)
        return _MISSING


def rule_from_output(raw: str) -> dict[str, Any] | None:
    parsed = extract_json(raw)
    if isinstance(parsed, list) and len(parsed) == 1:
        parsed = parsed[0]
    if isinstance(parsed, dict) and parsed.get("type") and isinstance(parsed.get("config"), dict):
        return parsed
    return None


def rules_from_output(raw: str) -> list[dict[str, Any]]:
    parsed = extract_json(raw)
    if not isinstance(parsed, list):
        if parsed is not _MISSING:
            logger.warning("model returned a non-array rule suggestion")
        return []
    return [item for item in parsed if isinstance(item, dict)]


def filters_from_output(raw: str, entity: str) -> list[Condition]:
    parsed = extract_json(raw)
    if not isinstance(parsed, list):
        return []
    return conditions_from_payload(parsed, entity)


def fixed_row_from_output(raw: str, original: Mapping[str, Any]) -> dict[str, Any]:
    parsed = extract_json(raw)
    if isinstance(parsed, dict):
        return parsed
    logger.warning("model did not return a row object; keeping the original row")
    return dict(original)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def rule_prompt(text: str) -> str:
    return (
        "Convert the scheduling instruction below into one JSON rule object.\n"
        'Allowed shapes: {"type": "coRun", "config": {"tasks": ["T1", "T2"]}}, '
        '{"type": "slotRestriction", "config": {"group": "G", "minCommonSlots": 2}}, '
        '{"type": "loadLimit", "config": {"group": "G", "maxSlotsPerPhase": 3}}, '
        '{"type": "phaseWindow", "config": {"task": "T1", "allowedPhases": [1, 2]}}.\n'
        "If the instruction is ambiguous return []. Return JSON only.\n\n"
        f"Instruction: {json.dumps(text)}"
    )


def suggestion_prompt(datasets: Mapping[str, Sequence[Mapping[str, Any]]]) -> str:
    return (
        "Suggest scheduling rules for the data below as a JSON array of rule objects "
        "using the types coRun, slotRestriction, loadLimit and phaseWindow. Return JSON only.\n\n"
        + "\n\n".join(
            f"{entity}:\n{json.dumps(list(datasets.get(entity) or []), default=str)}" for entity in ENTITY_SCHEMAS
        )
    )


def filter_prompt(query: str, entity: str) -> str:
    fields = ", ".join(ENTITY_SCHEMAS.get(entity) or ENTITY_SCHEMAS["clients"])
    return (
        "Convert the search below into a JSON array of conditions "
        '{"field": ..., "op": one of >, <, >=, <=, =, "value": ...}. '
        f"Fields: {fields}. Return JSON only.\n\nSearch: {json.dumps(query)}"
    )


def fix_prompt(entity: str, row: Mapping[str, Any], errors: Sequence[Mapping[str, Any]]) -> str:
    problems = "\n".join(f"- {item['field']}: {item['message']}" for item in errors)
    return (
        f'Correct this "{entity}" row so the listed problems go away. Keep every other field '
        "unchanged and return the complete row as a JSON object only.\n\n"
        f"Row:\n{json.dumps(dict(row), indent=2, default=str)}\n\nProblems:\n{problems}"
    )
