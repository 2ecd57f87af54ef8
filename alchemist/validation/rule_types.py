from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError as PydanticValidationError


class _Config(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CoRunConfig(_Config):
    tasks: list[str] = Field(min_length=1)


class SlotRestrictionConfig(_Config):
    group: str
    minCommonSlots: int = Field(ge=1)


class LoadLimitConfig(_Config):
    group: str
    maxSlotsPerPhase: int = Field(ge=1)


class PhaseWindowConfig(_Config):
    task: str
    allowedPhases: list[int] = Field(min_length=1)


class CoRunRule(BaseModel):
    type: Literal["coRun"] = "coRun"
    config: CoRunConfig


class SlotRestrictionRule(BaseModel):
    type: Literal["slotRestriction"] = "slotRestriction"
    config: SlotRestrictionConfig


class LoadLimitRule(BaseModel):
    type: Literal["loadLimit"] = "loadLimit"
    config: LoadLimitConfig


class PhaseWindowRule(BaseModel):
    type: Literal["phaseWindow"] = "phaseWindow"
    config: PhaseWindowConfig


Rule = Annotated[
    Union[CoRunRule, SlotRestrictionRule, LoadLimitRule, PhaseWindowRule],
    Field(discriminator="type"),
]

RULE_TYPES = ("coRun", "slotRestriction", "loadLimit", "phaseWindow")

_RULE_ADAPTER: TypeAdapter[Rule] = TypeAdapter(Rule)


def parse_rule(payload: Any) -> Rule:
    """Validate an untrusted rule payload into its variant model.

    Raises ``ValueError("INVALID_RULE")`` when the payload matches no variant.
    """
    if isinstance(payload, (CoRunRule, SlotRestrictionRule, LoadLimitRule, PhaseWindowRule)):
        return payload
    try:
        return _RULE_ADAPTER.validate_python(payload)
    except PydanticValidationError as exc:
        raise ValueError("INVALID_RULE") from exc


def rule_to_dict(rule: Rule) -> dict[str, Any]:
    return rule.model_dump(mode="json")
