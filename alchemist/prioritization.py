from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

WEIGHT_MIN = 0
WEIGHT_MAX = 10


class Weights(BaseModel):
    priority: int = Field(default=5, ge=WEIGHT_MIN, le=WEIGHT_MAX)
    fairness: int = Field(default=5, ge=WEIGHT_MIN, le=WEIGHT_MAX)
    load: int = Field(default=5, ge=WEIGHT_MIN, le=WEIGHT_MAX)


PresetName = Literal["fulfillment", "fair", "load"]

PRESETS: dict[str, Weights] = {
    "fulfillment": Weights(priority=10, fairness=2, load=1),
    "fair": Weights(priority=5, fairness=10, load=5),
    "load": Weights(priority=2, fairness=2, load=10),
}


def preset_weights(name: str) -> Weights:
    try:
        return PRESETS[name].model_copy()
    except KeyError:
        raise ValueError("UNKNOWN_PRESET") from None
