from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# -------------------- Schemas --------------------

class RunStep(BaseModel):
    label: str
    payload_json: dict[str, Any] = Field(default_factory=dict)

class CreateRunRequest(BaseModel):
    repo: str
    ref: str = "HEAD"
    steps: list[RunStep]

class CreateRunResponse(BaseModel):
    run_id: str
    step_ids: list[str] = Field(default_factory=list)
