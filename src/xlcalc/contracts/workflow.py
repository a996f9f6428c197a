"""Workflow definition models for ``xlcalc run``."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class WorkflowDefaults(BaseModel):
    stop_on_error: bool = False


class WorkflowStep(BaseModel):
    """One tool call: ``run`` names the tool, ``args`` are its arguments."""

    id: str
    run: str
    args: dict[str, Any] = Field(default_factory=dict)

    @field_validator("run")
    @classmethod
    def validate_run_tool(cls, v: str) -> str:
        from xlcalc.engine.tools import TOOLS

        if v not in TOOLS:
            raise ValueError(
                f"Unknown workflow step tool: '{v}'. "
                f"Supported: {', '.join(sorted(TOOLS))}"
            )
        return v


class WorkflowSpec(BaseModel):
    schema_version: str = "1.0"
    name: str = ""
    defaults: WorkflowDefaults = Field(default_factory=WorkflowDefaults)
    steps: list[WorkflowStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_step_ids(self) -> "WorkflowSpec":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate workflow step id: '{step.id}'")
            seen.add(step.id)
        return self
