"""Settings loaded from ``xlcalc.yaml``."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

from xlcalc.adapters.formulas_engine import EngineConfig
from xlcalc.io.fileops import read_text_safe
from xlcalc.validation.policy import Policy

CONFIG_FILENAME = "xlcalc.yaml"


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    events: bool = False
    engine: EngineConfig = Field(default_factory=EngineConfig)
    policy: Policy = Field(default_factory=Policy)

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        data = yaml.safe_load(read_text_safe(path)) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must be a mapping: {path}")
        return cls.model_validate(data)

    @classmethod
    def load_from_dir(cls, directory: str | Path) -> "Settings":
        """Load ``xlcalc.yaml`` from a directory, or defaults when it is absent."""
        path = Path(directory) / CONFIG_FILENAME
        if path.exists():
            return cls.load(path)
        return cls()
