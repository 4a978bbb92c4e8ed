"""
Run settings loaded from the environment (prefix ``FONTPORTS_``).

    FONTPORTS_FLAGS_PATH     flags document (default: dist/fonts.json)
    FONTPORTS_ENCODING       text encoding of the flags file (default: utf-8)
    FONTPORTS_PORT           output port to forward (default: outputFontFace)
    FONTPORTS_UNIT           JSON object, e.g. {"kind": "process", "command": ["node", "worker.js"]}
    FONTPORTS_EXIT_ON_CLOSE  stop when the port completes (default: true)
    FONTPORTS_LOG_LEVEL      fontports log level (default: WARNING)

A ``.env`` file in the working directory is read as well.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fontports.loader import DEFAULT_FLAGS_PATH
from fontports.models.unit_config import UnitConfig

DEFAULT_PORT = "outputFontFace"


class RunSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FONTPORTS_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    flags_path: Path = Field(default=Path(DEFAULT_FLAGS_PATH), description="JSON flags document")
    encoding: str = Field(default="utf-8", description="Encoding of the flags document")
    port: str = Field(default=DEFAULT_PORT, min_length=1, description="Output port to forward")
    unit: Optional[UnitConfig] = Field(default=None, description="Computation unit to initialize")
    exit_on_close: bool = Field(default=True, description="Finish the run when the port completes")
    log_level: str = Field(default="WARNING", description="Level for fontports loggers")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v
