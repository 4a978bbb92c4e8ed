from __future__ import annotations

import shlex
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, PositiveFloat, field_validator

LineDecoding = Literal["text", "json"]


class PythonUnitConfig(BaseModel):
    """A unit importable from Python, addressed as ``package.module:attribute``."""

    kind: Literal["python"] = "python"
    target: str

    @field_validator("target")
    @classmethod
    def _validate_target(cls, v: str) -> str:
        module, sep, attr = v.partition(":")
        if not sep or not module.strip() or not attr.strip():
            raise ValueError("target must look like 'package.module:attribute'")
        return v.strip()


class ProcessUnitConfig(BaseModel):
    """A unit running as a child process: flags on stdin, one event per stdout line."""

    kind: Literal["process"] = "process"
    command: List[str]
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    decode: LineDecoding = "text"
    encoding: str = "utf-8"
    terminate_timeout_seconds: PositiveFloat = 5.0

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, v):
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator("command")
    @classmethod
    def _validate_command(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("command must name a program to run")
        return v


UnitConfig = Annotated[Union[PythonUnitConfig, ProcessUnitConfig], Field(discriminator="kind")]
