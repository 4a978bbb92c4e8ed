"""
Flags loader: reads the JSON document handed to a computation unit at init.

The payload is opaque here; its schema belongs to the unit. Any valid JSON
value (object, array, scalar, null) is returned as parsed.
"""

from __future__ import annotations

import asyncio
import json
from os import PathLike
from pathlib import Path
from typing import Any, Union

from fontports.core.exceptions import FileReadError, ParseError
from fontports.core.logger import get_logger

log = get_logger(__name__)

DEFAULT_FLAGS_PATH = "dist/fonts.json"


def _read_text(path: Path, encoding: str) -> str:
    try:
        return path.read_text(encoding=encoding)
    except FileNotFoundError as exc:
        raise FileReadError(path, "Flags file not found") from exc
    except IsADirectoryError as exc:
        raise FileReadError(path, "Flags path is a directory") from exc
    except PermissionError as exc:
        raise FileReadError(path, "Flags file is not readable") from exc
    except UnicodeDecodeError as exc:
        raise FileReadError(path, "Flags file is not valid text", {"encoding": encoding}) from exc
    except OSError as exc:
        raise FileReadError(path, "Failed to read flags file", {"errno": exc.errno}) from exc


class _NonStandardConstant(ValueError):
    pass


def _reject_constant(name: str) -> Any:
    # json.loads accepts NaN/Infinity/-Infinity; strict JSON does not
    raise _NonStandardConstant(name)


def parse_flags(text: str, path: Union[str, PathLike] = "<string>") -> Any:
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise ParseError(path, "Flags file is not valid JSON", {"line": exc.lineno, "column": exc.colno}) from exc
    except _NonStandardConstant as exc:
        raise ParseError(path, "Flags file is not valid JSON", {"constant": str(exc)}) from exc


def read_flags(path: Union[str, PathLike] = DEFAULT_FLAGS_PATH, *, encoding: str = "utf-8") -> Any:
    """Blocking read + parse of a flags file.

    Raises:
        FileReadError: file missing, unreadable, or not decodable as text.
        ParseError: content is not valid JSON.
    """
    p = Path(path)
    text = _read_text(p, encoding)
    flags = parse_flags(text, p)
    log.debug(f"Loaded flags from {p} ({len(text)} chars)")
    return flags


async def load_flags(path: Union[str, PathLike] = DEFAULT_FLAGS_PATH, *, encoding: str = "utf-8") -> Any:
    """Non-blocking variant of read_flags(); the file read runs in a worker thread."""
    p = Path(path)
    text = await asyncio.to_thread(_read_text, p, encoding)
    flags = parse_flags(text, p)
    log.debug(f"Loaded flags from {p} ({len(text)} chars)")
    return flags
