from __future__ import annotations

import importlib
import sys
from typing import Iterable


BUILTIN_UNIT_MODULES: tuple[str, ...] = (
    "fontports.units.python_unit",
    "fontports.units.process_unit",
)


_LOADED = False


def load_builtin_units(*, reload: bool = False, modules: Iterable[str] = BUILTIN_UNIT_MODULES) -> None:
    """Import built-in unit modules so their decorators register them.

    In production, call with reload=False (default) so imports are cheap.
    In tests, call with reload=True to clear the registry and re-run decorators.
    """

    global _LOADED

    if _LOADED and not reload:
        return

    if reload:
        from fontports.units.registry import UnitRegistry

        UnitRegistry.clear()

    for module_name in modules:
        if reload:
            sys.modules.pop(module_name, None)
        importlib.import_module(module_name)

    _LOADED = True
