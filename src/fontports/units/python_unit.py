from __future__ import annotations

import importlib
from typing import Any, Callable

from fontports.core.contracts import ComputationUnit, UnitInstance
from fontports.core.exceptions import UnitLoadError
from fontports.core.logger import get_logger
from fontports.models.unit_config import PythonUnitConfig
from fontports.units.registry import register_unit

log = get_logger(__name__)


class CallableUnit:
    """Adapts a plain ``factory(flags) -> UnitInstance`` callable to the ComputationUnit protocol."""

    def __init__(self, factory: Callable[[Any], UnitInstance], name: str = "<callable>"):
        self._factory = factory
        self.name = name

    def __repr__(self) -> str:
        return f"CallableUnit({self.name})"

    def init(self, flags: Any) -> UnitInstance:
        instance = self._factory(flags)
        if not isinstance(instance, UnitInstance):
            raise UnitLoadError(
                f"Unit {self.name} returned {type(instance).__name__}, expected UnitInstance"
            )
        return instance


def resolve_target(target: str) -> Any:
    module_name, _, attr_path = target.partition(":")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise UnitLoadError(f"Cannot import unit module {module_name!r}: {exc}") from exc
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise UnitLoadError(f"Unit target {target!r} has no attribute {part!r}") from exc
    return obj


def as_unit(obj: Any, name: str = "<unit>") -> ComputationUnit:
    # Classes are callables too, but a class with init() is meant to be instantiated first
    if isinstance(obj, type) and callable(getattr(obj, "init", None)):
        obj = obj()
    if isinstance(obj, ComputationUnit):
        return obj
    if callable(obj):
        return CallableUnit(obj, name=name)
    raise UnitLoadError(f"Unit {name} is neither a ComputationUnit nor a callable factory")


@register_unit(kind="python")
def build_python_unit(config: PythonUnitConfig, *, port: str) -> ComputationUnit:
    obj = resolve_target(config.target)
    unit = as_unit(obj, name=config.target)
    log.info(f"Resolved python unit {config.target}")
    return unit
