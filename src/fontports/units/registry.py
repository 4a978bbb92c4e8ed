from __future__ import annotations

from typing import Any, Callable, ClassVar, Dict, Optional

from fontports.core.contracts import ComputationUnit
from fontports.core.exceptions import UnitRegistryError

UnitBuilder = Callable[..., ComputationUnit]


class UnitRegistry:
    """Maps a unit ``kind`` (as used in UnitConfig) to a builder returning a ComputationUnit."""

    _registry: ClassVar[Dict[str, UnitBuilder]] = {}

    @classmethod
    def register(cls, *, kind: str, builder: UnitBuilder, overwrite: bool = False) -> None:
        if not overwrite and kind in cls._registry:
            existing = cls._registry[kind]
            raise UnitRegistryError(f"Unit builder already registered for kind={kind!r}: {existing}")
        cls._registry[kind] = builder

    @classmethod
    def get(cls, kind: str) -> UnitBuilder:
        try:
            return cls._registry[kind]
        except KeyError as exc:
            raise UnitRegistryError(f"No unit builder registered for kind={kind!r}") from exc

    @classmethod
    def try_get(cls, kind: str) -> Optional[UnitBuilder]:
        return cls._registry.get(kind)

    @classmethod
    def kinds(cls) -> list:
        return sorted(cls._registry)

    @classmethod
    def clear(cls) -> None:
        cls._registry.clear()


def register_unit(*, kind: str, overwrite: bool = False) -> Callable[[UnitBuilder], UnitBuilder]:
    def decorator(builder: UnitBuilder) -> UnitBuilder:
        UnitRegistry.register(kind=kind, builder=builder, overwrite=overwrite)
        return builder

    return decorator


def build_unit(config: Any, *, port: str) -> ComputationUnit:
    """Resolve a UnitConfig into a ComputationUnit through the registered builder.

    Builders receive the config plus the name of the port the run forwards.
    """
    builder = UnitRegistry.get(config.kind)
    return builder(config, port=port)
