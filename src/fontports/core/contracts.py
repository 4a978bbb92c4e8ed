from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Literal, Mapping, Optional, Protocol, runtime_checkable

from fontports.core.exceptions import PortNotFoundError
from fontports.core.ports import OutputPort

RunReason = Literal["completed", "signalled"]


@runtime_checkable
class ComputationUnit(Protocol):
    """Opaque module that turns a flags payload into a running instance.

    init() must return synchronously; the caller subscribes to the instance's
    ports right after it returns, before yielding to the event loop.
    """

    def init(self, flags: Any) -> "UnitInstance":
        ...


class UnitInstance:
    """An initialized computation unit: a set of named output ports."""

    def __init__(
        self,
        ports: Iterable[OutputPort] = (),
        *,
        on_shutdown: Optional[Callable[[], Any]] = None,
    ):
        self._ports: Dict[str, OutputPort] = {p.name: p for p in ports}
        self._on_shutdown = on_shutdown

    @classmethod
    def with_ports(cls, *names: str, on_shutdown: Optional[Callable[[], Any]] = None) -> "UnitInstance":
        return cls([OutputPort(n) for n in names], on_shutdown=on_shutdown)

    @property
    def ports(self) -> Mapping[str, OutputPort]:
        return dict(self._ports)

    def port(self, name: str) -> OutputPort:
        try:
            return self._ports[name]
        except KeyError:
            raise PortNotFoundError(name, list(self._ports)) from None

    def shutdown(self) -> Any:
        """Run the shutdown hook (may return an awaitable) and close every port."""
        result = self._on_shutdown() if self._on_shutdown is not None else None
        for p in self._ports.values():
            p.close()
        return result


@dataclass
class RunResult:
    run_id: str
    port: str
    events_forwarded: int = 0
    reason: RunReason = "completed"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "success",
            "run_id": self.run_id,
            "port": self.port,
            "events_forwarded": self.events_forwarded,
            "reason": self.reason,
            "metadata": dict(self.metadata),
        }
