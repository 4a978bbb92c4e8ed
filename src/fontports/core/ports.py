from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from fontports.core.exceptions import ComputationUnitError, PortClosedError
from fontports.core.logger import get_logger

Handler = Callable[[Any], None]

log = get_logger(__name__)


@dataclass
class Subscription:
    """Handle returned by OutputPort.subscribe(); cancel() detaches the handler."""

    port: "OutputPort"
    handler: Handler
    active: bool = field(default=True)

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self.port._detach(self)


class OutputPort:
    """
    Named publish/subscribe channel a computation unit emits values on.

    Delivery is synchronous and single-threaded: send() calls every attached
    handler, in subscription order, before returning. Values sent while no
    handler is attached are dropped.

    The channel completes through close() or fail(); wait_closed() lets the
    caller block on that completion instead of relying on the event loop
    staying alive by accident.
    """

    def __init__(self, name: str):
        self.name = name
        self._subs: List[Subscription] = []
        self._closed = False
        self._error: Optional[BaseException] = None
        self._done = asyncio.Event()
        self.sent = 0
        self.dropped = 0

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"OutputPort(name={self.name!r}, {state}, subscribers={len(self._subs)})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def subscribe(self, handler: Handler) -> Subscription:
        if not callable(handler):
            raise TypeError(f"Port handler must be callable, got {type(handler).__name__}")
        sub = Subscription(port=self, handler=handler)
        self._subs.append(sub)
        return sub

    def _detach(self, sub: Subscription) -> None:
        try:
            self._subs.remove(sub)
        except ValueError:
            pass

    def send(self, value: Any) -> None:
        if self._closed:
            raise PortClosedError(f"Port {self.name!r} is closed")
        self.sent += 1
        if not self._subs:
            self.dropped += 1
            log.debug(f"Port {self.name!r} has no subscriber; value dropped")
            return
        # Copy so a handler may cancel its own subscription mid-dispatch
        for sub in list(self._subs):
            if sub.active:
                sub.handler(value)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._done.set()

    def fail(self, exc: BaseException) -> None:
        if self._closed:
            return
        self._error = exc
        self.close()

    async def wait_closed(self) -> None:
        await self._done.wait()
        if self._error is not None:
            if isinstance(self._error, ComputationUnitError):
                raise self._error
            raise ComputationUnitError(f"Port {self.name!r} failed: {self._error}") from self._error
