from __future__ import annotations

import sys
from typing import Any, Optional, TextIO

from fontports.core.exceptions import ForwarderError
from fontports.core.logger import get_logger
from fontports.core.ports import OutputPort, Subscription


class OutputForwarder:
    """
    Sink that prints every value a port emits, one line per value.

    Values are written with print(), so strings appear verbatim and anything
    else as its str() form. Each write is flushed immediately; nothing is
    buffered or reordered. Write errors are not caught.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream
        self._sub: Optional[Subscription] = None
        self.forwarded = 0
        self.log = get_logger(f"{__name__}.{self.__class__.__name__}")

    @property
    def stream(self) -> TextIO:
        # Resolve lazily so pytest's capsys (which swaps sys.stdout) is honoured
        return self._stream if self._stream is not None else sys.stdout

    @property
    def attached(self) -> bool:
        return self._sub is not None and self._sub.active

    def attach(self, port: OutputPort) -> Subscription:
        if self.attached:
            raise ForwarderError(f"Forwarder already attached to port {self._sub.port.name!r}")
        self._sub = port.subscribe(self.forward)
        self.log.debug(f"Attached to port {port.name!r}")
        return self._sub

    def detach(self) -> None:
        if self._sub is not None:
            self._sub.cancel()
            self._sub = None

    def forward(self, value: Any) -> None:
        print(value, file=self.stream, flush=True)
        self.forwarded += 1
