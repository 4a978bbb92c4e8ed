from __future__ import annotations

import asyncio
import contextlib
import inspect
import signal
import uuid
from typing import Any, Optional, Sequence, TextIO

from fontports.bootstrap import load_builtin_units
from fontports.core.contracts import ComputationUnit, RunResult, UnitInstance
from fontports.core.events import build_default_bus, set_global_bus, stage
from fontports.core.exceptions import ComputationUnitError, FontportsException, UnitLoadError
from fontports.core.logger import configure_root_logger, get_logger, push_run_id, reset_run_id
from fontports.forwarder import OutputForwarder
from fontports.loader import load_flags
from fontports.models.settings import RunSettings
from fontports.units.registry import build_unit

DEFAULT_STOP_SIGNALS: tuple = (signal.SIGINT, signal.SIGTERM)


class PortOrchestrator:
    """
    Runs one flags → unit → stdout session.

    The sequence is fixed: read the flags file, initialize the computation
    unit with its contents, attach the output forwarder to the configured
    port, then wait until the port completes or a stop signal arrives.
    Flags errors surface before the unit is touched.

    Example:
        >>> from fontports import PortOrchestrator, RunSettings
        >>> settings = RunSettings(unit={"kind": "process", "command": ["node", "worker.js"]})
        >>> result = PortOrchestrator().run_sync(settings)
        >>> result.events_forwarded
        12
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        *,
        stop_signals: Sequence[int] = DEFAULT_STOP_SIGNALS,
    ):
        """
        Args:
            run_id: Identifier used in logs and lifecycle events. A UUID when omitted.
            stop_signals: Signals that end the run. Pass () to leave signal handling alone.
        """
        self.run_id = str(run_id) if run_id is not None else str(uuid.uuid4())
        self.stop_signals = tuple(stop_signals)
        self._stop: Optional[asyncio.Event] = None

    def request_stop(self) -> None:
        """End a running session as if a stop signal had been received."""
        if self._stop is not None:
            self._stop.set()

    async def run(
        self,
        settings: Optional[RunSettings] = None,
        *,
        unit: Optional[ComputationUnit] = None,
        stream: Optional[TextIO] = None,
    ) -> RunResult:
        """
        Execute one session.

        Args:
            settings: Run settings; read from the environment when omitted.
            unit: A ComputationUnit to use instead of ``settings.unit``.
            stream: Destination for forwarded values (stdout by default).

        Raises:
            FileReadError / ParseError: the flags file could not be loaded.
            ComputationUnitError: the unit failed to load, initialize or run.
        """
        settings = settings if settings is not None else RunSettings()
        configure_root_logger(settings.log_level)
        log = get_logger(__name__)

        token = push_run_id(self.run_id)
        bus = build_default_bus(run_id=self.run_id, port=settings.port)
        if bus is not None:
            bus.start()
            set_global_bus(bus)
        try:
            with stage("run"):
                result = await self._run(settings, unit=unit, stream=stream)
            log.info(f"Run finished: reason={result.reason}, events_forwarded={result.events_forwarded}")
            return result
        finally:
            reset_run_id(token)
            if bus is not None:
                bus.shutdown()
            set_global_bus(None)

    def run_sync(
        self,
        settings: Optional[RunSettings] = None,
        *,
        unit: Optional[ComputationUnit] = None,
        stream: Optional[TextIO] = None,
    ) -> RunResult:
        return asyncio.run(self.run(settings, unit=unit, stream=stream))

    async def _run(
        self,
        settings: RunSettings,
        *,
        unit: Optional[ComputationUnit],
        stream: Optional[TextIO],
    ) -> RunResult:
        # Handlers cover the whole session, so a signal during the flags read
        # or unit init ends the run like one arriving while forwarding
        self._stop = stop = asyncio.Event()
        installed = self._install_signal_handlers(stop)
        try:
            return await self._session(settings, stop, unit=unit, stream=stream)
        finally:
            self._remove_signal_handlers(installed)
            self._stop = None

    async def _session(
        self,
        settings: RunSettings,
        stop: asyncio.Event,
        *,
        unit: Optional[ComputationUnit],
        stream: Optional[TextIO],
    ) -> RunResult:
        log = get_logger(__name__)

        with stage("flags.load", path=str(settings.flags_path)):
            flags = await load_flags(settings.flags_path, encoding=settings.encoding)
        log.info(f"Loaded flags from {settings.flags_path}")

        if stop.is_set():
            log.info("Stop requested before the unit was initialized")
            return RunResult(run_id=self.run_id, port=settings.port, reason="signalled")

        if unit is None:
            unit = resolve_unit(settings)

        with stage("unit.init", unit=repr(unit)):
            instance = init_unit(unit, flags)

        forwarder = OutputForwarder(stream)
        try:
            # Subscribe before the first await so no emitted value can be missed
            with stage("port.subscribe", port=settings.port):
                port = instance.port(settings.port)
                forwarder.attach(port)

            with stage("port.forward", port=settings.port) as counts:
                try:
                    reason = await self._wait(port, stop, exit_on_close=settings.exit_on_close)
                finally:
                    counts["events"] = forwarder.forwarded
                    counts["dropped"] = port.dropped
        finally:
            forwarder.detach()
            await shutdown_instance(instance)

        return RunResult(
            run_id=self.run_id,
            port=settings.port,
            events_forwarded=forwarder.forwarded,
            reason=reason,
            metadata={"dropped": port.dropped},
        )

    async def _wait(self, port, stop: asyncio.Event, *, exit_on_close: bool) -> str:
        closed = asyncio.ensure_future(port.wait_closed())
        stopped = asyncio.ensure_future(stop.wait())
        try:
            done, _ = await asyncio.wait({closed, stopped}, return_when=asyncio.FIRST_COMPLETED)
            if closed in done:
                closed.result()
                if exit_on_close:
                    return "completed"
                get_logger(__name__).info(f"Port {port.name!r} completed; waiting for a stop signal")
                await stopped
            return "signalled"
        finally:
            for fut in (closed, stopped):
                if not fut.done():
                    fut.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await fut

    def _install_signal_handlers(self, stop: asyncio.Event) -> list:
        loop = asyncio.get_running_loop()
        installed = []
        for sig in self.stop_signals:
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not the main thread, or a platform without loop signal support
                continue
            installed.append(sig)
        return installed

    def _remove_signal_handlers(self, installed: list) -> None:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def resolve_unit(settings: RunSettings) -> ComputationUnit:
    if settings.unit is None:
        raise UnitLoadError(
            "No computation unit configured; set FONTPORTS_UNIT, "
            'e.g. {"kind": "process", "command": ["node", "worker.js"]}'
        )
    load_builtin_units()
    return build_unit(settings.unit, port=settings.port)


def init_unit(unit: ComputationUnit, flags: Any) -> UnitInstance:
    try:
        instance = unit.init(flags)
    except FontportsException:
        raise
    except Exception as exc:
        raise ComputationUnitError(f"Unit initialization failed: {exc}") from exc
    if not isinstance(instance, UnitInstance):
        raise ComputationUnitError(f"Unit init() returned {type(instance).__name__}, expected UnitInstance")
    return instance


async def shutdown_instance(instance: UnitInstance) -> None:
    result = instance.shutdown()
    if inspect.isawaitable(result):
        await result
