from __future__ import annotations

import asyncio
import contextlib
import json
import os
from typing import Any, Optional

from fontports.core.contracts import UnitInstance
from fontports.core.exceptions import ComputationUnitError, UnitLoadError
from fontports.core.logger import get_logger
from fontports.core.ports import OutputPort
from fontports.models.unit_config import ProcessUnitConfig
from fontports.units.registry import register_unit

# Lines longer than this (e.g. a large generated stylesheet) would break readline()
_LINE_LIMIT = 1024 * 1024


class ProcessUnit:
    """
    Runs a computation unit as a child process.

    The flags payload is written to the child's stdin as a single JSON
    document, then stdin is closed. Every line the child prints on stdout
    becomes one value on the output port. The port completes when stdout
    reaches EOF; a non-zero exit status fails it. The child's stderr is
    inherited.
    """

    def __init__(self, config: ProcessUnitConfig, *, port: str):
        self.config = config
        self.port_name = port
        self.log = get_logger(f"{__name__}.{self.__class__.__name__}")
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"ProcessUnit(command={self.config.command!r})"

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc is not None else None

    def init(self, flags: Any) -> UnitInstance:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise ComputationUnitError("ProcessUnit.init() must be called from a running event loop") from exc

        try:
            payload = json.dumps(flags, ensure_ascii=False, allow_nan=False).encode(self.config.encoding)
        except (TypeError, ValueError) as exc:
            raise ComputationUnitError(f"Flags payload is not JSON serializable: {exc}") from exc

        port = OutputPort(self.port_name)
        # Scheduled, not awaited: the caller subscribes before the pump first runs
        self._task = loop.create_task(self._pump(port, payload), name=f"unit:{self.port_name}")
        return UnitInstance([port], on_shutdown=self._shutdown)

    def _env(self) -> Optional[dict]:
        if not self.config.env:
            return None
        env = dict(os.environ)
        env.update(self.config.env)
        return env

    async def _spawn(self) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *self.config.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                cwd=self.config.cwd,
                env=self._env(),
                limit=_LINE_LIMIT,
            )
        except OSError as exc:
            raise UnitLoadError(f"Cannot start unit process {self.config.command[0]!r}: {exc}") from exc

    def _decode(self, raw: bytes) -> Any:
        line = raw.decode(self.config.encoding).rstrip("\n").rstrip("\r")
        if self.config.decode == "json":
            try:
                return json.loads(line)
            except json.JSONDecodeError as exc:
                raise ComputationUnitError(f"Unit emitted a line that is not valid JSON: {line[:80]!r}") from exc
        return line

    async def _pump(self, port: OutputPort, payload: bytes) -> None:
        try:
            self._proc = proc = await self._spawn()
            self.log.info(f"Started unit process pid={proc.pid}: {self.config.command!r}")

            try:
                proc.stdin.write(payload)
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                self.log.warning("Unit process closed stdin before reading all flags")
            finally:
                proc.stdin.close()

            async for raw in proc.stdout:
                if self.config.decode == "json" and not raw.strip():
                    continue
                if port.closed:
                    break
                port.send(self._decode(raw))

            returncode = await proc.wait()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._stop_process()
            port.fail(exc)
            return

        if returncode != 0:
            port.fail(ComputationUnitError(f"Unit process exited with status {returncode}"))
        else:
            self.log.info("Unit process finished")
            port.close()

    async def _stop_process(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.config.terminate_timeout_seconds)
        except asyncio.TimeoutError:
            self.log.warning(f"Unit process pid={proc.pid} ignored SIGTERM; killing")
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    async def _shutdown(self) -> None:
        await self._stop_process()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


@register_unit(kind="process")
def build_process_unit(config: ProcessUnitConfig, *, port: str) -> ProcessUnit:
    return ProcessUnit(config, port=port)
