import asyncio
import io
import json
import os
import signal
import sys

import pytest

from fontports.core.exceptions import (
    ComputationUnitError,
    FileReadError,
    ParseError,
    PortNotFoundError,
    UnitLoadError,
)
from fontports.models.settings import RunSettings
from fontports.orchestrator import PortOrchestrator

import fake_units


@pytest.fixture
def flags_file(tmp_path):
    path = tmp_path / "fonts.json"
    path.write_text(json.dumps({"fonts": []}), encoding="utf-8")
    return path


def _settings(path, **kwargs) -> RunSettings:
    return RunSettings(flags_path=path, **kwargs)


def _orchestrator() -> PortOrchestrator:
    # Tests run the loop in the main thread; keep signal handling out of it
    return PortOrchestrator(run_id="test-run", stop_signals=())


def test_happy_path_prints_single_event(flags_file, capsys):
    unit = fake_units.ScriptedUnit(["hello"])

    result = _orchestrator().run_sync(_settings(flags_file), unit=unit)

    assert capsys.readouterr().out == "hello\n"
    assert unit.init_calls == [{"fonts": []}]
    assert result.events_forwarded == 1
    assert result.reason == "completed"
    assert result.run_id == "test-run"


def test_events_are_printed_in_emission_order(flags_file, capsys):
    _orchestrator().run_sync(_settings(flags_file), unit=fake_units.ScriptedUnit(["a", "b", "c"]))

    assert capsys.readouterr().out.splitlines() == ["a", "b", "c"]


def test_malformed_json_never_initializes_unit(tmp_path, capsys):
    path = tmp_path / "fonts.json"
    path.write_bytes(b"{not valid json")
    unit = fake_units.ScriptedUnit(["hello"])

    with pytest.raises(ParseError):
        _orchestrator().run_sync(_settings(path), unit=unit)

    assert unit.init_calls == []
    assert capsys.readouterr().out == ""


def test_missing_file_never_initializes_unit(tmp_path):
    unit = fake_units.ScriptedUnit(["hello"])

    with pytest.raises(FileReadError):
        _orchestrator().run_sync(_settings(tmp_path / "missing.json"), unit=unit)

    assert unit.init_calls == []


def test_no_events_leaves_stdout_empty(flags_file, capsys):
    result = _orchestrator().run_sync(_settings(flags_file), unit=fake_units.ScriptedUnit([]))

    assert capsys.readouterr().out == ""
    assert result.events_forwarded == 0


def test_identical_events_are_each_printed(flags_file):
    value = {"family": "Inter"}
    stream = io.StringIO()

    _orchestrator().run_sync(_settings(flags_file), unit=fake_units.ScriptedUnit([value, value]), stream=stream)

    assert stream.getvalue().splitlines() == ["{'family': 'Inter'}", "{'family': 'Inter'}"]
    assert value == {"family": "Inter"}


def test_unit_is_shut_down_after_run(flags_file):
    unit = fake_units.ScriptedUnit(["x"])

    _orchestrator().run_sync(_settings(flags_file), unit=unit, stream=io.StringIO())

    assert unit.shutdowns == 1


def test_values_sent_during_init_are_dropped(flags_file):
    stream = io.StringIO()

    result = _orchestrator().run_sync(_settings(flags_file), unit=fake_units.EagerUnit(["early"]), stream=stream)

    assert stream.getvalue() == ""
    assert result.metadata["dropped"] == 1


def test_unknown_port_raises(flags_file):
    unit = fake_units.ScriptedUnit(["x"], port="other")

    with pytest.raises(PortNotFoundError, match="outputFontFace"):
        _orchestrator().run_sync(_settings(flags_file), unit=unit)

    assert unit.shutdowns == 1


def test_init_failure_is_wrapped(flags_file):
    with pytest.raises(ComputationUnitError, match="initialization failed: boom"):
        _orchestrator().run_sync(_settings(flags_file), unit=fake_units.FailingUnit())


def test_missing_unit_configuration_raises(flags_file):
    with pytest.raises(UnitLoadError, match="No computation unit configured"):
        _orchestrator().run_sync(_settings(flags_file))


def test_request_stop_ends_an_open_port(flags_file):
    orchestrator = _orchestrator()
    stream = io.StringIO()

    async def scenario():
        task = asyncio.ensure_future(
            orchestrator.run(_settings(flags_file), unit=fake_units.ScriptedUnit(["x"], close=False), stream=stream)
        )
        while stream.getvalue() == "":
            await asyncio.sleep(0.01)
        orchestrator.request_stop()
        return await asyncio.wait_for(task, timeout=5)

    result = asyncio.run(scenario())

    assert result.reason == "signalled"
    assert stream.getvalue() == "x\n"


def test_exit_on_close_false_waits_for_stop(flags_file):
    orchestrator = _orchestrator()
    stream = io.StringIO()

    async def scenario():
        task = asyncio.ensure_future(
            orchestrator.run(
                _settings(flags_file, exit_on_close=False),
                unit=fake_units.ScriptedUnit(["x"]),
                stream=stream,
            )
        )
        await asyncio.sleep(0.1)
        assert not task.done()
        orchestrator.request_stop()
        return await asyncio.wait_for(task, timeout=5)

    assert asyncio.run(scenario()).reason == "signalled"


def test_stop_during_flags_load_skips_unit_init(flags_file, monkeypatch):
    orchestrator = _orchestrator()
    unit = fake_units.ScriptedUnit(["x"])

    async def load_then_stop(path, encoding="utf-8"):
        orchestrator.request_stop()
        return {"fonts": []}

    monkeypatch.setattr("fontports.orchestrator.load_flags", load_then_stop)

    result = orchestrator.run_sync(_settings(flags_file), unit=unit)

    assert result.reason == "signalled"
    assert result.events_forwarded == 0
    assert unit.init_calls == []


class _SignalOnInitUnit(fake_units.ScriptedUnit):
    def init(self, flags):
        instance = super().init(flags)
        os.kill(os.getpid(), signal.SIGUSR1)
        return instance


@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="needs POSIX signals")
def test_signal_during_unit_init_ends_the_run(flags_file):
    orchestrator = PortOrchestrator(run_id="test-run", stop_signals=(signal.SIGUSR1,))
    unit = _SignalOnInitUnit(["x"], close=False)

    result = orchestrator.run_sync(_settings(flags_file), unit=unit, stream=io.StringIO())

    assert result.reason == "signalled"
    assert unit.shutdowns == 1


def test_configured_python_unit_runs(tmp_path, capsys):
    path = tmp_path / "fonts.json"
    path.write_text(json.dumps({"fonts": [{"family": "Inter"}, {"family": "Lora"}]}), encoding="utf-8")
    settings = _settings(path, unit={"kind": "python", "target": "fake_units:font_families"})

    result = _orchestrator().run_sync(settings)

    assert capsys.readouterr().out.splitlines() == ["Inter", "Lora"]
    assert result.events_forwarded == 2


def test_configured_process_unit_runs(tmp_path, capsys):
    path = tmp_path / "fonts.json"
    path.write_text(json.dumps({"fonts": [{"family": "Inter"}]}), encoding="utf-8")
    script = "import json, sys; [print(f['family']) for f in json.load(sys.stdin)['fonts']]"
    settings = _settings(path, unit={"kind": "process", "command": [sys.executable, "-c", script]})

    result = _orchestrator().run_sync(settings)

    assert capsys.readouterr().out == "Inter\n"
    assert result.reason == "completed"
