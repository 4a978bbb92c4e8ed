import asyncio
import sys
import textwrap

import pytest

from fontports.core.exceptions import ComputationUnitError, UnitLoadError
from fontports.models.unit_config import ProcessUnitConfig
from fontports.units.process_unit import ProcessUnit

# Child reads the flags from stdin and prints one @font-face rule per font
FONT_FACE_SCRIPT = textwrap.dedent(
    """
    import json, sys
    flags = json.load(sys.stdin)
    for font in flags["fonts"]:
        print('@font-face { font-family: "%s"; src: url(%s); }' % (font["family"], font["src"]))
    """
)


def _config(script: str, **kwargs) -> ProcessUnitConfig:
    return ProcessUnitConfig(command=[sys.executable, "-c", script], **kwargs)


def _collect(unit: ProcessUnit, flags, port_name: str = "outputFontFace"):
    seen = []

    async def scenario():
        instance = unit.init(flags)
        port = instance.port(port_name)
        port.subscribe(seen.append)
        try:
            await asyncio.wait_for(port.wait_closed(), timeout=30)
        finally:
            await instance.shutdown()

    asyncio.run(scenario())
    return seen


def test_each_stdout_line_becomes_one_event():
    unit = ProcessUnit(_config(FONT_FACE_SCRIPT), port="outputFontFace")
    flags = {"fonts": [{"family": "Inter", "src": "inter.woff2"}, {"family": "Lora", "src": "lora.woff2"}]}

    seen = _collect(unit, flags)

    assert seen == [
        '@font-face { font-family: "Inter"; src: url(inter.woff2); }',
        '@font-face { font-family: "Lora"; src: url(lora.woff2); }',
    ]
    assert unit.returncode == 0


def test_no_output_completes_with_no_events():
    unit = ProcessUnit(_config("import sys; sys.stdin.read()"), port="outputFontFace")

    assert _collect(unit, {"fonts": []}) == []


def test_json_decoding_parses_lines_and_skips_blanks():
    script = "import json; print(json.dumps({'n': 1})); print(); print('[2, 3]')"
    unit = ProcessUnit(_config(script, decode="json"), port="outputFontFace")

    assert _collect(unit, None) == [{"n": 1}, [2, 3]]


def test_invalid_json_line_fails_the_port():
    unit = ProcessUnit(_config("print('not json')", decode="json"), port="outputFontFace")

    with pytest.raises(ComputationUnitError, match="not valid JSON"):
        _collect(unit, {})


def test_non_zero_exit_fails_the_port():
    unit = ProcessUnit(_config("import sys; print('partial'); sys.exit(3)"), port="outputFontFace")

    with pytest.raises(ComputationUnitError, match="status 3"):
        _collect(unit, {})


def test_missing_program_fails_with_unit_load_error():
    config = ProcessUnitConfig(command=["/nonexistent/fontports-worker"])
    unit = ProcessUnit(config, port="outputFontFace")

    with pytest.raises(UnitLoadError, match="Cannot start unit process"):
        _collect(unit, {})


def test_env_is_merged_into_child_environment():
    script = "import os; print(os.environ['FONT_DIR'])"
    unit = ProcessUnit(_config(script, env={"FONT_DIR": "dist/fonts"}), port="outputFontFace")

    assert _collect(unit, {}) == ["dist/fonts"]


def test_shutdown_terminates_a_running_child():
    script = "import sys, time; print('ready', flush=True); time.sleep(60)"
    unit = ProcessUnit(_config(script, terminate_timeout_seconds=5), port="outputFontFace")
    seen = []

    async def scenario():
        instance = unit.init({})
        port = instance.port("outputFontFace")
        got_first = asyncio.Event()
        port.subscribe(lambda v: (seen.append(v), got_first.set()))
        await asyncio.wait_for(got_first.wait(), timeout=30)
        await instance.shutdown()
        return port.closed

    assert asyncio.run(scenario()) is True
    assert seen == ["ready"]
    assert unit.returncode is not None


def test_init_outside_event_loop_raises():
    unit = ProcessUnit(_config("pass"), port="outputFontFace")

    with pytest.raises(ComputationUnitError, match="running event loop"):
        unit.init({})


def test_nan_in_flags_is_rejected_before_spawning():
    unit = ProcessUnit(_config("pass"), port="outputFontFace")

    async def scenario():
        unit.init({"size": float("nan")})

    with pytest.raises(ComputationUnitError, match="not JSON serializable"):
        asyncio.run(scenario())
    assert unit.returncode is None
