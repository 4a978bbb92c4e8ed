"""fontports.

Feeds a JSON flags document (font metadata, ``dist/fonts.json`` by default)
into an opaque computation unit and prints every value the unit emits on
its output port (``outputFontFace`` by default) to stdout.

Public API for embedding the run in other Python code.
"""

from fontports.cli import main, validate_config
from fontports.core.contracts import ComputationUnit, RunResult, UnitInstance
from fontports.core.ports import OutputPort
from fontports.models.settings import RunSettings
from fontports.orchestrator import PortOrchestrator

__version__ = "0.1.0"

__all__ = [
    "ComputationUnit",
    "OutputPort",
    "PortOrchestrator",
    "RunResult",
    "RunSettings",
    "UnitInstance",
    "main",
    "validate_config",
]
