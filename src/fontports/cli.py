"""
Entry points for fontports.

``fontports`` (console script) takes no arguments: everything is read from
``FONTPORTS_*`` environment variables (see fontports.models.settings). It
prints each value the unit emits on stdout and reports failures on stderr
with a distinct exit status:

    0    run finished
    65   flags file is not valid JSON
    66   flags file missing or unreadable
    70   computation unit failed to load, initialize or run
    78   invalid settings
    130  stopped by SIGINT/SIGTERM
"""

import sys
from typing import Any, Dict, Optional

from pydantic import ValidationError

from fontports.core.contracts import ComputationUnit
from fontports.core.exceptions import FontportsException, RunInterrupted
from fontports.core.logger import configure_root_logger, get_logger
from fontports.loader import read_flags
from fontports.models.settings import RunSettings
from fontports.orchestrator import PortOrchestrator, resolve_unit

logger = get_logger(__name__)

EXIT_CONFIG = 78


def main(
    settings: Optional[RunSettings] = None,
    *,
    unit: Optional[ComputationUnit] = None,
) -> Dict[str, Any]:
    """
    Run one session and return a summary.

    Args:
        settings: Run settings; read from the environment when omitted.
        unit: Computation unit to use instead of the configured one.

    Returns:
        Dict with status, run_id, port, events_forwarded and reason.

    Example:
        >>> from fontports.cli import main
        >>> result = main(RunSettings(flags_path="dist/fonts.json", unit={"kind": "python", "target": "app:unit"}))
        >>> result["events_forwarded"]
        3
    """
    settings = settings if settings is not None else RunSettings()
    try:
        result = PortOrchestrator().run_sync(settings, unit=unit)
    except Exception as e:
        logger.error(f"Run failed: {e}")
        raise
    return result.to_dict()


def validate_config(settings: Optional[RunSettings] = None) -> bool:
    """
    Check that the flags file loads and the unit resolves, without running it.

    Raises:
        FileReadError / ParseError: flags file problems.
        ComputationUnitError / UnitRegistryError: the unit cannot be resolved.
    """
    settings = settings if settings is not None else RunSettings()
    try:
        read_flags(settings.flags_path, encoding=settings.encoding)
        resolve_unit(settings)
    except Exception as e:
        logger.error(f"Config validation failed: {e}")
        raise
    logger.info("Configuration is valid")
    return True


def cli() -> None:
    """Console entry point; see the module docstring for exit statuses."""
    try:
        settings = RunSettings()
    except ValidationError as e:
        configure_root_logger()
        logger.error(f"Invalid settings: {e}")
        sys.exit(EXIT_CONFIG)

    configure_root_logger(settings.log_level)
    try:
        result = main(settings)
    except FontportsException as e:
        sys.exit(e.exit_code)

    if result.get("reason") == "signalled":
        sys.exit(RunInterrupted.exit_code)
    sys.exit(0)


if __name__ == "__main__":
    cli()
