"""Command-line entrypoint (Typer-based).

Provides :func:`build_cli`, which constructs a Typer app that parses
process-level options (``--dry-run``, ``--version``, ``--log-level``,
``--log-format``, ``--env-file``, ``--config``), wires a
:class:`~jema2mqtt._bridge.Bridge` and runs it until SIGTERM/SIGINT.

Exit codes: ``0`` after a graceful shutdown, ``1`` when the bridge
cannot start (settings, entity configuration, hardware or broker).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Annotated, get_args

import typer
from pydantic import ValidationError

from jema2mqtt import __version__
from jema2mqtt._bridge import Bridge
from jema2mqtt._errors import Jema2MqttError
from jema2mqtt._logging import configure_logging
from jema2mqtt._settings import LoggingSettings, Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_STARTUP_ERROR = 1

# ---------------------------------------------------------------------------
# Allowed values (extracted from LoggingSettings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)

BridgeFactory = Callable[..., Bridge]


def build_cli(
    *,
    settings_class: type[Settings] = Settings,
    bridge_factory: BridgeFactory = Bridge.from_settings,
) -> typer.Typer:
    """Construct the jema2mqtt Typer CLI.

    Args:
        settings_class: Settings class instantiated from the
            environment and ``--env-file``.
        bridge_factory: Called as ``bridge_factory(settings,
            version=..., dry_run=...)`` to wire the bridge.

    Returns:
        A configured :class:`typer.Typer` ready to invoke.
    """
    cli = typer.Typer(
        help=f"jema2mqtt v{__version__} — JEM-A terminals to MQTT bridge",
    )

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = None,
        dry_run: Annotated[
            bool,
            typer.Option(
                "--dry-run", help="Use in-memory terminals instead of hardware."
            ),
        ] = False,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
        config_file: Annotated[
            str | None,
            typer.Option("--config", help="Path to the entity configuration file."),
        ] = None,
    ) -> None:
        if version_flag:
            typer.echo(f"jema2mqtt v{__version__}")
            raise typer.Exit()

        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )

        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        # -- build settings -------------------------------------------------
        try:
            settings = settings_class(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_STARTUP_ERROR) from exc

        if log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": log_level.upper()},
            )
        if log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": log_format.lower()},
            )
        if config_file is not None:
            settings.config_file = config_file

        configure_logging(settings.logging, service="jema2mqtt", version=__version__)

        # -- wire and run ---------------------------------------------------
        try:
            bridge = bridge_factory(settings, version=__version__, dry_run=dry_run)
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(bridge.run())
        except Jema2MqttError as exc:
            logger.error("jema2mqtt: %s", exc)
            raise SystemExit(EXIT_STARTUP_ERROR) from exc
        except Exception as exc:
            logger.exception("jema2mqtt: unexpected error")
            raise SystemExit(EXIT_STARTUP_ERROR) from exc

    return cli


def main() -> None:
    """Console-script entrypoint."""
    build_cli()(standalone_mode=True)
