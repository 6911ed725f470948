"""CLI entry point for multipass-run."""

from __future__ import annotations

import logging
import os
import sys

import fire
from omegaconf.errors import OmegaConfBaseException

from multipass_run.constants import EXIT_CONFIG_ERROR, EXIT_ERROR
from multipass_run.logging import StreamFormatter, StreamRoutingFilter

DEBUG_ENV_VAR = "MULTIPASS_RUN_DEBUG"


def get_cli_class() -> type:
    """Get the Fire command class on-demand to avoid circular imports.

    Returns
    -------
    type
        MultipassRun command class
    """
    from multipass_run.__main__ import MultipassRun

    return MultipassRun


def handle_config_error(error: Exception, debug_mode: bool) -> None:
    """Handle an invalid configuration file or argument.

    Parameters
    ----------
    error : Exception
        The ValueError or OmegaConf error that was raised
    debug_mode : bool
        Whether debug mode is enabled

    Raises
    ------
    Exception
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Configuration error: {error}", file=sys.stderr)
    sys.exit(EXIT_CONFIG_ERROR)


def handle_os_error(error: OSError, debug_mode: bool) -> None:
    """Handle a local filesystem or process error.

    Parameters
    ----------
    error : OSError
        The OS error that was raised
    debug_mode : bool
        Whether debug mode is enabled

    Raises
    ------
    OSError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"System error: {error}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_runtime_error(error: RuntimeError, debug_mode: bool) -> None:
    """Handle unexpected runtime error.

    Parameters
    ----------
    error : RuntimeError
        The runtime error that was raised
    debug_mode : bool
        Whether debug mode is enabled

    Raises
    ------
    RuntimeError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Unexpected error: {error}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def configure_logging(debug_mode: bool) -> None:
    """Route diagnostics to stderr and tagged subprocess output by stream."""
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(StreamFormatter("%(message)s"))
    stdout_handler.addFilter(StreamRoutingFilter("stdout"))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(StreamFormatter("%(message)s"))
    stderr_handler.addFilter(StreamRoutingFilter("stderr"))

    logging.basicConfig(
        level=logging.DEBUG if debug_mode else logging.INFO,
        handlers=[stdout_handler, stderr_handler],
    )

    logging.getLogger("paramiko").setLevel(logging.WARNING)


def main() -> None:
    """Entry point for Fire CLI with graceful error handling.

    Fire maps the public methods of ``MultipassRun`` to subcommands and
    generates their help text. Errors that escape a command are reported
    once on stderr; ``MULTIPASS_RUN_DEBUG=1`` re-raises them instead.
    """
    debug_mode = os.environ.get(DEBUG_ENV_VAR) == "1"
    configure_logging(debug_mode)

    try:
        fire.Fire(get_cli_class()())
    except (ValueError, OmegaConfBaseException) as e:
        handle_config_error(e, debug_mode)
    except OSError as e:
        handle_os_error(e, debug_mode)
    except RuntimeError as e:
        handle_runtime_error(e, debug_mode)
