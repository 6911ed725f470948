"""CLI argument parsing and handling."""

from __future__ import annotations

from multipass_run.cli.parsing import (
    build_launch_spec,
    parse_flag,
    parse_instance_name,
    parse_option,
)

__all__ = [
    "build_launch_spec",
    "parse_flag",
    "parse_instance_name",
    "parse_option",
]
