"""Logging helpers for multipass-run."""

from multipass_run.logging.formatters import StreamFormatter, StreamRoutingFilter

__all__ = ["StreamFormatter", "StreamRoutingFilter"]
