"""multipass-run: lifecycle orchestration for Multipass instances."""

__version__ = "0.1.0"
