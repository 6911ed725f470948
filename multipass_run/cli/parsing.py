"""CLI argument parsing and parameter conversion utilities."""

from __future__ import annotations

from multipass_run.providers.multipass.launch import LaunchSpec
from multipass_run.utils import generate_instance_name


def parse_option(value: str | int | float | None) -> str | None:
    """Normalize an optional Fire argument to a string.

    Fire converts numeric-looking arguments to numbers, so ``--cpus 2``
    arrives as ``2``. Whole floats such as ``2.0`` are printed without the
    fraction.

    Parameters
    ----------
    value : str | int | float | None
        Raw argument value

    Returns
    -------
    str | None
        Stripped string value, or None when the option was omitted or empty
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, float) and value.is_integer():
        value = int(value)

    text = str(value).strip()
    return text or None


def parse_instance_name(value: str | int | float) -> str:
    """Return an instance name positional as a string.

    Names such as ``123`` are valid but reach the command as ints.
    """
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def parse_flag(value: str | bool, name: str) -> bool:
    """Parse a boolean flag given as bool or "true"/"false" string.

    Raises
    ------
    ValueError
        If string value is not "true" or "false"
    """
    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        lowered = value.lower()

        if lowered not in ("true", "false"):
            raise ValueError(f"{name} must be 'true' or 'false', got: {value}")

        return lowered == "true"

    raise ValueError(f"Unexpected type for {name}: {type(value)}")


def build_launch_spec(
    name: str | None,
    image: str | None,
    cpus: str | int | None,
    memory: str | int | None,
    disk: str | int | None,
    ssh: str | bool,
) -> LaunchSpec:
    """Build a launch spec from CLI options.

    A missing name is replaced by ``instance-<unix time>``. Values are not
    validated here; the session validates them before launching.
    """
    return LaunchSpec(
        name=parse_option(name) or generate_instance_name(),
        image=parse_option(image),
        cpus=parse_option(cpus),
        memory=parse_option(memory),
        disk=parse_option(disk),
        enable_ssh=parse_flag(ssh, "ssh"),
    )


__all__ = [
    "build_launch_spec",
    "parse_flag",
    "parse_option",
]
