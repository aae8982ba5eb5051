"""Configuration inspection commands."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import msgspec
from cyclopts import Parameter

from tracerconf.configuration import Configuration
from tracerconf.env_utils import PropertySource
from tracerconf.errors import ConfigurationError

_LOGGER = logging.getLogger(__name__)


def _parse_properties(properties: list[str] | None) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in properties or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            msg = f"Property must be KEY=VALUE, got {item!r}."
            raise ValueError(msg)
        parsed[key.strip()] = value
    return parsed


def load_spec_file(path: Path) -> dict[str, Any]:
    """Decode a TOML or JSON configuration spec file.

    Returns
    -------
    dict[str, Any]
        Decoded spec contents.

    Raises
    ------
    ConfigurationError
        Raised when the file cannot be read or decoded.
    """
    try:
        raw = path.read_bytes()
    except OSError as exc:
        msg = f"Cannot read spec file {str(path)!r}: {exc}"
        raise ConfigurationError(msg) from exc
    try:
        if path.suffix == ".json":
            decoded = msgspec.json.decode(raw)
        else:
            decoded = msgspec.toml.decode(raw)
    except msgspec.DecodeError as exc:
        msg = f"Cannot decode spec file {str(path)!r}: {exc}"
        raise ConfigurationError(msg) from exc
    if not isinstance(decoded, dict):
        msg = f"Spec file {str(path)!r} must contain a table."
        raise ConfigurationError(msg)
    return decoded


def show_config(
    *,
    spec: Annotated[
        Path | None,
        Parameter(
            name="--spec",
            help="TOML or JSON configuration spec; overrides the environment.",
        ),
    ] = None,
    properties: Annotated[
        list[str] | None,
        Parameter(
            name=["--property", "-D"],
            help="KEY=VALUE property that overrides the environment variable of the same name.",
        ),
    ] = None,
) -> int:
    """Show the resolved tracer configuration with credentials masked.

    Returns
    -------
    int
        Exit status code.
    """
    try:
        if spec is not None:
            config = Configuration.from_spec(load_spec_file(spec))
        else:
            config = Configuration.from_env(PropertySource(_parse_properties(properties)))
    except ConfigurationError as exc:
        _LOGGER.debug("Configuration resolution failed", exc_info=True)
        sys.stderr.write(f"error: {exc}\n")
        return 2
    payload = json.dumps(config.describe(), indent=2, sort_keys=True)
    sys.stdout.write(payload + "\n")
    return 0


__all__ = ["load_spec_file", "show_config"]
