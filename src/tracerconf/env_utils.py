"""Property and environment variable resolution utilities.

Lookups consult an explicit property table first and the process environment
second. The table is injected through :class:`PropertySource` so resolution can
be exercised deterministically without touching ``os.environ``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from types import MappingProxyType

_LOGGER = logging.getLogger(__name__)

_EMPTY: Mapping[str, str] = MappingProxyType({})


class PropertySource:
    """Read-only key/value provider with property-over-environment precedence."""

    def __init__(
        self,
        properties: Mapping[str, str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._properties = MappingProxyType(dict(properties)) if properties else _EMPTY
        self._environ = environ

    @property
    def properties(self) -> Mapping[str, str]:
        """Return the explicit property table."""
        return self._properties

    def get(self, name: str) -> str | None:
        """Return the raw value for ``name`` or ``None`` when neither table has it.

        Returns
        -------
        str | None
            Property value when present, else the environment value.
        """
        value = self._properties.get(name)
        if value is not None:
            return value
        environ = os.environ if self._environ is None else self._environ
        return environ.get(name)


_DEFAULT_SOURCE = PropertySource()


def _source(source: PropertySource | None) -> PropertySource:
    return _DEFAULT_SOURCE if source is None else source


# -----------------------------------------------------------------------------
# String Helpers
# -----------------------------------------------------------------------------


def env_value(name: str, *, source: PropertySource | None = None) -> str | None:
    """Return the raw value for a key, or None when unset.

    Parameters
    ----------
    name
        Property or environment variable name.
    source
        Lookup source; defaults to the process environment.

    Returns
    -------
    str | None
        Raw value or None.
    """
    return _source(source).get(name)


def string_or_default(value: str | None, default: str) -> str:
    """Return ``value`` unless it is None or empty.

    Returns
    -------
    str
        Value or default.
    """
    return value if value else default


# -----------------------------------------------------------------------------
# Boolean Parsing
# -----------------------------------------------------------------------------


def env_truthy(value: str | None) -> bool:
    """Return True when the raw value is 'true' (case-insensitive).

    Returns
    -------
    bool
        True when the value is the literal "true".
    """
    return value is not None and value.strip().lower() == "true"


def env_bool(name: str, *, source: PropertySource | None = None) -> bool:
    """Parse a key as boolean; absence and anything but "true" are False.

    Returns
    -------
    bool
        Parsed boolean.
    """
    return env_truthy(env_value(name, source=source))


# -----------------------------------------------------------------------------
# Numeric Parsing
# -----------------------------------------------------------------------------


def env_int(name: str, *, source: PropertySource | None = None) -> int | None:
    """Parse a key as integer with error logging.

    Parameters
    ----------
    name
        Property or environment variable name.
    source
        Lookup source; defaults to the process environment.

    Returns
    -------
    int | None
        Parsed integer, or None when unset or invalid.
    """
    raw = env_value(name, source=source)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        _LOGGER.exception("Failed to parse integer for property %r with value %r", name, raw)
        return None


def env_number(name: str, *, source: PropertySource | None = None) -> int | float | None:
    """Parse a key as a number, preferring integers for integral text.

    Returns
    -------
    int | float | None
        Parsed number, or None when unset or invalid.
    """
    raw = env_value(name, source=source)
    if raw is None:
        return None
    text = raw.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        _LOGGER.exception("Failed to parse number for property %r with value %r", name, raw)
        return None


# -----------------------------------------------------------------------------
# Tag Parsing
# -----------------------------------------------------------------------------


def resolve_value(value: str, *, source: PropertySource | None = None) -> str | None:
    """Resolve a ``${NAME:default}`` reference, returning other values unchanged.

    An unresolved reference without a default resolves to ``None``.

    Returns
    -------
    str | None
        Interpolated value.
    """
    if not (value.startswith("${") and value.endswith("}")):
        return value
    name, *defaults = (part.strip() for part in value[2:-1].split(":"))
    resolved = env_value(name, source=source)
    if resolved is None and defaults and defaults[0]:
        return defaults[0]
    return resolved


def parse_tracer_tags(
    raw: str | None,
    *,
    source: PropertySource | None = None,
) -> dict[str, str | None] | None:
    """Parse comma-separated ``key=value`` pairs into a tag mapping.

    Tokens without exactly one ``=`` or with an empty value are logged and
    skipped.

    Parameters
    ----------
    raw
        Tag declaration, e.g. ``"env=prod, host=${HOSTNAME:local}"``.
    source
        Lookup source used for interpolation.

    Returns
    -------
    dict[str, str | None] | None
        Parsed tags, or None when nothing was declared.
    """
    if raw is None:
        return None
    tags: dict[str, str | None] = {}
    for token in raw.split(","):
        tag = token.strip()
        key, _, value = (part.strip() for part in tag.partition("="))
        if tag.count("=") != 1 or not value:
            _LOGGER.error("Tracer tag incorrectly formatted: %r", tag)
            continue
        tags[key] = resolve_value(value, source=source)
    return tags


def env_tags(name: str, *, source: PropertySource | None = None) -> dict[str, str | None] | None:
    """Parse the tag declaration stored under ``name``.

    Returns
    -------
    dict[str, str | None] | None
        Parsed tags, or None when the key is unset.
    """
    return parse_tracer_tags(env_value(name, source=source), source=source)


__all__ = [
    "PropertySource",
    "env_bool",
    "env_int",
    "env_number",
    "env_tags",
    "env_truthy",
    "env_value",
    "parse_tracer_tags",
    "resolve_value",
    "string_or_default",
]
