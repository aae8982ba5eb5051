"""msgspec struct bases for tracer specs and strategy payloads."""

from __future__ import annotations

import re

import msgspec


class StructBaseStrict(
    msgspec.Struct,
    frozen=True,
    kw_only=True,
    omit_defaults=True,
    forbid_unknown_fields=True,
):
    """Base struct for user-declared tracer specs; unknown keys are errors."""


class StructBaseCompat(
    msgspec.Struct,
    frozen=True,
    kw_only=True,
    omit_defaults=True,
    forbid_unknown_fields=False,
):
    """Base struct for payloads owned by remote services."""


_LOCATION_RE = re.compile(r"\s+-\s+at\s+`\$(?P<path>[^`]*)`$")


def _key_path(exc: msgspec.ValidationError) -> str | None:
    # `$.reporter.sender.agent_port` -> reporter.sender.agent_port; document root -> None
    match = _LOCATION_RE.search(str(exc))
    if match is None:
        return None
    return match.group("path").removeprefix(".") or None


def describe_validation_error(exc: msgspec.ValidationError, *, subject: str) -> str:
    """Render a validation error as ``"Invalid <subject>: <reason> at <key>"``.

    Returns
    -------
    str
        Message naming the rejected key when msgspec reported one.
    """
    reason = _LOCATION_RE.sub("", str(exc).strip()) or exc.__class__.__name__
    key = _key_path(exc)
    if key is None:
        return f"Invalid {subject}: {reason}"
    return f"Invalid {subject}: {reason} at {key}"


__all__ = [
    "StructBaseCompat",
    "StructBaseStrict",
    "describe_validation_error",
]
