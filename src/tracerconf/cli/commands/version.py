"""Version reporting for the tracerconf CLI."""

from __future__ import annotations

import json
import platform
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

from tracerconf.tracer import tracer_version


def get_version() -> str:
    """Get the tracerconf package version string.

    Returns
    -------
    str
        Version string, or "0.0.0-dev" if not installed.
    """
    return tracer_version()


def get_version_info() -> dict[str, object]:
    """Get detailed version information.

    Returns
    -------
    dict[str, object]
        Structured version payload.
    """
    return {
        "tracerconf": get_version(),
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "dependencies": {
            "cyclopts": _package_version("cyclopts"),
            "opentelemetry-sdk": _package_version("opentelemetry-sdk"),
            "msgspec": _package_version("msgspec"),
            "httpx": _package_version("httpx"),
        },
    }


def version_command() -> int:
    """Show version information.

    Returns
    -------
    int
        Exit status code.
    """
    payload = json.dumps(get_version_info(), indent=2, sort_keys=True)
    sys.stdout.write(payload + "\n")
    return 0


def _package_version(name: str) -> str | None:
    try:
        return pkg_version(name)
    except PackageNotFoundError:
        return None


__all__ = ["get_version", "get_version_info", "version_command"]
