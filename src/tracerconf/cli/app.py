"""Main application setup for the tracerconf CLI."""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from cyclopts import App, Parameter
from cyclopts.config import Toml

from tracerconf.cli.commands.version import get_version

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

_HELP_EPILOGUE = """
Examples:
  tracerconf config show                         Show configuration from the environment
  tracerconf config show -D JAEGER_SERVICE_NAME=api
  tracerconf config show --spec tracer.toml      Show configuration from a spec file

Environment Variables:
  JAEGER_SERVICE_NAME, JAEGER_SAMPLER_TYPE, JAEGER_SAMPLER_PARAM, JAEGER_PROPAGATION,
  JAEGER_TAGS, JAEGER_ENDPOINT, JAEGER_AGENT_HOST, JAEGER_AGENT_PORT and friends.
"""

app = App(
    name="tracerconf",
    help="Resolve tracing configuration into a ready-to-use tracer.",
    help_epilogue=_HELP_EPILOGUE,
    version=get_version(),
    version_flags=["--version", "-V"],
    default_parameter=Parameter(show_default=True),
    config=[
        Toml("tracerconf.toml", must_exist=False, search_parents=True),
        Toml(
            "pyproject.toml",
            root_keys=("tool", "tracerconf"),
            must_exist=False,
            search_parents=True,
        ),
    ],
)


@app.meta.default
def meta_launcher(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    log_level: Annotated[
        Literal["DEBUG", "INFO", "WARNING", "ERROR"],
        Parameter(
            name="--log-level",
            help="Logging verbosity level.",
            env_var="TRACERCONF_LOG_LEVEL",
        ),
    ] = "WARNING",
) -> object:
    """Configure logging, then dispatch to the selected command.

    Returns
    -------
    object
        Result of the dispatched command.

    Raises
    ------
    ValueError
        Raised when the log level is invalid.
    """
    if log_level not in LOG_LEVELS:
        msg = f"Unsupported log level {log_level!r}."
        raise ValueError(msg)
    logging.basicConfig(level=log_level)
    return app(tokens)


_config_app = App(name="config", help="Configuration inspection.")
_config_app.command("tracerconf.cli.commands.config:show_config", name="show")
app.command(_config_app, alias="cfg")
app.command("tracerconf.cli.commands.version:version_command", name="version", alias="v")


__all__ = ["app"]
