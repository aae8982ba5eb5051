"""Module entrypoint for the tracerconf CLI."""

from __future__ import annotations

from tracerconf.cli.app import app


def main() -> None:
    """Run the tracerconf CLI."""
    app.meta()


if __name__ == "__main__":
    main()
