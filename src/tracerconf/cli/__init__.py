"""Command-line interface for tracerconf."""
