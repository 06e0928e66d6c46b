"""Command-line interface for threadbot."""
