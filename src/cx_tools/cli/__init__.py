"""Command-line interface for cx-tools."""
