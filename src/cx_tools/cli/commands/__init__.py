"""Typer commands registered on the root ``cx`` application."""
