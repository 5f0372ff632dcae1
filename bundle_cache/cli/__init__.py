"""
Command-Line Interface Layer.

This package exposes the bundle fetcher through a Typer application.
"""
