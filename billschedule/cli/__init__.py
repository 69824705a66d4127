"""Command-line interface for billschedule."""

from .commands import main

__all__ = ["main"]
