"""Directive Engine command line interface."""

from directive_engine import __version__

__all__ = ["__version__"]
