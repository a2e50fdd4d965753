"""FracDAO command line tools."""

from .main import cli, main

__all__ = ["cli", "main"]
