"""CLI package for interacting with the transmission locations service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# The Typer application lives in ``cli.app``; the package root does not
# re-export it, so patching attributes on the ``cli.app`` module keeps working.

__all__ = []
