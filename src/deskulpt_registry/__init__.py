"""Deskulpt widget registry publisher."""

from importlib.metadata import version

__version__ = version("deskulpt-registry")
