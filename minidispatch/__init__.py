"""minidispatch - run source files through external minifiers and report sizes."""

from minidispatch.__version__ import __version__

__all__ = ["__version__"]
