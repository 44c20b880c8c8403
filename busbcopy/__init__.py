"""Parallel image and file-tree copier for batches of USB storage devices."""

from .__version__ import __version__

__all__ = ["__version__"]
