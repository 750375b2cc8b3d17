"""Deploy a Windows image onto a blank or reusable disk."""

from .__version__ import __version__


__all__ = ["__version__"]
