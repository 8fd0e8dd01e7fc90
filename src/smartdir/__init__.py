"""smartdir: classify, index, search, and deduplicate the files in a directory tree."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("smartdir")
except PackageNotFoundError:
    # Source checkout without an installed distribution.
    __version__ = "0.0.0"

__all__ = ["__version__"]
