"""JamGrid traffic capture and classification pipeline."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jamgrid")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
