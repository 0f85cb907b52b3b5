"""
notevault - keeps a directory tree of markdown notes mirrored in a relational
store, and moves snapshots of that note graph in and out of portable archives.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notevault")
except PackageNotFoundError:
    __version__ = "0.3.0"
