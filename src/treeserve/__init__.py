# treeserve: browse and download a single directory tree over HTTP.
# Created: 2026-10-17

__version__ = "1.0.0"
