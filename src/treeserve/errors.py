# Exception types shared across the server.
# Created: 2026-10-17
#
# Filesystem failures are reported with the builtin OSError family and are
# mapped to status codes by the router; these cover everything else.

from __future__ import annotations


class TreeserveError(Exception):
    """Base class for treeserve errors."""


class ConfigError(TreeserveError):
    """Invalid startup configuration. The process must not start."""


class PathRejected(TreeserveError):
    """A request path resolves outside the served root."""

    def __init__(self, request_path: str, reason: str = "outside root"):
        super().__init__(f"{reason}: {request_path!r}")
        self.request_path = request_path
        self.reason = reason


class RenderError(TreeserveError):
    """The listing template failed to render."""


class StorageUnavailable(TreeserveError):
    """The root directory cannot currently be read (e.g. stale mount)."""
