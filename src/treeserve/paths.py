# Path resolver: maps request paths onto the served root.
# Created: 2026-10-17
#
# Pure path arithmetic. Nothing in this module touches the filesystem; the
# root passed in is expected to be canonical already (see ServerConfig).

from __future__ import annotations

import os
import posixpath
from pathlib import Path

from treeserve.errors import PathRejected


def is_within_root(candidate: str | os.PathLike, root: str | os.PathLike) -> bool:
    """Return True if *candidate* is *root* or lies strictly below it.

    Both arguments must already be normalized absolute paths. The separator
    is part of the prefix test, so ``/srv/www-evil`` is not inside ``/srv/www``.
    """
    candidate = os.fspath(candidate)
    root = os.fspath(root)
    if candidate == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return candidate.startswith(prefix)


def normalize_request_path(request_path: str) -> str:
    """Collapse ``.``, ``..`` and repeated separators in a URL path.

    The single leading slash of the URL is dropped first so that leading
    ``..`` segments survive normalization instead of being clamped at ``/``.
    """
    if request_path.startswith("/"):
        request_path = request_path[1:]
    if not request_path:
        return "."
    return posixpath.normpath(request_path)


def resolve(root: str | os.PathLike, request_path: str) -> Path:
    """Resolve *request_path* against *root*.

    Raises:
        PathRejected: the path contains a NUL byte, or once normalized and
            joined it points outside *root* (``..`` escapes, absolute
            overrides such as ``//etc/passwd``).
    """
    if "\x00" in request_path:
        raise PathRejected(request_path, "null byte in path")

    root_str = os.path.normpath(os.fspath(root))
    relative = normalize_request_path(request_path)
    if os.sep != "/":
        relative = relative.replace("/", os.sep)

    # os.path.join discards root when relative is absolute; the containment
    # check below catches that case too.
    joined = os.path.normpath(os.path.join(root_str, relative))

    if not is_within_root(joined, root_str):
        raise PathRejected(request_path)
    return Path(joined)
