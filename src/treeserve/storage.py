# Storage health checks for roots on mounted (often network) filesystems.
# Created: 2026-10-17

from __future__ import annotations

import logging
import os

from treeserve.errors import StorageUnavailable

logger = logging.getLogger(__name__)


def is_mount_point(path: str | os.PathLike) -> bool:
    """True when *path* lives on a different device than its parent."""
    try:
        st = os.stat(path)
        parent_st = os.stat(os.path.dirname(os.path.normpath(os.fspath(path))) or os.sep)
    except OSError:
        return False
    return st.st_dev != parent_st.st_dev


def check_storage_health(path: str | os.PathLike) -> None:
    """Read the directory once to confirm the backing storage responds.

    Raises:
        StorageUnavailable: the directory could not be enumerated.
    """
    try:
        with os.scandir(path) as it:
            next(it, None)
    except OSError as e:
        logger.warning("Storage health check failed: %s", e)
        raise StorageUnavailable(str(e)) from e
