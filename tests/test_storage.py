# Tests for storage health checks.
# Created: 2026-10-17

import os
from unittest.mock import patch

import pytest

from treeserve.errors import StorageUnavailable
from treeserve.storage import check_storage_health, is_mount_point


class TestIsMountPoint:
    def test_regular_directory(self, tmp_path):
        (tmp_path / "child").mkdir()
        assert is_mount_point(tmp_path / "child") is False

    def test_missing_path(self, tmp_path):
        assert is_mount_point(tmp_path / "missing") is False

    def test_different_device(self, tmp_path):
        child = tmp_path / "mnt"
        child.mkdir()
        real_stat = os.stat

        def fake_stat(path, *args, **kwargs):
            result = real_stat(path, *args, **kwargs)
            if os.fspath(path) == os.fspath(child):
                fields = list(result)
                fields[2] = result.st_dev + 1  # st_dev
                return os.stat_result(fields)
            return result

        with patch("treeserve.storage.os.stat", side_effect=fake_stat):
            assert is_mount_point(child) is True


class TestCheckStorageHealth:
    def test_healthy(self, tmp_path):
        check_storage_health(tmp_path)

    def test_empty_directory_is_healthy(self, tmp_path):
        (tmp_path / "empty").mkdir()
        check_storage_health(tmp_path / "empty")

    def test_missing_directory(self, tmp_path):
        with pytest.raises(StorageUnavailable):
            check_storage_health(tmp_path / "missing")

    def test_io_error(self, tmp_path):
        with patch("treeserve.storage.os.scandir", side_effect=OSError(116, "Stale file handle")):
            with pytest.raises(StorageUnavailable, match="Stale"):
                check_storage_health(tmp_path)
