"""Tests for mosaic retention."""

from collections import namedtuple
from unittest.mock import patch

import pytest

from jamgrid.services.retention import GIB, RetentionManager

DiskUsage = namedtuple("DiskUsage", "total used free")


@pytest.fixture
def folders(tmp_path):
    mosaics = tmp_path / "ss-comb"
    masks = tmp_path / "mask-comb"
    mosaics.mkdir()
    masks.mkdir()
    for name in ["20250114-094000.png", "20250114-093000.png", "20250115-000000.png"]:
        (mosaics / name).write_bytes(b"png")
        (masks / name).write_bytes(b"png")
    (mosaics / "notes.txt").write_text("keep")
    return mosaics, masks


def _free(gib: float):
    return patch(
        "jamgrid.services.retention.shutil.disk_usage",
        return_value=DiskUsage(100 * GIB, 0, int(gib * GIB)),
    )


class TestMakeSpaceIfNeeded:
    """Test oldest-first deletion."""

    def test_plenty_of_space(self, folders):
        mosaics, masks = folders
        with _free(50):
            assert RetentionManager(mosaics, masks).make_space_if_needed() is None
        assert len(list(mosaics.glob("*.png"))) == 3

    def test_deletes_oldest_pair_at_threshold(self, folders):
        mosaics, masks = folders
        with _free(5):
            deleted = RetentionManager(mosaics, masks, min_free_gib=5).make_space_if_needed()

        assert deleted == "20250114-093000.png"
        assert not (mosaics / deleted).exists()
        assert not (masks / deleted).exists()
        assert (mosaics / "20250114-094000.png").exists()
        assert (mosaics / "notes.txt").exists()

    def test_missing_mask_is_logged(self, folders):
        mosaics, masks = folders
        (masks / "20250114-093000.png").unlink()
        with _free(1):
            deleted = RetentionManager(mosaics, masks).make_space_if_needed()
        assert deleted == "20250114-093000.png"
        assert not (mosaics / deleted).exists()

    def test_empty_folder(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        with _free(0):
            assert RetentionManager(tmp_path / "a", tmp_path / "b").make_space_if_needed() is None

    def test_disk_stats_error_is_not_raised(self, tmp_path):
        manager = RetentionManager(tmp_path / "missing", tmp_path / "missing-masks")
        assert manager.make_space_if_needed() is None
