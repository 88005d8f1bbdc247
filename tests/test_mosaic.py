"""Tests for mosaic composition and cell isolation."""

import asyncio
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from conftest import make_tile
from jamgrid.services import mosaic as mosaic_module
from jamgrid.services.mosaic import (
    LABEL_SIZE,
    MosaicComposer,
    compose_image,
    isolate_image,
)
from jamgrid.tiles import ContentRect, mosaic_path, tile_path

BATCH = "20250114-093000"


@pytest.fixture
def label_rect():
    """A tile whose content area is larger than the label box."""
    return ContentRect(tile_width=120, tile_height=70, left=10, top=10, right=10, bottom=10)


def _content(tile, rect):
    return np.asarray(tile.convert("RGB").crop(rect.box))


class TestComposeIsolate:
    """Test that isolating a composed cell gives back the tile content."""

    def test_round_trip_without_labels(self, small_rect):
        tiles = {(x, y): make_tile(small_rect, x * 10 + y) for x in range(3) for y in range(2)}
        mosaic = compose_image(tiles, rows=2, cols=3, rect=small_rect, annotate=False)

        assert mosaic.size == (3 * small_rect.width, 2 * small_rect.height)
        for (x, y), tile in tiles.items():
            cell = isolate_image(mosaic, x, y, small_rect)
            assert np.array_equal(np.asarray(cell), _content(tile, small_rect))

    def test_labels_only_touch_label_box(self, label_rect):
        """With labels, pixels outside the label box are unchanged."""
        tile = make_tile(label_rect, 3)
        mosaic = compose_image({(1, 0): tile}, rows=1, cols=2, rect=label_rect)

        cell = np.asarray(isolate_image(mosaic, 1, 0, label_rect))
        expected = _content(tile, label_rect)
        outside = np.ones(cell.shape[:2], dtype=bool)
        outside[: LABEL_SIZE[1], : LABEL_SIZE[0]] = False
        assert np.array_equal(cell[outside], expected[outside])
        assert (cell[0, 0] == 255).all()

    def test_missing_cells_are_black(self, small_rect):
        mosaic = compose_image({(0, 0): make_tile(small_rect, 1)}, 2, 2, small_rect, annotate=False)
        blank = np.asarray(isolate_image(mosaic, 1, 1, small_rect))
        assert not blank.any()

    def test_tiles_outside_grid_ignored(self, small_rect):
        mosaic = compose_image({(5, 5): make_tile(small_rect, 1)}, 1, 1, small_rect, annotate=False)
        assert not np.asarray(mosaic).any()

    def test_isolate_outside_mosaic(self, small_rect):
        mosaic = compose_image({}, 1, 1, small_rect)
        with pytest.raises(ValueError):
            isolate_image(mosaic, 1, 0, small_rect)


class TestMosaicComposer:
    """Test the folder based composer."""

    def test_rejects_empty_grid(self, small_rect):
        with pytest.raises(ValueError):
            MosaicComposer(0, 2, small_rect)

    def test_compose_from_folder(self, tmp_path, label_rect):
        tile_folder = tmp_path / "ss"
        out_folder = tmp_path / "ss-comb"
        tile_folder.mkdir()
        out_folder.mkdir()
        tile = make_tile(label_rect, 9)
        tile.save(tile_path(tile_folder, BATCH, 1, 0))

        out = MosaicComposer(1, 2, label_rect).compose(tile_folder, out_folder, BATCH)

        assert out == mosaic_path(out_folder, BATCH)
        with Image.open(out) as mosaic:
            assert mosaic.size == (2 * label_rect.width, label_rect.height)
            cell = np.asarray(isolate_image(mosaic.convert("RGB"), 1, 0, label_rect))
        expected = _content(tile, label_rect)
        # label box aside, the cell matches the tile content
        assert np.array_equal(cell[LABEL_SIZE[1]:], expected[LABEL_SIZE[1]:])

    def test_unreadable_tile_left_blank(self, tmp_path, small_rect):
        tile_folder = tmp_path / "ss"
        tile_folder.mkdir()
        tile_path(tile_folder, BATCH, 0, 0).write_bytes(b"garbage")

        out = MosaicComposer(1, 1, small_rect).compose(tile_folder, tmp_path, BATCH)

        with Image.open(out) as mosaic:
            assert np.asarray(mosaic.convert("RGB")).max() == 0

    def test_tiles_pasted_one_at_a_time(self, tmp_path, small_rect):
        """Each tile is pasted before the next one is opened."""
        tile_folder = tmp_path / "ss"
        tile_folder.mkdir()
        for x in range(2):
            for y in range(2):
                make_tile(small_rect, x * 2 + y).save(tile_path(tile_folder, BATCH, x, y))

        events = []
        real_open = Image.open
        real_paste = mosaic_module.paste_tile

        def tracking_open(*args, **kwargs):
            if isinstance(args[0], Path):
                events.append("open")
            return real_open(*args, **kwargs)

        def tracking_paste(*args):
            events.append("paste")
            real_paste(*args)

        with (
            patch("jamgrid.services.mosaic.Image.open", side_effect=tracking_open),
            patch("jamgrid.services.mosaic.paste_tile", side_effect=tracking_paste),
        ):
            MosaicComposer(2, 2, small_rect).compose(tile_folder, tmp_path, BATCH)

        assert events == ["open", "paste"] * 4

    async def test_isolate_all(self, tmp_path, small_rect):
        mosaics = tmp_path / "ss-comb"
        out = tmp_path / "ss-iso"
        mosaics.mkdir()
        out.mkdir()
        tiles = {}
        for i, batch in enumerate(["20250114-093000", "20250114-094000"]):
            tiles[batch] = make_tile(small_rect, i)
            compose_image({(0, 1): tiles[batch]}, 2, 1, small_rect, annotate=False).save(
                mosaic_path(mosaics, batch)
            )
        (mosaics / "broken.png").write_bytes(b"garbage")

        written = await MosaicComposer(2, 1, small_rect).isolate_all(mosaics, out, 0, 1)

        assert sorted(p.name for p in written) == ["20250114-093000.png", "20250114-094000.png"]
        for batch, tile in tiles.items():
            with Image.open(out / f"{batch}.png") as cell:
                assert np.array_equal(np.asarray(cell.convert("RGB")), _content(tile, small_rect))

    async def test_isolate_all_stops_dispatching(self, tmp_path, small_rect):
        mosaics = tmp_path / "ss-comb"
        mosaics.mkdir()
        compose_image({}, 1, 1, small_rect).save(mosaic_path(mosaics, BATCH))
        stop = asyncio.Event()
        stop.set()

        written = await MosaicComposer(1, 1, small_rect).isolate_all(mosaics, tmp_path, 0, 0, stop)
        assert written == []
