"""Tests for traffic color classification."""

import numpy as np
import pytest
from PIL import Image

from conftest import png_bytes
from jamgrid.exceptions import TileDecodeError
from jamgrid.services.classifier import (
    BACKGROUND_VALUE,
    DARK_RED,
    DARK_RED_VALUE,
    RED,
    RED_VALUE,
    YELLOW,
    YELLOW_VALUE,
    ColorClassifier,
    color_close,
    compute_mask,
)
from jamgrid.tiles import ContentRect


def _pixels(*colors):
    """A 1 x N RGB array."""
    return np.array([list(colors)], dtype=np.uint8)


class TestComputeMask:
    """Test per-pixel classification."""

    def test_exact_palette_colors(self):
        mask = compute_mask(_pixels(DARK_RED, RED, YELLOW, (255, 255, 255)))
        assert mask.tolist() == [[DARK_RED_VALUE, RED_VALUE, YELLOW_VALUE, BACKGROUND_VALUE]]

    def test_threshold_is_inclusive(self):
        """A channel off by exactly the threshold still matches."""
        near = (YELLOW[0] - 10, YELLOW[1] + 10, YELLOW[2])
        far = (YELLOW[0] - 11, YELLOW[1], YELLOW[2])
        mask = compute_mask(_pixels(near, far), threshold=10)
        assert mask.tolist() == [[YELLOW_VALUE, BACKGROUND_VALUE]]

    def test_every_channel_must_match(self):
        off = (RED[0], RED[1], RED[2] + 40)
        assert compute_mask(_pixels(off)).tolist() == [[BACKGROUND_VALUE]]

    def test_dark_red_takes_priority(self):
        """A pixel within range of both dark red and red classifies dark red."""
        rgb = _pixels(DARK_RED)
        assert color_close(rgb, DARK_RED, 80).all()
        assert color_close(rgb, RED, 80).all()
        assert compute_mask(rgb, threshold=80).tolist() == [[DARK_RED_VALUE]]

    def test_mask_is_total(self):
        """Every pixel gets exactly one of the four mask values."""
        rng = np.random.default_rng(7)
        rgb = rng.integers(0, 256, size=(30, 40, 3), dtype=np.uint8)
        rgb[0, :4] = [DARK_RED, RED, YELLOW, (0, 0, 0)]
        mask = compute_mask(rgb)
        assert mask.shape == (30, 40)
        assert mask.dtype == np.uint8
        assert set(np.unique(mask)) <= {BACKGROUND_VALUE, YELLOW_VALUE, RED_VALUE, DARK_RED_VALUE}


class TestColorClassifier:
    """Test classification of encoded tiles."""

    @pytest.fixture
    def rect(self):
        return ContentRect(tile_width=20, tile_height=10, left=5, top=2, right=5, bottom=2)

    def _tile(self, rect):
        img = Image.new("RGB", (rect.tile_width, rect.tile_height), (255, 255, 255))
        # inside the content rectangle
        img.putpixel((5, 2), YELLOW)
        img.putpixel((6, 2), YELLOW)
        img.putpixel((7, 3), RED)
        img.putpixel((14, 7), DARK_RED)
        # in the margins
        img.putpixel((0, 0), DARK_RED)
        img.putpixel((19, 9), RED)
        img.putpixel((4, 5), YELLOW)
        return img

    def test_counts_only_content_area(self, rect):
        result = ColorClassifier(rect).classify(png_bytes(self._tile(rect)))
        assert (result.yellow, result.red, result.dark_red) == (2, 1, 1)

    def test_mask_covers_whole_tile(self, rect):
        result = ColorClassifier(rect).classify(png_bytes(self._tile(rect)))
        assert result.mask.shape == (rect.tile_height, rect.tile_width)
        assert result.mask[0, 0] == DARK_RED_VALUE

    def test_rgba_input(self, rect):
        img = self._tile(rect).convert("RGBA")
        result = ColorClassifier(rect).classify(png_bytes(img))
        assert result.yellow == 2

    def test_undecodable_bytes(self):
        with pytest.raises(TileDecodeError):
            ColorClassifier().classify(b"not a png")

    def test_classify_file_writes_mask(self, rect, tmp_path):
        tile = tmp_path / "20250114-093000-x0-y0.png"
        tile.write_bytes(png_bytes(self._tile(rect)))
        mask_path = tmp_path / "mask.png"

        result = ColorClassifier(rect).classify_file(tile, mask_path)

        with Image.open(mask_path) as mask:
            assert mask.mode == "L"
            assert mask.size == (rect.tile_width, rect.tile_height)
            assert np.array_equal(np.asarray(mask), result.mask)
