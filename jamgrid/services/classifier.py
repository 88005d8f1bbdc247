"""Traffic color classification of captured tiles."""

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from jamgrid.exceptions import TileDecodeError
from jamgrid.tiles import ContentRect

# Traffic layer palette, in match priority order. Dark red must be tested
# before red since the two are close.
DARK_RED = (169, 39, 39)  # #A92727
RED = (242, 78, 66)  # #F24E42
YELLOW = (255, 207, 67)  # #FFCF43

# Gray level written to the mask for each severity
BACKGROUND_VALUE = 0
YELLOW_VALUE = 100
RED_VALUE = 178
DARK_RED_VALUE = 255

DEFAULT_THRESHOLD = 10


@dataclass
class Classification:
    """Severity mask of one tile with its per-severity pixel counts."""

    mask: np.ndarray
    yellow: int
    red: int
    dark_red: int

    def mask_image(self) -> Image.Image:
        return Image.fromarray(self.mask)


def decode_rgb(png: bytes) -> np.ndarray:
    """Decode image bytes to an ``(H, W, 3)`` uint8 array."""
    try:
        with Image.open(BytesIO(png)) as img:
            return np.asarray(img.convert("RGB"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as e:
        raise TileDecodeError(f"error decoding png image: {e}") from e


def color_close(rgb: np.ndarray, target: tuple[int, int, int], threshold: int) -> np.ndarray:
    """Boolean map of pixels within ``threshold`` of ``target`` on every channel."""
    diff = np.abs(rgb.astype(np.int16) - np.asarray(target, dtype=np.int16))
    return np.all(diff <= threshold, axis=-1)


def compute_mask(rgb: np.ndarray, threshold: int = DEFAULT_THRESHOLD) -> np.ndarray:
    """Classify every pixel; the first matching palette color wins."""
    return np.select(
        [
            color_close(rgb, DARK_RED, threshold),
            color_close(rgb, RED, threshold),
            color_close(rgb, YELLOW, threshold),
        ],
        [DARK_RED_VALUE, RED_VALUE, YELLOW_VALUE],
        default=BACKGROUND_VALUE,
    ).astype(np.uint8)


def count_severities(mask: np.ndarray, rect: ContentRect) -> tuple[int, int, int]:
    """Count yellow, red and dark red pixels inside the content rectangle."""
    left, top, right, bottom = rect.box
    cropped = mask[top:bottom, left:right]
    return (
        int(np.count_nonzero(cropped == YELLOW_VALUE)),
        int(np.count_nonzero(cropped == RED_VALUE)),
        int(np.count_nonzero(cropped == DARK_RED_VALUE)),
    )


class ColorClassifier:
    """Turns tile screenshots into severity masks and counts."""

    def __init__(self, rect: ContentRect | None = None, threshold: int = DEFAULT_THRESHOLD):
        self.rect = rect or ContentRect()
        self.threshold = threshold

    def classify(self, png: bytes) -> Classification:
        rgb = decode_rgb(png)
        mask = compute_mask(rgb, self.threshold)
        yellow, red, dark_red = count_severities(mask, self.rect)
        return Classification(mask=mask, yellow=yellow, red=red, dark_red=dark_red)

    def classify_file(self, tile: Path, mask_path: Path | None = None) -> Classification:
        """Classify a tile on disk, writing the full mask when ``mask_path`` is given."""
        result = self.classify(Path(tile).read_bytes())
        if mask_path is not None:
            result.mask_image().save(mask_path, format="PNG")
        return result
