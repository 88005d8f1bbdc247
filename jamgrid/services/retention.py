"""Disk space retention for stored mosaics."""

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

GIB = 1024**3


class RetentionManager:
    """Frees disk space by dropping the oldest mosaic pair.

    Mosaic names start with the batch timestamp, so the oldest mosaic is the
    first one by name. Its twin in the mask mosaic folder goes with it.
    """

    def __init__(self, mosaic_folder: Path, mask_mosaic_folder: Path, min_free_gib: float = 5.0):
        self.mosaic_folder = Path(mosaic_folder)
        self.mask_mosaic_folder = Path(mask_mosaic_folder)
        self.min_free_gib = min_free_gib

    @classmethod
    def from_settings(cls, settings) -> "RetentionManager":
        return cls(settings.ss_comb_folder, settings.mask_comb_folder, settings.min_free_space_gib)

    def free_space_gib(self) -> float:
        return shutil.disk_usage(self.mosaic_folder).free / GIB

    def oldest_mosaic(self) -> str | None:
        names = sorted(p.name for p in self.mosaic_folder.iterdir() if p.suffix == ".png")
        return names[0] if names else None

    def make_space_if_needed(self) -> str | None:
        """Delete the oldest mosaic pair when free space is at or below the threshold.

        Returns the deleted file name, or None when nothing was deleted.
        Errors are logged and never raised.
        """
        try:
            free = self.free_space_gib()
        except OSError as e:
            logger.error(f"error in getting disk stats for [{self.mosaic_folder}]: {e}")
            return None

        logger.info(f"available space: {free:.1f}GB")
        if free > self.min_free_gib:
            return None

        try:
            name = self.oldest_mosaic()
        except OSError as e:
            logger.error(f"failed to read directory [{self.mosaic_folder}]: {e}")
            return None
        if name is None:
            return None

        logger.info(
            f"deleting mosaics from folders [{self.mosaic_folder}, {self.mask_mosaic_folder}]: [{name}]"
        )
        for folder in (self.mosaic_folder, self.mask_mosaic_folder):
            try:
                (folder / name).unlink()
            except OSError as e:
                logger.error(f"failed to delete file [{folder / name}]: {e}")
        return name
