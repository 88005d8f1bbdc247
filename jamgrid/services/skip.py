"""Per-cell capture throttling for low-value grid cells."""

import logging
from collections.abc import Mapping

from jamgrid.config import parse_cell

logger = logging.getLogger(__name__)

Cell = tuple[int, int]


class SkipPolicy:
    """Decides whether a listed cell is skipped this cycle.

    Every cell in the table has a threshold ``n``: it is skipped on ``n - 1``
    consecutive consultations and captured on the ``n``-th, after which its
    counter starts over. A threshold of 0 or 1 never skips. Cells missing from
    the table are always captured.
    """

    def __init__(
        self,
        thresholds: Mapping[Cell, int] | None = None,
        phases: Mapping[Cell, int] | None = None,
    ):
        self._thresholds: dict[Cell, int] = dict(thresholds or {})
        self._counts: dict[Cell, int] = {}
        for cell, phase in (phases or {}).items():
            if cell in self._thresholds:
                self._counts[cell] = phase

    @classmethod
    def from_settings(cls, settings) -> "SkipPolicy":
        thresholds = {parse_cell(key): value for key, value in settings.skip_cells.items()}
        phases = {parse_cell(key): value for key, value in settings.skip_phases.items()}
        return cls(thresholds, phases)

    def record_attempt(self, x: int, y: int) -> bool:
        """Count a capture opportunity for ``(x, y)``; True means skip it."""
        cell = (x, y)
        threshold = self._thresholds.get(cell, 0)
        if threshold <= 1:
            return False

        count = self._counts.get(cell, 0) + 1
        if count >= threshold:
            self._counts[cell] = 0
            return False

        self._counts[cell] = count
        logger.debug(f"Skipping cell [x:{x}, y:{y}] ({count}/{threshold})")
        return True

    def count(self, x: int, y: int) -> int:
        """Current consecutive-skip count of a cell."""
        return self._counts.get((x, y), 0)
