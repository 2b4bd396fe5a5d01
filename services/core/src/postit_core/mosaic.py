"""
Mosaic tile rendering.

The mask is divided into cell_size x cell_size cells. One pixel per cell
(at sample_offset) decides whether the cell is active; active cells get a
fill_size x fill_size square of the accent color at their top-left corner.
Cells that would extend past the image edge are never drawn.
"""
import logging
from typing import Tuple

import numpy as np

from postit_core.config import MosaicConfig

logger = logging.getLogger(__name__)


def grid_shape(height: int, width: int, cell_size: int) -> Tuple[int, int]:
    """Number of whole cells (rows, cols) that fit in the image."""
    return height // cell_size, width // cell_size


def sample_cells(mask: np.ndarray, config: MosaicConfig) -> np.ndarray:
    """Boolean (rows, cols) grid: True where the cell's sample pixel is non-zero."""
    cell = config.cell_size
    dx, dy = config.sample_offset
    rows, cols = grid_shape(mask.shape[0], mask.shape[1], cell)

    samples = mask[dy:rows * cell:cell, dx:cols * cell:cell]
    if samples.ndim == 3:
        return samples.any(axis=2)
    return samples != 0


def render_mosaic(mask: np.ndarray, config: MosaicConfig) -> np.ndarray:
    """Render a mask as a BGR mosaic image with the mask's height and width.

    Deterministic and stateless; the mask is only read.
    """
    height, width = mask.shape[:2]
    cell = config.cell_size
    rows, cols = grid_shape(height, width, cell)

    output = np.empty((height, width, 3), dtype=np.uint8)
    output[:] = config.background_color
    if rows == 0 or cols == 0:
        return output

    active = sample_cells(mask, config)

    tile = np.zeros((cell, cell), dtype=bool)
    tile[:config.fill_size, :config.fill_size] = True

    cells = np.repeat(np.repeat(active, cell, axis=0), cell, axis=1)
    filled = cells & np.tile(tile, (rows, cols))

    output[:rows * cell, :cols * cell][filled] = config.accent_color
    return output
