"""
Morphological cleanup of binary masks.

All operations replicate edge pixels outward (cv2.BORDER_REPLICATE), so the
first and last kernel_size // 2 rows and columns are filtered against copies
of the edge instead of a constant border.
"""
import logging

import cv2
import numpy as np

from postit_core.config import MorphologyConfig

logger = logging.getLogger(__name__)

BORDER = cv2.BORDER_REPLICATE


def make_structuring_element(size: int = 9) -> np.ndarray:
    """Square, uniform, read-only kernel of odd side `size`."""
    if size < 1 or size % 2 == 0:
        raise ValueError(f"Structuring element size must be odd and >= 1, got {size}")
    kernel = np.ones((size, size), dtype=np.uint8)
    kernel.setflags(write=False)
    return kernel


def close(mask: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """Dilate then erode with the same kernel: fills small holes, joins nearby blobs."""
    return cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel, borderType=BORDER)


def erode(mask: np.ndarray, kernel: np.ndarray, iterations: int = 1) -> np.ndarray:
    """Shrink bright regions, removing speckle smaller than the kernel."""
    if iterations <= 0:
        return mask.copy()
    return cv2.erode(mask, kernel, iterations=iterations, borderType=BORDER)


def cleanup(mask: np.ndarray, kernel: np.ndarray, config: MorphologyConfig) -> np.ndarray:
    """Erosion (if configured) followed by closing (if enabled). The input is never modified."""
    result = mask
    if config.erode_iterations > 0:
        result = erode(result, kernel, config.erode_iterations)
    if config.close:
        result = close(result, kernel)
    if result is mask:
        result = mask.copy()
    return result
