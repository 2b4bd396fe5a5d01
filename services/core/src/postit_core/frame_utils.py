"""
Conversions between raw color buffers and the canonical BGR numpy image.
"""
from typing import Tuple

import cv2
import numpy as np

from postit_core.config import ColorFormat

_TO_BGR = {
    ColorFormat.BGRA: cv2.COLOR_BGRA2BGR,
    ColorFormat.RGB: cv2.COLOR_RGB2BGR,
    ColorFormat.RGBA: cv2.COLOR_RGBA2BGR,
}

_FROM_BGR = {
    ColorFormat.BGRA: cv2.COLOR_BGR2BGRA,
    ColorFormat.RGB: cv2.COLOR_BGR2RGB,
    ColorFormat.RGBA: cv2.COLOR_BGR2RGBA,
}


def to_bgr(buffer, color_format: ColorFormat, resolution: Tuple[int, int]) -> np.ndarray:
    """Turn a packed color buffer (flat or shaped) into a (height, width, 3) BGR image."""
    width, height = resolution
    image = np.asarray(buffer, dtype=np.uint8).reshape(height, width, color_format.channels)
    if color_format == ColorFormat.BGR:
        return np.ascontiguousarray(image)
    return cv2.cvtColor(image, _TO_BGR[color_format])


def from_bgr(image: np.ndarray, color_format: ColorFormat) -> np.ndarray:
    """Pack a BGR image into the given channel layout."""
    if color_format == ColorFormat.BGR:
        return image.copy()
    return cv2.cvtColor(image, _FROM_BGR[color_format])


def mask_to_bgr(mask: np.ndarray) -> np.ndarray:
    """Expand a single-channel mask to three identical channels."""
    return cv2.cvtColor(mask, cv2.COLOR_GRAY2BGR)
