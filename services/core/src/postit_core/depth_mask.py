"""
Depth frame thresholding.

Raw depth samples pack the distance in their upper bits and sensor flags
(the player index on a Kinect) in the low bits. The magnitude is reduced
to an 8-bit intensity and compared against a [low, high) band.
"""
import logging
from typing import Optional, Tuple

import numpy as np

from postit_core.config import BandPolarity, DepthMaskConfig

logger = logging.getLogger(__name__)


def reduce_depth(raw, flag_bits: int = 3, divisor: int = 258) -> np.ndarray:
    """Clear the flag bits of each sample and scale the magnitude to 0-255.

    Samples are read as unsigned 16-bit, so a signed int16 buffer is
    reinterpreted rather than converted.
    """
    samples = np.asarray(raw)
    if samples.dtype == np.int16:
        samples = samples.view(np.uint16)
    elif samples.dtype != np.uint16:
        samples = samples.astype(np.uint16)

    flag_mask = np.uint16(~((1 << flag_bits) - 1) & 0xFFFF)
    reduced = (samples & flag_mask) // divisor
    # only small divisors can overflow a byte
    return np.minimum(reduced, 255).astype(np.uint8)


def extract_depth_mask(raw, config: DepthMaskConfig,
                       resolution: Optional[Tuple[int, int]] = None) -> np.ndarray:
    """Threshold a raw depth frame into a 0/255 mask.

    Args:
        raw: int16/uint16 samples, flat row-major or already (height, width)
        config: band, polarity and reduction parameters
        resolution: (width, height) used to reshape a flat buffer

    Returns:
        uint8 mask with the shape of the (reshaped) input
    """
    intensity = reduce_depth(raw, config.flag_bits, config.divisor)
    if resolution is not None:
        width, height = resolution
        intensity = intensity.reshape(height, width)

    values = intensity.astype(np.int16)
    inside = (values >= config.low) & (values < config.high)
    valid = inside if config.polarity == BandPolarity.INSIDE else ~inside

    return np.where(valid, 255, 0).astype(np.uint8)


def encode_depth(intensity, flag_bits: int = 3, divisor: int = 258, flags=0) -> np.ndarray:
    """Build raw int16 samples that reduce back to `intensity`.

    The magnitude is rounded up to the next multiple of 2**flag_bits so that
    clearing the flag bits keeps it in the same divisor bucket, then `flags`
    are packed into the low bits. Intensities above 253 saturate.
    """
    values = np.asarray(intensity, dtype=np.int64)
    step = 1 << flag_bits
    magnitude = (values * divisor + step - 1) // step * step
    magnitude = np.minimum(magnitude, 0xFFFF & ~(step - 1))
    packed = magnitude | (np.asarray(flags, dtype=np.int64) & (step - 1))
    return packed.astype(np.uint16).view(np.int16)
