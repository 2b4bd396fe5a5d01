"""
Adaptive background subtraction for color streams.

Wraps OpenCV's K-nearest-neighbour subtractor. Each pixel keeps a bounded
history of recent samples (history frames, sampled internally); a pixel is
background when at least knn_samples of them lie within dist2_threshold
(squared distance) of the new value. Every apply() also updates the history.

A model belongs to one session and is only used from that session's
processing thread; cv2 subtractors are not thread-safe.
"""
import logging
from typing import Tuple

import cv2
import numpy as np

from postit_core.config import BackgroundModelConfig, MaskOutput

logger = logging.getLogger(__name__)


class BackgroundModel:
    """Stateful KNN foreground classifier for fixed-size BGR frames."""

    def __init__(self, config: BackgroundModelConfig, frame_size: Tuple[int, int]):
        """
        Args:
            config: Subtractor parameters, fixed for the model's lifetime
            frame_size: (width, height) of every frame passed to apply()
        """
        self.config = config.model_copy()
        self.frame_size = tuple(frame_size)
        self._learning_rate = self.config.learning_rate
        self.frames_applied = 0
        self._subtractor = self._create_subtractor()

    def _create_subtractor(self):
        subtractor = cv2.createBackgroundSubtractorKNN(
            history=self.config.history,
            dist2Threshold=self.config.dist2_threshold,
            detectShadows=self.config.detect_shadows,
        )
        subtractor.setkNNSamples(self.config.knn_samples)
        subtractor.setShadowValue(self.config.shadow_value)
        logger.debug(f"Created KNN background model: history={self.config.history}, "
                     f"dist2={self.config.dist2_threshold}, k={self.config.knn_samples}, "
                     f"shadows={self.config.detect_shadows}, size={self.frame_size}")
        return subtractor

    @property
    def shape(self) -> Tuple[int, int]:
        """(height, width) of the masks this model produces."""
        width, height = self.frame_size
        return height, width

    def apply(self, frame: np.ndarray) -> np.ndarray:
        """Classify a BGR frame and update the model.

        Returns:
            uint8 mask: 0 for background, 255 for foreground. In grayscale
            mode detected shadows keep shadow_value; in binary mode they are
            folded into the background.
        """
        foreground = self._subtractor.apply(frame, learningRate=self._learning_rate)
        self.frames_applied += 1

        if self.config.mask_output == MaskOutput.GRAYSCALE:
            return foreground

        if self.config.detect_shadows:
            foreground = np.where(foreground == self.config.shadow_value, 0, foreground)
        return np.where(foreground > 0, 255, 0).astype(np.uint8)

    def reset(self):
        """Forget the learned background."""
        self._subtractor = self._create_subtractor()
        self.frames_applied = 0
        logger.info("Background model reset")
