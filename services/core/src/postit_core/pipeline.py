"""
Frame sessions: per-stream pipelines from raw sensor frames to the display.

A session processes exactly one stream kind. Frame-ready handlers are called
on the sensor thread; they drop the frame while the overlay suppresses
rendering or while the previous frame is still being processed, otherwise
they hand it to the session's single processing thread. The finished image
is posted to the display thread, which checks suppression once more before
writing it.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Optional, Tuple

import numpy as np

from postit_common.config import ConfigError
from postit_core.background_model import BackgroundModel
from postit_core.config import CoreServiceConfig, MorphologyConfig, StreamKind
from postit_core.depth_mask import extract_depth_mask
from postit_core.display import DisplayDispatcher, DisplaySurface
from postit_core.frame_source import FrameSource
from postit_core.frame_utils import mask_to_bgr, to_bgr
from postit_core.morphology import cleanup, make_structuring_element
from postit_core.mosaic import render_mosaic

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    """Frame counters for one session.

    Each counter has a single writer thread: frames_suppressed is counted on
    the sensor thread, frames_discarded on the display thread.
    """
    frames_received: int = 0
    frames_suppressed: int = 0
    frames_discarded: int = 0
    frames_busy: int = 0
    frames_failed: int = 0
    frames_rendered: int = 0
    processing_time: float = 0.0

    def summary(self) -> str:
        processed = max(1, self.frames_received - self.frames_suppressed - self.frames_busy)
        avg_ms = 1000.0 * self.processing_time / processed
        counts = ", ".join(f"{k}={v}" for k, v in asdict(self).items() if k != "processing_time")
        return f"{counts}, avg_processing={avg_ms:.1f}ms"


class FrameSession(ABC):
    """Base pipeline: threading, drop policy, presentation and display hand-off."""

    stream_kind: StreamKind

    def __init__(self, config: CoreServiceConfig, surface: DisplaySurface,
                 dispatcher: DisplayDispatcher, suppression: threading.Event):
        if config.stream.kind != self.stream_kind:
            raise ConfigError(f"{type(self).__name__} cannot process a {config.stream.kind.value} stream")

        self.config = config
        self.surface = surface
        self.dispatcher = dispatcher
        self.suppression = suppression
        self.resolution: Tuple[int, int] = tuple(config.source.resolution)
        self.kernel = make_structuring_element(self.morphology.kernel_size)
        self.stats = SessionStats()

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{self.stream_kind.value}-session")
        self._busy = False
        self._lock = threading.Lock()

    @property
    def morphology(self) -> MorphologyConfig:
        return self.config.morphology

    def validate_source(self, source: FrameSource):
        """Fail fast when the source or surface does not match this session.

        Raises:
            ConfigError: on a stream kind, resolution, layout or surface mismatch
        """
        if source.stream_kind != self.stream_kind:
            raise ConfigError(f"Source delivers {source.stream_kind.value} frames, "
                              f"session expects {self.stream_kind.value}")
        if tuple(source.resolution) != self.resolution:
            raise ConfigError(f"Source resolution {source.resolution} does not match session {self.resolution}")
        if tuple(self.surface.resolution) != self.resolution:
            raise ConfigError(f"Surface resolution {self.surface.resolution} does not match session {self.resolution}")

    @abstractmethod
    def process(self, *args) -> np.ndarray:
        """Turn one raw frame into the BGR display image. No display access."""

    def present(self, mask: np.ndarray) -> np.ndarray:
        """Final image for a cleaned mask: mosaic tiles or the mask itself in gray."""
        if self.config.mosaic.enabled:
            return render_mosaic(mask, self.config.mosaic)
        return mask_to_bgr(mask)

    def _submit(self, *args) -> bool:
        """Drop or schedule a frame. Returns True if it was scheduled."""
        stats = self.stats
        stats.frames_received += 1
        if stats.frames_received % self.config.stream.stats_interval == 0:
            logger.info(f"{self.stream_kind.value} session: {stats.summary()}")

        if self.suppression.is_set():
            stats.frames_suppressed += 1
            return False

        with self._lock:
            if self._busy:
                stats.frames_busy += 1
                return False
            self._busy = True

        try:
            self._executor.submit(self._process_and_post, *args)
        except RuntimeError:
            # executor shut down
            with self._lock:
                self._busy = False
            return False
        return True

    def _process_and_post(self, *args):
        started = time.perf_counter()
        try:
            image = self.process(*args)
        except Exception:
            self.stats.frames_failed += 1
            logger.exception(f"Error processing {self.stream_kind.value} frame, skipping")
            return
        finally:
            self.stats.processing_time += time.perf_counter() - started
            with self._lock:
                self._busy = False

        if not self.dispatcher.post(self._render, image):
            logger.debug("Display dispatcher unavailable, frame not rendered")

    def _render(self, image: np.ndarray):
        """Runs on the display thread."""
        if self.suppression.is_set():
            self.stats.frames_discarded += 1
            return
        if not self.surface.available:
            return
        self.surface.write_pixels(image, self.surface.stride)
        self.stats.frames_rendered += 1

    def shutdown(self, wait: bool = True):
        """Stop the processing thread; pending frames are discarded."""
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.info(f"{self.stream_kind.value} session stopped: {self.stats.summary()}")


class DepthSession(FrameSession):
    """Depth band mask, cleanup, presentation."""

    stream_kind = StreamKind.DEPTH

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.valid_range: Optional[Tuple[int, int]] = None

    def process(self, buffer, min_valid: Optional[int] = None, max_valid: Optional[int] = None) -> np.ndarray:
        # the sensor's valid range is informational; the band policy decides
        if min_valid is not None and max_valid is not None:
            self.valid_range = (min_valid, max_valid)
        mask = extract_depth_mask(buffer, self.config.depth, self.resolution)
        return self.present(cleanup(mask, self.kernel, self.morphology))

    def on_depth_frame_ready(self, buffer, min_valid: int, max_valid: int) -> bool:
        return self._submit(np.array(buffer, copy=True), min_valid, max_valid)


class ColorSession(FrameSession):
    """Channel conversion, background subtraction, cleanup, presentation."""

    stream_kind = StreamKind.COLOR

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.background = BackgroundModel(self.config.background, self.resolution)

    def validate_source(self, source: FrameSource):
        super().validate_source(source)
        if source.color_format != self.config.source.color_format:
            raise ConfigError(f"Source color format {source.color_format.value} does not match "
                              f"configured {self.config.source.color_format.value}")

    def process(self, buffer) -> np.ndarray:
        frame = to_bgr(buffer, self.config.source.color_format, self.resolution)
        foreground = self.background.apply(frame)
        return self.present(cleanup(foreground, self.kernel, self.morphology))

    def on_color_frame_ready(self, buffer) -> bool:
        return self._submit(np.array(buffer, copy=True))


def create_session(config: CoreServiceConfig, surface: DisplaySurface,
                   dispatcher: DisplayDispatcher, suppression: threading.Event) -> FrameSession:
    """New session for config.stream.kind."""
    if config.stream.kind == StreamKind.COLOR:
        return ColorSession(config, surface, dispatcher, suppression)
    return DepthSession(config, surface, dispatcher, suppression)
