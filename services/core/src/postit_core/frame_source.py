"""
Frame sources push raw sensor frames to a session.

Depth sources call on_depth_frame_ready(buffer, min_valid, max_valid) with a
flat int16 buffer; color sources call on_color_frame_ready(buffer) with a
flat uint8 buffer in the source's color_format. Resolution and layout are
fixed once the source is started.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from postit_common.config import ConfigError
from postit_core.config import ColorFormat, CoreServiceConfig, DepthMaskConfig, SourceBackend, StreamKind
from postit_core.depth_mask import encode_depth
from postit_core.frame_utils import from_bgr

logger = logging.getLogger(__name__)

DepthCallback = Callable[[np.ndarray, int, int], None]
ColorCallback = Callable[[np.ndarray], None]

# Kinect v1 reliable range in millimetres, reported with every depth frame
MIN_VALID_DEPTH = 800
MAX_VALID_DEPTH = 4000


class FrameSourceError(Exception):
    """Raised when a source cannot be started."""
    pass


class FrameSource(ABC):
    """Base class for sensor adapters."""

    def __init__(self, stream_kind: StreamKind, resolution: Tuple[int, int],
                 color_format: ColorFormat = ColorFormat.BGRA, fps: float = 30.0):
        self._stream_kind = stream_kind
        self._resolution = (int(resolution[0]), int(resolution[1]))
        self._color_format = color_format
        self.fps = fps
        self.on_depth_frame_ready: Optional[DepthCallback] = None
        self.on_color_frame_ready: Optional[ColorCallback] = None
        self.frames_delivered = 0

    @property
    def stream_kind(self) -> StreamKind:
        return self._stream_kind

    @property
    def resolution(self) -> Tuple[int, int]:
        """(width, height)"""
        return self._resolution

    @property
    def color_format(self) -> ColorFormat:
        return self._color_format

    def start(self, on_depth_frame_ready: Optional[DepthCallback] = None,
              on_color_frame_ready: Optional[ColorCallback] = None):
        """Start delivering frames to the callback for this source's stream kind.

        Raises:
            FrameSourceError: if the callback is missing or the device fails to start
        """
        if self._stream_kind == StreamKind.DEPTH and on_depth_frame_ready is None:
            raise FrameSourceError("Depth source started without on_depth_frame_ready")
        if self._stream_kind == StreamKind.COLOR and on_color_frame_ready is None:
            raise FrameSourceError("Color source started without on_color_frame_ready")
        self.on_depth_frame_ready = on_depth_frame_ready
        self.on_color_frame_ready = on_color_frame_ready
        self._start()

    @abstractmethod
    def _start(self):
        pass

    @abstractmethod
    def stop(self):
        pass


class ThreadedFrameSource(FrameSource):
    """Delivers frames from a daemon thread at a fixed rate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _start(self):
        if self.running:
            return
        self._open()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=f"{type(self).__name__}", daemon=True)
        self._thread.start()
        logger.info(f"{type(self).__name__} started: {self._stream_kind.value} "
                    f"{self._resolution[0]}x{self._resolution[1]} @ {self.fps} fps")

    def _open(self):
        """Acquire the device; raise FrameSourceError on failure."""
        pass

    def _close(self):
        pass

    def _run(self):
        period = 1.0 / self.fps
        while not self._stop_event.is_set():
            started = time.monotonic()
            self._deliver_next()
            self._stop_event.wait(max(0.0, period - (time.monotonic() - started)))

    @abstractmethod
    def _deliver_next(self):
        pass

    def _deliver(self, buffer: np.ndarray, min_valid: int = MIN_VALID_DEPTH, max_valid: int = MAX_VALID_DEPTH):
        try:
            if self._stream_kind == StreamKind.DEPTH:
                self.on_depth_frame_ready(buffer, min_valid, max_valid)
            else:
                self.on_color_frame_ready(buffer)
        except Exception:
            # keep the sensor thread alive, the next frame may be fine
            logger.exception("Frame callback raised")
        self.frames_delivered += 1

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
            logger.info(f"{type(self).__name__} stopped after {self.frames_delivered} frames")
        self._close()


class MockFrameSource(ThreadedFrameSource):
    """Synthetic frames for running without a sensor.

    Depth: a near blob (tagged with player-index flag bits) moving over a far
    background. Color: a colored disc moving over a static noisy background.
    """

    def __init__(self, stream_kind: StreamKind, resolution: Tuple[int, int] = (640, 480),
                 color_format: ColorFormat = ColorFormat.BGRA, fps: float = 30.0,
                 depth_config: Optional[DepthMaskConfig] = None, seed: int = 0,
                 near_intensity: int = 40, far_intensity: int = 200):
        super().__init__(stream_kind, resolution, color_format, fps)
        self.depth_config = depth_config or DepthMaskConfig()
        self.near_intensity = near_intensity
        self.far_intensity = far_intensity
        self.frame_index = 0
        self._rng = np.random.default_rng(seed)

        width, height = self._resolution
        self._yy, self._xx = np.mgrid[0:height, 0:width]
        self._background = self._rng.integers(60, 120, size=(height, width, 3), dtype=np.uint8)

    def _blob(self, index: int) -> np.ndarray:
        """Boolean disc following a Lissajous path."""
        width, height = self._resolution
        t = index / self.fps
        cx = width / 2 + width / 3 * np.sin(t * 0.9)
        cy = height / 2 + height / 4 * np.sin(t * 1.3)
        radius = min(width, height) / 6
        return (self._xx - cx) ** 2 + (self._yy - cy) ** 2 <= radius ** 2

    def depth_frame(self, index: int) -> np.ndarray:
        """Flat raw depth buffer for frame `index`."""
        blob = self._blob(index)
        intensity = np.where(blob, self.near_intensity, self.far_intensity)
        players = np.where(blob, 1 + index % 6, 0)
        raw = encode_depth(intensity, self.depth_config.flag_bits, self.depth_config.divisor, players)
        return raw.reshape(-1)

    def color_frame(self, index: int) -> np.ndarray:
        """Flat packed color buffer for frame `index`."""
        image = self._background.copy()
        image[self._blob(index)] = (40, 40, 230)
        return from_bgr(image, self._color_format).reshape(-1)

    def _deliver_next(self):
        if self._stream_kind == StreamKind.DEPTH:
            buffer = self.depth_frame(self.frame_index)
        else:
            buffer = self.color_frame(self.frame_index)
        self.frame_index += 1
        self._deliver(buffer)


class VideoCaptureFrameSource(ThreadedFrameSource):
    """Color frames from a cv2.VideoCapture device (webcam)."""

    def __init__(self, resolution: Tuple[int, int] = (640, 480), color_format: ColorFormat = ColorFormat.BGRA,
                 fps: float = 30.0, device_index: int = 0):
        super().__init__(StreamKind.COLOR, resolution, color_format, fps)
        self.device_index = device_index
        self._capture: Optional[cv2.VideoCapture] = None
        self.read_failures = 0

    def _open(self):
        capture = cv2.VideoCapture(self.device_index)
        if not capture.isOpened():
            capture.release()
            raise FrameSourceError(f"Cannot open video device {self.device_index}")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._resolution[0])
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._resolution[1])
        capture.set(cv2.CAP_PROP_FPS, self.fps)
        self._capture = capture

    def _close(self):
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def _deliver_next(self):
        ok, image = self._capture.read()
        if not ok or image is None:
            self.read_failures += 1
            logger.debug(f"Video device {self.device_index} returned no frame ({self.read_failures} failures)")
            return
        if (image.shape[1], image.shape[0]) != self._resolution:
            image = cv2.resize(image, self._resolution)
        self._deliver(from_bgr(image, self._color_format).reshape(-1))


def create_frame_source(config: CoreServiceConfig) -> FrameSource:
    """Build the configured source for the configured stream kind."""
    source = config.source
    if source.backend == SourceBackend.WEBCAM:
        if config.stream.kind != StreamKind.COLOR:
            raise ConfigError("The webcam backend only provides color frames")
        return VideoCaptureFrameSource(source.resolution, source.color_format, source.fps, source.device_index)
    return MockFrameSource(config.stream.kind, source.resolution, source.color_format, source.fps,
                           depth_config=config.depth)
