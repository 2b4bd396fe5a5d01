"""
Timed text overlay.

The OverlayTimer fires every `interval` seconds. Each firing starts one
OverlayAnimationController run on a dedicated worker thread, unless a run
is already in progress, in which case the tick is ignored.

A run suppresses normal frame rendering, slides the text lines up into the
frame one sweep step at a time (each step rendered through the mosaic),
holds the last frame and then lets normal rendering resume. Pixel writes
are marshalled onto the display thread; the sleeps happen on the worker.
"""
import asyncio
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from postit_core.config import MosaicConfig, OverlayConfig
from postit_core.display import DisplayDispatcher, DisplaySurface
from postit_core.mosaic import render_mosaic

logger = logging.getLogger(__name__)

FONT = cv2.FONT_HERSHEY_PLAIN
TEXT_VALUE = 255


class OverlayState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


def render_overlay_frame(offset: int, config: OverlayConfig, resolution: Tuple[int, int]) -> np.ndarray:
    """Single-channel frame with every text line shifted down by `offset` pixels."""
    width, height = resolution
    canvas = np.zeros((height, width), dtype=np.uint8)
    for line in config.lines:
        cv2.putText(canvas, line.text, (line.x, line.y + offset), FONT,
                    config.font_scale, TEXT_VALUE, config.thickness, cv2.LINE_8)
    return canvas


class OverlayAnimationController:
    """Runs the overlay animation; at most one run at a time."""

    def __init__(
        self,
        config: OverlayConfig,
        mosaic: MosaicConfig,
        surface: DisplaySurface,
        dispatcher: DisplayDispatcher,
        suppression: threading.Event,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.mosaic = mosaic
        self.surface = surface
        self.dispatcher = dispatcher
        self.suppression = suppression
        self._sleep = sleep

        self._lock = threading.Lock()
        self._state = OverlayState.IDLE

        self.runs_started = 0
        self.runs_completed = 0
        self.ticks_ignored = 0
        self.steps_drawn = 0
        self.steps_skipped = 0

    @property
    def state(self) -> OverlayState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == OverlayState.RUNNING

    def sweep_offsets(self) -> range:
        """Vertical offsets of the sweep, end inclusive."""
        return range(self.config.sweep_start, self.config.sweep_end + 1, self.config.sweep_step)

    def start(self, executor: Executor) -> Optional[Future]:
        """Submit one run to `executor` unless a run is in progress.

        Returns:
            The run's future, or None if the tick was ignored
        """
        with self._lock:
            if self._state == OverlayState.RUNNING:
                self.ticks_ignored += 1
                logger.debug("Overlay already running, ignoring tick")
                return None
            self._state = OverlayState.RUNNING
            self.runs_started += 1

        try:
            return executor.submit(self.run_once)
        except RuntimeError:
            # executor already shut down
            with self._lock:
                self._state = OverlayState.IDLE
            logger.debug("Overlay worker shut down, tick ignored")
            return None

    def run_once(self):
        """Perform one full animation. Always clears suppression and returns to IDLE."""
        logger.info("Overlay animation starting")
        try:
            self.suppression.set()
            self._sleep(self.config.pre_delay)
            for offset in self.sweep_offsets():
                self._draw_step(offset)
                self._sleep(self.config.step_delay)
            self._sleep(self.config.hold_delay)
        finally:
            self.suppression.clear()
            with self._lock:
                self._state = OverlayState.IDLE
                self.runs_completed += 1
            logger.info(f"Overlay animation finished ({self.steps_drawn} steps drawn, "
                        f"{self.steps_skipped} skipped in total)")

    def _draw_step(self, offset: int):
        if not (self.surface.available and self.dispatcher.available):
            self.steps_skipped += 1
            logger.debug(f"Display unavailable, skipping overlay step at offset {offset}")
            return

        text = render_overlay_frame(offset, self.config, self.surface.resolution)
        frame = render_mosaic(text, self.mosaic)

        if self.dispatcher.invoke(self.surface.write_pixels, frame, self.surface.stride,
                                  timeout=self.config.draw_timeout):
            self.steps_drawn += 1
        else:
            self.steps_skipped += 1


class OverlayTimer:
    """Periodic trigger for an OverlayAnimationController."""

    def __init__(self, controller: OverlayAnimationController, interval: float,
                 executor: Optional[Executor] = None):
        self.controller = controller
        self.interval = interval
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="overlay")
        self.fired = 0

    def fire(self) -> Optional[Future]:
        """One tick: start a run if the controller is idle."""
        self.fired += 1
        future = self.controller.start(self.executor)
        if future is not None:
            future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: Future):
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Overlay animation failed", exc_info=exc)

    async def run(self):
        """Fire every `interval` seconds until cancelled."""
        logger.info(f"Overlay timer running every {self.interval}s")
        while True:
            await asyncio.sleep(self.interval)
            self.fire()

    def shutdown(self, wait: bool = True):
        """Stop accepting ticks; with wait=True block until a running overlay finishes."""
        self.executor.shutdown(wait=wait)
