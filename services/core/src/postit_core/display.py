"""
Display surfaces and the display-owning dispatcher.

The surface's pixel buffer is written only from the thread that claimed it
(the core service's event loop thread). Other threads hand work to that
thread through DisplayDispatcher: post() is fire-and-forget, invoke() waits
for the result like a UI dispatcher's Invoke.
"""
import asyncio
import concurrent.futures
import logging
import threading
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from postit_core.config import DisplayBackend, DisplayConfig

logger = logging.getLogger(__name__)

ESC_KEY = 27


class DisplaySurface:
    """Headless BGR surface; subclasses override present() to show the buffer."""

    channels = 3

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.stride = width * self.channels
        self.buffer = np.zeros((height, width, self.channels), dtype=np.uint8)
        self.frames_written = 0
        self.quit_requested = False
        self.closed = False
        self._owner_thread: Optional[int] = None

    @property
    def resolution(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def available(self) -> bool:
        return not self.closed

    def claim(self):
        """Make the calling thread the only one allowed to write pixels."""
        self._owner_thread = threading.get_ident()

    def open(self):
        self.closed = False

    def write_pixels(self, pixels: np.ndarray, stride: int):
        """Copy a complete BGR frame into the buffer and present it.

        Raises:
            RuntimeError: if called from a thread other than the owner
            ValueError: if the stride or size does not match the surface
        """
        if self._owner_thread is not None and threading.get_ident() != self._owner_thread:
            raise RuntimeError("DisplaySurface written from a thread that does not own it")
        if stride != self.stride:
            raise ValueError(f"Stride {stride} does not match surface stride {self.stride}")

        pixels = np.asarray(pixels)
        if pixels.dtype != np.uint8 or pixels.size != self.buffer.size:
            raise ValueError(f"Pixel buffer {pixels.shape}/{pixels.dtype} does not match "
                             f"surface {self.buffer.shape}/uint8")
        if pixels.ndim == 3 and pixels.shape != self.buffer.shape:
            raise ValueError(f"Pixel buffer shape {pixels.shape} does not match surface {self.buffer.shape}")

        if self.closed:
            logger.debug("Surface closed, dropping write")
            return

        np.copyto(self.buffer, pixels.reshape(self.buffer.shape))
        self.frames_written += 1
        self.present()

    def present(self):
        pass

    def poll(self):
        """Process pending UI events. Called periodically from the owner thread."""
        pass

    def close(self):
        self.closed = True


class OpenCVWindowSurface(DisplaySurface):
    """HighGUI window showing the buffer; ESC or 'q' requests quit."""

    def __init__(self, width: int, height: int, window_name: str = "PostIt", fullscreen: bool = False):
        super().__init__(width, height)
        self.window_name = window_name
        self.fullscreen = fullscreen
        self.window_created = False
        self._gui_ok = True

    @property
    def available(self) -> bool:
        return self._gui_ok and not self.closed

    def open(self):
        """Create and configure the window."""
        super().open()
        if self.window_created:
            return
        try:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            if self.fullscreen:
                cv2.setWindowProperty(self.window_name, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
            else:
                cv2.resizeWindow(self.window_name, self.width, self.height)
            self.window_created = True
        except cv2.error as e:
            self._gui_unavailable(e)

    def present(self):
        if not self.available:
            return
        try:
            cv2.imshow(self.window_name, self.buffer)
        except cv2.error as e:
            self._gui_unavailable(e)
            return
        self.poll()

    def poll(self):
        if not self.available or not self.window_created:
            return
        try:
            key = cv2.waitKey(1) & 0xFF
        except cv2.error as e:
            self._gui_unavailable(e)
            return
        if key in (ESC_KEY, ord('q')):
            logger.info("Quit requested from display window")
            self.quit_requested = True

    def _gui_unavailable(self, error: Exception):
        logger.warning(f"Display window unavailable, skipping presents: {error}")
        self._gui_ok = False

    def close(self):
        if self.window_created and self._gui_ok:
            try:
                cv2.destroyWindow(self.window_name)
            except cv2.error as e:
                logger.debug(f"Error destroying window: {e}")
        self.window_created = False
        super().close()


def create_surface(config: DisplayConfig, resolution: Tuple[int, int]) -> DisplaySurface:
    """Build the configured surface for frames of the given (width, height)."""
    width, height = resolution
    if config.backend == DisplayBackend.OPENCV:
        return OpenCVWindowSurface(width, height, config.window_name, config.fullscreen)
    return DisplaySurface(width, height)


class DisplayDispatcher:
    """Marshals work onto the display-owning event loop thread."""

    def __init__(self):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._owner_thread: Optional[int] = None

    def bind(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Bind to an event loop. Must be called from that loop's thread."""
        self._loop = loop or asyncio.get_running_loop()
        self._owner_thread = threading.get_ident()

    def unbind(self):
        self._loop = None
        self._owner_thread = None

    @property
    def available(self) -> bool:
        return self._loop is not None and not self._loop.is_closed()

    def in_owner_thread(self) -> bool:
        return self._owner_thread is not None and threading.get_ident() == self._owner_thread

    def post(self, fn: Callable, *args) -> bool:
        """Schedule fn(*args) on the display thread without waiting.

        Returns:
            False if the dispatcher is unavailable and the work was skipped
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return False
        try:
            loop.call_soon_threadsafe(self._run_posted, fn, args)
        except RuntimeError:
            # loop closed between the check and the call
            return False
        return True

    @staticmethod
    def _run_posted(fn: Callable, args: tuple):
        try:
            fn(*args)
        except Exception:
            logger.exception(f"Error in posted display callback {getattr(fn, '__name__', fn)}")

    def invoke(self, fn: Callable, *args, timeout: Optional[float] = None) -> bool:
        """Run fn(*args) on the display thread and wait for it to finish.

        Runs inline when already on the display thread. Exceptions raised by
        fn propagate to the caller.

        Returns:
            True if fn ran, False if the dispatcher was unavailable or the
            call did not complete within timeout
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return False

        if self.in_owner_thread():
            fn(*args)
            return True

        future: concurrent.futures.Future = concurrent.futures.Future()

        def _call():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)

        try:
            loop.call_soon_threadsafe(_call)
        except RuntimeError:
            return False

        try:
            future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning(f"Display invoke timed out after {timeout}s, skipping")
            return False
        return True
