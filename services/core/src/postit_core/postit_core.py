"""
PostIt Core Service: sensor frames in, mosaic silhouettes out.

This service owns:
- One frame session (depth or color) and its processing thread
- The frame source feeding it
- The display surface and the dispatcher bound to this event loop
- The periodic text overlay
"""
import argparse
import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional

from postit_common.base_service import BaseService
from postit_common.logger import setup_logging
from postit_core.config import DEFAULT_CONFIG_PATH, CoreServiceConfig, StreamKind
from postit_core.display import DisplayDispatcher, DisplaySurface, create_surface
from postit_core.frame_source import FrameSource, FrameSourceError, create_frame_source
from postit_core.overlay import OverlayAnimationController, OverlayTimer
from postit_core.pipeline import FrameSession, create_session

SERVICE_TYPE = "core"

logger = setup_logging(__name__, log_filename=f"{SERVICE_TYPE}.log")

DISPLAY_POLL_INTERVAL = 0.05  # seconds between UI event pumps


class PostItCoreService(BaseService):
    """
    Runs one frame session against a display surface, with the timed overlay
    preempting normal rendering.

    The event loop thread is the display-owning thread: it claims the surface
    and every pixel write arrives through the dispatcher.
    """

    def __init__(self, config: CoreServiceConfig,
                 surface: Optional[DisplaySurface] = None,
                 source: Optional[FrameSource] = None):
        """
        Args:
            config: Service configuration
            surface: Display surface, built from config.display if omitted
            source: Frame source, built from config.source if omitted
        """
        super().__init__(service_name=config.service_name, service_type=SERVICE_TYPE)
        self.config = config

        self.dispatcher = DisplayDispatcher()
        self.suppression = threading.Event()
        self.surface = surface or create_surface(config.display, config.source.resolution)
        self._source_override = source

        self.source: Optional[FrameSource] = None
        self.session: Optional[FrameSession] = None
        self.overlay: Optional[OverlayAnimationController] = None
        self.overlay_timer: Optional[OverlayTimer] = None
        self.source_started = False

    async def start(self):
        """Bind the display, build the session, start the source and register tasks."""
        logger.info(f"Starting PostIt Core Service ({self.config.stream.kind.value} stream)")

        self.dispatcher.bind(asyncio.get_running_loop())
        self.surface.claim()
        self.surface.open()

        self.session = create_session(self.config, self.surface, self.dispatcher, self.suppression)
        try:
            self.source = self._source_override or create_frame_source(self.config)
            self.session.validate_source(self.source)
        except Exception:
            self.session.shutdown(wait=False)
            self.session = None
            self.source = None
            self.surface.close()
            self.dispatcher.unbind()
            raise

        self._start_source()

        if self.config.overlay.enabled:
            self.overlay = OverlayAnimationController(
                self.config.overlay, self.config.mosaic, self.surface, self.dispatcher, self.suppression
            )
            self.overlay_timer = OverlayTimer(self.overlay, self.config.overlay.interval)
            self.add_task(self.overlay_timer.run())

        self.add_task(self._display_watch_loop())

        # Call parent start LAST
        await super().start()

        logger.info("PostIt Core Service started successfully")

    def _start_source(self):
        """Start the frame source; a failing sensor leaves the service running without frames."""
        session = self.session
        try:
            if self.config.stream.kind == StreamKind.DEPTH:
                self.source.start(on_depth_frame_ready=session.on_depth_frame_ready)
            else:
                self.source.start(on_color_frame_ready=session.on_color_frame_ready)
            self.source_started = True
        except (FrameSourceError, OSError) as e:
            logger.warning(f"Frame source failed to start, continuing without frames: {e}")
            self.source_started = False

    async def _display_watch_loop(self):
        """Pump display events and stop the service when the window asks to quit."""
        while self.running:
            self.surface.poll()
            if self.surface.quit_requested:
                logger.info("Display requested quit")
                self.request_stop()
                break
            if not await self._sleep_if_running(DISPLAY_POLL_INTERVAL):
                break

    async def stop(self):
        """Stop the service and clean up resources."""
        logger.info("Stopping PostIt Core Service")

        try:
            source, self.source = self.source, None
            if source is not None:
                await asyncio.to_thread(source.stop)

            # the overlay draws through this loop, so wait for it off-loop
            timer, self.overlay_timer = self.overlay_timer, None
            if timer is not None:
                await asyncio.to_thread(timer.shutdown)

            session, self.session = self.session, None
            if session is not None:
                await asyncio.to_thread(session.shutdown)

            self.surface.close()
            self.dispatcher.unbind()
            logger.info("Core service components stopped")

        except Exception as e:
            logger.error(f"Error during Core service component shutdown: {e}", exc_info=True)
            self.record_error(e, is_fatal=False)

        # Stop base service last
        await super().stop()

        logger.info("PostIt Core Service stopped")


async def run_postit_core_service(
    config_path: str | Path = DEFAULT_CONFIG_PATH,
    args: Optional[argparse.Namespace] = None
):
    """
    Run the PostIt Core Service.

    Args:
        config_path: Path to configuration file
        args: CLI arguments from argparse
    """
    config = CoreServiceConfig.from_overrides(
        config_file=config_path,
        args=args
    )

    service = PostItCoreService(config=config)

    await service.start()
    await service.run()
