"""
Base service class for PostIt services.

BaseService standardizes service behavior:
- Graceful shutdown handling with signal trapping
- Standard lifecycle methods (start, stop, run) driving ServiceState
- Error recording that stops the service when a task fails
- Statistics tracking

Subclasses set up their own components and then call ``await super().start()``;
``stop()`` is extended by calling ``await super().stop()`` and then releasing
the subclass resources.
"""

import asyncio
import inspect
import logging
import signal
import time
from typing import Coroutine, List, Optional, Union

from postit_common.service_state import ServiceState, StateManager

logger = logging.getLogger(__name__)

_START_STATES = {ServiceState.INITIALIZED, ServiceState.STOPPED}
_RUN_STATES = {ServiceState.STARTED}


class BaseService:
    """Base class for all services in the PostIt system.

    Provides lifecycle management, signal handling for graceful shutdown,
    task supervision and error statistics.
    """

    def __init__(self, service_name: str, service_type: str = "generic"):
        """Initialize the base service.

        Args:
            service_name: Unique name for this service instance
            service_type: Type of service (for logging and monitoring)
        """
        self.service_name = service_name
        self.service_type = service_type

        self._state_manager = StateManager(service_name, ServiceState.INITIALIZING)

        self.tasks: List[Union[asyncio.Task, Coroutine]] = []

        # Statistics
        self.start_time = time.monotonic()
        self.errors = 0

        self._stop_lock = asyncio.Lock()
        self._run_task_handle: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._signals_installed: List[signal.Signals] = []

        self._state_manager.state = ServiceState.INITIALIZED

    @property
    def state(self) -> ServiceState:
        """Get the current service state."""
        return self._state_manager.state

    @state.setter
    def state(self, new_state: ServiceState):
        self._state_manager.state = new_state

    @property
    def running(self) -> bool:
        """Check if the service is currently running."""
        return self.state == ServiceState.RUNNING

    def register_state_callback(self, state: ServiceState, callback):
        """Register a callback for state transitions."""
        self._state_manager.register_state_callback(state, callback)

    async def wait_for_state(self, state: ServiceState, timeout: Optional[float] = None) -> bool:
        """Wait for a specific state."""
        return await self._state_manager.wait_for_state(state, timeout)

    def add_task(self, task_or_coroutine: Union[asyncio.Task, Coroutine]):
        """Register a task to be executed in the service's run loop.

        Coroutines added while the service is running are scheduled
        immediately; otherwise they are converted to tasks by run().
        """
        if task_or_coroutine is None:
            logger.warning(f"{self.service_name}: Attempted to add None as a task - ignoring")
            return

        if task_or_coroutine in self.tasks:
            logger.warning(f"{self.service_name}: Task {task_or_coroutine} already registered - ignoring duplicate")
            return

        if asyncio.iscoroutine(task_or_coroutine) and self.running:
            task = asyncio.create_task(task_or_coroutine)
            task.add_done_callback(self._task_done_callback)
            self.tasks.append(task)
            logger.debug(f"{self.service_name}: Created and scheduled task immediately")
        else:
            self.tasks.append(task_or_coroutine)

    async def _sleep_if_running(self, duration: float) -> bool:
        """Sleep for duration and return whether service is still running.

        Example:
            while self.running:
                ...
                if not await self._sleep_if_running(1.0):
                    break
        """
        if self.state != ServiceState.RUNNING:
            return False
        await asyncio.sleep(duration)
        return self.state == ServiceState.RUNNING

    async def start(self):
        """Start the service.

        Subclasses initialize their components before calling super().start().
        """
        self._state_manager.validate_and_begin_transition('start', _START_STATES, ServiceState.STARTING)
        logger.debug(f"Starting {self.service_type} service: {self.service_name}")
        self.start_time = time.monotonic()
        self._stop_requested = False
        self._state_manager.complete_transition('start', ServiceState.STARTING, ServiceState.STARTED)

    async def stop(self):
        """Stop the service and clean up resources.

        Cancels the run task and all registered tasks. Safe to call more than once.
        """
        async with self._stop_lock:
            if self.state == ServiceState.STOPPED:
                logger.debug(f"Service {self.service_name} is already STOPPED. Ignoring stop call.")
                return

            logger.debug(f"Stopping {self.service_name} (lock acquired)...")
            self.state = ServiceState.STOPPING

            current_task = asyncio.current_task()
            run_task = self._run_task_handle
            # run() calls stop() itself once its tasks are done
            if run_task and not run_task.done() and run_task is not current_task:
                run_task.cancel()
                try:
                    await run_task
                except asyncio.CancelledError:
                    logger.debug(f"Main run task of {self.service_name} was cancelled as expected.")
                except Exception as e:
                    logger.warning(f"Main run task of {self.service_name} raised during cancellation: {e!r}",
                                   exc_info=True)

            await self._clear_tasks()

            self.state = ServiceState.STOPPED
            logger.debug(f"Service {self.service_name} stopped")

    def _request_stop(self, suffix: str):
        """Schedule stop() without blocking the caller; the task is named "{service_name}-{suffix}-stop"."""
        if self.state in (ServiceState.STOPPING, ServiceState.STOPPED):
            logger.debug(f"Stop already requested/completed for {self.service_name}")
            return

        if self._stop_requested:
            logger.debug(f"Stop already requested for {self.service_name} ({suffix})")
            return

        self._stop_requested = True
        logger.info(f"Shutdown requested for {self.service_name} ({suffix})")
        asyncio.create_task(self.stop(), name=f"{self.service_name}-{suffix}-stop")

    def request_stop(self):
        """Request a graceful shutdown of the service.

        Useful from within a service task or callback, where awaiting stop()
        would cancel the caller.
        """
        self._request_stop("requested")

    async def _clear_tasks(self):
        """Cancel pending tasks, close unstarted coroutines and reset the task list."""
        if not self.tasks:
            return

        logger.debug(f"Cleaning up {len(self.tasks)} registered tasks for {self.service_name}.")
        pending = []
        for task in self.tasks:
            if isinstance(task, asyncio.Task):
                if not task.done() and task is not asyncio.current_task():
                    logger.debug(f"Cancelling uncompleted task in {self.service_name}: {task.get_name()}")
                    task.cancel()
                    pending.append(task)
            elif inspect.iscoroutine(task):
                task.close()
        self.tasks = []

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(self._handle_signal_async(s)))
                self._signals_installed.append(sig)
            except (NotImplementedError, RuntimeError) as e:
                # not the main thread, or a platform without loop signal support
                logger.debug(f"Cannot install handler for {sig.name}: {e}")

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed = []

    async def run(self):
        """Run the service until stopped.

        Executes all registered tasks concurrently. A task that raises is
        recorded and triggers a graceful stop.
        """
        if not self.tasks:
            raise RuntimeError("No tasks registered for service")

        self._state_manager.validate_and_begin_transition('run', _RUN_STATES, ServiceState.RUNNING)
        logger.debug(f"Service {self.service_name} running")

        self._run_task_handle = asyncio.current_task()
        self._install_signal_handlers()

        try:
            task_objects = []
            for task in self.tasks:
                if inspect.iscoroutine(task):
                    task = asyncio.create_task(task, name=f"{self.service_name}-{task.__name__}")
                    task.add_done_callback(self._task_done_callback)
                task_objects.append(task)
            self.tasks = list(task_objects)

            results = await asyncio.gather(*task_objects, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Task error in service {self.service_name} during gather: {result!r}")
        except asyncio.CancelledError:
            logger.debug(f"Service {self.service_name} run task was cancelled")
        finally:
            self._remove_signal_handlers()
            if self.state not in (ServiceState.STOPPING, ServiceState.STOPPED):
                # tasks finished on their own, nobody asked us to stop
                await self.stop()
            logger.debug(f"Service {self.service_name} run() completed. Final state: {self.state.value}")

    async def _handle_signal_async(self, sig):
        """Handle SIGINT/SIGTERM in the event loop by stopping the service."""
        signal_name = signal.Signals(sig).name
        if self.state in (ServiceState.STOPPING, ServiceState.STOPPED):
            logger.debug(f"Service {self.service_name} already {self.state.value}, ignoring {signal_name}")
            return

        logger.info(f"Received signal {signal_name}, shutting down {self.service_name} gracefully...")
        try:
            await self.stop()
        except Exception as e:
            logger.error(f"Error during signal-initiated stop for {self.service_name}: {e}", exc_info=True)
            self.record_error(e)
            self.state = ServiceState.STOPPED

    def _task_done_callback(self, task: asyncio.Task):
        """Detect task errors as they happen rather than when gather returns."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return

        logger.error(f"Error detected in task {task.get_name()}: {exc!r}")
        self.record_error(exc)
        if self.state == ServiceState.RUNNING:
            logger.warning(f"Scheduling service {self.service_name} to stop due to task error")
            self._request_stop("task-error")

    def record_error(self, error: Exception, is_fatal: bool = False, custom_message: Optional[str] = None):
        """Record an error and update service statistics.

        Args:
            error: The exception that occurred
            is_fatal: Fatal errors also request a graceful shutdown
            custom_message: Optional custom message to log instead of default format
        """
        self.errors += 1
        log_message = custom_message or \
            f"{'Fatal error' if is_fatal else 'Error'} in service {self.service_name}: {error!r}"
        logger.error(log_message, exc_info=error)

        if is_fatal:
            self._request_stop("fatal-error")

    def get_task_names(self) -> List[str]:
        """Names of the registered tasks, without the service name prefix."""
        names = []
        for task in self.tasks:
            if isinstance(task, asyncio.Task):
                name = task.get_name()
                prefix = f"{self.service_name}-"
                names.append(name[len(prefix):] if name.startswith(prefix) else name)
            else:
                names.append(getattr(task, '__name__', str(task)))
        return names
