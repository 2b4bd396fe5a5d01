import logging
from pathlib import Path
from typing import Optional

from postit_common.constants import PROJECT_ROOT, is_production


def get_log_directory() -> Path:
    """
    Determine the log directory for the current environment.

    Returns:
        /var/log/postit/ in production, logs/ under the project root in development
    """
    production = is_production()
    log_dir = Path("/var/log/postit") if production else PROJECT_ROOT / "logs"

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except (PermissionError, OSError) as e:
        if production:
            # the installer is expected to create the production directory
            raise RuntimeError(
                f"Cannot create production log directory {log_dir}. "
                f"Create it with write access for the service user. Error: {e}"
            )
        log_dir = Path.cwd() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_log_file_path(log_filename: str = "postit.log") -> str:
    """Return the full path of a log file, creating it when missing."""
    log_file = get_log_directory() / log_filename
    if not log_file.exists():
        try:
            log_file.touch(exist_ok=True)
        except OSError:
            # read-only filesystem: fall back to the working directory
            log_dir = Path.cwd() / "logs"
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / log_filename
            log_file.touch(exist_ok=True)
    return str(log_file)


def setup_logging(
    name: str = __name__,
    level: int | str = logging.INFO,
    log_filename: Optional[str] = None,
    include_console: Optional[bool] = None,
    external_level: int = logging.WARNING
) -> logging.Logger:
    """
    Setup logging with adaptive file location and quiet third-party loggers.

    Args:
        name: Logger name (usually __name__)
        level: Logging level for the main logger
        log_filename: Log file name, no file logging if None
        include_console: Whether to log to the console. If None, auto-detects:
                        development logs to the console, production does not
        external_level: Level for external libraries

    Returns:
        Configured logger instance
    """
    if include_console is None:
        include_console = not is_production()

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
        if not isinstance(level, int):
            raise ValueError(f'Invalid log level: {level}')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    configure_external_loggers(external_level)

    handlers: list = []

    if log_filename is not None:
        file_handler = logging.FileHandler(get_log_file_path(log_filename))
        file_handler.setLevel(level)
        handlers.append(file_handler)

    if include_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        handlers.append(console_handler)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    for handler in handlers:
        handler.setFormatter(formatter)

    if not name or name == "root":
        root_logger.handlers.clear()
        for handler in handlers:
            root_logger.addHandler(handler)
        return root_logger

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # named loggers propagate to an already configured root
    if root_logger.hasHandlers():
        return logger

    for handler in handlers:
        logger.addHandler(handler)

    return logger


def configure_external_loggers(level=logging.WARNING):
    """Set noisy third-party loggers to `level` (WARNING by default)."""
    for logger_name in [
        "asyncio",
        "concurrent.futures",
    ]:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
        logger.propagate = False
