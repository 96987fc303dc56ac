import logging
import sys
from pathlib import Path


def setup_logging(log_path: Path, debug: bool = False, console: bool = False) -> logging.Logger:
    """
    Setup logging configuration for vidx.

    Creates the log file's parent directory (normally the library cache
    directory) and routes the root logger to it.
    Returns configured logger instance.

    Args:
        log_path: Path to the log file
        debug: If True, enable DEBUG level logging (subprocess command lines)
        console: If True, also log to stderr (used by the long-running server)
    """
    log_file = Path(log_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handlers: list = [logging.FileHandler(log_file)]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
