import logging
import sys
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

def setup_logging(debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for encz.

    Logs always go to stderr so they do not mix with the progress line on
    stdout. When log_path is given, the same records are also appended there.

    Args:
        debug: If True, enable DEBUG level logging (encoder commands, tool stderr)
        log_path: Optional path to a log file; parent directories are created
    """
    level = logging.DEBUG if debug else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.debug(f"Logging initialized: {log_path or 'stderr'} (debug={'ON' if debug else 'OFF'})")

    return logger
