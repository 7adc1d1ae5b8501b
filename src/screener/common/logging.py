import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from pythonjsonlogger import jsonlogger  # type: ignore[attr-defined]

LOG_FORMAT = "%(asctime)s - %(levelname)s:%(name)s:%(lineno)d:%(message)s"
JSON_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(lineno)d %(message)s"


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[str] = None,
    filename_prefix: str = "screener",
    console: bool = True,
    file: bool = False,
    json_format: bool = False,
) -> None:
    """Configure logging with timestamps, line numbers and module names.

    Args:
        level: The logging level to use, as an int or a level name (default: logging.INFO)
        log_dir: Directory to store log files (default: ./logs)
        filename_prefix: Prefix for log filename (default: 'screener')
        console: Whether to output logs to console (default: True)
        file: Whether to output logs to file (default: False)
        json_format: Emit one JSON object per record instead of plain text (default: False)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter: logging.Formatter
    if json_format:
        formatter = jsonlogger.JsonFormatter(  # type: ignore[attr-defined]
            fmt=JSON_LOG_FORMAT,
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if file:
        if log_dir is None:
            log_dir = os.path.join(os.getcwd(), "logs")

        Path(log_dir).mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d")
        log_file = os.path.join(log_dir, f"{filename_prefix}_{timestamp}.log")

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info("Logging initialized - writing to %s", log_file)
