"""Loguru setup for the call server and the local CLI.

A live call logs every turn, reconnect and fallback, so the console format
keeps milliseconds for latency reading. In production two rotating files
are written: everything at the configured level, and call failures alone.
Phone numbers go through ``mask_phone`` before they are logged.
"""

import logging
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

# Provider SDKs log each request and websocket frame through stdlib logging
CHATTY_LIBRARIES = ("httpx", "httpcore", "websockets", "deepgram")


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_file: bool = True,
) -> None:
    """Install the console sink and, when ``enable_file`` is set, the file sinks.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        enable_file: Write rotating log files (production)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=not enable_file,
    )

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(exist_ok=True)

        logger.add(
            log_path / "rehearsal_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level=level,
            rotation="100 MB",
            retention="14 days",
            compression="gz",
            diagnose=False,
        )
        logger.add(
            log_path / "call_errors_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT + "\n{exception}",
            level="ERROR",
            rotation="50 MB",
            retention="60 days",
            compression="gz",
            backtrace=True,
            diagnose=False,
        )

    library_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    logger.info(f"Logging initialized at {level} level")


def get_logger(name: str) -> "logger":
    """Logger bound to a module name: ``logger = get_logger(__name__)``."""
    return logger.bind(name=name)


def mask_phone(phone: str | None) -> str:
    """Mask a phone number for logs and API responses: +971501234567 -> +9XXXX4567."""
    if not phone or len(phone) < 6:
        return "XXXX"
    return f"{phone[:2]}XXXX{phone[-4:]}"
