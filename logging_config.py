"""
Logging configuration for cleaner CLI output.

Usage:
    import logging_config
    logging_config.setup()
"""

import logging
import sys

APP_LOGGER = "dex_arbitrage"


def setup(level=logging.INFO):
    """
    Configure logging for cleaner, more readable output.

    - Routes all application logs through one console handler
    - Uses shorter timestamp format (HH:MM:SS instead of full datetime)
    - Suppresses per-request logs from the metrics server
    """

    # Root logger - minimal format
    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers
    root.handlers.clear()

    # Create console handler with clean format
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    # Minimal format: time + level + message
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S"
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    # Module loggers carry their own handler; drop it so lines print once
    for name in list(logging.root.manager.loggerDict):
        if name == APP_LOGGER or name.startswith(APP_LOGGER + "."):
            module_logger = logging.getLogger(name)
            module_logger.handlers.clear()
            module_logger.setLevel(level)

    # Suppress noisy loggers
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)  # Hide /metrics scrapes
    logging.getLogger("aiohttp.server").setLevel(logging.INFO)  # Keep errors

    # Keep application loggers at the requested level
    logging.getLogger("__main__").setLevel(level)
    logging.getLogger(APP_LOGGER).setLevel(level)


def setup_minimal():
    """
    Even more minimal logging - only warnings and errors.
    Good for production or when you only care about problems.
    """
    setup(level=logging.WARNING)


def setup_debug():
    """
    Verbose logging for debugging.
    Shows everything including metrics scrapes.
    """
    setup(level=logging.DEBUG)
    logging.getLogger("aiohttp.access").setLevel(logging.INFO)
