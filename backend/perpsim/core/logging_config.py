"""
Centralized logging configuration for the backend.
This ensures consistent logging setup across the application and tests.
"""
import logging
import sys


def setup_logging(level: int = logging.INFO):
    """
    Configure logging for the application.

    Uses basicConfig to set up:
    - Root logger level: INFO
    - Format: timestamp, level, name, message
    - Handler: StreamHandler to stdout
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # requests/urllib3 connection chatter drowns the scheduler output
    logging.getLogger("urllib3").setLevel(logging.WARNING)
