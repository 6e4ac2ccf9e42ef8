"""Content Factory dashboard backend.

Keeps the relational ledger of pipeline sessions executed by the external
workflow engine, relays human review decisions back to paused workflow runs,
and pushes every ledger change to connected dashboard clients.

Call configure_logging() once during process startup.
"""

import logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the API server and CLI.

    Raises:
        ValueError: If ``level`` is not a known logging level name.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.debug(f"Logging configured at {level.upper()}")
