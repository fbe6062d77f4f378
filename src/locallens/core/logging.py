"""Loguru logging for the API process and the geocoding workers.

One console sink, either the human-readable line format or one serialized
JSON object per record (``LOG_JSON=true``, for log shippers). A rotating
``locallens.log`` file sink is added when a ``log_dir`` is configured.
"""

import sys
from pathlib import Path

from loguru import logger

_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[component]:<6} | {name}:{function}:{line} | {message}"
)


def setup_logging(
    log_level: str = "INFO",
    log_dir: str | None = None,
    *,
    json_logs: bool = False,
    component: str = "api",
) -> None:
    """Replace all Loguru sinks.

    Args:
        log_level: Minimum log level, case-insensitive.
        log_dir: Optional directory for ``locallens.log``, rotated every
            24 hours and kept 7 days.
        json_logs: Serialize console records as JSON instead of text.
        component: Process role (``api``, ``worker``, ``cli``) stamped on
            every record, so API and worker output can be told apart.
    """
    level = log_level.upper()
    logger.remove()
    logger.configure(extra={"component": component})

    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_LOG_FORMAT)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "locallens.log",
            level=level,
            format=_LOG_FORMAT,
            rotation="24h",
            retention="7 days",
        )
