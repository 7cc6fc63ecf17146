"""Process-wide logging setup: console plus size-bounded rotating file."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path

from tale_graph.config import env_str, int_env

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


@dataclass(frozen=True)
class LoggingSettings:
    level: int
    log_path: Path
    max_bytes: int
    backup_count: int
    access_level: int

    @classmethod
    def from_env(cls) -> LoggingSettings:
        level_name = env_str("TALE_GRAPH_LOG_LEVEL", "INFO").upper() or "INFO"
        access_name = env_str("TALE_GRAPH_ACCESS_LOG_LEVEL", "WARNING").upper() or "WARNING"
        return cls(
            level=getattr(logging, level_name, logging.INFO),
            log_path=Path(
                env_str("TALE_GRAPH_LOG_PATH", "work/logs/tale_graph.log")
                or "work/logs/tale_graph.log"
            ),
            max_bytes=int_env(
                "TALE_GRAPH_LOG_MAX_BYTES",
                5 * 1024 * 1024,
                minimum=64 * 1024,
                maximum=100 * 1024 * 1024,
            ),
            backup_count=int_env("TALE_GRAPH_LOG_BACKUP_COUNT", 10, minimum=1, maximum=120),
            access_level=getattr(logging, access_name, logging.WARNING),
        )


def configure_runtime_logging(settings: LoggingSettings | None = None) -> bool:
    """Install handlers once per process; return False when already configured."""
    global _CONFIGURED
    if _CONFIGURED:
        return False
    effective = settings or LoggingSettings.from_env()

    effective.log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    file_handler = RotatingFileHandler(
        filename=effective.log_path,
        maxBytes=effective.max_bytes,
        backupCount=effective.backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(effective.level)
    root.handlers.clear()
    root.addHandler(stream_handler)
    root.addHandler(file_handler)
    logging.getLogger("uvicorn.access").setLevel(effective.access_level)

    _CONFIGURED = True
    return True
