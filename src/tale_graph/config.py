"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CONTENT_DB_PATH = Path("work/local/content.db")
DEFAULT_TOPOLOGY_DB_PATH = Path("work/local/topology.db")
DEFAULT_CORS_ORIGINS = ("http://127.0.0.1:5173", "http://localhost:5173")


def env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    """Read an integer variable, clamped to [minimum, maximum]; junk falls back."""
    raw = env_str(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _path_env(name: str, default: Path) -> Path:
    raw = env_str(name)
    return Path(raw) if raw else default


@dataclass(frozen=True)
class AuthSettings:
    """Bearer-token verification settings."""

    jwt_secret: str = ""
    issuer: str = ""
    audience: str = ""
    jwks_url: str = ""
    jwks_json: str = ""
    algorithms: tuple[str, ...] = ("HS256",)
    jwks_ttl_seconds: int = 300

    @property
    def uses_shared_secret(self) -> bool:
        return bool(self.jwt_secret)


@dataclass(frozen=True)
class Settings:
    """Store locations, auth, job, and API limits."""

    content_db_path: Path = DEFAULT_CONTENT_DB_PATH
    topology_db_path: Path = DEFAULT_TOPOLOGY_DB_PATH
    auth: AuthSettings = field(default_factory=AuthSettings)
    job_secret: str = ""
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    anomaly_retention_days: int = 30
    anomaly_max_rows: int = 10_000

    @classmethod
    def from_env(
        cls,
        *,
        content_db_path: Path | None = None,
        topology_db_path: Path | None = None,
    ) -> Settings:
        """Resolve explicit arguments first, then TALE_GRAPH_* variables, then defaults."""
        secret = env_str("TALE_GRAPH_JWT_SECRET")
        default_algorithms = "HS256" if secret else "RS256"
        algorithms = tuple(
            algo.strip()
            for algo in env_str("TALE_GRAPH_JWT_ALGORITHMS", default_algorithms).split(",")
            if algo.strip()
        )
        raw_origins = env_str("TALE_GRAPH_CORS_ORIGINS")
        origins = (
            tuple(origin.strip() for origin in raw_origins.split(",") if origin.strip())
            if raw_origins
            else DEFAULT_CORS_ORIGINS
        )
        return cls(
            content_db_path=content_db_path
            or _path_env("TALE_GRAPH_CONTENT_DB_PATH", DEFAULT_CONTENT_DB_PATH),
            topology_db_path=topology_db_path
            or _path_env("TALE_GRAPH_TOPOLOGY_DB_PATH", DEFAULT_TOPOLOGY_DB_PATH),
            auth=AuthSettings(
                jwt_secret=secret,
                issuer=env_str("TALE_GRAPH_JWT_ISSUER"),
                audience=env_str("TALE_GRAPH_JWT_AUDIENCE"),
                jwks_url=env_str("TALE_GRAPH_JWT_JWKS_URL"),
                jwks_json=env_str("TALE_GRAPH_JWT_JWKS_JSON"),
                algorithms=algorithms or (default_algorithms,),
                jwks_ttl_seconds=int_env(
                    "TALE_GRAPH_JWT_JWKS_TTL_SECONDS", 300, minimum=30, maximum=3600
                ),
            ),
            job_secret=env_str("TALE_GRAPH_JOB_SECRET"),
            cors_origins=origins,
            anomaly_retention_days=int_env(
                "TALE_GRAPH_ANOMALY_RETENTION_DAYS", 30, minimum=1, maximum=3650
            ),
            anomaly_max_rows=int_env(
                "TALE_GRAPH_ANOMALY_MAX_ROWS", 10_000, minimum=100, maximum=2_000_000
            ),
        )
