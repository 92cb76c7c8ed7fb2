"""Shared domain models for pgd."""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from packaging import version

from .constants import (
    CONTAINER_PREFIX,
    DEFAULT_POSTGRES_PORT,
    DOCKERHUB_TAGS_URL,
    MAX_START_ATTEMPTS,
    PORT_SEARCH_RANGE,
    RETRY_BACKOFF_SECONDS,
    STOP_TIMEOUT,
    VERIFY_SECONDS,
)


@dataclass(frozen=True, order=True)
class PostgresVersion:
    """PostgreSQL release identified by its major and minor numbers."""

    major: int
    minor: int

    @classmethod
    def parse(cls, text: str) -> "PostgresVersion":
        raw = str(text).strip()
        try:
            parsed = version.Version(raw)
        except version.InvalidVersion as exc:
            raise ValueError(f"Invalid PostgreSQL version '{text}': expected MAJOR.MINOR") from exc

        # Version() normalizes "v17.2" and "17.02"; only the canonical spelling is accepted.
        if (
            str(parsed) != raw
            or len(parsed.release) != 2
            or parsed.epoch
            or parsed.is_prerelease
            or parsed.is_postrelease
            or parsed.local
        ):
            raise ValueError(f"Invalid PostgreSQL version '{text}': expected MAJOR.MINOR")

        major, minor = parsed.release
        return cls(major=major, minor=minor)

    def image(self, repository: str) -> str:
        return f"{repository}:{self}"

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True)
class ProjectConfig:
    """Desired state stored in pgd.toml."""

    version: PostgresVersion
    password: str
    port: int


@dataclass(frozen=True)
class Project:
    name: str
    path: Path
    config: ProjectConfig

    @property
    def container_name(self) -> str:
        return f"{CONTAINER_PREFIX}-{self.name}-{str(self.config.version).replace('.', '_')}"


@dataclass(frozen=True)
class InstanceRecord:
    """Last provisioned container for a project, as kept in the ledger."""

    container_id: str
    postgres_version: PostgresVersion
    port: int
    created_at: int

    @classmethod
    def new(cls, container_id: str, postgres_version: PostgresVersion, port: int) -> "InstanceRecord":
        return cls(
            container_id=container_id,
            postgres_version=postgres_version,
            port=port,
            created_at=int(time.time()),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstanceRecord":
        return cls(
            container_id=str(data["container_id"]),
            postgres_version=PostgresVersion.parse(data["postgres_version"]),
            port=int(data["port"]),
            created_at=int(data["created_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "container_id": self.container_id,
            "postgres_version": str(self.postgres_version),
            "port": self.port,
            "created_at": self.created_at,
        }


def default_home() -> Path:
    return Path.home() / ".pgd"


@dataclass(frozen=True)
class Settings:
    """Resolved tool settings for one invocation."""

    state_file: Path
    verbose: bool = False
    log_file: Optional[str] = None
    docker_base_url: Optional[str] = None
    max_start_attempts: int = MAX_START_ATTEMPTS
    verify_seconds: float = VERIFY_SECONDS
    retry_backoff_seconds: float = RETRY_BACKOFF_SECONDS
    stop_timeout: int = STOP_TIMEOUT
    default_port: int = DEFAULT_POSTGRES_PORT
    port_search_range: int = PORT_SEARCH_RANGE
    version_catalog_url: str = DOCKERHUB_TAGS_URL
    version_catalog_timeout: float = 10.0
