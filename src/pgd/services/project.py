"""Project configuration (pgd.toml) loading and saving."""

from pathlib import Path
from typing import Any, Dict, Optional

import tomlkit
from tomlkit.exceptions import TOMLKitError

from pgd.constants import PROJECT_FILENAME
from pgd.errors import ConfigError
from pgd.models import PostgresVersion, Project, ProjectConfig


class ProjectService:
    """Reads and writes the per-project pgd.toml document."""

    REQUIRED_KEYS = {"version", "password", "port"}

    def __init__(self, logger):
        self.logger = logger

    @staticmethod
    def config_path(project_dir) -> Path:
        return Path(project_dir) / PROJECT_FILENAME

    @staticmethod
    def extract_project_name(project_dir) -> str:
        name = Path(project_dir).resolve().name
        if not name:
            raise ConfigError(f"Failed to extract project name from path: {project_dir}")
        return name

    def load(self, project_dir) -> Optional[Project]:
        """Returns the project rooted at ``project_dir`` or None when it has no pgd.toml."""
        path = self.config_path(project_dir)
        if not path.exists():
            return None

        try:
            parsed = tomlkit.parse(path.read_text(encoding="utf-8")).unwrap()
        except (TOMLKitError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{path}': {exc}") from exc

        config = self._parse_config(parsed, path)
        self.logger.debug("Loaded project config from %s", path)
        return Project(
            name=self.extract_project_name(project_dir),
            path=Path(project_dir).resolve(),
            config=config,
        )

    def create(self, project_dir, config: ProjectConfig) -> Project:
        project = Project(
            name=self.extract_project_name(project_dir),
            path=Path(project_dir).resolve(),
            config=config,
        )
        self.save(project)
        return project

    def save(self, project: Project):
        document = tomlkit.document()
        document["version"] = str(project.config.version)
        document["password"] = project.config.password
        document["port"] = project.config.port

        path = self.config_path(project.path)
        try:
            path.write_text(tomlkit.dumps(document), encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Failed to write config file '{path}': {exc}") from exc

    def _parse_config(self, parsed: Dict[str, Any], path: Path) -> ProjectConfig:
        missing = sorted(self.REQUIRED_KEYS - set(parsed))
        if missing:
            raise ConfigError(f"Config file '{path}' is missing keys: {', '.join(missing)}")

        unknown = sorted(set(parsed) - self.REQUIRED_KEYS)
        if unknown:
            raise ConfigError(f"Unknown configuration keys in '{path}': {', '.join(unknown)}")

        try:
            postgres_version = PostgresVersion.parse(parsed["version"])
        except ValueError as exc:
            raise ConfigError(f"Invalid config file '{path}': {exc}") from exc

        password = parsed["password"]
        if not isinstance(password, str) or not password:
            raise ConfigError(f"Invalid config file '{path}': password must be a non-empty string.")

        port = parsed["port"]
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise ConfigError(f"Invalid config file '{path}': port must be an integer in 1-65535.")

        return ProjectConfig(version=postgres_version, password=password, port=port)
