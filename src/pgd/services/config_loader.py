"""Settings file loader for pgd."""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from pgd.errors import ConfigError


class ConfigLoader:
    """Loads the YAML settings file that provides CLI defaults.

    Values are type-checked here so a typo in the file fails before any
    container work starts.
    """

    # key -> (minimum, maximum); maximum None means unbounded
    INTEGER_KEYS: Dict[str, Tuple[int, Optional[int]]] = {
        "max_start_attempts": (1, None),
        "stop_timeout": (0, None),
        "default_port": (1, 65535),
        "port_search_range": (1, 65535),
    }
    SECONDS_KEYS = {"verify_seconds", "retry_backoff_seconds", "version_catalog_timeout"}
    STRING_KEYS = {"log_file", "state_file", "docker_base_url", "version_catalog_url"}
    FLAG_KEYS = {"verbose"}
    NULLABLE_KEYS = {"log_file", "docker_base_url"}

    SUPPORTED_KEYS = set(INTEGER_KEYS) | SECONDS_KEYS | STRING_KEYS | FLAG_KEYS

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigError(f"Unknown configuration keys: {unknown_list}")

        for key, value in parsed.items():
            self._check_value(key, value)

        return parsed

    def _check_value(self, key: str, value: Any):
        if value is None and key in self.NULLABLE_KEYS:
            return

        if key in self.INTEGER_KEYS:
            minimum, maximum = self.INTEGER_KEYS[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"Invalid value for '{key}': expected an integer, got {value!r}")
            if value < minimum or (maximum is not None and value > maximum):
                bounds = f"{minimum}-{maximum}" if maximum is not None else f">= {minimum}"
                raise ConfigError(f"Invalid value for '{key}': {value} is outside {bounds}")
        elif key in self.SECONDS_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigError(f"Invalid value for '{key}': expected a non-negative number of seconds")
        elif key in self.FLAG_KEYS:
            if not isinstance(value, bool):
                raise ConfigError(f"Invalid value for '{key}': expected true or false")
        elif not isinstance(value, str) or not value:
            raise ConfigError(f"Invalid value for '{key}': expected a non-empty string")
