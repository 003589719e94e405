# rulebench/core/config.py
from typing import Any, Dict
import yaml
import os
from dotenv import load_dotenv

DEFAULT_CRITICAL_THRESHOLD = 50
DEFAULT_MAX_WORKERS = 4
DEFAULT_BATCH_SIZE = 500
DEFAULT_CORRELATION_WINDOW = 300


class Config:
    """
    Loads configuration from environment variables (Priority 1) and 'config.yaml' (Priority 2).
    Built-in defaults apply when neither source sets a value.
    """
    def __init__(self, config_path: str = "config.yaml") -> None:
        current_dir = os.path.dirname(os.path.abspath(__file__))
        project_root = os.path.abspath(os.path.join(current_dir, '..', '..'))
        env_path = os.path.join(project_root, '.env')

        if os.path.exists(env_path):
            load_dotenv(dotenv_path=env_path, override=False)
        else:
            # Fallback: current working directory
            load_dotenv(override=False)

        self.config_path = config_path
        self.data = self._load_yaml()

    def _load_yaml(self) -> Dict[str, Any]:
        if not os.path.exists(self.config_path):
            return {}
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError:
            return {}
        return data if isinstance(data, dict) else {}

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name, {})
        return section if isinstance(section, dict) else {}

    def _int_setting(self, env_var: str, section: str, key: str, default: int) -> int:
        raw = os.getenv(env_var, self._section(section).get(key, default))
        if isinstance(raw, bool):
            return default
        try:
            return int(raw)
        except (TypeError, ValueError):
            return default

    @property
    def critical_threshold(self) -> int:
        return self._int_setting("RULEBENCH_CRITICAL_THRESHOLD", "validation",
                                 "critical_threshold", DEFAULT_CRITICAL_THRESHOLD)

    @property
    def max_workers(self) -> int:
        return max(1, self._int_setting("RULEBENCH_MAX_WORKERS", "validation",
                                        "max_workers", DEFAULT_MAX_WORKERS))

    @property
    def batch_size(self) -> int:
        return max(1, self._int_setting("RULEBENCH_BATCH_SIZE", "validation",
                                        "batch_size", DEFAULT_BATCH_SIZE))

    @property
    def correlation_window_seconds(self) -> int:
        return self._int_setting("RULEBENCH_CORRELATION_WINDOW", "scoring",
                                 "correlation_window_seconds", DEFAULT_CORRELATION_WINDOW)

    @property
    def indicators_path(self) -> str:
        return os.getenv("RULEBENCH_INDICATORS", str(self._section("indicators").get("path", "")))
