"""Configuration management for switchboard.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
sensible defaults for the Signal transport, router defaults and
logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
import re
from pathlib import Path
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = structlog.get_logger("switchboard.config")

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_REPO_ROOT = Path(__file__).parent.parent


class Config:
    """Central configuration manager for switchboard.

    Loads settings.yaml and .env from the config directory. Read-only
    after __init__.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = _REPO_ROOT / "config"
        self.config_dir = Path(config_dir)

        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        path = self.config_dir / filename
        if not path.exists():
            return {}
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}

    def validate(self, strict: bool = False):
        """Validate critical settings at startup.

        Logs every problem found. With ``strict`` the first problem is
        raised as ConfigurationError instead of leaving the bot to
        start in degraded mode.
        """
        problems = []

        account = self.account
        if account and not _UUID_PATTERN.match(account) and not (
            account.startswith("+") and account[1:].isdigit()
        ):
            problems.append(("account", "invalid_account_format"))

        url = self.signal_api_url
        if not url.startswith(("http://", "https://")):
            problems.append(("signal_api_url", "invalid_signal_api_url"))

        multiplier = self.settings.get("typing_delay_multiplier", 0)
        if not isinstance(multiplier, (int, float)) or multiplier < 0:
            problems.append(("typing_delay_multiplier", "config_invalid_value"))

        if self.logging_level.upper() not in _LOG_LEVELS:
            problems.append(("logging.level", "config_invalid_value"))

        for setting, event in problems:
            logger.error(event, key=setting)

        if strict and problems:
            setting, event = problems[0]
            raise ConfigurationError(
                f"Invalid setting: {setting}", setting_name=setting, reason=event
            )

    @property
    def signal_api_url(self) -> str:
        """Get Signal API URL. Env var SIGNAL_API_URL takes precedence."""
        url = os.environ.get("SIGNAL_API_URL") or self.settings.get(
            "signal_api_url", "http://127.0.0.1:8080"
        )
        return url.rstrip("/")

    @property
    def account(self) -> Optional[str]:
        """Signal account the bot runs as. Env var SIGNAL_ACCOUNT takes precedence.

        None means "use the first account registered with the API".
        """
        return os.environ.get("SIGNAL_ACCOUNT") or self.settings.get("account")

    @property
    def typing_delay_multiplier(self) -> float:
        """Typing delay multiplier for replies (default 0, no delay).

        1 -> 2ms per character, 5 -> 10ms per, 0.5 -> 1ms per.
        The delay is capped at 2 seconds regardless.
        """
        value = self.settings.get("typing_delay_multiplier", 0)
        if not isinstance(value, (int, float)) or value < 0:
            return 0.0
        return float(value)

    @property
    def debug(self) -> bool:
        """Log every dispatch decision (default False)."""
        return bool(self.settings.get("debug", False))

    @property
    def talk_to_self(self) -> bool:
        """Router default for self-talk (default False)."""
        return bool(self.settings.get("talk_to_self", False))

    @property
    def log_dir(self) -> Path:
        """Directory for rotating log files (default <repo>/logs)."""
        configured = self.settings.get("log_dir")
        return Path(configured).expanduser() if configured else _REPO_ROOT / "logs"

    def _logging(self, key: str, default):
        return (self.settings.get("logging") or {}).get(key, default)

    @property
    def logging_level(self) -> str:
        """Level for the console and the combined log (default INFO)."""
        return self._logging("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem overrides, e.g. {"router": "DEBUG"}."""
        return self._logging("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        return self._logging("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        return self._logging("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
