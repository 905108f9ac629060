"""Configuration management for promptwire.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
sensible defaults for every subsystem: Signal transport, prompts,
authorization and logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import List, Optional

import structlog
import yaml
from dotenv import load_dotenv

logger = structlog.get_logger("promptwire.bot")

DEFAULT_PROMPT_TIMEOUT_MINUTES = 5.0
ALLOWED_TEXT_MODES = ("normal", "styled")


class Config:
    """Central configuration manager for promptwire.

    Loads settings.yaml and .env from the config directory. Provides
    typed property accessors for every configurable subsystem.
    Settings are read-only after __init__.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)

        # Load environment variables
        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def _section(self, name: str) -> dict:
        section = self.settings.get(name, {})
        return section if isinstance(section, dict) else {}

    @property
    def allowed_numbers(self) -> List[str]:
        """Get list of allowed phone numbers or Signal UUIDs."""
        numbers = self.settings.get("allowed_numbers", [])
        if not isinstance(numbers, list):
            logger.error("allowed_numbers_invalid_type", type=type(numbers).__name__)
            return []
        return numbers

    def validate(self):
        """Validate critical settings at startup.

        Checks allowed_numbers format (E.164 or UUID), the text mode and
        the prompt section. Logs warnings/errors but does not raise --
        the bot starts in degraded mode.
        """
        import re
        uuid_pattern = re.compile(
            r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$',
            re.IGNORECASE,
        )
        numbers = self.allowed_numbers
        if not numbers:
            logger.warning("no_allowed_numbers", msg="Bot will reject all messages")
        for n in numbers:
            if not isinstance(n, str):
                logger.error("invalid_allowed_entry", entry="..." + str(n)[-4:])
            elif uuid_pattern.match(n):
                pass  # Valid Signal UUID
            elif not n.startswith("+") or not n[1:].isdigit():
                logger.error("invalid_phone_number_format", number="..." + str(n)[-4:])

        mode = self._section("signal").get("text_mode")
        if mode is not None and mode not in ALLOWED_TEXT_MODES:
            logger.error(
                "config_invalid_value",
                key="signal.text_mode",
                value=mode,
                valid=", ".join(ALLOWED_TEXT_MODES),
            )

        prompts = self._section("prompts")
        timeout = prompts.get("timeout_minutes")
        if timeout is not None and (
            not isinstance(timeout, (int, float)) or timeout <= 0
        ):
            logger.error(
                "config_invalid_value",
                key="prompts.timeout_minutes",
                value=timeout,
                valid="> 0",
            )
        retries = prompts.get("max_retries")
        if retries is not None and (not isinstance(retries, int) or retries < 0):
            logger.error(
                "config_invalid_value",
                key="prompts.max_retries",
                value=retries,
                valid=">= 0 (0 = unbounded)",
            )

    # Signal transport configuration
    @property
    def signal_api_url(self) -> str:
        """Get Signal API URL. Env var SIGNAL_API_URL takes precedence."""
        return (
            os.environ.get("SIGNAL_API_URL")
            or self._section("signal").get("api_url")
            or self.settings.get("signal_api_url", "http://127.0.0.1:8080")
        )

    @property
    def signal_account(self) -> Optional[str]:
        """Registered Signal account to act as. None means ask the daemon."""
        return os.environ.get("SIGNAL_ACCOUNT") or self._section("signal").get("account")

    @property
    def signal_text_mode(self) -> str:
        """Text mode for outgoing messages (``styled`` renders `monospace`)."""
        mode = self._section("signal").get("text_mode", "styled")
        if mode not in ALLOWED_TEXT_MODES:
            return "styled"
        return mode

    @property
    def signal_request_timeout(self) -> float:
        """Seconds before a REST call to the Signal daemon is abandoned."""
        return float(self._section("signal").get("request_timeout", 15))

    # Prompt configuration
    @property
    def prompt_timeout_minutes(self) -> float:
        """Default prompt timeout in minutes, overridable per call (default 5)."""
        val = self._section("prompts").get("timeout_minutes", DEFAULT_PROMPT_TIMEOUT_MINUTES)
        try:
            val = float(val)
        except (ValueError, TypeError):
            logger.warning("config_invalid_prompt_timeout", value=val)
            return DEFAULT_PROMPT_TIMEOUT_MINUTES
        if val <= 0:
            logger.warning("config_invalid_prompt_timeout", value=val)
            return DEFAULT_PROMPT_TIMEOUT_MINUTES
        return val

    @property
    def prompt_max_retries(self) -> int:
        """Invalid answers tolerated before a prompt is force-cancelled.

        0 (the default) keeps re-prompting until a valid answer, the
        cancel keyword or the timeout.
        """
        val = self._section("prompts").get("max_retries", 0)
        try:
            return max(int(val), 0)
        except (ValueError, TypeError):
            logger.warning("config_invalid_max_retries", value=val)
            return 0

    @property
    def prompt_scrub_reactions(self) -> bool:
        """Whether reaction prompts remove other users' reactions."""
        return bool(self._section("prompts").get("scrub_reactions", False))

    @property
    def command_prefix(self) -> str:
        """Prefix that marks a message as a command (default ``/``)."""
        return self.settings.get("command_prefix", "/")

    # Logging configuration
    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        return self._section("logging").get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"prompts": "DEBUG"}."""
        return self._section("logging").get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        return self._section("logging").get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        return self._section("logging").get("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
