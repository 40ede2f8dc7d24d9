"""
Import Settings Module

Loads import settings from config/import_settings.yaml, with environment
variables taking precedence.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"
SETTINGS_FILE = "import_settings.yaml"

ENV_OVERRIDES = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "assistant_model": "IMPORT_ASSISTANT_MODEL",
    "database_url": "DATABASE_URL",
    "classify_batch_size": "IMPORT_CLASSIFY_BATCH_SIZE",
    "log_level": "LOG_LEVEL",
}


@dataclass
class ImportSettings:
    """Settings for the import workflow and its collaborators."""

    anthropic_api_key: str | None = None
    assistant_model: str = "claude-sonnet-4-5-20250929"
    assistant_max_tokens: int = 4096
    use_assistant: bool = True
    classify_batch_size: int = 20
    sample_row_count: int = 5
    inverse_types: bool = False
    database_url: str = "sqlite:///statement_import.db"
    log_level: str = "INFO"

    @classmethod
    def load(cls, config_dir: Path | str | None = None) -> "ImportSettings":
        """Load settings from the YAML file and the environment.

        Args:
            config_dir: Directory holding import_settings.yaml

        Returns:
            ImportSettings with defaults for anything not configured
        """
        config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_file = config_dir / SETTINGS_FILE

        data = {}
        if settings_file.exists():
            with open(settings_file) as f:
                data = yaml.safe_load(f) or {}
        else:
            logger.debug(f"No settings file at {settings_file}, using defaults")

        for name, env_var in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                data[name] = value

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown import settings: {sorted(unknown)}")

        settings = cls(**{k: v for k, v in data.items() if k in known})
        settings.classify_batch_size = int(settings.classify_batch_size)
        settings.sample_row_count = int(settings.sample_row_count)
        settings.assistant_max_tokens = int(settings.assistant_max_tokens)
        return settings
