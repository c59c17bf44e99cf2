"""
Configuration Service

JSON-backed configuration plus the environment-aware credential and
endpoint lookup used by the streaming gateway and deploy engine.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("AthenaFlow.ConfigService")

# Environment variables consulted per provider, in order.
PROVIDER_ENV_KEYS: Dict[str, tuple] = {
    "claude": ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY",),
    "groq": ("GROQ_API_KEY",),
    "openrouter": ("OPENROUTER_API_KEY",),
    "ollama": ("OLLAMA_API_KEY",),
    "opencodezen": ("OPENCODE_API_KEY",),
    "fireworks": ("FIREWORKS_API_KEY", "FIREWORKS_IMAGE_API_KEY"),
    "mistral": ("MISTRAL_API_KEY",),
    "zai": ("ZAI_API_KEY", "ZHIPU_API_KEY"),
    "vercel": ("VERCEL_TOKEN",),
    "render": ("RENDER_API_KEY",),
    "github": ("GITHUB_TOKEN",),
}

PROVIDER_ENV_ENDPOINTS: Dict[str, tuple] = {
    "ollama": ("OLLAMA_BASE_URL",),
    "fireworks": ("FIREWORKS_CHAT_BASE_URL", "FIREWORKS_BASE_URL"),
}


class ConfigService:
    """
    Service class for configuration management.

    Provides:
    - Configuration loading
    - Configuration saving
    - Dot-notation access ("providers.openai.api_key")
    """

    def __init__(self, config_path: Optional[Path] = None, data: Optional[Dict[str, Any]] = None):
        """
        Initialize config service.

        Args:
            config_path: Path to config file
            data: Optional in-memory configuration (skips the file)
        """
        if config_path is None:
            config_path = Path.home() / ".athenaflow" / "config.json"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}

        if data is not None:
            self._config = dict(data)
        elif self.config_path.exists():
            self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file, leaving it empty on failure."""
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                self._config = json.load(f)
            logger.info("Configuration loaded from %s", self.config_path)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load config: %s", e)
            self._config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid JSON
        """
        if not self.config_path.exists():
            logger.error("Config file not found at: %s", self.config_path)
            raise FileNotFoundError(
                f"Config file not found at: {self.config_path}\n"
                "Create config.json with a 'providers' section, or use environment variables."
            )

        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                self._config = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Error parsing config.json: %s", e)
            raise ValueError(
                f"Error parsing config.json: {e}\n"
                "Please ensure config.json is valid JSON."
            ) from e
        logger.info("Configuration loaded from %s", self.config_path)
        return self._config.copy()

    def save(self, data: Optional[Dict[str, Any]] = None) -> bool:
        """Save configuration to file. Returns True on success."""
        if data is not None:
            self._config = data
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with self.config_path.open("w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=4)
        except OSError as e:
            logger.error("Failed to save config: %s", e)
            return False
        logger.info("Configuration saved to %s", self.config_path)
        return True

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key (supports dot notation: "providers.openai.api_key")
            default: Default value if key not found
        """
        value: Any = self._config
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value (supports dot notation)."""
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        return self._config.copy()


class EnvironmentCredentials:
    """
    Default credential lookup: config file first, then environment.

    Without an explicit ConfigService the shared one from
    ``athenaflow.config.settings`` is used.

    Callable as ``lookup(provider, key_name)`` and returns the stripped
    secret or None.
    """

    def __init__(self, config: Optional[ConfigService] = None, environ: Optional[Dict[str, str]] = None):
        if config is None:
            from athenaflow.config.settings import get_config_service

            config = get_config_service()
        self.config = config
        self.environ = environ if environ is not None else os.environ

    def __call__(self, provider: str, key_name: str = "api_key") -> Optional[str]:
        value = self.config.get(f"providers.{provider}.{key_name}")
        if isinstance(value, str) and value.strip():
            return value.strip()

        if key_name == "api_key":
            env_names = PROVIDER_ENV_KEYS.get(provider, ())
        elif key_name == "base_url":
            env_names = PROVIDER_ENV_ENDPOINTS.get(provider, ())
        else:
            env_names = (f"{provider.upper()}_{key_name.upper()}",)

        for name in env_names:
            for candidate in (name, f"NEXT_PUBLIC_{name}"):
                raw = self.environ.get(candidate)
                if raw and raw.strip():
                    return raw.strip()
        return None

    def is_configured(self, provider: str) -> bool:
        if provider == "ollama":
            # Ollama needs no key; it falls back to the local daemon.
            return True
        return bool(self(provider, "api_key"))
