"""
Configuration entry points.

Thin module-level wrappers around a shared ConfigService instance.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from athenaflow.services.config_service import ConfigService

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(
    os.environ.get("ATHENAFLOW_CONFIG", str(Path.home() / ".athenaflow" / "config.json"))
)

_config_service: Optional[ConfigService] = None


def get_config_service() -> ConfigService:
    """Get or create the global config service instance."""
    global _config_service
    if _config_service is None:
        _config_service = ConfigService(config_path=CONFIG_PATH)
    return _config_service


def load_config() -> Dict[str, Any]:
    """
    Loads config.json from ~/.athenaflow/ (or $ATHENAFLOW_CONFIG).
    Raises FileNotFoundError if missing.
    """
    return get_config_service().load()


def save_config(data: Dict[str, Any]) -> None:
    """Write configuration back to config.json."""
    get_config_service().save(data)
