"""
Service Layer

Configuration and credential lookup services.
"""

from athenaflow.services.config_service import ConfigService, EnvironmentCredentials

__all__ = [
    "ConfigService",
    "EnvironmentCredentials",
]
