"""Configuration management for cloudplane."""

from .models import (
    AssumeRoleModel,
    DataSourceConfig,
    ProjectConfig,
    ProviderConfig,
    ResourceConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "AssumeRoleModel",
    "DataSourceConfig",
    "ProjectConfig",
    "ProviderConfig",
    "ResourceConfig",
    "Config",
    "ConfigValidationError",
]
