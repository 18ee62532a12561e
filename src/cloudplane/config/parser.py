"""YAML configuration parser."""

from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from .models import DataSourceConfig, ProjectConfig, ProviderConfig, ResourceConfig


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Configuration manager for cloudplane.yaml."""

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to cloudplane.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.project: Optional[ProjectConfig] = None

    def load(self, known_types: Optional[Iterable[str]] = None,
             known_data_types: Optional[Iterable[str]] = None,
             timeout_operations: Optional[Dict[str, Iterable[str]]] = None) -> "Config":
        """Load and validate configuration from YAML file.

        Args:
            known_types: Registered resource type names; unknown types are rejected
            known_data_types: Registered data source type names
            timeout_operations: Per resource type, the operations that accept a
                timeout override

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        if not isinstance(self.data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        try:
            self.project = ProjectConfig(**self.data)
        except ValidationError as e:
            errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)", errors
            )

        errors = self._check_types(known_types, known_data_types)
        if timeout_operations is not None:
            errors.extend(self._check_timeouts(timeout_operations))
        if errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)", errors
            )

        return self

    def _check_types(self, known_types, known_data_types) -> List[Dict]:
        errors = []
        if known_types is not None:
            known = set(known_types)
            for i, resource in enumerate(self.project.resources):
                if resource.type not in known:
                    errors.append({
                        "loc": ["resources", i, "type"],
                        "msg": f"Unsupported resource type '{resource.type}'",
                    })
        if known_data_types is not None:
            known = set(known_data_types)
            for i, source in enumerate(self.project.data):
                if source.type not in known:
                    errors.append({
                        "loc": ["data", i, "type"],
                        "msg": f"Unsupported data source type '{source.type}'",
                    })
        return errors

    def _check_timeouts(self, timeout_operations: Dict[str, Iterable[str]]) -> List[Dict]:
        errors = []
        for resource_type, overrides in self.project.provider.timeouts.items():
            if resource_type not in timeout_operations:
                errors.append({
                    "loc": ["provider", "timeouts", resource_type],
                    "msg": f"Unsupported resource type '{resource_type}'",
                })
                continue
            allowed = set(timeout_operations[resource_type])
            for operation in overrides:
                if operation not in allowed:
                    errors.append({
                        "loc": ["provider", "timeouts", resource_type, operation],
                        "msg": f"{resource_type} does not wait on '{operation}'; the timeout would have no effect",
                    })
        return errors

    @property
    def provider(self) -> ProviderConfig:
        return self.project.provider

    @property
    def resources(self) -> List[ResourceConfig]:
        return self.project.resources

    @property
    def data_sources(self) -> List[DataSourceConfig]:
        return self.project.data
