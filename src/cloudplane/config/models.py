"""Pydantic models for configuration schema."""

import re
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

REGION_PATTERN = re.compile(r'^[a-z]{2}(-gov|-iso[a-z]?)?-[a-z]+-\d$')
TIMEOUT_OPERATIONS = ('create', 'update', 'delete')


class AssumeRoleModel(BaseModel):
    """Role to assume before calling AWS."""

    role_arn: str = Field(..., pattern=r'^arn:[^:]+:iam::\d{12}:role/.+$')
    session_name: str = Field('cloudplane', min_length=2, max_length=64)
    external_id: Optional[str] = None
    duration_seconds: int = Field(3600, ge=900, le=43200)


class ProviderConfig(BaseModel):
    """Provider-level configuration."""

    region: str = Field(..., min_length=1)
    profile: Optional[str] = None
    assume_role: Optional[AssumeRoleModel] = None
    timeouts: Dict[str, Dict[str, float]] = Field(
        default_factory=dict,
        description="Per resource type wait budgets in seconds, keyed by operation",
    )

    @field_validator('region')
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        if not REGION_PATTERN.match(v):
            raise ValueError(f"Invalid AWS region: {v}")
        return v

    @field_validator('timeouts')
    @classmethod
    def validate_timeouts(cls, v: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        for resource_type, values in v.items():
            for operation, seconds in values.items():
                if operation not in TIMEOUT_OPERATIONS:
                    raise ValueError(
                        f"Unknown timeout operation '{operation}' for {resource_type}; "
                        f"must be one of: {', '.join(TIMEOUT_OPERATIONS)}"
                    )
                if seconds <= 0:
                    raise ValueError(f"Timeout for {resource_type}.{operation} must be positive")
        return v


class ResourceConfig(BaseModel):
    """A managed resource declaration."""

    id: str = Field(..., min_length=1, max_length=128, pattern=r'^[A-Za-z0-9_.-]+$')
    type: str = Field(..., min_length=1)
    properties: Dict[str, Any] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate tag keys and values."""
        for key, value in v.items():
            if not key or not isinstance(key, str):
                raise ValueError(f"Tag key must be a non-empty string: {key}")
            if not isinstance(value, str):
                raise ValueError(f"Tag value must be a string for key '{key}': {value}")
            if len(key) > 128:
                raise ValueError(f"Tag key exceeds 128 characters: {key}")
            if len(value) > 256:
                raise ValueError(f"Tag value exceeds 256 characters for key '{key}'")
        return v


class DataSourceConfig(BaseModel):
    """A read-only lookup declaration."""

    id: str = Field(..., min_length=1, max_length=128, pattern=r'^[A-Za-z0-9_.-]+$')
    type: str = Field(..., min_length=1)
    properties: Dict[str, Any] = Field(default_factory=dict)


class ProjectConfig(BaseModel):
    """Complete configuration file."""

    provider: ProviderConfig
    resources: List[ResourceConfig] = Field(default_factory=list)
    data: List[DataSourceConfig] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_unique_ids(self):
        """Logical IDs must be unique within resources and within data sources."""
        for section, entries in (('resources', self.resources), ('data', self.data)):
            seen = set()
            for entry in entries:
                if entry.id in seen:
                    raise ValueError(f"Duplicate id '{entry.id}' in {section}")
                seen.add(entry.id)
        return self
