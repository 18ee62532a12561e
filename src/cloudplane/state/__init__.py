"""State management for cloudplane."""

from .manager import (
    DEFAULT_STATE_PATH,
    StateManager,
    StateNotFoundError,
    from_resource_state,
    to_resource_state,
)
from .models import ResourceState, State

__all__ = [
    "DEFAULT_STATE_PATH",
    "StateManager",
    "StateNotFoundError",
    "from_resource_state",
    "to_resource_state",
    "ResourceState",
    "State",
]
