"""State manager for loading and saving managed state."""

import json
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from cloudplane.resources.base import Resource
from cloudplane.utils.errors import StateError
from cloudplane.utils.logging import get_logger

from .models import ResourceState, State

logger = get_logger(__name__)

DEFAULT_STATE_PATH = ".cloudplane/state.json"


class StateNotFoundError(StateError):
    """Raised when the state file does not exist."""


class StateManager:
    """Loads and persists the state file."""

    def __init__(self, state_path: str = DEFAULT_STATE_PATH):
        """
        Initialize StateManager.

        Args:
            state_path: Path to the state file
        """
        self.state_path = Path(state_path)

    def load(self) -> State:
        """
        Load state from file.

        Returns:
            State object

        Raises:
            StateNotFoundError: If state file does not exist
            StateError: If state file is corrupted or invalid
        """
        if not self.state_path.exists():
            raise StateNotFoundError(f"State file not found: {self.state_path}")

        try:
            with open(self.state_path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"Failed to parse state file: {e}", cause=e) from e
        except OSError as e:
            raise StateError(f"Failed to read state file: {e}", cause=e) from e

        try:
            state = State.from_dict(data)
        except PydanticValidationError as e:
            raise StateError(f"Invalid state file {self.state_path}: {e}", cause=e) from e
        return state

    def save(self, state: State) -> None:
        """
        Save state to file.

        Args:
            state: State object to save

        Raises:
            StateError: If state cannot be saved
        """
        self.state_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            # Write to temporary file first
            temp_path = self.state_path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                json.dump(state.to_dict(), f, indent=2)

            # Atomic rename
            temp_path.replace(self.state_path)
        except OSError as e:
            raise StateError(f"Failed to save state file: {e}", cause=e) from e
        logger.debug(f"Saved state with {len(state.resources)} resource(s) to {self.state_path}")

    def initialize(self, region: str) -> State:
        """
        Initialize a new state file.

        Args:
            region: AWS region

        Returns:
            New State object
        """
        state = State(region=region)
        self.save(state)
        return state

    def load_or_initialize(self, region: str) -> State:
        if self.exists():
            return self.load()
        return self.initialize(region)

    def exists(self) -> bool:
        """Check if state file exists."""
        return self.state_path.exists()


def to_resource_state(resource: Resource) -> ResourceState:
    """Convert a handler resource into its persisted form."""
    return ResourceState(
        id=resource.id,
        type=resource.type,
        physical_id=resource.physical_id,
        properties=dict(resource.properties),
        tags=dict(resource.tags),
    )


def from_resource_state(entry: ResourceState) -> Resource:
    """Convert a persisted entry back into a handler resource."""
    return Resource(
        id=entry.id,
        type=entry.type,
        physical_id=entry.physical_id,
        properties=dict(entry.properties),
        tags=dict(entry.tags),
    )
