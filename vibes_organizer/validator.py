"""
Validator module - Input and operation checks.

Applies deterministic checks before a directory is analyzed or a move is
attempted. Existence checks do not follow symlinks, so a dangling link is
still a valid source.
"""
import logging
import os

from vibes_organizer.config import DEFAULT_API_KEY, OrganizerConfig
from vibes_organizer.errors import (
    ConfigError,
    DestinationExistsError,
    IdenticalEndpointsError,
    SourceNotFoundError,
)
from vibes_organizer.models import FileOperation

logger = logging.getLogger(__name__)


class Validator:
    """Checks requests and file operations."""

    def validate_directory(self, path: str) -> None:
        """
        Raises:
            ValueError: If the path is empty
            FileNotFoundError: If it does not exist or is not a directory
        """
        if not path or not path.strip():
            raise ValueError("directory path cannot be empty")
        if not os.path.isdir(path):
            raise FileNotFoundError(f"directory does not exist: {path}")

    def validate_prompt(self, prompt: str) -> None:
        if not prompt or not prompt.strip():
            raise ValueError("organization instructions cannot be empty")

    def validate_config(self, config: OrganizerConfig) -> None:
        if not config.base_url.strip():
            raise ConfigError("endpoint field cannot be empty")
        if not config.api_key or config.api_key == DEFAULT_API_KEY:
            raise ConfigError("please configure your AI endpoint and API key first")

    def validate_file_operation(self, operation: FileOperation) -> None:
        """
        Check that a move can be attempted.

        Raises:
            IdenticalEndpointsError: If both ends are the same path
            SourceNotFoundError: If nothing exists at the source
            DestinationExistsError: If anything exists at the destination
        """
        if operation.from_path == operation.to_path:
            raise IdenticalEndpointsError(operation.from_path)
        if not os.path.lexists(operation.from_path):
            raise SourceNotFoundError(operation.from_path)
        if os.path.lexists(operation.to_path):
            raise DestinationExistsError(operation.to_path)
        logger.debug(f"Validated operation: {operation}")
