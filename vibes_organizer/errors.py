"""
Exception hierarchy for the reorganizer core.

Validation errors skip a single operation, parse errors skip a single
stream line, scan and integrity errors abort the current job, and
transaction errors trigger an index rollback.
"""
from typing import List, Optional


class OrganizerError(Exception):
    """Base class for all reorganizer errors."""


class OperationValidationError(OrganizerError, ValueError):
    """A file operation cannot be applied."""


class SourceNotFoundError(OperationValidationError):
    def __init__(self, path: str):
        super().__init__(f"source file does not exist: {path}")
        self.path = path


class DestinationExistsError(OperationValidationError):
    def __init__(self, path: str):
        super().__init__(f"destination already exists: {path}")
        self.path = path


class IdenticalEndpointsError(OperationValidationError):
    def __init__(self, path: str):
        super().__init__(f"source and destination are identical: {path}")
        self.path = path


class DirectoryCreationError(OrganizerError, OSError):
    """A destination parent directory could not be created."""


class ScanError(OrganizerError, RuntimeError):
    """Walking or stat-ing the directory tree failed."""


class NotIndexedError(OrganizerError, KeyError):
    """The path has no row in the index."""

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"file is not indexed: {self.path}"


class TransactionError(OrganizerError, RuntimeError):
    """Index transaction misuse or failure."""


class OperationParseError(OrganizerError, ValueError):
    """A streamed line is not a valid operation."""


class StreamReadError(OrganizerError, IOError):
    """The suggestion stream broke; carries the operations already delivered."""

    def __init__(self, message: str, operations: Optional[List] = None):
        super().__init__(message)
        self.operations = list(operations or [])


class IntegrityCheckError(OrganizerError, RuntimeError):
    """Pre-execution verification could not be established."""


class ConfigError(OrganizerError, ValueError):
    """Configuration is missing or invalid."""
