"""Package initialization."""
__version__ = "0.1.0"

from vibes_organizer.models import (
    AnalysisRequest,
    AnalysisResult,
    DirectoryChanges,
    ExecutionRequest,
    ExecutionResult,
    FileOperation,
    FileType,
    IndexedFile,
    IndexSnapshot,
    OperationResult,
)

__all__ = [
    "AnalysisRequest",
    "AnalysisResult",
    "DirectoryChanges",
    "ExecutionRequest",
    "ExecutionResult",
    "FileOperation",
    "FileType",
    "IndexedFile",
    "IndexSnapshot",
    "OperationResult",
]
