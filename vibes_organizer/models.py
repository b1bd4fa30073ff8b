"""
Core data models for the folder reorganizer.

All models use Pydantic for validation and JSON serialization.
"""
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


GLOB_METACHARACTERS = "*?["


class FileType(str, Enum):
    """Coarse file types stored in the index."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    PDF = "pdf"
    DOCUMENT = "document"
    OTHER = "other"


_EXTENSION_TYPES: Dict[str, FileType] = {}
for _ext in (".txt", ".md", ".json", ".xml", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf",
             ".go", ".py", ".js", ".ts", ".java", ".c", ".cpp", ".h", ".hpp", ".rs", ".rb",
             ".php", ".sh", ".bash", ".csv", ".log"):
    _EXTENSION_TYPES[_ext] = FileType.TEXT
for _ext in (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".ico"):
    _EXTENSION_TYPES[_ext] = FileType.IMAGE
for _ext in (".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv", ".webm"):
    _EXTENSION_TYPES[_ext] = FileType.VIDEO
for _ext in (".mp3", ".wav", ".flac", ".aac", ".ogg", ".wma", ".m4a"):
    _EXTENSION_TYPES[_ext] = FileType.AUDIO
_EXTENSION_TYPES[".pdf"] = FileType.PDF
for _ext in (".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp"):
    _EXTENSION_TYPES[_ext] = FileType.DOCUMENT


def determine_file_type(path: str) -> FileType:
    """Map a file name to its FileType by extension (case-insensitive)."""
    return _EXTENSION_TYPES.get(Path(path).suffix.lower(), FileType.OTHER)


def normalize_path(path: str) -> str:
    """Absolute, cleaned path (no '.'/'..' segments, no trailing separator)."""
    return os.path.normpath(os.path.abspath(path))


def mtime_of(stat: os.stat_result) -> datetime:
    """Modification time of a stat result as stored in the index."""
    return datetime.fromtimestamp(stat.st_mtime)


class IndexedFile(BaseModel):
    """One row of the persisted file index."""
    path: str = Field(..., description="Absolute file path (unique key)")
    description: str = Field("", description="Analysis description, may be empty")
    file_type: FileType = Field(FileType.OTHER, description="Coarse file type")
    size: int = Field(0, ge=0, description="File size in bytes")
    last_modified: datetime = Field(..., description="Filesystem mtime at indexing time")
    indexed_at: datetime = Field(default_factory=datetime.now, description="First indexed")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last row update")
    symlink_target: Optional[str] = Field(None, description="Link target if the entry is a symlink")

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        """Ensure path is absolute."""
        if not os.path.isabs(v):
            raise ValueError("Path must be absolute")
        return v

    @property
    def is_symlink(self) -> bool:
        return self.symlink_target is not None


class DirectoryChanges(BaseModel):
    """Result of one scan: four disjoint path lists."""
    new_files: List[str] = Field(default_factory=list, description="Not in the index")
    modified_files: List[str] = Field(default_factory=list, description="Indexed but stale")
    deleted_files: List[str] = Field(default_factory=list, description="Indexed but gone")
    unchanged_files: List[str] = Field(default_factory=list, description="Indexed and fresh")

    @property
    def files_to_index(self) -> List[str]:
        return self.new_files + self.modified_files

    @property
    def total(self) -> int:
        return (len(self.new_files) + len(self.modified_files)
                + len(self.deleted_files) + len(self.unchanged_files))


class FileOperation(BaseModel):
    """A single proposed move, both ends absolute and cleaned."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_path: str = Field(..., alias="from", description="Source path")
    to_path: str = Field(..., alias="to", description="Destination path")

    @model_validator(mode='after')
    def validate_endpoints(self):
        """Source and destination must differ."""
        if self.from_path == self.to_path:
            raise ValueError("source and destination are identical")
        return self

    def inverse(self) -> "FileOperation":
        return FileOperation(from_path=self.to_path, to_path=self.from_path)

    def __str__(self) -> str:
        return f"{self.from_path} -> {self.to_path}"


class IndexSnapshot(BaseModel):
    """Prior state of specific index rows; None marks an absent row."""
    entries: Dict[str, Optional[IndexedFile]] = Field(
        default_factory=dict, description="Captured record per path, None if absent"
    )

    def ordered_entries(self) -> List[Tuple[str, Optional[IndexedFile]]]:
        """Entries sorted by path for deterministic replay."""
        return sorted(self.entries.items(), key=lambda item: item[0])

    def __len__(self) -> int:
        return len(self.entries)


class OperationResult(BaseModel):
    """Outcome of one executed FileOperation."""
    operation: FileOperation = Field(..., description="The attempted operation")
    success: bool = Field(False, description="Whether the move happened")
    error: Optional[str] = Field(None, description="Failure message")
    created_dirs: List[str] = Field(
        default_factory=list,
        description="Directories created for this move, outermost first",
    )
    symlink_target: Optional[str] = Field(None, description="Original target of a moved symlink")


class ExecutionResult(BaseModel):
    """Result of executing a batch of operations."""
    success_count: int = Field(0, description="Operations that succeeded")
    fail_count: int = Field(0, description="Operations that failed")
    initial_file_count: int = Field(0, description="Files in scope before the batch")
    final_file_count: int = Field(0, description="Files in scope after the batch")
    cleaned_dirs: int = Field(0, description="Empty directories removed")
    operations: List[OperationResult] = Field(default_factory=list, description="Per-operation results")
    verification_error: Optional[str] = Field(None, description="Post-batch count failure")
    index_error: Optional[str] = Field(None, description="Index update failure (rolled back)")

    @property
    def verification_passed(self) -> bool:
        return self.verification_error is None and self.initial_file_count == self.final_file_count

    @property
    def verification_mismatch(self) -> bool:
        return self.verification_error is None and self.initial_file_count != self.final_file_count

    @property
    def successful_results(self) -> List[OperationResult]:
        return [result for result in self.operations if result.success]


class IgnoreRule(BaseModel):
    """One compiled ignore pattern."""
    model_config = ConfigDict(frozen=True)

    raw: str = Field(..., description="Pattern text as written")
    directory_scoped: bool = Field(False, description="Pattern ends with a path separator")

    @classmethod
    def parse(cls, line: str) -> "IgnoreRule":
        raw = line.strip()
        return cls(raw=raw, directory_scoped=raw.endswith("/") or raw.endswith("\\"))

    @property
    def pattern(self) -> str:
        """Pattern with the trailing separator stripped and forward slashes."""
        pattern = self.raw.replace("\\", "/")
        if self.directory_scoped:
            pattern = pattern.rstrip("/")
        return pattern

    @property
    def has_glob(self) -> bool:
        return any(char in self.pattern for char in GLOB_METACHARACTERS)


class IndexingResult(BaseModel):
    """Summary of an indexing run."""
    indexed: int = Field(0, description="Files analyzed and written")
    failed: int = Field(0, description="Files whose analysis failed")
    removed: int = Field(0, description="Rows removed for deleted files")
    skipped: int = Field(0, description="Unchanged files left alone")


class AnalysisRequest(BaseModel):
    """Input for a suggestion run."""
    directory_path: str = Field(..., description="Directory to reorganize")
    user_prompt: str = Field(..., description="Natural-language instructions")
    max_depth: int = Field(0, ge=0, description="Listing depth, 0 = unlimited")
    enable_deep_analysis: bool = Field(False, description="Index and describe files first")


class AnalysisResult(BaseModel):
    """Output of a suggestion run."""
    structure: str = Field("", description="Listing sent to the model")
    operations: List[FileOperation] = Field(default_factory=list, description="Suggested moves")
    error: Optional[str] = Field(None, description="Failure message")


class ExecutionRequest(BaseModel):
    """Input for an execution batch."""
    operations: List[FileOperation] = Field(default_factory=list, description="Approved moves")
    base_path: str = Field(..., description="Base directory of the batch")
    clean_empty: bool = Field(False, description="Remove empty directories afterwards")
