"""
Pipeline orchestrator - Coordinates analysis, suggestion and execution.

Analysis:  Validator -> Index cleanup -> Scanner -> Indexer -> Listing -> Planner
Execution: ExecutionEngine (snapshot -> moves -> verification -> index update)

Long-running calls can be submitted to a dedicated worker thread; results
come back through futures and callbacks, never through shared state.
"""
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional

from vibes_organizer.annotator import Analyzer
from vibes_organizer.config import OrganizerConfig
from vibes_organizer.errors import ScanError
from vibes_organizer.executor import ExecutionEngine
from vibes_organizer.ignore import IgnoreMatcher
from vibes_organizer.indexer import Indexer, ProgressCallback
from vibes_organizer.models import (
    AnalysisRequest,
    AnalysisResult,
    DirectoryChanges,
    ExecutionRequest,
    ExecutionResult,
    IndexedFile,
    IndexingResult,
    normalize_path,
)
from vibes_organizer.planner import SuggestionService
from vibes_organizer.scanner import Scanner
from vibes_organizer.storage import IndexStore
from vibes_organizer.stream_parser import OperationCallback
from vibes_organizer.validator import Validator

logger = logging.getLogger(__name__)


class Orchestrator:
    """Main entry point tying the reorganizer components together."""

    def __init__(
        self,
        config: OrganizerConfig,
        suggestion_service: SuggestionService,
        index_store: Optional[IndexStore] = None,
        analyzer: Optional[Analyzer] = None,
        validator: Optional[Validator] = None,
    ):
        """
        Initialize orchestrator with configuration.

        Args:
            config: Shared configuration
            suggestion_service: Source of proposed moves
            index_store: Index for deep analysis (disabled if None)
            analyzer: Describes files for the index
            validator: Request/operation validator
        """
        self.config = config
        self.suggestion_service = suggestion_service
        self.index_store = index_store
        self.validator = validator or Validator()
        self.ignore_matcher = IgnoreMatcher.from_config(config)

        self.scanner = Scanner(index_store, self.ignore_matcher)
        self.indexer = Indexer(index_store, analyzer, self.scanner) if index_store is not None else None
        self.engine = ExecutionEngine(self.validator, self.ignore_matcher, self.indexer)
        self._worker: Optional[ThreadPoolExecutor] = None

    def _require_index(self) -> Indexer:
        if self.indexer is None:
            raise RuntimeError("index service not available")
        return self.indexer

    def analyze_directory(
        self,
        request: AnalysisRequest,
        on_operation: Optional[OperationCallback] = None,
    ) -> AnalysisResult:
        """
        Produce move suggestions for a directory.

        Args:
            request: Directory, instructions, depth and deep-analysis flag
            on_operation: Called for each suggestion as it streams in

        Returns:
            AnalysisResult; failures are reported in .error
        """
        result = AnalysisResult()
        directory = request.directory_path

        try:
            self.validator.validate_directory(directory)
            self.validator.validate_prompt(request.user_prompt)
        except (ValueError, OSError) as e:
            result.error = str(e)
            return result

        directory = normalize_path(directory)
        deep = request.enable_deep_analysis and self.indexer is not None

        if deep:
            self._refresh_index(directory, request.max_depth)

        logger.info(f"Scanning directory: {directory} (depth: {request.max_depth})")
        try:
            structure = self.scanner.directory_structure(directory, request.max_depth)
        except ScanError as e:
            result.error = f"failed to scan directory: {e}"
            return result

        if deep:
            structure = self.enrich_structure_with_descriptions(directory, structure)
        result.structure = structure

        logger.info("Requesting AI suggestions (streaming)")
        try:
            result.operations = self.suggestion_service.get_suggestions(
                structure, request.user_prompt, directory, on_operation
            )
        except Exception as e:
            logger.error(f"Failed to get AI suggestions: {e}")
            result.operations = list(getattr(e, "operations", []))
            result.error = f"failed to get AI suggestions: {e}"
            return result

        logger.info(f"Analysis complete: {len(result.operations)} operations suggested")
        return result

    def _refresh_index(self, directory: str, max_depth: int) -> None:
        logger.info(f"Checking if directory needs indexing: {directory} (depth: {max_depth})")

        removed = self.index_store.remove_orphaned(directory)
        if removed > 0:
            logger.info(f"Cleaned up {removed} orphaned index entries")

        try:
            changes = self.scanner.scan(directory, max_depth)
        except ScanError as e:
            logger.error(f"Failed to scan directory changes: {e}")
            return

        if not changes.files_to_index:
            logger.info("No files need indexing, using existing index")
            return

        logger.info(f"Found {len(changes.files_to_index)} files to index, starting indexing...")
        try:
            self.indexer.index_directory(
                directory,
                max_depth,
                lambda current, total, name: logger.debug(f"Indexing file {current}/{total}: {name}"),
            )
        except ScanError as e:
            logger.error(f"Failed to index directory: {e}")

    def enrich_structure_with_descriptions(self, directory: str, structure: str) -> str:
        """Insert stored descriptions into file lines: "path [description] (N bytes)"."""
        descriptions = {
            record.path: record.description
            for record in self.index_store.list_under(directory)
            if record.description
        }

        enriched = []
        for line in structure.splitlines():
            stripped = line.strip()
            if not stripped or stripped.endswith("/") or " (" not in line:
                enriched.append(line)
                continue

            relative_path, size_info = line.rsplit(" (", 1)
            full_path = os.path.normpath(os.path.join(directory, relative_path.strip()))
            description = descriptions.get(full_path)
            if description:
                enriched.append(f"{relative_path.strip()} [{description}] ({size_info}")
            else:
                enriched.append(line)

        return "".join(line + "\n" for line in enriched)

    def execute_organization(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute approved operations; the index follows when deep analysis is enabled."""
        logger.info(f"Starting execution of {len(request.operations)} operations")
        return self.engine.execute_operations(request.operations, request.base_path, request.clean_empty)

    def rollback(self, previous: ExecutionResult, base_path: str) -> ExecutionResult:
        """Undo a previous execution batch."""
        return self.engine.undo(previous.operations, base_path)

    def scan_directory_changes(self, directory: str, max_depth: int = 0) -> DirectoryChanges:
        self._require_index()
        return self.scanner.scan(directory, max_depth)

    def index_directory(self, directory: str, max_depth: int = 0,
                        on_progress: Optional[ProgressCallback] = None) -> IndexingResult:
        return self._require_index().index_directory(directory, max_depth, on_progress)

    def directory_index_stats(self, directory: str) -> Dict[str, int]:
        if self.indexer is None:
            return {"total": 0}
        return self.indexer.directory_stats(directory)

    def delete_directory_index(self, directory: str) -> int:
        return self._require_index().delete_directory_index(directory)

    def indexed_files(self, directory: str) -> List[IndexedFile]:
        self._require_index()
        return self.index_store.list_under(directory)

    def validate_index(self) -> List[str]:
        self._require_index()
        return self.index_store.validate_index()

    def directory_structure(self, directory: str, max_depth: int = 0) -> str:
        return self.scanner.directory_structure(directory, max_depth)

    def _submit(self, fn, *args) -> Future:
        if self._worker is None:
            self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="organizer")
        return self._worker.submit(fn, *args)

    def submit_analysis(self, request: AnalysisRequest,
                        on_operation: Optional[OperationCallback] = None) -> Future:
        """Run analyze_directory on the worker thread; on_operation runs there too."""
        return self._submit(self.analyze_directory, request, on_operation)

    def submit_execution(self, request: ExecutionRequest) -> Future:
        return self._submit(self.execute_organization, request)

    def submit_rollback(self, previous: ExecutionResult, base_path: str) -> Future:
        return self._submit(self.rollback, previous, base_path)

    def shutdown(self, wait: bool = True) -> None:
        if self._worker is not None:
            self._worker.shutdown(wait=wait)
            self._worker = None


def configure_logging(level: str = "INFO") -> None:
    """
    Configure logging for the reorganizer.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
