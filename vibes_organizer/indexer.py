"""
Indexer module - Keep the index in step with the filesystem.

Sends new and modified files to the analyzer, drops rows for deleted
files, and rewrites rows after files were moved so descriptions survive
a reorganization without being recomputed.
"""
import logging
import os
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from vibes_organizer.annotator import Analyzer
from vibes_organizer.models import FileOperation, IndexedFile, IndexingResult, normalize_path
from vibes_organizer.scanner import Scanner
from vibes_organizer.storage import IndexStore, read_live_metadata

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class Indexer:
    """Analyzes files and writes the results into the index."""

    def __init__(self, index_store: IndexStore, analyzer: Optional[Analyzer], scanner: Scanner):
        """
        Initialize indexer.

        Args:
            index_store: Index to write to
            analyzer: Describes files; without one, moved files that were
                never indexed stay unindexed
            scanner: Scanner bound to the same index store
        """
        self.index_store = index_store
        self.analyzer = analyzer
        self.scanner = scanner

    def index_file(self, path: str) -> IndexedFile:
        """
        Analyze one file and upsert its row.

        Raises:
            Exception: Whatever the analyzer or stat raises
        """
        if self.analyzer is None:
            raise RuntimeError("no analyzer configured")

        path = normalize_path(path)
        description, file_type = self.analyzer.analyze(path)
        size, last_modified, symlink_target = read_live_metadata(path)

        existing = self.index_store.get(path)
        now = datetime.now()
        record = IndexedFile(
            path=path,
            description=description,
            file_type=file_type,
            size=size,
            last_modified=last_modified,
            indexed_at=existing.indexed_at if existing is not None else now,
            updated_at=now,
            symlink_target=symlink_target,
        )
        self.index_store.upsert(record)
        logger.debug(f"Indexed {path} as {file_type.value}")
        return record

    def index_directory(
        self,
        directory: str,
        max_depth: int = 0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IndexingResult:
        """
        Bring the index for a directory up to date.

        Args:
            directory: Directory to index
            max_depth: Scan depth, 0 for unlimited
            on_progress: Called with (current, total, file_name) per analyzed file

        Returns:
            IndexingResult with counts
        """
        changes = self.scanner.scan(directory, max_depth)
        result = IndexingResult(skipped=len(changes.unchanged_files))

        for path in changes.deleted_files:
            self.index_store.remove(path)
            result.removed += 1

        to_index = changes.files_to_index
        total = len(to_index)
        logger.info(f"Indexing {total} files in {directory}")

        for current, path in enumerate(to_index, 1):
            if on_progress is not None:
                on_progress(current, total, os.path.basename(path))
            try:
                self.index_file(path)
                result.indexed += 1
            except Exception as e:
                # not fatal: the file is picked up again on the next scan
                logger.warning(f"Skipping file due to analysis error: {path}: {e}")
                result.failed += 1

        logger.info(
            f"Indexing complete: {result.indexed} indexed, {result.failed} failed, "
            f"{result.removed} removed, {result.skipped} unchanged"
        )
        return result

    def _move_directory_rows(self, old_dir: str, new_dir: str) -> int:
        moved = 0
        old_prefix = normalize_path(old_dir) + os.sep
        for record in self.index_store.list_under(old_dir):
            if not record.path.startswith(old_prefix):
                continue
            new_path = os.path.join(new_dir, record.path[len(old_prefix):])
            self.index_store.update_path(record.path, new_path)
            moved += 1
        return moved

    def update_index_after_operations(self, operations: Iterable[FileOperation]) -> None:
        """
        Reflect successful moves in the index.

        Indexed sources get their row rewritten; moved directories carry
        every row beneath them along; anything else is indexed fresh at
        its destination. Store failures propagate to the caller.
        """
        for operation in operations:
            source = normalize_path(operation.from_path)
            target = normalize_path(operation.to_path)

            if self.index_store.is_indexed(source):
                self.index_store.update_path(source, target)
                logger.debug(f"Updated index path: {source} -> {target}")
                continue

            if os.path.isdir(target) and not os.path.islink(target):
                moved = self._move_directory_rows(source, target)
                logger.debug(f"Moved {moved} index rows with directory {source} -> {target}")
                continue

            if self.analyzer is None:
                continue
            try:
                description, file_type = self.analyzer.analyze(target)
            except Exception as e:
                logger.warning(f"Not indexing moved file {target}: {e}")
                continue

            size, last_modified, symlink_target = read_live_metadata(target)
            now = datetime.now()
            self.index_store.upsert(IndexedFile(
                path=target,
                description=description,
                file_type=file_type,
                size=size,
                last_modified=last_modified,
                indexed_at=now,
                updated_at=now,
                symlink_target=symlink_target,
            ))
            logger.debug(f"Indexed moved file: {target}")

    def directory_stats(self, directory: str) -> Dict[str, int]:
        """Total row count plus a count per file type under a directory."""
        records = self.index_store.list_under(directory)
        stats: Dict[str, int] = {"total": len(records)}
        stats.update(Counter(record.file_type.value for record in records))
        return stats

    def delete_directory_index(self, directory: str) -> int:
        """Remove every row under a directory in one transaction."""
        records = self.index_store.list_under(directory)
        with self.index_store.transaction():
            for record in records:
                self.index_store.remove(record.path)
        logger.info(f"Deleted {len(records)} index entries under {directory}")
        return len(records)
