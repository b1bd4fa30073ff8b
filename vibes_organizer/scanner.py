"""
Scanner module - Read-only change detection against the index.

Walks a directory tree (bounded by depth, filtered by ignore rules) and
classifies every file as new, modified, unchanged or deleted relative to
the stored index. Also renders the directory listing sent to the model.
"""
import logging
import os
from typing import Callable, Iterable, List, Optional, Set, Tuple

from vibes_organizer.errors import ScanError
from vibes_organizer.ignore import IgnoreMatcher
from vibes_organizer.models import DirectoryChanges, normalize_path
from vibes_organizer.storage import IndexStore

logger = logging.getLogger(__name__)


def _fail(message: str, exc: Optional[BaseException] = None) -> None:
    """Abort the scan; a partial picture of the tree is unsafe to act on."""
    logger.error(f"{message}: {exc}" if exc is not None else message)
    if exc is not None:
        raise ScanError(message) from exc
    raise ScanError(message)


def path_depth(relative_path: str) -> int:
    """Number of segments in a forward-slash relative path."""
    return len([part for part in relative_path.split("/") if part])


class Scanner:
    """Read-only directory scanner that diffs the tree against the index."""

    def __init__(self, index_store: Optional[IndexStore] = None,
                 ignore_matcher: Optional[IgnoreMatcher] = None):
        """
        Initialize scanner.

        Args:
            index_store: Index to compare against (required for scan())
            ignore_matcher: Optional matcher for excluded paths
        """
        self.index_store = index_store
        self.ignore_matcher = ignore_matcher

    def _is_ignored(self, relative_path: str, is_dir: bool) -> bool:
        if self.ignore_matcher is None:
            return False
        return self.ignore_matcher.should_ignore(relative_path, is_dir)

    def _walk_directory(
        self,
        directory: str,
        relative_dir: str,
        max_depth: int,
        on_directory=None,
    ) -> Iterable[Tuple[str, str, os.stat_result]]:
        """
        Yield (absolute_path, relative_path, stat) for files in deterministic order.

        Symlinks are never followed; a link to a directory is reported as a file.
        """
        directories = []
        files = []
        try:
            with os.scandir(directory) as iterator:
                for entry in iterator:
                    relative_path = f"{relative_dir}/{entry.name}" if relative_dir else entry.name
                    is_dir = entry.is_dir(follow_symlinks=False)

                    if self._is_ignored(relative_path, is_dir):
                        logger.debug(f"Ignoring path: {relative_path}")
                        if is_dir:
                            directories.append((entry.name, entry, relative_path, True))
                        continue

                    if max_depth > 0 and path_depth(relative_path) > max_depth:
                        continue

                    if is_dir:
                        directories.append((entry.name, entry, relative_path, False))
                    else:
                        files.append((entry.name, entry, relative_path))
        except OSError as exc:
            _fail(f"Failed to list directory {directory}", exc)

        for _, entry, relative_path, ignored in sorted(directories, key=lambda item: item[0]):
            if on_directory is not None:
                on_directory(relative_path, ignored)
            if not ignored:
                yield from self._walk_directory(entry.path, relative_path, max_depth, on_directory)

        for _, entry, relative_path in sorted(files, key=lambda item: item[0]):
            try:
                stat = entry.stat(follow_symlinks=False)
            except OSError as exc:
                _fail(f"Failed to stat file {entry.path}", exc)
            yield entry.path, relative_path, stat

    def iter_files(
        self,
        directory: str,
        max_depth: int = 0,
        on_directory: Optional[Callable[[str, bool], None]] = None,
    ) -> Iterable[Tuple[str, str, os.stat_result]]:
        """
        Iterate non-ignored files under a directory.

        Args:
            directory: Root to walk
            max_depth: Maximum relative segment count, 0 for unlimited
            on_directory: Called with (relative_path, ignored) for each directory

        Raises:
            ScanError: If the root is not a directory or any entry fails
        """
        root = normalize_path(directory)
        if not os.path.isdir(root):
            raise ScanError(f"Path is not a directory: {root}")
        yield from self._walk_directory(root, "", max_depth, on_directory)

    def scan(self, directory: str, max_depth: int = 0) -> DirectoryChanges:
        """
        Classify files under a directory against the index.

        Args:
            directory: Directory to scan
            max_depth: Maximum relative segment count, 0 for unlimited

        Returns:
            DirectoryChanges with disjoint new/modified/deleted/unchanged lists

        Raises:
            ScanError: On any walk or stat failure
        """
        if self.index_store is None:
            raise ValueError("scan() requires an index store")

        root = normalize_path(directory)
        logger.info(f"Scanning directory for changes: {root} (depth={max_depth})")

        changes = DirectoryChanges()
        observed: Set[str] = set()

        for file_path, _, _ in self.iter_files(root, max_depth):
            observed.add(file_path)
            if not self.index_store.is_indexed(file_path):
                changes.new_files.append(file_path)
                continue
            try:
                stale = self.index_store.needs_reindex(file_path)
            except OSError as exc:
                _fail(f"Failed to stat indexed file {file_path}", exc)
            if stale:
                changes.modified_files.append(file_path)
            else:
                changes.unchanged_files.append(file_path)

        for record in self.index_store.list_under(root):
            if record.path in observed or record.path == root:
                continue
            relative_path = os.path.relpath(record.path, root).replace(os.sep, "/")
            if max_depth > 0 and path_depth(relative_path) > max_depth:
                continue
            if self.ignore_matcher is not None and self.ignore_matcher.is_path_ignored(relative_path):
                continue
            changes.deleted_files.append(record.path)

        for paths in (changes.new_files, changes.modified_files,
                      changes.deleted_files, changes.unchanged_files):
            paths.sort()

        logger.info(
            f"Scan complete: {len(changes.new_files)} new, {len(changes.modified_files)} modified, "
            f"{len(changes.deleted_files)} deleted, {len(changes.unchanged_files)} unchanged"
        )
        return changes

    def directory_structure(self, directory: str, max_depth: int = 0) -> str:
        """
        Render the tree as the model sees it.

        Directories appear as "rel/path/" (ignored ones are listed but not
        descended), files as "rel/path (N bytes)".
        """
        lines: List[str] = []

        def on_directory(relative_path: str, ignored: bool) -> None:
            lines.append(f"{relative_path}/")

        for _, relative_path, stat in self.iter_files(directory, max_depth, on_directory):
            lines.append(f"{relative_path} ({stat.st_size} bytes)")

        return "".join(line + "\n" for line in lines)
