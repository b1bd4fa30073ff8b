"""
Executor module - Apply approved moves with integrity verification.

Moves run sequentially. Every operation is validated and attempted on its
own, so one failure never aborts the batch. File counts of the affected
directories are taken before and after the batch to detect lost or
duplicated files, and the index (when attached) is updated in a single
transaction that is rolled back and restored from a snapshot on failure.
"""
import logging
import os
from typing import Iterable, List, Optional

from vibes_organizer.errors import (
    DirectoryCreationError,
    IntegrityCheckError,
    OperationValidationError,
    TransactionError,
)
from vibes_organizer.ignore import IgnoreMatcher
from vibes_organizer.indexer import Indexer
from vibes_organizer.models import (
    ExecutionResult,
    FileOperation,
    IndexSnapshot,
    OperationResult,
    normalize_path,
)
from vibes_organizer.validator import Validator

logger = logging.getLogger(__name__)


def is_within(path: str, directory: str) -> bool:
    """True if path equals directory or lies beneath it."""
    try:
        return os.path.commonpath([path, directory]) == directory
    except ValueError:
        # different drives
        return False


def build_inverse_operations(results: Iterable[OperationResult]) -> List[FileOperation]:
    """Reverse every successful operation, last applied first."""
    return [result.operation.inverse() for result in reversed(list(results)) if result.success]


def missing_parent_dirs(directory: str) -> List[str]:
    """Ancestors of (and including) directory that do not exist yet, outermost first."""
    missing: List[str] = []
    current = directory
    while not os.path.exists(current):
        missing.insert(0, current)
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return missing


def relocate_link_target(link_target: str, old_link: str, new_link: str) -> str:
    """
    Target to use when a symlink moves from old_link to new_link.

    Absolute targets are kept. Relative targets are recomputed from the new
    location, falling back to the absolute target when no relative path
    exists (e.g. across drives).
    """
    if os.path.isabs(link_target):
        return link_target
    absolute_target = os.path.normpath(os.path.join(os.path.dirname(old_link), link_target))
    try:
        return os.path.relpath(absolute_target, os.path.dirname(new_link))
    except ValueError:
        logger.debug(f"Converting symlink to absolute path: {absolute_target}")
        return absolute_target


class ExecutionEngine:
    """Executes file operations with verification, index bookkeeping and undo."""

    def __init__(
        self,
        validator: Optional[Validator] = None,
        ignore_matcher: Optional[IgnoreMatcher] = None,
        indexer: Optional[Indexer] = None,
    ):
        """
        Initialize engine.

        Args:
            validator: Operation validator (default Validator())
            ignore_matcher: Directories left alone by empty-directory cleanup
            indexer: When set, the index follows successful moves
        """
        self.validator = validator or Validator()
        self.ignore_matcher = ignore_matcher
        self.indexer = indexer

    def _is_ignored(self, root: str, path: str, is_dir: bool) -> bool:
        if self.ignore_matcher is None:
            return False
        relative_path = os.path.relpath(path, root).replace(os.sep, "/")
        return self.ignore_matcher.should_ignore(relative_path, is_dir)

    def count_files(self, root_path: str) -> int:
        """
        Count files below a directory (directories excluded, links counted).

        Ignore rules do not apply: a file moved into an ignored directory
        still exists.

        Raises:
            OSError: If any directory cannot be listed
        """
        root = normalize_path(root_path)
        count = 0
        pending = [root]
        while pending:
            directory = pending.pop()
            with os.scandir(directory) as iterator:
                for entry in iterator:
                    if entry.is_dir(follow_symlinks=False):
                        pending.append(entry.path)
                    else:
                        count += 1
        return count

    def determine_verification_scope(self, operations: List[FileOperation], base_path: str) -> List[str]:
        """
        Directories whose file counts bound the batch.

        The base directory plus the parent of any source or destination
        outside it. Several directories collapse into their common ancestor
        so nested trees are not counted twice.

        Raises:
            ValueError: If the paths share no common ancestor
        """
        base = normalize_path(base_path)
        paths = {base}

        for operation in operations:
            for path, label in ((operation.from_path, "source"), (operation.to_path, "destination")):
                parent = os.path.dirname(normalize_path(path))
                if not is_within(parent, base):
                    paths.add(parent)
                    logger.debug(f"Added verification path (external {label}): {parent}")

        if len(paths) > 1:
            ancestor = os.path.commonpath(sorted(paths))
            logger.info(f"Multi-path verification: using common ancestor {ancestor} to avoid double-counting")
            return [ancestor]
        return sorted(paths)

    def execute_operation(self, operation: FileOperation) -> OperationResult:
        """
        Execute a single move.

        Args:
            operation: Operation to execute

        Returns:
            OperationResult; failures are recorded, never raised
        """
        result = OperationResult(operation=operation)
        source = operation.from_path
        target = operation.to_path

        try:
            self.validator.validate_file_operation(operation)
        except OperationValidationError as e:
            logger.warning(f"Skipping {operation}: {e}")
            result.error = str(e)
            return result

        dest_dir = os.path.dirname(target)
        created_dirs = missing_parent_dirs(dest_dir)
        try:
            os.makedirs(dest_dir, exist_ok=True)
        except OSError as e:
            error = DirectoryCreationError(f"could not create directory {dest_dir}: {e}")
            logger.error(f"Failed to execute {operation}: {error}")
            result.error = str(error)
            return result
        result.created_dirs = created_dirs

        if os.path.islink(source):
            return self._move_symlink(operation, result)

        try:
            os.rename(source, target)
        except OSError as e:
            logger.error(f"Failed to move {operation}: {e}")
            result.error = str(e)
            return result

        result.success = True
        logger.debug(f"Successfully moved: {operation}")
        return result

    def _move_symlink(self, operation: FileOperation, result: OperationResult) -> OperationResult:
        source = operation.from_path
        target = operation.to_path

        try:
            link_target = os.readlink(source)
        except OSError as e:
            result.error = f"failed to read symlink: {e}"
            return result

        result.symlink_target = link_target
        new_target = relocate_link_target(link_target, source, target)

        try:
            os.remove(source)
        except OSError as e:
            result.error = f"failed to remove original symlink: {e}"
            return result

        try:
            os.symlink(new_target, target)
        except OSError as e:
            try:
                os.symlink(link_target, source)
            except OSError as restore_error:
                result.error = (
                    f"failed to create new symlink and restore original: {e} "
                    f"(restore error: {restore_error})"
                )
            else:
                result.error = f"failed to create new symlink: {e}"
            logger.error(f"Failed to move symlink {operation}: {result.error}")
            return result

        result.success = True
        if new_target != link_target:
            logger.debug(f"Moved symlink {operation} with adjusted target {link_target} -> {new_target}")
        else:
            logger.debug(f"Moved symlink {operation} (target: {link_target})")
        return result

    def clean_empty_directories(self, root_path: str) -> int:
        """
        Remove empty directories below root, deepest first.

        Ignored directories are neither descended nor removed.
        """
        root = normalize_path(root_path)
        directories: List[str] = []
        for current, dirnames, _ in os.walk(root):
            kept = []
            for name in dirnames:
                path = os.path.join(current, name)
                if os.path.islink(path) or self._is_ignored(root, path, True):
                    continue
                kept.append(name)
                directories.append(path)
            dirnames[:] = kept

        # "a/b/c" goes before "a/b" so nested empties collapse
        directories.sort(key=len, reverse=True)

        removed = 0
        for directory in directories:
            try:
                os.rmdir(directory)
            except OSError:
                continue
            removed += 1
            logger.debug(f"Removed empty directory: {directory}")
        return removed

    def execute_operations(
        self,
        operations: List[FileOperation],
        base_path: str,
        clean_empty: bool = False,
    ) -> ExecutionResult:
        """
        Execute a batch of operations.

        Args:
            operations: Operations to execute, in order
            base_path: Base directory of the batch
            clean_empty: Remove empty directories under base_path afterwards

        Returns:
            ExecutionResult with per-operation outcomes and verification counts

        Raises:
            IntegrityCheckError: If the pre-execution count cannot be taken
        """
        result = ExecutionResult()
        logger.info(f"Executing {len(operations)} operations under {base_path}")

        try:
            verification_paths = self.determine_verification_scope(operations, base_path)
        except ValueError as e:
            raise IntegrityCheckError(f"cannot determine verification scope: {e}") from e

        initial_count = 0
        for path in verification_paths:
            try:
                initial_count += self.count_files(path)
            except OSError as e:
                raise IntegrityCheckError(f"integrity check failed for {path}: {e}") from e
        result.initial_file_count = initial_count

        snapshot = self._create_snapshot(operations)

        for i, operation in enumerate(operations, 1):
            logger.debug(f"Operation {i}/{len(operations)}: {operation}")
            op_result = self.execute_operation(operation)
            result.operations.append(op_result)
            if op_result.success:
                result.success_count += 1
            else:
                result.fail_count += 1

        if clean_empty:
            try:
                result.cleaned_dirs = self.clean_empty_directories(base_path)
            except OSError as e:
                logger.error(f"Failed to clean empty directories: {e}")

        final_count = 0
        for path in verification_paths:
            try:
                final_count += self.count_files(path)
            except OSError as e:
                result.verification_error = f"post-execution count failed for {path}: {e}"
                logger.error(result.verification_error)
        result.final_file_count = final_count

        if result.success_count > 0 and self.indexer is not None:
            self._update_index(result, snapshot)

        logger.info(f"Execution complete: {result.success_count} successful, {result.fail_count} failed")
        if result.verification_mismatch:
            logger.warning(
                f"File count changed: started with {result.initial_file_count}, "
                f"ended with {result.final_file_count}"
            )
        return result

    def _create_snapshot(self, operations: List[FileOperation]) -> Optional[IndexSnapshot]:
        if self.indexer is None:
            return None
        try:
            return self.indexer.index_store.create_snapshot(operations)
        except Exception as e:
            logger.error(f"Failed to create index snapshot: {e}")
            return None

    def _update_index(self, result: ExecutionResult, snapshot: Optional[IndexSnapshot]) -> None:
        store = self.indexer.index_store
        logger.info("Updating index after execution")

        try:
            store.begin()
        except TransactionError as e:
            logger.error(f"Failed to begin index transaction: {e}")
            result.index_error = str(e)
            return

        successful = [op_result.operation for op_result in result.successful_results]
        try:
            self.indexer.update_index_after_operations(successful)
        except Exception as e:
            logger.error(f"Failed to update index after execution: {e}")
            result.index_error = str(e)
            try:
                store.rollback()
            except TransactionError as rb_error:
                logger.error(f"Failed to rollback index transaction: {rb_error}")
            if snapshot is not None:
                logger.info("Restoring index from snapshot due to update failure")
                try:
                    store.restore_snapshot(snapshot)
                except TransactionError as restore_error:
                    logger.error(f"Failed to restore index snapshot: {restore_error}")
            return

        try:
            store.commit()
        except TransactionError as e:
            logger.error(f"Failed to commit index transaction: {e}")
            result.index_error = str(e)
            return
        logger.info("Index update complete")

    def undo(self, results: List[OperationResult], base_path: str) -> ExecutionResult:
        """
        Reverse a previous batch.

        Replays the inverse of every successful operation in reverse order,
        then removes the directories the original batch created.

        Args:
            results: Per-operation results of the batch to undo
            base_path: Base directory of the original batch

        Returns:
            ExecutionResult of the inverse batch; cleaned_dirs counts the
            removed created directories
        """
        inverse = build_inverse_operations(results)
        logger.info(f"Rolling back {len(inverse)} operations")
        result = self.execute_operations(inverse, base_path, clean_empty=False)

        created = {directory for op_result in results if op_result.success
                   for directory in op_result.created_dirs}
        removed = 0
        for directory in sorted(created, key=len, reverse=True):
            try:
                os.rmdir(directory)
            except OSError as e:
                logger.debug(f"Kept directory during rollback: {directory}: {e}")
                continue
            removed += 1
            logger.debug(f"Removed directory during rollback: {directory}")

        result.cleaned_dirs += removed
        return result
