"""
Tests for the orchestrator tying analysis, suggestions and execution together.
"""
import os
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import List, Optional, Tuple

import pytest

from vibes_organizer.annotator import Analyzer
from vibes_organizer.config import OrganizerConfig
from vibes_organizer.errors import StreamReadError
from vibes_organizer.models import (
    AnalysisRequest,
    ExecutionRequest,
    FileOperation,
    FileType,
    determine_file_type,
)
from vibes_organizer.pipeline import Orchestrator
from vibes_organizer.planner import SuggestionService
from vibes_organizer.storage import InMemoryIndexStore


class FakeAnalyzer(Analyzer):
    def analyze(self, path: str) -> Tuple[str, FileType]:
        return f"about {os.path.basename(path)}", determine_file_type(path)


class FakeSuggestionService(SuggestionService):
    """Suggests moving every listed top-level .txt file into sorted/."""

    def __init__(self, fail_after: Optional[int] = None):
        self.structures: List[str] = []
        self.fail_after = fail_after

    def get_suggestions(self, structure, user_prompt, base_path, on_operation=None):
        self.structures.append(structure)
        operations = []
        for line in structure.splitlines():
            name = line.split(" ")[0]
            if "/" in name or not name.endswith(".txt"):
                continue
            if self.fail_after is not None and len(operations) == self.fail_after:
                raise StreamReadError("stream reading error: reset", operations)
            operation = FileOperation(
                from_path=os.path.join(base_path, name),
                to_path=os.path.join(base_path, "sorted", name),
            )
            operations.append(operation)
            if on_operation is not None:
                on_operation(operation)
        return operations


def make_base(tmpdir) -> Path:
    base = Path(tmpdir)
    (base / "a.txt").write_text("alpha")
    (base / "b.txt").write_text("beta")
    (base / ".git").mkdir()
    (base / ".git" / "HEAD").write_text("ref")
    return base


def test_analyze_streams_operations():
    """Operations reach the callback and the result; ignored dirs are not descended."""
    with TemporaryDirectory() as tmpdir:
        make_base(tmpdir)
        service = FakeSuggestionService()
        orchestrator = Orchestrator(OrganizerConfig(), service)
        delivered = []

        result = orchestrator.analyze_directory(
            AnalysisRequest(directory_path=tmpdir, user_prompt="sort text files"),
            on_operation=delivered.append,
        )

        assert result.error is None
        assert len(result.operations) == 2
        assert delivered == result.operations
        assert result.structure.splitlines() == [".git/", "a.txt (5 bytes)", "b.txt (4 bytes)"]


def test_deep_analysis_enriches_listing():
    """With an index, the listing carries stored descriptions."""
    with TemporaryDirectory() as tmpdir:
        make_base(tmpdir)
        store = InMemoryIndexStore()
        service = FakeSuggestionService()
        orchestrator = Orchestrator(OrganizerConfig(), service, index_store=store, analyzer=FakeAnalyzer())

        result = orchestrator.analyze_directory(
            AnalysisRequest(directory_path=tmpdir, user_prompt="sort", enable_deep_analysis=True)
        )

        assert "a.txt [about a.txt] (5 bytes)" in result.structure.splitlines()
        assert len(store.all_paths()) == 2
        assert orchestrator.directory_index_stats(tmpdir) == {"total": 2, "text": 2}


def test_deep_analysis_removes_orphans():
    with TemporaryDirectory() as tmpdir:
        base = make_base(tmpdir)
        store = InMemoryIndexStore()
        orchestrator = Orchestrator(OrganizerConfig(), FakeSuggestionService(), index_store=store,
                                    analyzer=FakeAnalyzer())
        request = AnalysisRequest(directory_path=tmpdir, user_prompt="sort", enable_deep_analysis=True)
        orchestrator.analyze_directory(request)

        (base / "b.txt").unlink()
        assert orchestrator.validate_index() == [str(base / "b.txt")]

        orchestrator.analyze_directory(request)
        assert orchestrator.indexed_files(tmpdir)[0].path == str(base / "a.txt")
        assert len(orchestrator.indexed_files(tmpdir)) == 1


def test_invalid_requests_are_reported():
    with TemporaryDirectory() as tmpdir:
        orchestrator = Orchestrator(OrganizerConfig(), FakeSuggestionService())

        missing = orchestrator.analyze_directory(
            AnalysisRequest(directory_path=os.path.join(tmpdir, "nope"), user_prompt="sort")
        )
        assert "does not exist" in missing.error

        empty_prompt = orchestrator.analyze_directory(AnalysisRequest(directory_path=tmpdir, user_prompt="  "))
        assert "cannot be empty" in empty_prompt.error


def test_broken_stream_keeps_partial_operations():
    with TemporaryDirectory() as tmpdir:
        make_base(tmpdir)
        orchestrator = Orchestrator(OrganizerConfig(), FakeSuggestionService(fail_after=1))

        result = orchestrator.analyze_directory(AnalysisRequest(directory_path=tmpdir, user_prompt="sort"))

        assert "failed to get AI suggestions" in result.error
        assert len(result.operations) == 1


def test_execute_and_rollback():
    """Execution updates the index; rollback restores files and index."""
    with TemporaryDirectory() as tmpdir:
        base = make_base(tmpdir)
        store = InMemoryIndexStore()
        orchestrator = Orchestrator(OrganizerConfig(), FakeSuggestionService(), index_store=store,
                                    analyzer=FakeAnalyzer())
        analysis = orchestrator.analyze_directory(
            AnalysisRequest(directory_path=tmpdir, user_prompt="sort", enable_deep_analysis=True)
        )

        result = orchestrator.execute_organization(
            ExecutionRequest(operations=analysis.operations, base_path=tmpdir)
        )
        assert result.success_count == 2
        assert result.verification_passed
        assert store.get(str(base / "sorted" / "a.txt")).description == "about a.txt"

        undo = orchestrator.rollback(result, tmpdir)
        assert undo.success_count == 2
        assert not (base / "sorted").exists()
        assert store.get(str(base / "a.txt")).description == "about a.txt"


def test_submitted_jobs_run_on_worker():
    with TemporaryDirectory() as tmpdir:
        make_base(tmpdir)
        orchestrator = Orchestrator(OrganizerConfig(), FakeSuggestionService())
        try:
            future = orchestrator.submit_analysis(AnalysisRequest(directory_path=tmpdir, user_prompt="sort"))
            analysis = future.result(timeout=10)
            execution = orchestrator.submit_execution(
                ExecutionRequest(operations=analysis.operations, base_path=tmpdir, clean_empty=True)
            ).result(timeout=10)
            undo = orchestrator.submit_rollback(execution, tmpdir).result(timeout=10)
        finally:
            orchestrator.shutdown()

        assert execution.success_count == 2
        assert undo.success_count == 2


def test_index_passthroughs_need_an_index():
    with TemporaryDirectory() as tmpdir:
        orchestrator = Orchestrator(OrganizerConfig(), FakeSuggestionService())

        assert orchestrator.directory_index_stats(tmpdir) == {"total": 0}
        with pytest.raises(RuntimeError):
            orchestrator.index_directory(tmpdir)
        with pytest.raises(RuntimeError):
            orchestrator.scan_directory_changes(tmpdir)
