"""
CLI interface for the folder reorganizer.

Provides a command-line interface for suggesting and applying moves.
"""
import argparse
import sys
from pathlib import Path

from vibes_organizer.annotator import LLMAnalyzer, create_client
from vibes_organizer.config import OrganizerConfig, default_config, load_config, save_config
from vibes_organizer.errors import ConfigError, IntegrityCheckError
from vibes_organizer.models import AnalysisRequest, ExecutionRequest, ExecutionResult, FileOperation
from vibes_organizer.pipeline import Orchestrator, configure_logging
from vibes_organizer.planner import OpenAISuggestionService
from vibes_organizer.storage import SQLiteIndexStore
from vibes_organizer.validator import Validator


def default_config_path() -> str:
    return str(Path.home() / ".vibes_organizer" / "config.json")


def print_operation(operation: FileOperation) -> None:
    print(f"  {operation}")


def print_execution_summary(result: ExecutionResult) -> None:
    """Print counts, failures and the verification verdict."""
    print("\n" + "=" * 60)
    print("RESULTS")
    print("=" * 60)
    print(f"Operations succeeded: {result.success_count}")
    print(f"Operations failed: {result.fail_count}")
    if result.cleaned_dirs:
        print(f"Empty directories removed: {result.cleaned_dirs}")

    for op_result in result.operations:
        if not op_result.success:
            print(f"  FAILED {op_result.operation}: {op_result.error}")

    if result.verification_error:
        print(f"\nVerification failed: {result.verification_error}")
    elif result.verification_passed:
        print(f"\nVerification passed: {result.final_file_count} files before and after")
    else:
        print(
            f"\nWARNING: file count changed from {result.initial_file_count} "
            f"to {result.final_file_count}"
        )

    if result.index_error:
        print(f"Index update failed and was rolled back: {result.index_error}")


def build_orchestrator(config: OrganizerConfig, deep: bool) -> Orchestrator:
    """Wire the production collaborators from one config object."""
    client = create_client(config)
    index_store = None
    analyzer = None
    if deep:
        Path(config.index_path).parent.mkdir(parents=True, exist_ok=True)
        index_store = SQLiteIndexStore(config.index_path)
        analyzer = LLMAnalyzer(config, client=client)
    return Orchestrator(
        config,
        OpenAISuggestionService(config, client=client),
        index_store=index_store,
        analyzer=analyzer,
    )


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Vibes Organizer - Reorganize a folder from natural-language instructions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show suggested moves only (default)
  vibes-organizer --dir ~/Downloads --prompt "group by file type"

  # Apply the suggestions and remove folders left empty
  vibes-organizer --dir ~/Downloads --prompt "group by year" --apply --clean-empty

  # Describe files first so suggestions can use their content
  vibes-organizer --dir ./notes --prompt "sort by topic" --deep

  # Generate example configuration
  vibes-organizer --generate-config config.json
        """
    )

    parser.add_argument(
        "--dir",
        type=str,
        help="Directory to reorganize"
    )
    parser.add_argument(
        "--prompt",
        type=str,
        help="Organization instructions"
    )
    parser.add_argument(
        "--depth",
        type=int,
        help="Maximum listing depth (0 = unlimited)"
    )
    parser.add_argument(
        "--deep",
        action="store_true",
        help="Index and describe files before asking for suggestions"
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Actually move files (default only prints suggestions)"
    )
    parser.add_argument(
        "--clean-empty",
        action="store_true",
        help="Remove empty directories after applying"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=default_config_path(),
        help="Path to configuration JSON file"
    )
    parser.add_argument(
        "--generate-config",
        type=str,
        metavar="PATH",
        help="Generate example configuration file and exit"
    )
    parser.add_argument(
        "--scan-only",
        action="store_true",
        help="Print the directory listing (and index changes with --deep) and exit"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    args = parser.parse_args()

    # Configure logging
    configure_logging(args.log_level)

    if args.generate_config:
        save_config(default_config(), args.generate_config)
        print(f"Configuration saved to {args.generate_config}")
        sys.exit(0)

    if not args.dir:
        parser.print_help()
        print("\nError: --dir is required")
        sys.exit(1)

    config = load_config(args.config)
    max_depth = args.depth if args.depth is not None else config.max_depth
    deep = args.deep or config.deep_analysis
    clean_empty = args.clean_empty or config.clean_empty_dirs
    directory = str(Path(args.dir).absolute())

    validator = Validator()
    try:
        validator.validate_directory(directory)
    except (ValueError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.scan_only:
        orchestrator = build_orchestrator(config, deep)
        try:
            print(orchestrator.directory_structure(directory, max_depth), end="")
            if deep:
                changes = orchestrator.scan_directory_changes(directory, max_depth)
                print(
                    f"\nIndex: {len(changes.new_files)} new, {len(changes.modified_files)} modified, "
                    f"{len(changes.deleted_files)} deleted, {len(changes.unchanged_files)} unchanged"
                )
        except Exception as e:
            print(f"\nError: {e}")
            sys.exit(1)
        finally:
            if orchestrator.index_store is not None:
                orchestrator.index_store.close()
        sys.exit(0)

    if not args.prompt:
        print("Error: --prompt is required")
        sys.exit(1)

    try:
        validator.validate_config(config)
    except ConfigError as e:
        print(f"Error: {e} (edit {args.config})")
        sys.exit(1)

    print(f"Starting vibes organizer...")
    print(f"Directory: {directory}")
    print(f"Model: {config.model}")
    print(f"Deep analysis: {deep}")
    print(f"Apply: {args.apply}")
    print()

    orchestrator = build_orchestrator(config, deep)
    try:
        print("Suggested operations:")
        analysis = orchestrator.analyze_directory(
            AnalysisRequest(
                directory_path=directory,
                user_prompt=args.prompt,
                max_depth=max_depth,
                enable_deep_analysis=deep,
            ),
            on_operation=print_operation,
        )
        if analysis.error:
            print(f"\nError: {analysis.error}")
            sys.exit(1)
        if not analysis.operations:
            print("  (none)")
            sys.exit(0)

        if not args.apply:
            print(f"\n{len(analysis.operations)} operations suggested")
            print("Run with --apply to move files")
            sys.exit(0)

        result = orchestrator.execute_organization(
            ExecutionRequest(operations=analysis.operations, base_path=directory, clean_empty=clean_empty)
        )
        print_execution_summary(result)
        sys.exit(0 if result.fail_count == 0 and not result.verification_error else 1)

    except IntegrityCheckError as e:
        print(f"\nError: execution aborted, nothing was moved: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        if orchestrator.index_store is not None:
            orchestrator.index_store.close()


if __name__ == "__main__":
    main()
