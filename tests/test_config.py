"""
Tests for configuration loading and request validation.
"""
import json
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from vibes_organizer.config import (
    DEFAULT_API_KEY,
    DEFAULT_BASE_URL,
    OrganizerConfig,
    load_config,
    save_config,
)
from vibes_organizer.errors import (
    ConfigError,
    DestinationExistsError,
    IdenticalEndpointsError,
    SourceNotFoundError,
)
from vibes_organizer.models import FileOperation
from vibes_organizer.validator import Validator


def test_missing_config_is_created_with_defaults():
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "conf" / "config.json"

        config = load_config(str(path))

        assert config.base_url == DEFAULT_BASE_URL
        assert config.api_key == DEFAULT_API_KEY
        assert ".git/" in config.ignore_patterns
        assert json.loads(path.read_text())["model"] == config.model


def test_config_round_trip():
    with TemporaryDirectory() as tmpdir:
        path = str(Path(tmpdir) / "config.json")
        save_config(OrganizerConfig(model="local-model", max_depth=3, deep_analysis=True), path)

        config = load_config(path)

        assert config.model == "local-model"
        assert config.max_depth == 3
        assert config.deep_analysis


def test_invalid_config_falls_back_to_defaults():
    with TemporaryDirectory() as tmpdir:
        broken = Path(tmpdir) / "broken.json"
        broken.write_text("{not json")
        invalid = Path(tmpdir) / "invalid.json"
        invalid.write_text(json.dumps({"max_depth": -2}))

        assert load_config(str(broken)).model == OrganizerConfig().model
        assert load_config(str(invalid)).max_depth == 0


def test_base_url_is_normalized():
    config = OrganizerConfig(base_url="http://localhost:11434/v1/chat/completions/")

    assert config.base_url == "http://localhost:11434/v1"


def test_validate_config():
    validator = Validator()
    with pytest.raises(ConfigError):
        validator.validate_config(OrganizerConfig())
    with pytest.raises(ConfigError):
        validator.validate_config(OrganizerConfig(base_url=" ", api_key="sk-test"))
    validator.validate_config(OrganizerConfig(api_key="sk-test"))


def test_validate_directory_and_prompt():
    validator = Validator()
    with TemporaryDirectory() as tmpdir:
        validator.validate_directory(tmpdir)
        with pytest.raises(FileNotFoundError):
            validator.validate_directory(str(Path(tmpdir) / "missing"))
    with pytest.raises(ValueError):
        validator.validate_directory("")
    with pytest.raises(ValueError):
        validator.validate_prompt("\n")


def test_validate_file_operation():
    """Validation errors are also ValueErrors carrying the offending path."""
    validator = Validator()
    with TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "a.txt").write_text("a")
        (base / "b.txt").write_text("b")

        validator.validate_file_operation(
            FileOperation(from_path=str(base / "a.txt"), to_path=str(base / "c.txt"))
        )
        with pytest.raises(SourceNotFoundError):
            validator.validate_file_operation(
                FileOperation(from_path=str(base / "x.txt"), to_path=str(base / "y.txt"))
            )
        with pytest.raises(DestinationExistsError) as excinfo:
            validator.validate_file_operation(
                FileOperation(from_path=str(base / "a.txt"), to_path=str(base / "b.txt"))
            )
        assert excinfo.value.path == str(base / "b.txt")
        assert isinstance(excinfo.value, ValueError)

        same = FileOperation.model_construct(from_path=str(base / "a.txt"), to_path=str(base / "a.txt"))
        with pytest.raises(IdenticalEndpointsError):
            validator.validate_file_operation(same)
