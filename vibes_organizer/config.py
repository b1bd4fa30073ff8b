"""
Configuration - model endpoint, index location and scan defaults.

The config is loaded once at startup and passed to every component's
constructor; nothing reads it from a global.
"""
import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_API_KEY = "YOUR_API_KEY_HERE"
DEFAULT_MODEL = "moonshotai/kimi-k2-0905"

DEFAULT_IGNORE_PATTERNS = """# Version control and dependency folders
.git/
node_modules/
__pycache__/
.DS_Store
"""

DEFAULT_TEXT_ANALYSIS_PROMPT = (
    "You are a file analysis assistant. Describe the content and purpose of the "
    "given file in one or two short sentences. Be factual and concise; do not "
    "speculate beyond what the content shows."
)


def default_index_path() -> str:
    return str(Path.home() / ".vibes_organizer" / "index.db")


class OrganizerConfig(BaseModel):
    """Configuration shared by all components."""
    base_url: str = Field(DEFAULT_BASE_URL, description="OpenAI-compatible API base URL")
    api_key: str = Field(DEFAULT_API_KEY, description="API key for the model endpoint")
    model: str = Field(DEFAULT_MODEL, description="Model used for suggestions and analysis")
    ignore_patterns: str = Field(DEFAULT_IGNORE_PATTERNS, description="Multi-line ignore rules")
    index_path: str = Field(default_factory=default_index_path, description="SQLite index file")
    max_depth: int = Field(0, ge=0, description="Default scan depth, 0 = unlimited")
    deep_analysis: bool = Field(False, description="Index and describe files before suggesting")
    clean_empty_dirs: bool = Field(False, description="Remove empty directories after execution")
    text_analysis_prompt: str = Field(
        DEFAULT_TEXT_ANALYSIS_PROMPT, description="System prompt for text file descriptions"
    )
    request_timeout: float = Field(120.0, gt=0, description="Model request timeout in seconds")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        """Strip a trailing slash and a pasted /chat/completions suffix."""
        v = v.strip().rstrip("/")
        if v.endswith("/chat/completions"):
            v = v[: -len("/chat/completions")]
        return v


def default_config() -> OrganizerConfig:
    return OrganizerConfig()


def save_config(config: OrganizerConfig, config_path: str) -> None:
    """
    Save configuration to a JSON file.

    Args:
        config: Configuration to save
        config_path: Path to save config
    """
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(config.model_dump(mode='json'), f, indent=2)
    logger.info(f"Configuration saved to {path}")


def load_config(config_path: str) -> OrganizerConfig:
    """
    Load configuration from a JSON file.

    A missing file is created with defaults; an unreadable or invalid file
    is reported and defaults are used instead.

    Args:
        config_path: Path to config file

    Returns:
        OrganizerConfig from file or defaults
    """
    path = Path(config_path)
    if not path.exists():
        logger.info(f"No config file found at {path}. Creating with defaults.")
        config = default_config()
        save_config(config, config_path)
        return config

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
        config = OrganizerConfig(**config_data)
    except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
        logger.error(f"Error reading config file {path}: {e}. Using defaults.")
        return default_config()

    logger.info("Configuration loaded successfully.")
    return config
