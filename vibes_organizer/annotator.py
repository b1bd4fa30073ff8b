"""
Annotation module - Short descriptions of individual files for the index.

Text files are described by the LLM from their content; every other type
gets a generic description built from its metadata. A raised exception
means the file should not be indexed this time.
"""
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from openai import OpenAI

from vibes_organizer.config import OrganizerConfig
from vibes_organizer.models import FileType, determine_file_type

logger = logging.getLogger(__name__)

MAX_TEXT_FILE_SIZE = 50 * 1024
TEXT_TRUNCATE_LIMIT = 2000

APP_HEADERS = {
    "HTTP-Referer": "https://github.com/sandwichdoge/vibesandfolders",
    "X-Title": "VibesAndFolders",
}


def create_client(config: OrganizerConfig) -> OpenAI:
    """OpenAI-compatible client for the configured endpoint."""
    return OpenAI(
        base_url=config.base_url,
        api_key=config.api_key,
        timeout=config.request_timeout,
        default_headers=APP_HEADERS,
    )


def truncate_content(content: str, max_len: int) -> str:
    if len(content) <= max_len:
        return content
    return content[:max_len] + "..."


class Analyzer(ABC):
    """Produces a description and file type for one file."""

    @abstractmethod
    def analyze(self, path: str) -> Tuple[str, FileType]:
        """
        Describe a file.

        Raises:
            Exception: Any failure; the caller skips indexing the file
        """


class LLMAnalyzer(Analyzer):
    """Describes text files with the configured chat model."""

    def __init__(self, config: OrganizerConfig, client: Optional[OpenAI] = None):
        """
        Initialize analyzer.

        Args:
            config: Endpoint, model and prompt settings
            client: Pre-built client (created from config if None)
        """
        self.config = config
        self.client = client if client is not None else create_client(config)

    def analyze(self, path: str) -> Tuple[str, FileType]:
        file_type = determine_file_type(path)
        if file_type == FileType.TEXT:
            return self._analyze_text_file(path), file_type
        return self._analyze_generic_file(path, file_type), file_type

    def _analyze_generic_file(self, path: str, file_type: FileType) -> str:
        size = os.lstat(path).st_size
        return f"{file_type.value} file: {os.path.basename(path)} ({size} bytes)"

    def _analyze_text_file(self, path: str) -> str:
        size = os.stat(path).st_size
        if size > MAX_TEXT_FILE_SIZE:
            raise ValueError(f"text file too large ({size} bytes)")

        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            content = f.read()

        truncated = truncate_content(content, TEXT_TRUNCATE_LIMIT)
        logger.debug(
            f"Sending {len(truncated)} characters to LLM for text analysis "
            f"(original: {len(content)}, limit: {TEXT_TRUNCATE_LIMIT})"
        )

        user_prompt = (
            f"File name: {os.path.basename(path)}\nContent type: text\n\n"
            f"Content:\n{truncated}\n\nProvide a brief description:"
        )

        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": self.config.text_analysis_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.3,
                max_tokens=150,
            )
        except Exception as e:
            logger.error(f"Failed to analyze text file {path}: {e}")
            raise

        if not response.choices:
            raise ValueError("no response from LLM")

        description = (response.choices[0].message.content or "").strip()
        if not description:
            raise ValueError("LLM returned empty response")

        logger.debug(f"Described {path}: {description}")
        return description
