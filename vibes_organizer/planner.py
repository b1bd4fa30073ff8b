"""
Planner module - Ask the model for move suggestions.

Sends the directory listing and the user's instructions to the chat model
and streams the answer through the StreamingOperationParser, so each
suggested move reaches the caller as soon as its line is complete.
The model proposes moves only; it never touches the filesystem.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from openai import OpenAI

from vibes_organizer.annotator import create_client
from vibes_organizer.config import OrganizerConfig
from vibes_organizer.models import FileOperation
from vibes_organizer.stream_parser import OperationCallback, StreamingOperationParser

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8192


class SuggestionService(ABC):
    """Source of proposed file moves."""

    @abstractmethod
    def get_suggestions(
        self,
        structure: str,
        user_prompt: str,
        base_path: str,
        on_operation: Optional[OperationCallback] = None,
    ) -> List[FileOperation]:
        """Return proposed operations, delivering each through on_operation as it arrives."""


class OpenAISuggestionService(SuggestionService):
    """Streams suggestions from an OpenAI-compatible chat endpoint."""

    SYSTEM_PROMPT = """You are a file organization assistant.
You must output a stream of valid JSON objects.

Output Format Rules:
1. Output format: JSON Lines. Each line must be a standalone valid JSON object: {"from": "...", "to": "..."}
2. "from": path relative to base, must exist.
3. "to": destination path relative to base.
4. Only output files that need moving/renaming.

Example:
{"from": "IMG_1234.jpg", "to": "photos/vacation/IMG_1234.jpg"}
{"from": "document.pdf", "to": "documents/renamed_document.pdf"}
{"from": "old_folder/file.txt", "to": "new_folder/file.txt"}

Organization Principles:
5. When creating folders, use consistent naming that matches existing patterns in the directory.
6. Preserve existing well-organized structures. Avoid reorganizing what's already logically arranged.
7. Files may be renamed if required.
"""

    def __init__(self, config: OrganizerConfig, client: Optional[OpenAI] = None):
        """
        Initialize suggestion service.

        Args:
            config: Endpoint and model settings
            client: Pre-built client (created from config if None)
        """
        self.config = config
        self.client = client if client is not None else create_client(config)

    def build_user_prompt(self, base_path: str, structure: str, user_prompt: str) -> str:
        return (
            f"Base directory: {base_path}\n\n"
            f"Directory structure:\n{structure}\n\n"
            f"User instructions: {user_prompt}"
        )

    def get_suggestions(
        self,
        structure: str,
        user_prompt: str,
        base_path: str,
        on_operation: Optional[OperationCallback] = None,
    ) -> List[FileOperation]:
        """
        Stream move suggestions for a directory.

        Args:
            structure: Directory listing (optionally enriched with descriptions)
            user_prompt: Natural-language organization instructions
            base_path: Directory the relative paths in the answer refer to
            on_operation: Called synchronously for each operation as it arrives

        Returns:
            All parsed operations in arrival order

        Raises:
            openai.APIError: If the request fails
            StreamReadError: If the stream breaks after it started
        """
        parser = StreamingOperationParser(base_path, on_operation=on_operation)
        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": self.build_user_prompt(base_path, structure, user_prompt)},
        ]

        logger.info(f"Requesting suggestions from {self.config.model}")
        logger.debug(f"Prompt:\n{messages[1]['content']}")

        # raw SSE bytes, parsed incrementally as they arrive
        with self.client.chat.completions.with_streaming_response.create(
            model=self.config.model,
            messages=messages,
            max_tokens=DEFAULT_MAX_TOKENS,
            stream=True,
        ) as response:
            operations = parser.parse(response.iter_bytes())

        logger.info(f"Received {len(operations)} suggested operations")
        return operations
