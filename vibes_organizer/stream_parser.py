"""
Streaming operation parser - Incremental JSON Lines over server-sent events.

The model answers with one {"from": ..., "to": ...} object per line, but
the transport delivers arbitrary fragments of that text wrapped in SSE
"data:" envelopes. Operations are emitted as soon as their line is
complete, without waiting for the whole response.
"""
import codecs
import json
import logging
import os
from typing import Callable, Iterable, Iterator, List, Optional, Union

from vibes_organizer.errors import (
    IdenticalEndpointsError,
    OperationParseError,
    StreamReadError,
)
from vibes_organizer.models import FileOperation

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"

OperationCallback = Callable[[FileOperation], None]


def _clean_line(line: str) -> str:
    line = line.strip()
    for fence in ("```json", "```"):
        if line.startswith(fence):
            line = line[len(fence):]
            break
    if line.endswith("```"):
        line = line[:-3]
    line = line.strip()
    if line.endswith(","):
        line = line[:-1]
    return line


def parse_operation_line(line: str, base_dir: str) -> FileOperation:
    """
    Parse one JSON line into a FileOperation anchored at base_dir.

    Args:
        line: Raw line, possibly with code fences or a trailing comma
        base_dir: Directory relative paths are joined against

    Returns:
        FileOperation with absolute, normalized paths

    Raises:
        IdenticalEndpointsError: If both ends normalize to the same path
        OperationParseError: If the line is not a valid operation object
    """
    text = _clean_line(line)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise OperationParseError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise OperationParseError("operation must be a JSON object")

    source = data.get("from")
    target = data.get("to")
    if not isinstance(source, str) or not isinstance(target, str) or not source or not target:
        raise OperationParseError("operation needs string 'from' and 'to' fields")

    # absolute paths from the model are still anchored at base_dir
    from_path = os.path.normpath(os.path.join(base_dir, source.lstrip("/\\")))
    to_path = os.path.normpath(os.path.join(base_dir, target.lstrip("/\\")))
    if from_path == to_path:
        raise IdenticalEndpointsError(from_path)

    return FileOperation(from_path=from_path, to_path=to_path)


def _delta_content(payload: str) -> str:
    """Extract choices[0].delta.content from an SSE data payload."""
    data = json.loads(payload)
    choices = data.get("choices") or []
    if not choices:
        return ""
    delta = choices[0].get("delta") or {}
    return delta.get("content") or ""


class StreamingOperationParser:
    """
    Turns a chunked SSE byte stream into FileOperations as lines complete.

    The parser runs on whatever thread pumps the stream; on_operation is
    called synchronously before the next chunk is read, so UI consumers
    must marshal onto their own thread. One instance serves one stream.
    """

    def __init__(self, base_dir: str, on_operation: Optional[OperationCallback] = None):
        """
        Initialize parser.

        Args:
            base_dir: Base directory for relative paths in the stream
            on_operation: Optional callback invoked for each parsed operation
        """
        self.base_dir = os.path.normpath(os.path.abspath(base_dir))
        self.on_operation = on_operation
        self.operations: List[FileOperation] = []
        self._text = ""
        self._transport = ""
        self._done = False
        # multi-byte characters may straddle chunk boundaries
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def _emit_line(self, raw_line: str) -> Optional[FileOperation]:
        raw_line = raw_line.strip()
        if not raw_line:
            return None
        try:
            operation = parse_operation_line(raw_line, self.base_dir)
        except IdenticalEndpointsError:
            return None
        except (OperationParseError, ValueError) as e:
            logger.debug(f"Failed to parse JSON line: {raw_line} | Error: {e}")
            return None

        self.operations.append(operation)
        if self.on_operation is not None:
            self.on_operation(operation)
        return operation

    def feed_text(self, text: str) -> List[FileOperation]:
        """
        Append decoded model text and parse every completed line.

        Returns:
            Operations completed by this fragment, in arrival order
        """
        if not text:
            return []
        self._text += text
        if "\n" not in self._text:
            return []

        parts = self._text.split("\n")
        self._text = parts[-1]

        emitted = []
        for part in parts[:-1]:
            operation = self._emit_line(part)
            if operation is not None:
                emitted.append(operation)
        return emitted

    def finish(self) -> List[FileOperation]:
        """Parse whatever is left as a final, possibly unterminated line."""
        remaining, self._text = self._text, ""
        operation = self._emit_line(remaining)
        return [operation] if operation is not None else []

    def _feed_transport_line(self, line: str) -> List[FileOperation]:
        line = line.strip()
        if not line.startswith("data:"):
            return []
        payload = line[len("data:"):].strip()
        if payload == DONE_MARKER:
            self._done = True
            return []
        try:
            content = _delta_content(payload)
        except (ValueError, AttributeError, TypeError) as e:
            logger.debug(f"Failed to unmarshal stream chunk: {e}")
            return []
        return self.feed_text(content)

    def _feed_chunk(self, chunk: Union[bytes, str]) -> List[FileOperation]:
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        self._transport += chunk

        emitted: List[FileOperation] = []
        while not self._done and "\n" in self._transport:
            line, self._transport = self._transport.split("\n", 1)
            emitted.extend(self._feed_transport_line(line))
        return emitted

    def iter_operations(self, chunks: Iterable[Union[bytes, str]]) -> Iterator[FileOperation]:
        """
        Lazily yield operations from a chunked SSE stream.

        Args:
            chunks: Raw transport chunks; fragment boundaries are arbitrary

        Yields:
            Each operation once its line is complete

        Raises:
            StreamReadError: If reading the stream fails; pending text is
                parsed first and .operations holds everything delivered
        """
        iterator = iter(chunks)
        while not self._done:
            try:
                chunk = next(iterator)
            except StopIteration:
                break
            except Exception as e:
                yield from self._drain()
                raise StreamReadError(f"stream reading error: {e}", self.operations) from e
            yield from self._feed_chunk(chunk)

        yield from self._drain()
        logger.debug(f"Stream finished with {len(self.operations)} operations")

    def _drain(self) -> List[FileOperation]:
        emitted: List[FileOperation] = []
        if not self._done and self._transport.strip():
            # last SSE line arrived without a newline
            tail, self._transport = self._transport, ""
            emitted.extend(self._feed_transport_line(tail))
        emitted.extend(self.finish())
        return emitted

    def parse(self, chunks: Iterable[Union[bytes, str]]) -> List[FileOperation]:
        """Consume the whole stream and return every parsed operation."""
        for _ in self.iter_operations(chunks):
            pass
        return list(self.operations)
