"""
Ignore matcher - gitignore-like exclusion of relative paths.

Rules are matched against forward-slash relative paths. A rule ending
in a separator is directory-scoped and also matches any path segment
with the same literal name, so ".git/" hides nested repositories too.
"""
import fnmatch
import logging
from typing import List, Optional

from vibes_organizer.models import IgnoreRule

logger = logging.getLogger(__name__)


def _match_segments(pattern_parts: List[str], path_parts: List[str]) -> bool:
    if not pattern_parts:
        return not path_parts

    head = pattern_parts[0]
    if head == "**":
        # "**" swallows zero or more whole segments
        for skip in range(len(path_parts) + 1):
            if _match_segments(pattern_parts[1:], path_parts[skip:]):
                return True
        return False

    if not path_parts:
        return False

    # fnmatch follows the host's case convention via os.path.normcase
    if not fnmatch.fnmatch(path_parts[0], head):
        return False
    return _match_segments(pattern_parts[1:], path_parts[1:])


def glob_match(pattern: str, path: str) -> bool:
    """
    Match a slash-separated path against a glob pattern.

    "*", "?" and "[...]" stay within one segment; a "**" segment matches
    any number of segments, including none.
    """
    pattern_parts = [part for part in pattern.strip("/").split("/") if part]
    path_parts = [part for part in path.strip("/").split("/") if part]
    if not pattern_parts:
        return False
    return _match_segments(pattern_parts, path_parts)


def to_slash(path: str) -> str:
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.strip("/")


class IgnoreMatcher:
    """Decides whether a relative path is excluded from traversal."""

    def __init__(self, patterns_text: str = ""):
        """
        Compile ignore rules from multi-line text.

        Args:
            patterns_text: One pattern per line; blank lines and lines
                starting with '#' are skipped
        """
        self.rules: List[IgnoreRule] = []
        for line in (patterns_text or "").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            self.rules.append(IgnoreRule.parse(line))

        logger.debug(f"Loaded {len(self.rules)} ignore patterns")

    @classmethod
    def from_config(cls, config) -> Optional["IgnoreMatcher"]:
        """Build a matcher from config, or None when no patterns are set."""
        if not config.ignore_patterns or not config.ignore_patterns.strip():
            return None
        return cls(config.ignore_patterns)

    @property
    def patterns(self) -> List[str]:
        return [rule.raw for rule in self.rules]

    def __bool__(self) -> bool:
        return bool(self.rules)

    def _rule_matches(self, rule: IgnoreRule, path: str, is_dir: bool) -> bool:
        pattern = rule.pattern
        if not rule.directory_scoped:
            return glob_match(pattern, path)

        if not pattern:
            return False
        if is_dir and (path == pattern or path.startswith(pattern + "/")):
            return True
        if not is_dir and path.startswith(pattern + "/"):
            return True
        if not rule.has_glob:
            if any(fnmatch.fnmatch(segment, pattern) for segment in path.split("/")):
                return True
        return glob_match(pattern, path)

    def should_ignore(self, relative_path: str, is_dir: bool) -> bool:
        """
        Check a relative path against the rules, first match wins.

        Args:
            relative_path: Path relative to the scan root, any separator
            is_dir: Whether the path is a directory

        Returns:
            True if the path should be excluded
        """
        if not self.rules:
            return False

        path = to_slash(relative_path)
        if not path:
            return False

        for rule in self.rules:
            if self._rule_matches(rule, path, is_dir):
                return True
        return False

    def is_path_ignored(self, relative_path: str) -> bool:
        """True if the file itself or any of its ancestor directories is ignored."""
        path = to_slash(relative_path)
        parts = path.split("/")
        for depth in range(1, len(parts)):
            if self.should_ignore("/".join(parts[:depth]), True):
                return True
        return self.should_ignore(path, False)
