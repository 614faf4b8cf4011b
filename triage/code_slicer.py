"""
Code Slicer: extracts the enclosing function around a reported line so a
validation prompt sees the whole context of a finding, not one line.

Works heuristically via regex and brace counting (no parser required).
File contents are read once and cached per path.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
#  Constants & Patterns
# ═══════════════════════════════════════════════════════════════════════════════

# Regex: C/C++ function signature on one line   int foo(char *buf) {
_FUNCTION_RE = re.compile(
    r'^[a-zA-Z_][a-zA-Z0-9_*\s]*\s+[a-zA-Z_][a-zA-Z0-9_]*\s*\([^)]*\)\s*\{?$'
)

# Regex: first line of a multi-line signature
_SIGNATURE_START_RE = re.compile(r'^[a-zA-Z_]')

# Regex: statement opening a block inside a function body   } else if (x) {
_CONTROL_RE = re.compile(r'^(?:\}\s*)?(?:if|else|for|while|switch|do|try|catch)\b')

MAX_FUNCTION_SEARCH_LINES = 50
MULTILINE_SIGNATURE_LOOKBACK = 5
FALLBACK_BEFORE_LINES = 10
FALLBACK_AFTER_LINES = 20

ISSUE_MARKER = " <<< ISSUE HERE"


class CodeSlicer:
    """
    Usage:
        slicer = CodeSlicer()
        context = slicer.get_context_slice("src/parser.c", 42)

    Output:
        // File: parser.c (lines 30-58)
          30: int parse(char *input) {
          ...
          42:     strcpy(buf, input); <<< ISSUE HERE
    """

    def __init__(self):
        self._file_cache: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def get_context_slice(self, file_path: str, line_number: int) -> str:
        """Enclosing function of `line_number` with numbered lines, or an [Error: ...] note."""
        lines = self._get_lines(file_path)
        if not lines:
            return "[Error: File is empty or cannot be read]"
        if line_number < 1 or line_number > len(lines):
            return f"[Error: Invalid line number {line_number} (file has {len(lines)} lines)]"

        issue_index = line_number - 1
        start = self._find_function_start(lines, issue_index)
        end = self._find_function_end(lines, start, issue_index)
        end = min(end, len(lines) - 1)
        if not start <= issue_index <= end:
            start = max(0, issue_index - FALLBACK_BEFORE_LINES)
            end = min(len(lines) - 1, issue_index + FALLBACK_AFTER_LINES)
            logger.debug(f"Enclosing block misses line {line_number}, using fallback window")

        out = [f"// File: {Path(file_path).name} (lines {start + 1}-{end + 1})"]
        for index in range(start, end + 1):
            number = index + 1
            marker = ISSUE_MARKER if number == line_number else ""
            out.append(f"{number:4d}: {lines[index]}{marker}")
        return "\n".join(out) + "\n"

    def clear_cache(self) -> None:
        with self._lock:
            self._file_cache.clear()
        logger.debug("Code slicer cache cleared")

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._file_cache)

    # ──────────────────────────────────────────────────────────────────────────
    #  Internals
    # ──────────────────────────────────────────────────────────────────────────

    def _get_lines(self, file_path: str) -> List[str]:
        key = str(file_path)
        with self._lock:
            cached = self._file_cache.get(key)
        if cached is not None:
            return cached

        try:
            with open(key, "r", encoding="utf-8", errors="replace") as f:
                lines = f.read().splitlines()
        except OSError as e:
            logger.error(f"Failed to read file for slicing: {key}: {e}")
            lines = []

        with self._lock:
            self._file_cache[key] = lines
        return lines

    @staticmethod
    def _find_function_start(lines: List[str], issue_index: int) -> int:
        lower_bound = max(0, issue_index - MAX_FUNCTION_SEARCH_LINES)
        for i in range(issue_index, lower_bound - 1, -1):
            line = lines[i].strip()
            if not line or line.startswith("//") or line.startswith("/*"):
                continue

            if _FUNCTION_RE.match(line):
                logger.debug(f"Found function start at line {i + 1}: {line}")
                return i

            if _CONTROL_RE.match(line):
                continue

            # tail of a multi-line signature: walk up to its first line
            if line.endswith("{") and not line.startswith("{"):
                for j in range(i - 1, max(0, i - MULTILINE_SIGNATURE_LOOKBACK) - 1, -1):
                    if _SIGNATURE_START_RE.match(lines[j].strip()):
                        logger.debug(f"Found multi-line function start at line {j + 1}")
                        return j
                return i

        fallback = max(0, issue_index - FALLBACK_BEFORE_LINES)
        logger.debug(f"Function start not found, using fallback: line {fallback + 1}")
        return fallback

    @staticmethod
    def _find_function_end(lines: List[str], start: int, issue_index: int) -> int:
        depth = 0
        opened = False
        for i in range(start, len(lines)):
            for ch in lines[i]:
                if ch == "{":
                    depth += 1
                    opened = True
                elif ch == "}":
                    depth -= 1
            if opened and depth == 0:
                logger.debug(f"Found function end at line {i + 1}")
                return i

        fallback = min(len(lines) - 1, issue_index + FALLBACK_AFTER_LINES)
        logger.debug(f"Function end not found, using fallback: line {fallback + 1}")
        return fallback
