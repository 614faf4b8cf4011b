"""Built-in regex analyzer: pattern matching for common C/C++ vulnerabilities."""

import re
from pathlib import Path
from typing import List, Tuple

from scan_engine.adapters.base_adapter import BaseAnalyzerAdapter
from scan_engine.exceptions import AnalyzerError
from scan_engine.models import Category, Issue, Severity
from scan_engine.utils import normalize_file_path


REGEX_ANALYZER_NAME = "RegexAnalyzer"


# ── Dangerous-pattern database ────────────────────────────────────────────
# Format: (rule id, pattern, severity, category, message)
_SECURITY_PATTERNS: List[Tuple[str, re.Pattern, Severity, Category, str]] = [
    # Buffer overflow
    ("buffer-overflow-strcpy", re.compile(r'\bstrcpy\s*\([^)]+\)'),
     Severity.HIGH, Category.BUFFER_OVERFLOW,
     "Unsafe use of strcpy() can lead to buffer overflow"),
    ("buffer-overflow-strcat", re.compile(r'\bstrcat\s*\([^)]+\)'),
     Severity.HIGH, Category.BUFFER_OVERFLOW,
     "Unsafe use of strcat() can lead to buffer overflow"),
    ("buffer-overflow-sprintf", re.compile(r'\bsprintf\s*\([^)]+\)'),
     Severity.HIGH, Category.BUFFER_OVERFLOW,
     "Unsafe use of sprintf() can lead to buffer overflow"),
    ("buffer-overflow-gets", re.compile(r'\bgets\s*\([^)]+\)'),
     Severity.CRITICAL, Category.BUFFER_OVERFLOW,
     "gets() is inherently unsafe and should never be used"),

    # Memory
    ("memory-leak-malloc", re.compile(r'\bmalloc\s*\([^)]+\)'),
     Severity.LOW, Category.MEMORY_LEAK,
     "malloc() call detected - ensure proper free() is called"),

    # Format string
    ("format-string-printf", re.compile(r'\bprintf\s*\(\s*[a-zA-Z_]\w*\s*\)'),
     Severity.HIGH, Category.FORMAT_STRING,
     'Potential format string vulnerability - use printf("%s", str)'),

    # Command injection (non-literal first argument)
    ("command-injection-system", re.compile(r'\bsystem\s*\([^"\')][^)]*\)'),
     Severity.CRITICAL, Category.COMMAND_INJECTION,
     "Potential command injection via system() with variable input"),
    ("command-injection-popen", re.compile(r'\bpopen\s*\([^"\')][^)]*\)'),
     Severity.CRITICAL, Category.COMMAND_INJECTION,
     "Potential command injection via popen() with variable input"),

    # Weak cryptography
    ("weak-random-rand", re.compile(r'\brand\s*\(\s*\)'),
     Severity.MEDIUM, Category.WEAK_CRYPTO,
     "rand() is not cryptographically secure"),
    ("weak-crypto-md5", re.compile(r'\b(MD5|md5)\b'),
     Severity.MEDIUM, Category.WEAK_CRYPTO,
     "MD5 is cryptographically broken - use SHA-256 or better"),

    # Race conditions
    ("toctou-access-open", re.compile(r'\baccess\s*\([^)]+\)[^;]*\bopen\s*\('),
     Severity.MEDIUM, Category.RACE_CONDITION,
     "Potential TOCTOU race condition between access() and open()"),

    # Integer overflow
    ("integer-overflow-multiply", re.compile(r'\*\s*sizeof\s*\('),
     Severity.MEDIUM, Category.INTEGER_OVERFLOW,
     "Potential integer overflow in size calculation"),

    # Path traversal
    ("path-traversal", re.compile(r'\.\./'),
     Severity.HIGH, Category.PATH_TRAVERSAL,
     "Potential path traversal vulnerability"),
]


class RegexAdapter(BaseAnalyzerAdapter):
    """
    In-process analyzer that never needs an external tool.

    Used as the quick-level fallback when Semgrep is missing and appended
    to the deep level as an extra pass. Findings are noisy by nature; the
    decision layer always sends them for AI validation.
    """

    def __init__(self, config=None, debug: bool = False):
        super().__init__(REGEX_ANALYZER_NAME, config=config, debug=debug)

    @property
    def version(self) -> str:
        return "1.0.0-builtin"

    def is_available(self) -> bool:
        return True

    def analyze(self, file_path: Path) -> List[Issue]:
        path = self._require_file(file_path)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise AnalyzerError(self.name, f"Failed to read file {path}: {e}")
        return self.scan_source(normalize_file_path(str(path)), content)

    def scan_source(self, file_name: str, content: str) -> List[Issue]:
        """Run every pattern over a source string."""
        issues: List[Issue] = []
        lines = content.split("\n")

        for rule_id, pattern, severity, category, message in _SECURITY_PATTERNS:
            for match in pattern.finditer(content):
                line_number = content.count("\n", 0, match.start()) + 1
                line_text = lines[line_number - 1]

                # Skip comments (simple heuristic)
                stripped = line_text.lstrip()
                if stripped.startswith("//") or stripped.startswith("/*") or stripped.startswith("*"):
                    continue

                issues.append(self._make_issue(
                    title=message,
                    file=file_name,
                    line=line_number,
                    column=0,
                    severity=severity,
                    category=category,
                    description=message,
                    snippet=line_text.strip(),
                    rule_id=rule_id,
                    matched_code=match.group(0),
                ))

        self.logger.debug(f"RegexAnalyzer found {len(issues)} issues in {file_name}")
        return issues
