"""Clang-Tidy integration: per-file invocation, diagnostics parsed from text output."""

import re
from pathlib import Path
from typing import List, Optional

from scan_engine.adapters.base_adapter import BaseAnalyzerAdapter
from scan_engine.exceptions import AnalyzerNotAvailableError, ValidationError
from scan_engine.models import Category, Issue, Severity
from scan_engine.utils import normalize_file_path


CLANG_TIDY_ANALYZER_NAME = "Clang-Tidy"

# /path/file.c:42:10: warning: message text [check-name]
_DIAGNOSTIC_RE = re.compile(
    r'^(?P<file>.+?):(?P<line>\d+):(?P<col>\d+):\s+warning:\s+(?P<message>.*?)'
    r'(?:\s+\[(?P<check>[^\]]+)\])?\s*$'
)


def determine_clang_severity(check_name: str) -> Severity:
    lower = check_name.lower()
    if any(k in lower for k in ("buffer", "overflow", "use-after-free", "double-free")):
        return Severity.CRITICAL
    if any(k in lower for k in ("security", "cert", "concurrency", "deadlock")):
        return Severity.HIGH
    if "bugprone" in lower or "leak" in lower:
        return Severity.MEDIUM
    return Severity.LOW


def determine_clang_category(check_name: str) -> Category:
    lower = check_name.lower()
    ordered = (
        ("buffer", Category.BUFFER_OVERFLOW),
        ("use-after-free", Category.USE_AFTER_FREE),
        ("leak", Category.MEMORY_LEAK),
        ("null", Category.NULL_DEREFERENCE),
        ("double-free", Category.DOUBLE_FREE),
        ("race", Category.RACE_CONDITION),
        ("deadlock", Category.DEADLOCK),
        ("thread", Category.THREAD_SAFETY),
    )
    for needle, category in ordered:
        if needle in lower:
            return category
    return Category.UNKNOWN


class ClangTidyAdapter(BaseAnalyzerAdapter):
    """
    Runs clang-tidy with the security-oriented check families on one file
    at a time. Per-file failures are isolated by analyze_all().
    """

    def __init__(self, config=None, debug: bool = False):
        super().__init__(CLANG_TIDY_ANALYZER_NAME, config=config, debug=debug)
        self._version: Optional[str] = None
        self._available: Optional[bool] = None

    @property
    def version(self) -> str:
        if self._version is None:
            self._version = self._probe_version(self.config.clang_tidy_path) or "Unknown"
        return self._version

    def is_available(self) -> bool:
        if self._available is None:
            probed = self._probe_version(self.config.clang_tidy_path)
            self._available = probed is not None
            if self._available:
                self._version = probed or "Unknown"
            else:
                self.logger.debug("Clang-Tidy not available; install clang-tidy")
        return self._available

    def analyze(self, file_path: Path) -> List[Issue]:
        path = self._require_file(file_path)
        if not self.is_available():
            raise AnalyzerNotAvailableError(self.name, "Install clang-tidy")

        self.logger.info(f"Analyzing file with Clang-Tidy: {path}")
        cmd = [
            self._resolve_executable(self.config.clang_tidy_path) or self.config.clang_tidy_path,
            f"-checks={self.config.clang_tidy_checks}",
            str(path),
            "--",
        ]
        result = self._run_tool(cmd)
        self.logger.debug(f"Clang-Tidy exit code: {result.returncode}")
        return self.parse_output(result.stdout + "\n" + result.stderr, path)

    def parse_output(self, output: str, file_path: Path) -> List[Issue]:
        """Parse clang-tidy diagnostics. Non-warning lines are ignored."""
        issues: List[Issue] = []
        for raw_line in output.splitlines():
            line = raw_line.strip()
            if not line or "warning:" not in line:
                continue
            issue = self._parse_line(line, file_path)
            if issue is not None:
                issues.append(issue)

        self.logger.info(f"Found {len(issues)} issues in {file_path}")
        return issues

    def _parse_line(self, line: str, file_path: Path) -> Optional[Issue]:
        match = _DIAGNOSTIC_RE.match(line)
        if not match:
            self.logger.debug(f"Unrecognized Clang-Tidy line: {line}")
            return None

        check_name = match.group("check") or ""
        message = match.group("message").strip()
        reported = match.group("file") or str(file_path)
        try:
            return self._make_issue(
                title=message,
                file=normalize_file_path(reported),
                line=int(match.group("line")),
                column=int(match.group("col")),
                severity=determine_clang_severity(check_name),
                category=determine_clang_category(check_name),
                description=f"Clang-Tidy check: {check_name}",
                check_name=check_name,
            )
        except (ValueError, ValidationError) as e:
            self.logger.warning(f"Failed to parse Clang line: {line} ({e})")
            return None
