"""Semgrep integration: batch invocation with JSON output."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from scan_engine.adapters.base_adapter import BaseAnalyzerAdapter
from scan_engine.exceptions import AnalyzerError, AnalyzerNotAvailableError, ValidationError
from scan_engine.models import Category, Issue, Severity
from scan_engine.utils import normalize_file_path


SEMGREP_ANALYZER_NAME = "Semgrep"

_SEVERITY_MAP = {
    "ERROR": Severity.CRITICAL,
    "WARNING": Severity.HIGH,
    "INFO": Severity.MEDIUM,
}

# (substrings, category); first match wins
_CATEGORY_RULES = [
    (("buffer-overflow", "buffer overflow"), Category.BUFFER_OVERFLOW),
    (("use-after-free", "use after free"), Category.USE_AFTER_FREE),
    (("memory-leak", "memory leak"), Category.MEMORY_LEAK),
    (("null-deref", "null pointer"), Category.NULL_DEREFERENCE),
    (("double-free", "double free"), Category.DOUBLE_FREE),
    (("sql-injection", "sql injection"), Category.SQL_INJECTION),
    (("command-injection", "command injection"), Category.COMMAND_INJECTION),
    (("path-traversal", "path traversal"), Category.PATH_TRAVERSAL),
    (("format-string", "format string"), Category.FORMAT_STRING),
    (("weak-crypto", "weak hash"), Category.WEAK_CRYPTO),
    (("insecure-random",), Category.INSECURE_RANDOM),
    (("race-condition", "race condition"), Category.RACE_CONDITION),
    (("deadlock",), Category.DEADLOCK),
    (("resource-leak",), Category.RESOURCE_LEAK),
    (("integer-overflow", "integer overflow"), Category.INTEGER_OVERFLOW),
]


def map_semgrep_severity(value: str) -> Severity:
    return _SEVERITY_MAP.get((value or "").upper(), Severity.LOW)


def determine_semgrep_category(check_id: str, message: str) -> Category:
    """Derive a category from the rule id and message text."""
    lower = f"{check_id} {message}".lower()
    for needles, category in _CATEGORY_RULES:
        if any(n in lower for n in needles):
            return category
    if "hardcoded" in lower and ("key" in lower or "password" in lower):
        return Category.HARDCODED_SECRET
    return Category.UNKNOWN


class SemgrepAdapter(BaseAnalyzerAdapter):
    """
    Runs semgrep once over the whole file batch.

    Uses the configured rules directory when it exists, otherwise the
    registry's ``auto`` configuration.
    """

    def __init__(self, config=None, debug: bool = False):
        super().__init__(SEMGREP_ANALYZER_NAME, config=config, debug=debug)
        self._version: Optional[str] = None
        self._available: Optional[bool] = None

    @property
    def version(self) -> str:
        if self._version is None:
            self._version = self._probe_version(self.config.semgrep_path) or "Unknown"
        return self._version

    def is_available(self) -> bool:
        if self._available is None:
            probed = self._probe_version(self.config.semgrep_path)
            self._available = probed is not None
            if self._available:
                self._version = probed or "Unknown"
            else:
                self.logger.debug("Semgrep not available; install with: pip install semgrep")
        return self._available

    def analyze(self, file_path: Path) -> List[Issue]:
        path = self._require_file(file_path)
        return self.analyze_all([path])

    def analyze_all(self, files: Sequence[Path]) -> List[Issue]:
        if not files:
            return []
        if not self.is_available():
            raise AnalyzerNotAvailableError(self.name, "Install semgrep: pip install semgrep")

        self.logger.info(f"Analyzing {len(files)} files with Semgrep in batch mode")
        result = self._run_tool(self._build_command(files))
        self.logger.debug(f"Semgrep exit code: {result.returncode}")
        if result.stderr:
            self.logger.debug(f"Semgrep stderr: {result.stderr[:1000]}")

        # 0 = clean, 1 = findings; anything else without output is a tool failure
        if result.returncode not in (0, 1) and not result.stdout.strip():
            raise AnalyzerError(self.name, f"semgrep exited with {result.returncode}")

        return self.parse_output(result.stdout)

    def _build_command(self, files: Sequence[Path]) -> List[str]:
        cmd = [
            self._resolve_executable(self.config.semgrep_path) or self.config.semgrep_path,
            "--json",
            "--quiet",
            "--disable-version-check",
        ]
        rules = self.config.semgrep_rules
        if rules and os.path.exists(rules):
            cmd += ["--config", rules]
        else:
            cmd += ["--config", "auto"]
        cmd += [str(f) for f in files]
        return cmd

    def parse_output(self, json_output: str) -> List[Issue]:
        """Parse semgrep --json output. Malformed output yields no issues."""
        issues: List[Issue] = []
        try:
            root = json.loads(json_output or "{}")
        except json.JSONDecodeError as e:
            self.logger.error(f"Failed to parse Semgrep JSON output: {e}")
            return issues

        results = root.get("results") or []
        if not results:
            self.logger.debug("No results found in Semgrep output")

        for result in results:
            issue = self._parse_result(result)
            if issue is not None:
                issues.append(issue)

        self.logger.info(f"Found {len(issues)} issues from Semgrep")
        return issues

    def _parse_result(self, result: Dict[str, Any]) -> Optional[Issue]:
        try:
            check_id = result["check_id"]
            extra = result.get("extra") or {}
            message = extra.get("message", check_id)
            start = result.get("start") or {}

            annotations = {"check_id": check_id}
            for key, value in (extra.get("metadata") or {}).items():
                annotations[f"semgrep_{key}"] = value if isinstance(value, str) else json.dumps(value)

            return self._make_issue(
                title=check_id,
                file=normalize_file_path(result["path"]),
                line=int(start.get("line", 1)),
                column=int(start.get("col", 0)),
                severity=map_semgrep_severity(extra.get("severity", "INFO")),
                category=determine_semgrep_category(check_id, message),
                description=message,
                snippet=extra.get("lines"),
                **annotations,
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            self.logger.warning(f"Failed to parse Semgrep result: {e}")
            return None
