"""
Base adapter interface for static analysis tools.

All adapters inherit from BaseAnalyzerAdapter and implement analyze().
Results are normalized Issue objects so the ScanOrchestrator can run,
time out and deduplicate adapters uniformly, whether they wrap an
external process or run in-process.
"""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional, Sequence

from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG
from scan_engine.exceptions import AnalyzerError, AnalyzerNotAvailableError, AnalyzerTimeoutError
from scan_engine.models import Issue, create_issue


class BaseAnalyzerAdapter(ABC):
    """
    Abstract base class for analyzer adapters.

    Subclasses must implement is_available() and analyze(). The default
    analyze_all() loops over files and isolates per-file failures; adapters
    whose tool supports batch invocation override it.
    """

    def __init__(self, adapter_name: str, config: ScanEngineConfig = None, debug: bool = False):
        self.adapter_name = adapter_name
        self.config = config or DEFAULT_CONFIG
        self.debug = debug
        self.logger = logging.getLogger(f"adapters.{adapter_name}")

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        return self.adapter_name

    @property
    def version(self) -> str:
        return "unknown"

    @abstractmethod
    def is_available(self) -> bool:
        """True when the underlying tool can be run."""
        ...

    @abstractmethod
    def analyze(self, file_path: Path) -> List[Issue]:
        """Analyze one file. Raises AnalyzerError on failure."""
        ...

    def analyze_all(self, files: Sequence[Path]) -> List[Issue]:
        """Analyze a batch of files, skipping files that fail individually."""
        if not files:
            return []
        if not self.is_available():
            raise AnalyzerNotAvailableError(self.name)

        all_issues: List[Issue] = []
        for file_path in files:
            try:
                all_issues.extend(self.analyze(Path(file_path)))
            except AnalyzerError as e:
                self.logger.error(f"Failed to analyze {file_path}: {e}")
        return all_issues

    # ------------------------------------------------------------------
    # Helpers available to all subclasses
    # ------------------------------------------------------------------
    def _require_file(self, file_path: Path) -> Path:
        path = Path(file_path)
        if not path.is_file():
            raise AnalyzerError(self.name, f"File not found: {path}")
        return path

    def _resolve_executable(self, executable: str) -> Optional[str]:
        """Locate a CLI tool on PATH (or accept an explicit path)."""
        return shutil.which(executable)

    def _probe_version(self, executable: str) -> Optional[str]:
        """Run `<tool> --version` and return its first output line, or None."""
        resolved = self._resolve_executable(executable)
        if not resolved:
            return None
        try:
            result = subprocess.run(
                [resolved, "--version"],
                capture_output=True,
                text=True,
                timeout=self.config.version_check_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"{self.name} version probe failed: {e}")
            return None
        if result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            if line.strip():
                return line.strip()
        return ""

    def _run_tool(self, cmd: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        """Run an external tool, translating process failures into AnalyzerError."""
        timeout = timeout or self.config.tool_timeout_seconds
        if self.debug:
            self.logger.debug(f"Running: {' '.join(cmd)}")
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise AnalyzerTimeoutError(self.name, timeout)
        except OSError as e:
            raise AnalyzerError(self.name, f"Failed to run {cmd[0]}: {e}")

    def _make_issue(self, title: str, file: str, line: int, column: int = 0, **kwargs: Any) -> Issue:
        """Construct an Issue attributed to this adapter."""
        return create_issue(title, file, line, column, analyzer=self.name, **kwargs)
