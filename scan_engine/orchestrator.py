"""
Scan orchestration: analyzer selection, concurrent dispatch, deduplication.

Flow:
    files ──► select_analyzers(level) ──► run (sequential | thread pool)
          ──► collect all results ──► deduplicate_issues ──► issues

A failing or timed-out analyzer contributes zero issues; the scan as a
whole only fails when no analyzer can be selected at all.
"""

import concurrent.futures
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from scan_engine.adapters import (
    BaseAnalyzerAdapter,
    CLANG_TIDY_ANALYZER_NAME,
    REGEX_ANALYZER_NAME,
    SEMGREP_ANALYZER_NAME,
    create_default_adapters,
)
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG, VALID_LEVELS
from scan_engine.exceptions import NoAnalyzersAvailableError, ValidationError
from scan_engine.file_scanner import CodeScanner
from scan_engine.metrics import MetricsCollector, get_metrics
from scan_engine.models import Issue, ScanResult
from scan_engine.utils import utc_now

logger = logging.getLogger(__name__)


def deduplicate_issues(issues: Iterable[Issue]) -> List[Issue]:
    """
    Keep the first issue seen for every identity hash, preserving order.

    Pure and idempotent: the output never contains more issues than the
    input and deduplicating it again changes nothing.
    """
    seen = set()
    unique: List[Issue] = []
    for issue in issues:
        h = issue.hash
        if h in seen:
            continue
        seen.add(h)
        unique.append(issue)
    return unique


class IssueEnhancer(ABC):
    """Post-scan stage that may re-grade or drop issues (e.g. AI validation)."""

    @abstractmethod
    def enhance_issues(self, issues: List[Issue]) -> List[Issue]:
        ...

    @property
    @abstractmethod
    def ai_filtered_count(self) -> int:
        """Number of issues dropped by the last enhance_issues() call."""
        ...


class ScanOrchestrator:
    """
    Runs the registered analyzers over a file batch.

    Usage:
        with ScanOrchestrator(config) as orchestrator:
            issues = orchestrator.scan(files, level="deep")
            result = orchestrator.analyze("/path/to/src", store=store)
    """

    def __init__(
        self,
        config: ScanEngineConfig = None,
        analyzers: Optional[Sequence[BaseAnalyzerAdapter]] = None,
        metrics: MetricsCollector = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.metrics = metrics or get_metrics()
        self._analyzers: List[BaseAnalyzerAdapter] = []
        for analyzer in (analyzers if analyzers is not None else create_default_adapters(self.config)):
            self.register_analyzer(analyzer)
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self.last_statistics: Dict[str, object] = {}

        logger.info(
            f"ScanOrchestrator initialized with {len(self._analyzers)} analyzers, "
            f"{self.config.effective_threads} threads"
        )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    @property
    def analyzers(self) -> List[BaseAnalyzerAdapter]:
        return list(self._analyzers)

    def register_analyzer(self, analyzer: BaseAnalyzerAdapter) -> None:
        """
        Raises:
            ValidationError: an analyzer with the same name is already registered.
                Results are collected per name, so names must be unique.
        """
        if any(existing.name == analyzer.name for existing in self._analyzers):
            raise ValidationError("analyzers", f"an analyzer named '{analyzer.name}' is already registered")
        self._analyzers.append(analyzer)

    def _find_available(self, name: str) -> Optional[BaseAnalyzerAdapter]:
        for analyzer in self._analyzers:
            if analyzer.name == name and analyzer.is_available():
                return analyzer
        return None

    def select_analyzers(self, level: str) -> List[BaseAnalyzerAdapter]:
        """
        Pick analyzers for an analysis level.

        quick    - Semgrep, else the built-in regex analyzer
        standard - Semgrep + Clang-Tidy
        deep     - standard + regex analyzer
        other    - every registered analyzer that is available
        """
        if not self._analyzers:
            raise NoAnalyzersAvailableError()

        normalized = (level or "").lower()
        logger.info(f"Selecting analyzers for level: {normalized}")
        selected: List[BaseAnalyzerAdapter] = []

        if normalized == "quick":
            analyzer = self._find_available(SEMGREP_ANALYZER_NAME)
            if analyzer is not None:
                logger.info(f"Quick mode: Using {analyzer.name}")
            else:
                analyzer = self._find_available(REGEX_ANALYZER_NAME)
                if analyzer is not None:
                    logger.info(f"Quick mode fallback: Using {analyzer.name}")
            if analyzer is not None:
                selected.append(analyzer)

        elif normalized in ("standard", "deep"):
            for name in (SEMGREP_ANALYZER_NAME, CLANG_TIDY_ANALYZER_NAME):
                analyzer = self._find_available(name)
                if analyzer is not None:
                    logger.info(f"{normalized} mode: Using {analyzer.name}")
                    selected.append(analyzer)
            if normalized == "deep":
                analyzer = self._find_available(REGEX_ANALYZER_NAME)
                if analyzer is not None:
                    logger.info(f"Deep mode: Also using {analyzer.name}")
                    selected.append(analyzer)

        else:
            logger.warning(
                f"Unknown analysis level '{level}' (expected one of {list(VALID_LEVELS)}), "
                f"using all analyzers"
            )
            selected = [a for a in self._analyzers if a.is_available()]

        if not selected:
            raise NoAnalyzersAvailableError(normalized)

        logger.info(f"Selected {len(selected)} analyzer(s) for execution")
        return selected

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------
    def scan(
        self,
        files: Sequence[Path],
        level: Optional[str] = None,
        parallel: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
    ) -> List[Issue]:
        """Run the selected analyzers and return deduplicated issues."""
        level = level if level is not None else self.config.level
        parallel = self.config.parallel if parallel is None else parallel
        timeout_seconds = timeout_seconds if timeout_seconds is not None else self.config.timeout_seconds

        if not files:
            logger.warning("No files found to analyze")
            self.last_statistics = self._build_statistics(0, [], [], {})
            return []

        files = [Path(f) for f in files]
        selected = self.select_analyzers(level)

        with self.metrics.timer("scan.total"):
            if parallel:
                per_analyzer = self._run_parallel(selected, files, timeout_seconds)
            else:
                per_analyzer = self._run_sequential(selected, files)

        # dedup only ever sees the complete result set
        raw: List[Issue] = []
        for analyzer in selected:
            raw.extend(per_analyzer.get(analyzer.name, []))

        unique = deduplicate_issues(raw)
        removed = len(raw) - len(unique)
        if removed > 0:
            logger.info(f"Removed {removed} duplicate issues")

        self.last_statistics = self._build_statistics(
            len(files), raw, unique, {name: len(found) for name, found in per_analyzer.items()}
        )
        self.last_statistics["analyzers_used"] = [a.name for a in selected]
        return unique

    def _run_sequential(self, analyzers: List[BaseAnalyzerAdapter],
                        files: List[Path]) -> Dict[str, List[Issue]]:
        results: Dict[str, List[Issue]] = {}
        for analyzer in analyzers:
            logger.info(f"Running analyzer: {analyzer.name} (batch mode)")
            results[analyzer.name] = self._run_one(analyzer, files)
        return results

    def _run_parallel(self, analyzers: List[BaseAnalyzerAdapter], files: List[Path],
                      timeout_seconds: float) -> Dict[str, List[Issue]]:
        executor = self._get_executor()
        futures = {}
        for analyzer in analyzers:
            logger.info(f"Running analyzer in parallel: {analyzer.name} (batch mode)")
            futures[analyzer.name] = executor.submit(self._run_one, analyzer, files)

        results: Dict[str, List[Issue]] = {}
        for name, future in futures.items():
            try:
                results[name] = future.result(timeout=timeout_seconds)
            except concurrent.futures.TimeoutError:
                logger.error(f"Analyzer {name} timed out after {timeout_seconds}s")
                self.metrics.record_error("AnalyzerTimeoutError", name)
                future.cancel()
                results[name] = []
            except Exception as e:
                logger.error(f"Failed to get analysis results from {name}: {e}")
                self.metrics.record_error(type(e).__name__, name)
                results[name] = []
        return results

    def _run_one(self, analyzer: BaseAnalyzerAdapter, files: List[Path]) -> List[Issue]:
        """Run one analyzer, converting any failure into an empty result."""
        try:
            with self.metrics.timer(f"analyzer.{analyzer.name}"):
                issues = analyzer.analyze_all(files)
            logger.info(f"{analyzer.name} found {len(issues)} issues")
            return issues
        except Exception as e:
            logger.error(f"Batch analysis failed for {analyzer.name}: {e}")
            self.metrics.record_error(type(e).__name__, analyzer.name)
            return []

    def _get_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self.config.effective_threads,
                thread_name_prefix="scan-analyzer",
            )
        return self._executor

    @staticmethod
    def _build_statistics(total_files: int, raw: List[Issue], unique: List[Issue],
                          per_analyzer: Dict[str, int]) -> Dict[str, object]:
        return {
            "total_files": total_files,
            "raw_issue_count": len(raw),
            "total_issues": len(unique),
            "duplicates_removed": len(raw) - len(unique),
            "per_analyzer": dict(per_analyzer),
            "analyzers_used": [],
        }

    # ------------------------------------------------------------------
    # Full pipeline
    # ------------------------------------------------------------------
    def analyze(self, source_path: str, store=None, enhancer: Optional[IssueEnhancer] = None,
                incremental: Optional[bool] = None) -> ScanResult:
        """
        Discover files, scan, optionally enhance and store, and return an
        immutable ScanResult.
        """
        start_time = utc_now()
        logger.info(f"Starting analysis of: {source_path}")

        incremental = self.config.incremental if incremental is None else incremental
        files = CodeScanner(source_path, self.config).scan(incremental=incremental)
        logger.info(f"Scanning complete. Found {len(files)} files to analyze")

        issues = self.scan(files)
        analyzers_used = list(self.last_statistics.get("analyzers_used", []))

        ai_filtered: Optional[int] = None
        if enhancer is not None and issues:
            logger.info(f"Enhancing {len(issues)} issues with AI validation...")
            before = len(issues)
            issues = enhancer.enhance_issues(issues)
            ai_filtered = enhancer.ai_filtered_count
            logger.info(
                f"AI enhancement complete: {before} issues -> {len(issues)} issues "
                f"({ai_filtered} filtered)"
            )
        elif enhancer is None:
            logger.debug("AI enhancement disabled, using static analysis results only")

        if store is not None:
            store.add_issues(issues)
            logger.info(f"Wrote {len(issues)} issues to issue store")

        statistics = {
            "total_files": len(files),
            "total_issues": len(issues),
            "analyzers_count": len(analyzers_used),
            "raw_issue_count": self.last_statistics.get("raw_issue_count", 0),
            "duplicates_removed": self.last_statistics.get("duplicates_removed", 0),
        }
        if ai_filtered is not None:
            statistics["ai_filtered_count"] = ai_filtered

        result = ScanResult(
            source_path=str(source_path),
            start_time=start_time,
            end_time=utc_now(),
            issues=tuple(issues),
            statistics=statistics,
            analyzers_used=tuple(analyzers_used),
        )
        logger.info(f"Analysis complete. Found {len(issues)} issues in {len(files)} files")
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Shut the worker pool down without waiting for hung analyzers."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
