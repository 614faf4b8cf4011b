"""
Decision Engine: AI validation of static-analysis findings.

Flow per scan:
    issues ──► needs_ai_validation? ──no──► baseline confidence (skipped)
                     │yes
                     ▼
           bounded validation pool (validation_concurrency workers)
             slice code ─► race-condition prefilter ─► prompt ─► LLM (analyzer role)
                     │
           confirmed ─► re-graded, "<analyzer> + AI"
           rejected  ─► dropped (counted in ai_filtered_count)
           error     ─► kept with baseline * 0.8 and validation_error

Output order: validated issues in input order, then skipped issues.
"""

import concurrent.futures
import copy
import logging
from typing import Any, Dict, List, Optional

from llm_gateway.client import LLMClient, extract_json_object
from llm_gateway.exceptions import LLMResponseError
from llm_gateway.factory import ProviderFactory
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG
from scan_engine.metrics import MetricsCollector, get_metrics
from scan_engine.models import Issue, Severity
from scan_engine.orchestrator import IssueEnhancer
from triage.code_slicer import CodeSlicer
from triage.prompts import VALIDATION_SYSTEM_PROMPT, build_validation_prompt

logger = logging.getLogger(__name__)

# Baseline confidence per analyzer family
CLANG_BASELINE_CONFIDENCE = 0.90
SEMGREP_BASELINE_CONFIDENCE = 0.60
REGEX_BASELINE_CONFIDENCE = 0.40
DEFAULT_BASELINE_CONFIDENCE = 0.5
AI_CONFIRMED_CONFIDENCE = 0.95
AI_FAILED_CONFIDENCE_MULTIPLIER = 0.8

VALIDATION_ROLE = "analyzer"
SKIPPED_REASON = "High confidence analyzer"
FALLBACK_REASON = "AI validation failed, using static analysis only"

RACE_CONDITION_KEYWORDS = (
    "race condition", "data race", "mutex", "concurrent", "thread-safe", "synchronization",
)
SINGLE_THREAD_INDICATORS = (
    "main()", "cli", "single-threaded", "event loop", "sequential", "single thread",
)
MULTI_THREAD_INDICATORS = (
    "pthread_create", "std::thread", "boost::thread", "thread pool", "concurrent", "async",
)


def baseline_confidence(analyzer: str) -> float:
    name = (analyzer or "").lower()
    if "clang" in name:
        return CLANG_BASELINE_CONFIDENCE
    if "semgrep" in name:
        return SEMGREP_BASELINE_CONFIDENCE
    if "regex" in name:
        return REGEX_BASELINE_CONFIDENCE
    return DEFAULT_BASELINE_CONFIDENCE


def needs_ai_validation(issue: Issue) -> bool:
    """
    Semgrep and regex findings are always validated; Clang-Tidy only
    when CRITICAL. Anything else is trusted at its baseline.
    """
    name = (issue.analyzer or "").lower()
    if "semgrep" in name or "regex" in name:
        return True
    return "clang" in name and issue.severity == Severity.CRITICAL


def is_race_condition_false_positive(issue: Issue, code_slice: str) -> bool:
    """True for a Semgrep concurrency warning in code with no sign of threads."""
    if "semgrep" not in (issue.analyzer or "").lower():
        return False

    text = f"{issue.title}\n{issue.description}".lower()
    if not any(keyword in text for keyword in RACE_CONDITION_KEYWORDS):
        return False

    code = (code_slice or "").lower()
    for indicator in SINGLE_THREAD_INDICATORS:
        if indicator in code:
            logger.debug(f"Detected single-threaded context: {indicator}")
            return True

    if any(construct in code for construct in MULTI_THREAD_INDICATORS):
        logger.debug("Detected multi-threaded constructs - not a false positive")
        return False

    logger.debug("No multi-threaded constructs found - likely Semgrep false positive")
    return True


def _suggested_severity(value: Any, original: Severity) -> Severity:
    cleaned = str(value or "").strip().upper()
    if cleaned in Severity.__members__:
        return Severity[cleaned]
    logger.warning(f"Invalid severity from AI: {value!r}, using original")
    return original


class DecisionEngine(IssueEnhancer):
    """
    Usage:
        engine = DecisionEngine.from_config(config)
        with ScanOrchestrator(config) as orchestrator:
            result = orchestrator.analyze(path, enhancer=engine)
        print(engine.ai_filtered_count)
    """

    def __init__(
        self,
        client: LLMClient,
        config: ScanEngineConfig = None,
        code_slicer: Optional[CodeSlicer] = None,
        metrics: MetricsCollector = None,
    ):
        self.client = client
        self.config = config or DEFAULT_CONFIG
        self.code_slicer = code_slicer or CodeSlicer()
        self.metrics = metrics or get_metrics()
        self.validation_concurrency = max(1, self.config.validation_concurrency)
        self._ai_filtered_count = 0

        logger.info(
            f"Decision Engine initialized (concurrency: {self.validation_concurrency}, "
            f"AI available: {self.is_available()})"
        )

    @classmethod
    def from_config(cls, config: ScanEngineConfig = None,
                    factory: Optional[ProviderFactory] = None) -> "DecisionEngine":
        config = config or DEFAULT_CONFIG
        factory = factory or ProviderFactory.create_default(config)
        return cls(LLMClient(factory), config)

    @property
    def ai_filtered_count(self) -> int:
        return self._ai_filtered_count

    def is_available(self) -> bool:
        return self.client.is_available()

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------
    def enhance_issues(self, issues: List[Issue]) -> List[Issue]:
        to_validate: List[Issue] = []
        skipped: List[Issue] = []
        for issue in issues:
            if needs_ai_validation(issue):
                to_validate.append(issue)
            else:
                skipped.append(self._mark_skipped(issue))

        logger.info(
            f"Submitting {len(to_validate)} issues for AI validation, {len(skipped)} skipped"
        )

        validated: List[Issue] = []
        filtered = 0
        errors = 0
        if to_validate:
            pool_size = min(self.validation_concurrency, len(to_validate))
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=pool_size, thread_name_prefix="ai-validation"
            ) as pool:
                futures = [pool.submit(self._validate, issue) for issue in to_validate]
                for issue, future in zip(to_validate, futures):
                    try:
                        result = future.result()
                    except Exception as e:
                        logger.error(f"AI validation task failed for '{issue.title}': {e}")
                        result = self._mark_fallback(issue)
                    if result is None:
                        filtered += 1
                        continue
                    if result.metadata.validation_error:
                        errors += 1
                    validated.append(result)

            logger.info(
                f"AI enhancement complete: {len(validated) - errors} validated, "
                f"{filtered} filtered, {errors} errors"
            )

        self._ai_filtered_count = filtered
        self.metrics.increment("triage.filtered", filtered)
        self.metrics.increment("triage.errors", errors)
        self.metrics.increment("triage.skipped", len(skipped))

        output = validated + skipped
        logger.info(f"Total output issues: {len(output)}")
        return output

    def _validate(self, issue: Issue) -> Optional[Issue]:
        """One validation task. Returns None when the issue is rejected."""
        with self.metrics.timer("triage.validate"):
            code_slice = self.code_slicer.get_context_slice(issue.location.file, issue.location.line)

            if is_race_condition_false_positive(issue, code_slice):
                logger.info(
                    f"Pre-filtered Semgrep race condition false positive: {issue.title} "
                    f"(single-threaded context)"
                )
                return None

            response = self.client.complete(
                VALIDATION_ROLE,
                build_validation_prompt(issue, code_slice),
                system=VALIDATION_SYSTEM_PROMPT,
                temperature=self.config.validation_temperature,
                max_tokens=self.config.validation_max_tokens,
            )
            if not response.success:
                logger.warning(f"AI validation failed for '{issue.title}': {response.error}")
                return self._mark_fallback(issue)

            try:
                verdict = self._parse_verdict(response.content)
            except LLMResponseError as e:
                logger.warning(f"Unparsable AI verdict for '{issue.title}': {e}")
                return self._mark_fallback(issue)

            if not verdict["is_vulnerability"]:
                logger.debug(f"AI rejected '{issue.title}': {verdict['reason']}")
                return None
            return self._mark_confirmed(issue, verdict)

    @staticmethod
    def _parse_verdict(content: str) -> Dict[str, Any]:
        data = extract_json_object(content)
        flag = data.get("is_vulnerability")
        if isinstance(flag, str) and flag.strip().lower() in ("true", "false"):
            flag = flag.strip().lower() == "true"
        if not isinstance(flag, bool):
            raise LLMResponseError("'is_vulnerability' must be a boolean", raw_content=content)
        return {
            "is_vulnerability": flag,
            "reason": str(data.get("reason") or ""),
            "suggested_severity": data.get("suggested_severity"),
        }

    # ------------------------------------------------------------------
    # Outcome builders (never mutate the input issue)
    # ------------------------------------------------------------------
    @staticmethod
    def _mark_confirmed(issue: Issue, verdict: Dict[str, Any]) -> Issue:
        enhanced = copy.deepcopy(issue)
        enhanced.severity = _suggested_severity(verdict["suggested_severity"], issue.severity)
        enhanced.analyzer = f"{issue.analyzer} + AI"
        enhanced.metadata.ai_validated = True
        enhanced.metadata.ai_confidence = AI_CONFIRMED_CONFIDENCE
        enhanced.metadata.ai_explanation = verdict["reason"]
        enhanced.metadata.original_severity = issue.severity.value
        return enhanced

    @staticmethod
    def _mark_skipped(issue: Issue) -> Issue:
        kept = copy.deepcopy(issue)
        kept.metadata.ai_validated = False
        kept.metadata.ai_confidence = baseline_confidence(issue.analyzer)
        kept.metadata.validation_skipped = SKIPPED_REASON
        return kept

    @staticmethod
    def _mark_fallback(issue: Issue) -> Issue:
        kept = copy.deepcopy(issue)
        kept.metadata.ai_validated = False
        kept.metadata.ai_confidence = baseline_confidence(issue.analyzer) * AI_FAILED_CONFIDENCE_MULTIPLIER
        kept.metadata.validation_error = FALLBACK_REASON
        return kept

    # ------------------------------------------------------------------
    # Cache passthrough
    # ------------------------------------------------------------------
    def get_cache_stats(self) -> Dict[str, Any]:
        return self.client.factory.get_cache_stats()

    def clear_cache(self) -> None:
        self.client.factory.clear_cache()
        self.code_slicer.clear_cache()
