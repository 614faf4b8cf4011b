"""
Generate-Verify-Iterate engine.

State machine per request:

    GENERATE ──► VERIFY ──► meets targets? ──yes──► ACCEPT
       ▲                        │no
       └──── REVISE ◄── attempts left? ──no──► EXHAUSTED (best attempt so far)

Bounded by max_iterations. The engine produces a candidate artifact
only; it never writes to the source tree.
"""

import logging
from typing import List, Optional

from llm_gateway.client import LLMClient
from llm_gateway.exceptions import LLMError
from llm_gateway.factory import ProviderFactory
from remediation.generator import CodeGenerator
from remediation.models import (
    GVIState,
    RemediationAttempt,
    RemediationRequest,
    RemediationResult,
    RemediationStatus,
    TargetLanguage,
    VerificationReport,
)
from remediation.verifiers import ToolchainVerifier, create_verifier
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG
from scan_engine.metrics import MetricsCollector, get_metrics
from scan_engine.models import Issue

logger = logging.getLogger(__name__)


def select_best_attempt(attempts: List[RemediationAttempt]) -> Optional[RemediationAttempt]:
    """Highest quality score; the earliest attempt wins a tie."""
    best = None
    for attempt in attempts:
        if best is None or attempt.quality_score > best.quality_score:
            best = attempt
    return best


class GVIEngine:
    """
    Usage:
        engine = GVIEngine.from_config(config)
        result = engine.remediate(RemediationRequest.from_issue(issue, slicer, "rust"))
        if result.meets_targets:
            print(result.code)
    """

    def __init__(
        self,
        generator: CodeGenerator,
        verifier: ToolchainVerifier,
        config: ScanEngineConfig = None,
        metrics: MetricsCollector = None,
    ):
        self.generator = generator
        self.verifier = verifier
        self.config = config or DEFAULT_CONFIG
        self.metrics = metrics or get_metrics()
        self.max_iterations = max(1, self.config.max_iterations)
        self.quality_threshold = self.config.quality_threshold
        self.unsafe_ceiling = self.config.unsafe_ceiling

    @classmethod
    def from_config(cls, config: ScanEngineConfig = None,
                    factory: Optional[ProviderFactory] = None,
                    target: Optional[str] = None) -> "GVIEngine":
        config = config or DEFAULT_CONFIG
        factory = factory or ProviderFactory.create_default(config)
        verifier = create_verifier(target or config.target_language, config)
        return cls(CodeGenerator(LLMClient(factory), config), verifier, config)

    @property
    def target(self) -> TargetLanguage:
        return self.verifier.LANGUAGE

    def remediate(self, request: RemediationRequest) -> RemediationResult:
        issue = request.issue
        logger.info(
            f"GVI start for '{issue.title}' ({issue.location}) target={request.target.value}, "
            f"max_iterations={self.max_iterations}"
        )

        attempts: List[RemediationAttempt] = []
        previous: Optional[RemediationAttempt] = None
        for number in range(1, self.max_iterations + 1):
            if number > 1:
                self._transition(GVIState.REVISE, GVIState.GENERATE, number)
            try:
                code = self.generator.generate(request, previous)
            except LLMError as e:
                logger.warning(f"Iteration {number}: generation failed: {e.message}")
                code = ""
                verification = VerificationReport.not_compiling([f"Generation failed: {e.message}"])
            else:
                self._transition(GVIState.GENERATE, GVIState.VERIFY, number)
                with self.metrics.timer("gvi.verify"):
                    verification = self.verifier.verify(code)

            attempt = RemediationAttempt(number, code, verification)
            attempt.accepted = verification.meets_targets(self.quality_threshold, self.unsafe_ceiling)
            attempts.append(attempt)
            self.metrics.increment("gvi.iterations")

            logger.info(
                f"Iteration {number}/{self.max_iterations}: compiles={verification.compiles}, "
                f"quality={verification.quality_score:.1f}, unsafe={verification.unsafe_ratio:.1f}%"
            )

            if attempt.accepted:
                self._transition(GVIState.VERIFY, GVIState.ACCEPT, number)
                self.metrics.increment("gvi.accepted")
                return RemediationResult(
                    issue_id=issue.id,
                    status=RemediationStatus.ACCEPTED,
                    best_attempt=attempt,
                    attempts_made=number,
                    meets_targets=True,
                    target=request.target,
                )

            if number < self.max_iterations:
                self._transition(GVIState.VERIFY, GVIState.REVISE, number)
            previous = attempt

        best = select_best_attempt(attempts)
        self._transition(GVIState.VERIFY, GVIState.EXHAUSTED, len(attempts))
        self.metrics.increment("gvi.exhausted")
        logger.warning(
            f"GVI exhausted after {len(attempts)} attempts for '{issue.title}'; "
            f"best is attempt {best.attempt_number} with quality {best.quality_score:.1f}"
        )
        return RemediationResult(
            issue_id=issue.id,
            status=RemediationStatus.EXHAUSTED,
            best_attempt=best,
            attempts_made=len(attempts),
            meets_targets=False,
            target=request.target,
        )

    def remediate_issue(self, issue: Issue, slicer) -> RemediationResult:
        return self.remediate(RemediationRequest.from_issue(issue, slicer, self.target))

    @staticmethod
    def _transition(src: GVIState, dst: GVIState, iteration: int) -> None:
        logger.debug(f"GVI iteration {iteration}: {src.value} -> {dst.value}")
