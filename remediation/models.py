"""
Data models for the Generate-Verify-Iterate remediation loop.

A RemediationAttempt lives only for one GVI run; the engine hands back a
RemediationResult holding the single attempt it chose.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from scan_engine.exceptions import ConfigError
from scan_engine.models import Issue


class TargetLanguage(str, Enum):
    RUST = "rust"  # C -> idiomatic Rust rewrite
    C = "c"        # in-place C fix

    @classmethod
    def from_string(cls, value: str) -> "TargetLanguage":
        if isinstance(value, cls):
            return value
        cleaned = (value or "").strip().lower()
        for member in cls:
            if member.value == cleaned:
                return member
        raise ConfigError("target_language", value, f"expected one of {[m.value for m in cls]}")

    @property
    def fence(self) -> str:
        return "rust" if self is TargetLanguage.RUST else "c"


class GVIState(str, Enum):
    GENERATE = "GENERATE"
    VERIFY = "VERIFY"
    REVISE = "REVISE"
    ACCEPT = "ACCEPT"
    EXHAUSTED = "EXHAUSTED"


class RemediationStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    EXHAUSTED = "EXHAUSTED"


@dataclass
class VerificationReport:
    """Outcome of compiling, linting and scoring one candidate."""
    compiles: bool
    compiler_errors: List[str] = field(default_factory=list)
    compiler_warnings: List[str] = field(default_factory=list)
    static_warnings: List[str] = field(default_factory=list)
    quality_score: float = 0.0
    unsafe_ratio: float = 0.0
    quality_breakdown: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def not_compiling(cls, errors: List[str], unsafe_ratio: float = 0.0) -> "VerificationReport":
        return cls(compiles=False, compiler_errors=list(errors), unsafe_ratio=unsafe_ratio)

    def meets_targets(self, quality_threshold: float, unsafe_ceiling: float) -> bool:
        return (
            self.compiles
            and self.quality_score >= quality_threshold
            and self.unsafe_ratio < unsafe_ceiling
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compiles": self.compiles,
            "compiler_errors": list(self.compiler_errors),
            "compiler_warnings": list(self.compiler_warnings),
            "static_warnings": list(self.static_warnings),
            "quality_score": self.quality_score,
            "unsafe_ratio": self.unsafe_ratio,
            "quality_breakdown": dict(self.quality_breakdown),
        }


@dataclass
class RemediationAttempt:
    attempt_number: int
    generated_code: str
    verification: VerificationReport
    accepted: bool = False

    @property
    def quality_score(self) -> float:
        return self.verification.quality_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "generated_code": self.generated_code,
            "verification": self.verification.to_dict(),
            "accepted": self.accepted,
        }


@dataclass
class RemediationRequest:
    """
    One finding to remediate, with the code it sits in.

    Example:
        request = RemediationRequest.from_issue(issue, slicer, TargetLanguage.RUST)
    """
    issue: Issue
    code_slice: str
    target: TargetLanguage = TargetLanguage.RUST

    @classmethod
    def from_issue(cls, issue: Issue, slicer, target: Any = TargetLanguage.RUST) -> "RemediationRequest":
        code_slice = slicer.get_context_slice(issue.location.file, issue.location.line)
        return cls(issue=issue, code_slice=code_slice, target=TargetLanguage.from_string(target))


@dataclass
class RemediationResult:
    issue_id: str
    status: RemediationStatus
    best_attempt: Optional[RemediationAttempt]
    attempts_made: int
    meets_targets: bool
    target: TargetLanguage = TargetLanguage.RUST

    @property
    def code(self) -> str:
        return self.best_attempt.generated_code if self.best_attempt else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issue_id": self.issue_id,
            "status": self.status.value,
            "target": self.target.value,
            "attempts_made": self.attempts_made,
            "meets_targets": self.meets_targets,
            "best_attempt": self.best_attempt.to_dict() if self.best_attempt else None,
        }
