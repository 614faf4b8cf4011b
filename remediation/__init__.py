"""
remediation - bounded Generate-Verify-Iterate loop for one finding.

Architecture:
    ┌─────────────────────────────────────────────────┐
    │                  GVIEngine                      │  ← Public API
    │  (state machine, best-attempt selection)        │
    ├────────────────────────┬────────────────────────┤
    │     CodeGenerator      │   ToolchainVerifier    │
    │  (coder role, fences   │  (rustc + clippy, or   │
    │   stripped, feedback)  │   cc -fsyntax-only)    │
    ├────────────────────────┴────────────────────────┤
    │                QualityScorer                    │  ← Scoring
    │  (weighted checks, unsafe-ratio estimate)       │
    └─────────────────────────────────────────────────┘

Supporting modules:
    models.py   - RemediationRequest, RemediationAttempt, RemediationResult
    prompts.py  - generation and revision prompts
"""

from remediation.generator import CodeGenerator, clean_generated_code
from remediation.gvi_engine import GVIEngine, select_best_attempt
from remediation.models import (
    GVIState,
    RemediationAttempt,
    RemediationRequest,
    RemediationResult,
    RemediationStatus,
    TargetLanguage,
    VerificationReport,
)
from remediation.quality import QUALITY_WEIGHTS, QualityScorer, estimate_unsafe_lines, unsafe_ratio
from remediation.verifiers import (
    CToolchainVerifier,
    RustToolchainVerifier,
    ToolchainVerifier,
    create_verifier,
    parse_diagnostics,
)

__all__ = [
    # Engine
    "GVIEngine",
    "select_best_attempt",
    "CodeGenerator",
    "clean_generated_code",
    # Verification
    "ToolchainVerifier",
    "RustToolchainVerifier",
    "CToolchainVerifier",
    "create_verifier",
    "parse_diagnostics",
    "QualityScorer",
    "QUALITY_WEIGHTS",
    "estimate_unsafe_lines",
    "unsafe_ratio",
    # Models
    "GVIState",
    "RemediationAttempt",
    "RemediationRequest",
    "RemediationResult",
    "RemediationStatus",
    "TargetLanguage",
    "VerificationReport",
]
