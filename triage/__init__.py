"""
triage - AI validation of static-analysis findings.

Architecture:
    ┌─────────────────────────────────────────────────┐
    │               DecisionEngine                    │  ← IssueEnhancer
    │  (skip / validate routing, bounded pool)        │
    ├─────────────────────────────────────────────────┤
    │      CodeSlicer        │      prompts           │  ← Context
    │  (enclosing function)  │  (JSON verdict)        │
    ├─────────────────────────────────────────────────┤
    │        llm_gateway.LLMClient (analyzer role)    │  ← Cached, rate-limited
    └─────────────────────────────────────────────────┘
"""

from triage.code_slicer import CodeSlicer
from triage.decision_engine import (
    AI_CONFIRMED_CONFIDENCE,
    AI_FAILED_CONFIDENCE_MULTIPLIER,
    DecisionEngine,
    baseline_confidence,
    is_race_condition_false_positive,
    needs_ai_validation,
)
from triage.prompts import VALIDATION_SYSTEM_PROMPT, build_validation_prompt

__all__ = [
    "DecisionEngine",
    "CodeSlicer",
    "baseline_confidence",
    "needs_ai_validation",
    "is_race_condition_false_positive",
    "build_validation_prompt",
    "VALIDATION_SYSTEM_PROMPT",
    "AI_CONFIRMED_CONFIDENCE",
    "AI_FAILED_CONFIDENCE_MULTIPLIER",
]
