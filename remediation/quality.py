"""
Quality scoring for generated remediation code.

Heuristic and regex-based (no parser), in the same spirit as the health
analyzers: each check yields a partial score, the weighted sum is 0-100.

Weights:
    no_unsafe           25
    error_handling      25
    idiomatic           20
    completeness        15
    documentation       10
    compiler_friendly    5
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from remediation.models import TargetLanguage

logger = logging.getLogger(__name__)

QUALITY_WEIGHTS: Dict[str, float] = {
    "no_unsafe": 25.0,
    "error_handling": 25.0,
    "idiomatic": 20.0,
    "completeness": 15.0,
    "documentation": 10.0,
    "compiler_friendly": 5.0,
}

STATIC_WARNING_PENALTY = 2.0
STATIC_WARNING_PENALTY_CAP = 20.0
# unsafe ratio (%) at which the no_unsafe check drops to zero
UNSAFE_RATIO_ZERO_SCORE = 20.0
# comment density at which documentation gets full marks
DOC_DENSITY_TARGET = 0.10

# ═══════════════════════════════════════════════════════════════════════════════
#  Patterns
# ═══════════════════════════════════════════════════════════════════════════════

_RUST_UNSAFE_BLOCK_RE = re.compile(r'\bunsafe\s*(?:fn\b[^{]*)?\{')
_RUST_UNSAFE_DECL_RE = re.compile(r'\bunsafe\s+(?:fn|impl|trait)\b')
_RUST_RAW_PTR_RE = re.compile(r'\*(?:mut|const)\s+\w')

_C_UNSAFE_CALL_RE = re.compile(r'\b(?:gets|strcpy|strcat|sprintf|vsprintf|alloca)\s*\(')
_C_UNBOUNDED_SCANF_RE = re.compile(r'\bscanf\s*\(\s*"[^"]*%s')

_RUST_FALLIBLE_RE = re.compile(r'\bResult\s*<|\bOption\s*<|\?\s*;|\?\)|\bOk\(|\bErr\(|\bSome\(|\bNone\b')
_RUST_PANIC_RE = re.compile(r'\.unwrap\(\)|\.expect\(|\bpanic!\(')
_C_ERROR_CHECK_RE = re.compile(
    r'==\s*NULL|!=\s*NULL|if\s*\(\s*!\s*\w+\s*\)|return\s+-\d+|\berrno\b|<\s*0\s*\)'
)

_RUST_IDIOMS = (
    re.compile(r'\.iter\(\)|\.into_iter\(\)|\.iter_mut\(\)'),
    re.compile(r'\bmatch\b'),
    re.compile(r'\bimpl\b'),
    re.compile(r'&str\b|\bString\b'),
    re.compile(r'\bVec<|&\[\w+\]|&mut \[\w+\]'),
    re.compile(r'\bif let\b|\bwhile let\b'),
    re.compile(r'\.map\(|\.filter\(|\.collect'),
)
_RUST_C_ISMS = (
    re.compile(r'\blibc::'),
    re.compile(r'\bstd::ptr::'),
    re.compile(r'\bas \*(?:mut|const)\b'),
    re.compile(r'\bmem::transmute\b'),
)
_C_IDIOMS = (
    re.compile(r'\bsnprintf\s*\('),
    re.compile(r'\bstrncpy\s*\(|\bstrlcpy\s*\(|\bmemcpy_s\s*\('),
    re.compile(r'\bsizeof\s*\('),
    re.compile(r'\bfgets\s*\('),
    re.compile(r'\bconst\b'),
    re.compile(r'\bsize_t\b'),
)

_RUST_FN_RE = re.compile(r'^\s*(?:pub(?:\([^)]*\))?\s+)?(?:unsafe\s+)?fn\s+\w+', re.MULTILINE)
_C_FN_RE = re.compile(r'^[a-zA-Z_][\w\s\*]*\b\w+\s*\([^;]*\)\s*\{?\s*$', re.MULTILINE)
_PLACEHOLDER_RE = re.compile(r'\btodo!\(|\bunimplemented!\(|\bTODO\b|\bFIXME\b|^\s*\.\.\.\s*$', re.MULTILINE)
_COMMENT_RE = re.compile(r'^\s*(?://|/\*|\*)')


# ═══════════════════════════════════════════════════════════════════════════════
#  Unsafe estimation
# ═══════════════════════════════════════════════════════════════════════════════

def _non_blank_lines(code: str) -> List[str]:
    return [line for line in (code or "").splitlines() if line.strip()]


def estimate_unsafe_lines(code: str, language: TargetLanguage) -> int:
    """
    Rust: lines inside unsafe blocks/fns plus unsafe declarations and raw
    pointer types. C: lines calling unbounded string/memory APIs.
    """
    lines = _non_blank_lines(code)
    if TargetLanguage.from_string(language) is TargetLanguage.C:
        return sum(
            1 for line in lines
            if _C_UNSAFE_CALL_RE.search(line) or _C_UNBOUNDED_SCANF_RE.search(line)
        )

    count = 0
    depth = 0  # brace depth inside the innermost open unsafe region
    for line in lines:
        if depth > 0:
            count += 1
            depth += line.count("{") - line.count("}")
            if depth < 0:
                depth = 0
            continue
        block = _RUST_UNSAFE_BLOCK_RE.search(line)
        if block:
            count += 1
            opened = line[block.start():]
            depth = max(0, opened.count("{") - opened.count("}"))
        elif _RUST_UNSAFE_DECL_RE.search(line) or _RUST_RAW_PTR_RE.search(line):
            count += 1
    return count


def unsafe_ratio(code: str, language: TargetLanguage) -> float:
    """Unsafe lines / non-blank lines * 100."""
    total = len(_non_blank_lines(code))
    if total == 0:
        return 0.0
    return round(estimate_unsafe_lines(code, language) / total * 100.0, 2)


# ═══════════════════════════════════════════════════════════════════════════════
#  Scorer
# ═══════════════════════════════════════════════════════════════════════════════

class QualityScorer:
    """
    Usage:
        scorer = QualityScorer(TargetLanguage.RUST)
        score, breakdown = scorer.score(code, compiler_warnings=[], static_warnings=warnings)
    """

    def __init__(self, language: TargetLanguage = TargetLanguage.RUST,
                 weights: Optional[Dict[str, float]] = None):
        self.language = TargetLanguage.from_string(language)
        self.weights = dict(weights or QUALITY_WEIGHTS)

    def unsafe_ratio(self, code: str) -> float:
        return unsafe_ratio(code, self.language)

    def score(self, code: str, compiler_warnings: List[str] = None,
              static_warnings: List[str] = None) -> Tuple[float, Dict[str, float]]:
        """Weighted quality score and the per-check breakdown, for code that compiles."""
        compiler_warnings = compiler_warnings or []
        static_warnings = static_warnings or []

        fractions = {
            "no_unsafe": self._no_unsafe(code),
            "error_handling": self._error_handling(code),
            "idiomatic": self._idiomatic(code),
            "completeness": self._completeness(code),
            "documentation": self._documentation(code),
            "compiler_friendly": max(0.0, 1.0 - 0.2 * len(compiler_warnings)),
        }
        breakdown = {
            name: round(self.weights[name] * min(1.0, max(0.0, fraction)), 2)
            for name, fraction in fractions.items()
        }

        penalty = min(STATIC_WARNING_PENALTY_CAP, STATIC_WARNING_PENALTY * len(static_warnings))
        if penalty:
            breakdown["static_warning_penalty"] = -penalty

        total = round(min(100.0, max(0.0, sum(breakdown.values()))), 1)
        logger.debug(f"Quality score {total} ({self.language.value}): {breakdown}")
        return total, breakdown

    # --- individual checks, each returning a fraction in [0, 1] ---

    def _no_unsafe(self, code: str) -> float:
        if estimate_unsafe_lines(code, self.language) == 0:
            return 1.0
        return 1.0 - self.unsafe_ratio(code) / UNSAFE_RATIO_ZERO_SCORE

    def _error_handling(self, code: str) -> float:
        if self.language is TargetLanguage.C:
            checks = len(_C_ERROR_CHECK_RE.findall(code))
            return min(1.0, 0.4 + 0.3 * checks)

        panics = len(_RUST_PANIC_RE.findall(code))
        base = 1.0 if _RUST_FALLIBLE_RE.search(code) else 0.6
        return base - 0.2 * panics

    def _idiomatic(self, code: str) -> float:
        if self.language is TargetLanguage.C:
            found = sum(1 for pattern in _C_IDIOMS if pattern.search(code))
            return found / 3.0

        found = sum(1 for pattern in _RUST_IDIOMS if pattern.search(code))
        c_isms = sum(1 for pattern in _RUST_C_ISMS if pattern.search(code))
        return found / 3.0 - 0.2 * c_isms

    def _completeness(self, code: str) -> float:
        fn_re = _C_FN_RE if self.language is TargetLanguage.C else _RUST_FN_RE
        if not fn_re.search(code or ""):
            return 0.0
        placeholders = len(_PLACEHOLDER_RE.findall(code))
        return 1.0 - 0.34 * placeholders

    def _documentation(self, code: str) -> float:
        lines = _non_blank_lines(code)
        if not lines:
            return 0.0
        comments = sum(1 for line in lines if _COMMENT_RE.match(line))
        return (comments / len(lines)) / DOC_DENSITY_TARGET
