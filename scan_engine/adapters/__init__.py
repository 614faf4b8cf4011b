"""
Analyzer adapters.

Each adapter wraps one analysis tool and returns normalized Issue objects.

Adapters:
    SemgrepAdapter    - semgrep, batch JSON mode
    ClangTidyAdapter  - clang-tidy, per-file text diagnostics
    RegexAdapter      - built-in pattern matcher, always available
"""

from scan_engine.adapters.base_adapter import BaseAnalyzerAdapter
from scan_engine.adapters.clang_tidy_adapter import ClangTidyAdapter, CLANG_TIDY_ANALYZER_NAME
from scan_engine.adapters.regex_adapter import RegexAdapter, REGEX_ANALYZER_NAME
from scan_engine.adapters.semgrep_adapter import SemgrepAdapter, SEMGREP_ANALYZER_NAME


def create_default_adapters(config=None, debug: bool = False) -> list:
    """All built-in adapters in registration order."""
    return [
        ClangTidyAdapter(config=config, debug=debug),
        SemgrepAdapter(config=config, debug=debug),
        RegexAdapter(config=config, debug=debug),
    ]


__all__ = [
    "BaseAnalyzerAdapter",
    "ClangTidyAdapter",
    "RegexAdapter",
    "SemgrepAdapter",
    "CLANG_TIDY_ANALYZER_NAME",
    "REGEX_ANALYZER_NAME",
    "SEMGREP_ANALYZER_NAME",
    "create_default_adapters",
]
