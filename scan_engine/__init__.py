"""
scan_engine - multi-analyzer security scanning for C/C++ sources.

Runs several static analyzers concurrently over a file batch, normalizes
their findings into one Issue model, de-duplicates them by identity hash
and keeps the canonical set in a thread-safe store.

Architecture:
    ┌─────────────────────────────────────────────────┐
    │               ScanOrchestrator                  │  ← Public API
    │  (level selection, thread pool, dedup)          │
    ├─────────────────────────────────────────────────┤
    │   SemgrepAdapter │ ClangTidyAdapter │ Regex     │  ← Analyzers
    │  (external tools / in-process patterns)         │
    ├─────────────────────────────────────────────────┤
    │                IssueStore                       │  ← Canonical state
    │  (striped locks, merge, JSON snapshot)          │
    ├─────────────────────────────────────────────────┤
    │                CodeScanner                      │  ← Discovery
    │  (extensions, ignore patterns, git changes)     │
    └─────────────────────────────────────────────────┘

Supporting modules:
    config.py       - ScanEngineConfig dataclass (shared by every package)
    exceptions.py   - Custom exception hierarchy
    models.py       - Severity, Category, Issue, ScanResult
    utils.py        - Hashing, timestamps, path normalization
    metrics.py      - Observability and performance tracking
"""

# --- Core Public API ---
from scan_engine.orchestrator import ScanOrchestrator, IssueEnhancer, deduplicate_issues
from scan_engine.issue_store import IssueStore, merge_issues
from scan_engine.file_scanner import CodeScanner

# --- Adapters ---
from scan_engine.adapters import (
    BaseAnalyzerAdapter,
    ClangTidyAdapter,
    RegexAdapter,
    SemgrepAdapter,
    create_default_adapters,
)

# --- Configuration ---
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG

# --- Models ---
from scan_engine.models import (
    Category,
    CodeLocation,
    Issue,
    IssueMetadata,
    ScanResult,
    Severity,
    create_issue,
)

# --- Exceptions ---
from scan_engine.exceptions import (
    ScanEngineError,
    AnalyzerError,
    AnalyzerNotAvailableError,
    AnalyzerTimeoutError,
    NoAnalyzersAvailableError,
    StoreIOError,
    ValidationError,
    ConfigError,
)

# --- Infrastructure ---
from scan_engine.metrics import MetricsCollector, get_metrics

__version__ = "1.0.0"

__all__ = [
    # Core
    "ScanOrchestrator",
    "IssueEnhancer",
    "deduplicate_issues",
    "IssueStore",
    "merge_issues",
    "CodeScanner",
    # Adapters
    "BaseAnalyzerAdapter",
    "ClangTidyAdapter",
    "RegexAdapter",
    "SemgrepAdapter",
    "create_default_adapters",
    # Config
    "ScanEngineConfig",
    "DEFAULT_CONFIG",
    # Models
    "Category",
    "CodeLocation",
    "Issue",
    "IssueMetadata",
    "ScanResult",
    "Severity",
    "create_issue",
    # Exceptions
    "ScanEngineError",
    "AnalyzerError",
    "AnalyzerNotAvailableError",
    "AnalyzerTimeoutError",
    "NoAnalyzersAvailableError",
    "StoreIOError",
    "ValidationError",
    "ConfigError",
    # Infrastructure
    "MetricsCollector",
    "get_metrics",
]
