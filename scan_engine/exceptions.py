"""
Custom exception hierarchy for the scan_engine package.

Provides structured, typed exceptions instead of generic string error messages,
enabling callers to handle specific failure modes gracefully.

Failures that are local to one unit of concurrent work (a single analyzer,
a single cache entry) are caught by the component that owns the work and
converted into an empty or degraded result. Only errors that make the whole
operation meaningless propagate to the caller.
"""


class ScanEngineError(Exception):
    """Base exception for all scan_engine errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Analyzer Errors ---

class AnalyzerError(ScanEngineError):
    """A single analyzer failed. Isolated by the orchestrator."""

    def __init__(self, analyzer: str, reason: str = "Unknown error"):
        super().__init__(
            f"Analyzer '{analyzer}' failed: {reason}",
            details={"analyzer": analyzer, "reason": reason}
        )


class AnalyzerNotAvailableError(AnalyzerError):
    """The external tool behind an analyzer is not installed."""

    def __init__(self, analyzer: str, hint: str = ""):
        reason = "tool not available"
        if hint:
            reason += f". {hint}"
        super().__init__(analyzer, reason)


class AnalyzerTimeoutError(AnalyzerError):
    """An analyzer did not finish within its time budget."""

    def __init__(self, analyzer: str, timeout_seconds: float):
        super().__init__(analyzer, f"timed out after {timeout_seconds}s")
        self.details["timeout_seconds"] = timeout_seconds


class NoAnalyzersAvailableError(ScanEngineError):
    """No analyzer could be selected. The scan cannot produce anything."""

    def __init__(self, level: str = ""):
        msg = "No analyzers available"
        if level:
            msg = f"No suitable analyzers for level '{level}'"
        super().__init__(msg, details={"level": level})


# --- Store Errors ---

class StoreIOError(ScanEngineError):
    """Persisting or loading the issue store failed."""

    def __init__(self, path: str, operation: str, reason: str = ""):
        super().__init__(
            f"Issue store {operation} failed for '{path}': {reason}",
            details={"path": path, "operation": operation, "reason": reason}
        )


# --- Validation Errors ---

class ValidationError(ScanEngineError):
    """Input validation failed."""

    def __init__(self, field: str, message: str):
        super().__init__(
            f"Validation error for '{field}': {message}",
            details={"field": field, "message": message}
        )


class ConfigError(ValidationError):
    """A configuration value is unusable."""

    def __init__(self, field: str, value, message: str):
        super().__init__(field=field, message=f"{message} (got {value!r})")
        self.details["value"] = value
