"""
Centralized configuration for the scan pipeline.

All tunable constants, timeouts, limits, and paths are defined here
as a single dataclass to avoid scattering magic numbers across modules.
The llm_gateway, triage and remediation packages read their settings
from the same object so one environment drives the whole run.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


VALID_LEVELS = ("quick", "standard", "deep")
VALID_RATE_LIMIT_MODES = ("qps", "tpm")
VALID_TARGET_LANGUAGES = ("rust", "c")
ROLE_NAMES = ("analyzer", "planner", "coder", "reviewer")


def _to_bool(value: str) -> bool:
    cleaned = value.strip().lower()
    if cleaned in ("1", "true", "yes", "on"):
        return True
    if cleaned in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class ScanEngineConfig:
    """
    Configuration object for the entire scan pipeline.
    Instantiate with defaults or override specific values.

    Example:
        config = ScanEngineConfig(level="deep", max_threads=8)
        config = ScanEngineConfig.from_env()
    """

    # --- Scan ---
    level: str = "standard"
    parallel: bool = True
    max_threads: int = 4
    timeout_seconds: int = 300
    incremental: bool = False
    use_gitignore: bool = True
    source_extensions: tuple = (".c", ".cpp", ".cc", ".cxx", ".h", ".hpp", ".hxx")
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "node_modules", "build", "dist", "target", ".git", ".svn",
        "*.o", "*.obj", "*.so", "*.dll", "*.dylib", "*.a", "*.lib",
    ])

    # --- External Tools ---
    semgrep_path: str = "semgrep"
    semgrep_rules: Optional[str] = None  # None = "--config auto"
    clang_tidy_path: str = "clang-tidy"
    clang_tidy_checks: str = "-*,clang-analyzer-*,bugprone-*,cert-*,concurrency-*"
    tool_timeout_seconds: int = 120
    version_check_timeout: int = 10

    # --- AI Validation ---
    ai_enabled: bool = True
    validation_concurrency: int = 3
    validation_temperature: float = 0.3
    validation_max_tokens: int = 2000

    # --- LLM Providers ---
    openai_api_key: str = ""
    claude_api_key: str = ""
    siliconflow_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    claude_base_url: str = "https://api.anthropic.com"
    siliconflow_base_url: str = "https://api.siliconflow.cn/v1"
    request_timeout: float = 60.0
    max_retries: int = 3

    # --- Rate Limiting ---
    rate_limit_mode: str = "qps"  # "qps" or "tpm"
    requests_per_second: float = 5.0
    tokens_per_minute: int = 60000
    safety_margin: float = 0.8

    # --- Cache ---
    cache_enabled: bool = True
    cache_dir: str = os.path.join("~", ".scan_engine", "cache")
    cache_type: str = "ai_llm_calls"
    l1_max_size: int = 500
    l1_ttl_seconds: int = 3600  # 1 hour
    l2_ttl_seconds: int = 7 * 24 * 3600  # 7 days

    # --- Roles ---
    # role -> "provider::model", e.g. {"coder": "openai::gpt-4"}
    role_overrides: Dict[str, str] = field(default_factory=dict)

    # --- Remediation (GVI) ---
    target_language: str = "rust"
    quality_threshold: float = 90.0
    unsafe_ceiling: float = 5.0
    max_iterations: int = 3
    generation_temperature: float = 0.3
    generation_max_tokens: int = 8000
    rustc_path: str = "rustc"
    clippy_path: str = "clippy-driver"
    c_compiler: str = "gcc"
    verifier_timeout_seconds: int = 30

    @property
    def effective_threads(self) -> int:
        """Worker pool size for analyzer dispatch (1 when sequential)."""
        return max(1, self.max_threads) if self.parallel else 1

    @property
    def resolved_cache_dir(self) -> str:
        """Cache directory with ~ and env vars expanded."""
        return os.path.expandvars(os.path.expanduser(self.cache_dir))

    @classmethod
    def from_env(cls) -> "ScanEngineConfig":
        """
        Create a configuration from environment variables.
        Scan settings are prefixed with SCAN_; provider API keys use the
        vendor's conventional variable names.
        """
        kwargs = {}

        env_map = {
            "SCAN_LEVEL": "level",
            "SCAN_PARALLEL": ("parallel", _to_bool),
            "SCAN_MAX_THREADS": ("max_threads", int),
            "SCAN_TIMEOUT": ("timeout_seconds", int),
            "SCAN_INCREMENTAL": ("incremental", _to_bool),
            "SCAN_USE_GITIGNORE": ("use_gitignore", _to_bool),
            "SCAN_IGNORE_PATTERNS": ("ignore_patterns", _to_list),
            "SCAN_SEMGREP_BIN": "semgrep_path",
            "SCAN_SEMGREP_RULES": "semgrep_rules",
            "SCAN_CLANG_TIDY_BIN": "clang_tidy_path",
            "SCAN_CLANG_TIDY_CHECKS": "clang_tidy_checks",
            "SCAN_TOOL_TIMEOUT": ("tool_timeout_seconds", int),
            "SCAN_AI_ENABLED": ("ai_enabled", _to_bool),
            "SCAN_AI_CONCURRENCY": ("validation_concurrency", int),
            "SCAN_RATE_LIMIT_MODE": "rate_limit_mode",
            "SCAN_REQUESTS_PER_SECOND": ("requests_per_second", float),
            "SCAN_TOKENS_PER_MINUTE": ("tokens_per_minute", int),
            "SCAN_SAFETY_MARGIN": ("safety_margin", float),
            "SCAN_LLM_TIMEOUT": ("request_timeout", float),
            "SCAN_LLM_MAX_RETRIES": ("max_retries", int),
            "SCAN_CACHE_ENABLED": ("cache_enabled", _to_bool),
            "SCAN_CACHE_DIR": "cache_dir",
            "SCAN_CACHE_L1_SIZE": ("l1_max_size", int),
            "SCAN_CACHE_L1_TTL": ("l1_ttl_seconds", int),
            "SCAN_CACHE_L2_TTL": ("l2_ttl_seconds", int),
            "SCAN_TARGET_LANGUAGE": "target_language",
            "SCAN_QUALITY_THRESHOLD": ("quality_threshold", float),
            "SCAN_UNSAFE_CEILING": ("unsafe_ceiling", float),
            "SCAN_MAX_ITERATIONS": ("max_iterations", int),
            "SCAN_RUSTC_BIN": "rustc_path",
            "SCAN_CLIPPY_BIN": "clippy_path",
            "SCAN_C_COMPILER": "c_compiler",
            "OPENAI_API_KEY": "openai_api_key",
            "SILICONFLOW_API_KEY": "siliconflow_api_key",
            "OPENAI_BASE_URL": "openai_base_url",
            "SILICONFLOW_BASE_URL": "siliconflow_base_url",
            "CLAUDE_API_KEY": None,  # Handled separately
        }

        for env_key, field_info in env_map.items():
            val = os.environ.get(env_key)
            if val is None:
                continue

            if field_info is None:
                continue  # Special handling

            if isinstance(field_info, str):
                kwargs[field_info] = val
            elif isinstance(field_info, tuple):
                field_name, converter = field_info
                try:
                    kwargs[field_name] = converter(val)
                except (ValueError, TypeError):
                    pass

        # Claude accepts either variable name
        claude_key = os.environ.get("CLAUDE_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
        if claude_key:
            kwargs["claude_api_key"] = claude_key

        role_overrides = {}
        for role in ROLE_NAMES:
            spec = os.environ.get(f"SCAN_ROLE_{role.upper()}")
            if spec:
                role_overrides[role] = spec.strip()
        if role_overrides:
            kwargs["role_overrides"] = role_overrides

        return cls(**kwargs)

    def validate(self) -> List[str]:
        """
        Validate configuration values and return list of warnings.
        Returns empty list if all values are valid.
        """
        warnings = []

        if self.level.lower() not in VALID_LEVELS:
            warnings.append(
                f"level='{self.level}' is not one of {list(VALID_LEVELS)}; all analyzers will run"
            )

        if self.max_threads < 1:
            warnings.append(f"max_threads must be >= 1, got {self.max_threads}")

        if self.timeout_seconds < 10:
            warnings.append(f"timeout_seconds={self.timeout_seconds}s is very low")

        if self.validation_concurrency < 1:
            warnings.append(
                f"validation_concurrency must be >= 1, got {self.validation_concurrency}"
            )

        if self.rate_limit_mode not in VALID_RATE_LIMIT_MODES:
            warnings.append(
                f"rate_limit_mode must be one of {list(VALID_RATE_LIMIT_MODES)}, "
                f"got '{self.rate_limit_mode}'"
            )

        if not 0.0 < self.safety_margin <= 1.0:
            warnings.append(f"safety_margin must be in (0, 1], got {self.safety_margin}")

        if self.requests_per_second <= 0:
            warnings.append(f"requests_per_second must be > 0, got {self.requests_per_second}")

        if self.tokens_per_minute <= 0:
            warnings.append(f"tokens_per_minute must be > 0, got {self.tokens_per_minute}")

        if self.l1_max_size < 16:
            warnings.append(f"l1_max_size={self.l1_max_size} is very low")

        if self.target_language not in VALID_TARGET_LANGUAGES:
            warnings.append(
                f"target_language must be one of {list(VALID_TARGET_LANGUAGES)}, "
                f"got '{self.target_language}'"
            )

        if not 0 <= self.quality_threshold <= 100:
            warnings.append(f"quality_threshold must be in [0, 100], got {self.quality_threshold}")

        if self.max_iterations < 1:
            warnings.append(f"max_iterations must be >= 1, got {self.max_iterations}")

        for role, spec in self.role_overrides.items():
            if role not in ROLE_NAMES:
                warnings.append(f"Unknown role '{role}' in role_overrides")
            if "::" not in spec:
                warnings.append(f"Role override for '{role}' must be 'provider::model', got '{spec}'")

        return warnings


# Module-level default configuration instance
DEFAULT_CONFIG = ScanEngineConfig()
