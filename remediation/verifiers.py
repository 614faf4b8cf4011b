"""
Toolchain verifiers: compile check, static-analysis pass, quality score.

Each candidate is written to a throwaway temp directory, checked with the
real toolchain and scored. A missing toolchain, a timeout or a compile
error all produce a report with compiles=False rather than an exception.
"""

import logging
import os
import re
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from remediation.models import TargetLanguage, VerificationReport
from remediation.quality import QualityScorer
from scan_engine.adapters.regex_adapter import RegexAdapter
from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)

# rustc/clippy summary lines that are not diagnostics themselves
_SUMMARY_RE = re.compile(
    r'^(?:error: aborting due to|warning: \d+ warnings? emitted|'
    r'error: could not compile|warning: .* generated \d+ warnings?)'
)


def parse_diagnostics(output: str) -> Tuple[List[str], List[str]]:
    """Split tool output into (errors, warnings) by 'error:'/'error[E' and 'warning:' markers."""
    errors: List[str] = []
    warnings: List[str] = []
    for raw in (output or "").splitlines():
        line = raw.strip()
        if not line or _SUMMARY_RE.match(line):
            continue
        if "error:" in line or "error[E" in line:
            errors.append(line)
        elif "warning:" in line:
            warnings.append(line)
    return errors, warnings


class ToolchainVerifier(ABC):
    """
    Usage:
        verifier = RustToolchainVerifier(config)
        report = verifier.verify(code)
        if report.meets_targets(90.0, 5.0): ...
    """

    LANGUAGE = TargetLanguage.RUST
    SOURCE_SUFFIX = ".rs"

    def __init__(self, config: ScanEngineConfig = None, scorer: Optional[QualityScorer] = None):
        self.config = config or DEFAULT_CONFIG
        self.scorer = scorer or QualityScorer(self.LANGUAGE)
        self.timeout = self.config.verifier_timeout_seconds

    def verify(self, code: str) -> VerificationReport:
        ratio = self.scorer.unsafe_ratio(code)
        if not (code or "").strip():
            return VerificationReport.not_compiling(["Generated code is empty"], ratio)

        with tempfile.TemporaryDirectory(prefix="gvi-verify-") as workdir:
            source = os.path.join(workdir, f"candidate{self.SOURCE_SUFFIX}")
            with open(source, "w", encoding="utf-8") as f:
                f.write(code)

            compiles, errors, compiler_warnings = self.compile_check(source, workdir)
            if not compiles:
                logger.info(f"Compile check failed with {len(errors)} error(s)")
                return VerificationReport.not_compiling(errors or ["Compilation failed"], ratio)

            static_warnings = self.static_check(source, workdir, code)

        score, breakdown = self.scorer.score(code, compiler_warnings, static_warnings)
        return VerificationReport(
            compiles=True,
            compiler_warnings=compiler_warnings,
            static_warnings=static_warnings,
            quality_score=score,
            unsafe_ratio=ratio,
            quality_breakdown=breakdown,
        )

    @abstractmethod
    def compile_check(self, source: str, workdir: str) -> Tuple[bool, List[str], List[str]]:
        """(compiles, errors, warnings) for the file at `source`."""
        ...

    def static_check(self, source: str, workdir: str, code: str) -> List[str]:
        return []

    @abstractmethod
    def is_available(self) -> bool:
        ...

    def _run(self, cmd: List[str]) -> Tuple[Optional[int], str, Optional[str]]:
        """Run a tool. Returns (returncode, combined output, failure reason)."""
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            return None, "", f"{cmd[0]} not found"
        except subprocess.TimeoutExpired:
            return None, "", f"{os.path.basename(cmd[0])} check timed out after {self.timeout} seconds"
        except OSError as e:
            return None, "", f"Failed to run {cmd[0]}: {e}"
        return result.returncode, (result.stdout or "") + "\n" + (result.stderr or ""), None


class RustToolchainVerifier(ToolchainVerifier):
    """rustc --crate-type lib, then clippy-driver -W clippy::all."""

    LANGUAGE = TargetLanguage.RUST
    SOURCE_SUFFIX = ".rs"

    def is_available(self) -> bool:
        return shutil.which(self.config.rustc_path) is not None

    def compile_check(self, source: str, workdir: str) -> Tuple[bool, List[str], List[str]]:
        returncode, output, failure = self._run([
            self.config.rustc_path, "--crate-type", "lib", "--emit=metadata",
            "--out-dir", workdir, source,
        ])
        if failure:
            logger.warning(f"rustc validation unavailable: {failure}")
            return False, [failure], []
        errors, warnings = parse_diagnostics(output)
        compiles = returncode == 0 and not errors
        logger.info(f"rustc validation result: success={compiles}, errors={len(errors)}, warnings={len(warnings)}")
        return compiles, errors, warnings

    def static_check(self, source: str, workdir: str, code: str) -> List[str]:
        returncode, output, failure = self._run([
            self.config.clippy_path, "--crate-type", "lib", "--emit=metadata",
            "--out-dir", workdir, "-W", "clippy::all", source,
        ])
        if failure:
            logger.debug(f"Skipping clippy pass: {failure}")
            return []
        errors, warnings = parse_diagnostics(output)
        # clippy errors on code rustc accepted are lint denials; count them as warnings
        return errors + warnings


class CToolchainVerifier(ToolchainVerifier):
    """<cc> -fsyntax-only -Wall -Wextra, then the regex security rules."""

    LANGUAGE = TargetLanguage.C
    SOURCE_SUFFIX = ".c"

    def __init__(self, config: ScanEngineConfig = None, scorer: Optional[QualityScorer] = None):
        super().__init__(config, scorer)
        self._rules = RegexAdapter(self.config)

    def is_available(self) -> bool:
        return shutil.which(self.config.c_compiler) is not None

    def compile_check(self, source: str, workdir: str) -> Tuple[bool, List[str], List[str]]:
        returncode, output, failure = self._run([
            self.config.c_compiler, "-fsyntax-only", "-Wall", "-Wextra", source,
        ])
        if failure:
            logger.warning(f"C syntax check unavailable: {failure}")
            return False, [failure], []
        errors, warnings = parse_diagnostics(output)
        compiles = returncode == 0 and not errors
        logger.info(f"{self.config.c_compiler} check result: success={compiles}, "
                    f"errors={len(errors)}, warnings={len(warnings)}")
        return compiles, errors, warnings

    def static_check(self, source: str, workdir: str, code: str) -> List[str]:
        return [
            f"{issue.location.line}: {issue.title}"
            for issue in self._rules.scan_source(os.path.basename(source), code)
        ]


VERIFIERS = {
    TargetLanguage.RUST: RustToolchainVerifier,
    TargetLanguage.C: CToolchainVerifier,
}


def create_verifier(target, config: ScanEngineConfig = None) -> ToolchainVerifier:
    return VERIFIERS[TargetLanguage.from_string(target)](config)
