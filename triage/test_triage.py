"""
Test suite for the triage package.

Covers:
    - CodeSlicer function extraction, fallback window and error notes
    - Routing helpers (which analyzers get validated, baselines)
    - Semgrep race-condition prefilter
    - DecisionEngine confirm / reject / error / skip paths and ordering
    - Cached validation through the real provider stack
    - DecisionEngine as the orchestrator's enhancer

No API keys are needed: the LLM side is scripted.

Usage:
    python -m triage.test_triage
    # or with pytest:
    pytest triage/test_triage.py
"""

import os
import sys
import json
import logging
import tempfile
import threading
from pathlib import Path

# Ensure the parent directory is in the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from llm_gateway.base_provider import BaseLLMProvider
from llm_gateway.client import LLMClient
from llm_gateway.factory import ProviderFactory
from llm_gateway.models import LLMResponse
from scan_engine.config import ScanEngineConfig
from scan_engine.models import create_issue

# Setup logging
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


# ============================================================
# Test Helpers
# ============================================================

VULNERABLE_C = """\
#include <string.h>

void copy_input(char *input) {
    char buf[16];
    strcpy(buf, input);
    if (input) {
        buf[0] = 0;
    }
}

int main(void) {
    copy_input("hello");
    return 0;
}
"""


class ScriptedClient(LLMClient):
    """LLMClient whose replies are picked by the issue title found in the prompt."""

    def __init__(self, replies, available=True):
        super().__init__(ProviderFactory(ScanEngineConfig(cache_enabled=False)))
        self.replies = replies
        self.available = available
        self.calls = []
        self._lock = threading.Lock()

    def is_available(self):
        return self.available

    def complete(self, role, user, system=None, temperature=0.7, max_tokens=2000):
        with self._lock:
            self.calls.append({"role": role, "user": user, "system": system,
                               "temperature": temperature, "max_tokens": max_tokens})
        for title, reply in self.replies.items():
            if f"- Issue: {title}\n" in user:
                if reply is None:
                    return LLMResponse.failure("Provider openai is not available (API key not configured)")
                return LLMResponse(content=reply, model="scripted")
        return LLMResponse.failure("no scripted reply")

    def titles_called(self):
        return sorted(
            line[len("- Issue: "):]
            for call in self.calls
            for line in call["user"].splitlines()
            if line.startswith("- Issue: ")
        )


def verdict(is_vulnerability, severity="High", reason="checked", fenced=False):
    body = json.dumps({
        "is_vulnerability": is_vulnerability,
        "reason": reason,
        "suggested_severity": severity,
    })
    return f"```json\n{body}\n```" if fenced else body


def write_source(tmpdir, name="vuln.c", text=VULNERABLE_C):
    path = Path(tmpdir) / name
    path.write_text(text, encoding="utf-8")
    return str(path)


# ============================================================
# Test 1: Code slicer
# ============================================================

def test_code_slicer():
    logger.info("--- Test 1: Code slicer ---")

    from triage.code_slicer import CodeSlicer

    with tempfile.TemporaryDirectory() as tmpdir:
        path = write_source(tmpdir)
        slicer = CodeSlicer()

        context = slicer.get_context_slice(path, 5)
        lines = context.splitlines()
        assert lines[0] == "// File: vuln.c (lines 3-9)", lines[0]
        assert lines[1] == "   3: void copy_input(char *input) {"
        assert "   5:     strcpy(buf, input); <<< ISSUE HERE" in lines
        assert lines[-1] == "   9: }"
        assert sum(1 for line in lines if line.endswith("<<< ISSUE HERE")) == 1
        assert slicer.cache_size == 1
        logger.info("  PASS: Enclosing function sliced with numbered lines.")

        flat = "\n".join(f"x{n} = {n};" for n in range(1, 41)) + "\n"
        flat_path = write_source(tmpdir, "flat.c", flat)
        header = slicer.get_context_slice(flat_path, 25).splitlines()[0]
        assert header == "// File: flat.c (lines 15-40)", header
        logger.info("  PASS: Fallback window of 10 before / 20 after.")

        after_block = (
            "int f(char *s) {\n"
            "    char buf[10];\n"
            "    if (s) {\n"
            "        puts(s);\n"
            "    } else {\n"
            "        s = \"\";\n"
            "    }\n"
            "    strcpy(buf, s);\n"
            "    return 0;\n"
            "}\n"
        )
        lines = slicer.get_context_slice(write_source(tmpdir, "after_block.c", after_block), 8).splitlines()
        assert lines[0] == "// File: after_block.c (lines 1-10)", lines[0]
        assert "   8:     strcpy(buf, s); <<< ISSUE HERE" in lines
        logger.info("  PASS: Control blocks above the line do not cut the slice short.")

        trailing = "int g(void) {\n    return 1;\n}\nchar *p = \"x\";\n"
        lines = slicer.get_context_slice(write_source(tmpdir, "trailing.c", trailing), 4).splitlines()
        assert lines[0] == "// File: trailing.c (lines 1-4)", lines[0]
        assert lines[-1] == '   4: char *p = "x"; <<< ISSUE HERE'
        logger.info("  PASS: Slice always contains the reported line.")

        assert slicer.get_context_slice(path, 99) == "[Error: Invalid line number 99 (file has 14 lines)]"
        missing = str(Path(tmpdir) / "missing.c")
        assert slicer.get_context_slice(missing, 1) == "[Error: File is empty or cannot be read]"

        slicer.clear_cache()
        assert slicer.cache_size == 0
    logger.info("PASS: Code slicer tests passed.")


# ============================================================
# Test 2: Routing and prefilter
# ============================================================

def test_routing_and_prefilter():
    logger.info("--- Test 2: Routing helpers and race-condition prefilter ---")

    from triage.decision_engine import (
        baseline_confidence,
        is_race_condition_false_positive,
        needs_ai_validation,
    )

    def issue(analyzer, severity="HIGH", title="finding", description=""):
        return create_issue(title, "/src/a.c", 5, severity=severity,
                            analyzer=analyzer, description=description)

    assert needs_ai_validation(issue("Semgrep", "LOW"))
    assert needs_ai_validation(issue("RegexAnalyzer", "INFO"))
    assert needs_ai_validation(issue("Clang-Tidy", "CRITICAL"))
    assert not needs_ai_validation(issue("Clang-Tidy", "HIGH"))
    assert not needs_ai_validation(issue("CustomTool", "CRITICAL"))

    assert baseline_confidence("Clang-Tidy") == 0.90
    assert baseline_confidence("Semgrep") == 0.60
    assert baseline_confidence("RegexAnalyzer") == 0.40
    assert baseline_confidence("CustomTool") == 0.5
    logger.info("  PASS: Validation routing and baselines.")

    race = issue("Semgrep", title="Possible race condition on counter")
    assert is_race_condition_false_positive(race, "int main() {\n counter++;\n}")
    threaded = "void worker(void) {\n pthread_create(&t, NULL, run, NULL);\n counter++;\n}"
    assert not is_race_condition_false_positive(race, threaded)
    assert is_race_condition_false_positive(race, "void bump(void) {\n counter++;\n}")

    by_description = issue("Semgrep", title="Shared state", description="Missing mutex around update")
    assert is_race_condition_false_positive(by_description, "void bump(void) { n++; }")
    assert not is_race_condition_false_positive(issue("Semgrep", title="strcpy use"), "int main() {}")
    assert not is_race_condition_false_positive(
        issue("RegexAnalyzer", title="race condition"), "int main() {}"
    )
    logger.info("PASS: Routing and prefilter tests passed.")


# ============================================================
# Test 3: Decision engine outcomes
# ============================================================

def test_decision_engine_paths():
    logger.info("--- Test 3: Decision engine confirm/reject/error/skip ---")

    from triage.decision_engine import DecisionEngine, FALLBACK_REASON, SKIPPED_REASON
    from triage.prompts import VALIDATION_SYSTEM_PROMPT
    from scan_engine.metrics import MetricsCollector
    from scan_engine.models import Severity

    with tempfile.TemporaryDirectory() as tmpdir:
        path = write_source(tmpdir)

        def issue(title, analyzer, severity="HIGH", line=5):
            return create_issue(title, path, line, severity=severity, analyzer=analyzer)

        issues = [
            issue("confirm-me", "RegexAnalyzer"),
            issue("reject-me", "Semgrep"),
            issue("error-me", "Semgrep", "MEDIUM"),
            issue("skip-me", "Clang-Tidy", "MEDIUM"),
            issue("garbage-me", "RegexAnalyzer", "LOW"),
            issue("critical-clang", "Clang-Tidy", "CRITICAL"),
            issue("Possible race condition on buf", "Semgrep"),
        ]
        client = ScriptedClient({
            "confirm-me": verdict(True, "Critical", "strcpy on caller input", fenced=True),
            "reject-me": verdict(False, "Info"),
            "error-me": None,
            "garbage-me": "I think this is probably fine.",
            "critical-clang": verdict(True, "Severe"),
        })
        config = ScanEngineConfig(validation_concurrency=3)
        engine = DecisionEngine(client, config, metrics=MetricsCollector())

        output = engine.enhance_issues(issues)
        titles = [i.title for i in output]
        assert titles == ["confirm-me", "error-me", "garbage-me", "critical-clang", "skip-me"], titles
        assert engine.ai_filtered_count == 2
        assert client.titles_called() == sorted(
            ["confirm-me", "reject-me", "error-me", "garbage-me", "critical-clang"]
        ), "skipped and prefiltered issues never reach the model"
        logger.info("  PASS: Output order and filtering.")

        by_title = {i.title: i for i in output}
        confirmed = by_title["confirm-me"]
        assert confirmed.analyzer == "RegexAnalyzer + AI"
        assert confirmed.severity == Severity.CRITICAL
        assert confirmed.metadata.ai_validated is True
        assert confirmed.metadata.ai_confidence == 0.95
        assert confirmed.metadata.ai_explanation == "strcpy on caller input"
        assert confirmed.metadata.original_severity == "HIGH"
        assert issues[0].analyzer == "RegexAnalyzer", "input issues are not mutated"
        assert issues[0].metadata.ai_validated is None

        assert by_title["critical-clang"].severity == Severity.CRITICAL, "invalid severity keeps the original"
        assert by_title["critical-clang"].analyzer == "Clang-Tidy + AI"

        for title, baseline in (("error-me", 0.60), ("garbage-me", 0.40)):
            fallback = by_title[title]
            assert fallback.metadata.ai_validated is False
            assert abs(fallback.metadata.ai_confidence - baseline * 0.8) < 1e-9
            assert fallback.metadata.validation_error == FALLBACK_REASON
            assert not fallback.analyzer.endswith("+ AI")

        skipped = by_title["skip-me"]
        assert skipped.metadata.ai_validated is False
        assert skipped.metadata.ai_confidence == 0.90
        assert skipped.metadata.validation_skipped == SKIPPED_REASON
        logger.info("  PASS: Confirmed, fallback and skipped annotations.")

        call = client.calls[0]
        assert call["role"] == "analyzer" and call["system"] == VALIDATION_SYSTEM_PROMPT
        assert call["temperature"] == 0.3 and call["max_tokens"] == 2000
        assert "<<< ISSUE HERE" in call["user"], "prompt embeds the code slice"

        assert engine.enhance_issues([]) == [] and engine.ai_filtered_count == 0
    logger.info("PASS: Decision engine tests passed.")


# ============================================================
# Test 4: Cached validation through the provider stack
# ============================================================

class ConfirmingProvider(BaseLLMProvider):
    PROVIDER_NAME = "openai"
    MODELS = ("gpt-3.5-turbo",)

    def __init__(self, **kwargs):
        super().__init__(api_key="sk-test", max_retries=1, **kwargs)
        self.calls = 0

    def _create_client(self):
        return None

    def _send(self, request):
        self.calls += 1
        return LLMResponse(content=verdict(True, "High"), model=request.model)


def test_cached_validation():
    logger.info("--- Test 4: Repeated validation served from cache ---")

    from llm_gateway.cache_manager import PersistentCacheManager
    from triage.decision_engine import DecisionEngine
    from scan_engine.metrics import MetricsCollector

    with tempfile.TemporaryDirectory() as tmpdir:
        path = write_source(tmpdir)
        config = ScanEngineConfig(cache_dir=str(Path(tmpdir) / "cache"))
        cache = PersistentCacheManager.from_config(config, metrics=MetricsCollector())
        factory = ProviderFactory(config, cache=cache)
        delegate = ConfirmingProvider()
        factory.register_provider("openai", delegate)

        engine = DecisionEngine(LLMClient(factory), config, metrics=MetricsCollector())
        issue = create_issue("strcpy overflow", path, 5, severity="HIGH", analyzer="Semgrep")

        first = engine.enhance_issues([issue])
        second = engine.enhance_issues([issue])
        assert delegate.calls == 1, "second identical validation must hit the cache"
        assert first[0].metadata.ai_validated and second[0].metadata.ai_validated
        assert engine.get_cache_stats()["hits"] >= 1

        engine.clear_cache()
        engine.enhance_issues([issue])
        assert delegate.calls == 2
    logger.info("PASS: Cached validation tests passed.")


# ============================================================
# Test 5: Orchestrator integration
# ============================================================

def test_orchestrator_integration():
    logger.info("--- Test 5: DecisionEngine as orchestrator enhancer ---")

    from scan_engine.adapters.regex_adapter import RegexAdapter
    from scan_engine.orchestrator import ScanOrchestrator
    from triage.decision_engine import DecisionEngine
    from scan_engine.metrics import MetricsCollector

    with tempfile.TemporaryDirectory() as tmpdir:
        write_source(tmpdir)
        config = ScanEngineConfig(level="deep")
        client = ScriptedClient({})
        client.complete = lambda *args, **kwargs: LLMResponse(content=verdict(False, "Info"))
        engine = DecisionEngine(client, config, metrics=MetricsCollector())

        with ScanOrchestrator(config, analyzers=[RegexAdapter()]) as orch:
            result = orch.analyze(tmpdir, enhancer=engine)

        raw = result.statistics["raw_issue_count"]
        assert raw >= 1, "the strcpy call must be reported"
        assert result.total_issue_count == 0
        assert result.statistics["ai_filtered_count"] == engine.ai_filtered_count > 0
    logger.info("PASS: Orchestrator integration tests passed.")


# ============================================================
# Test Runner
# ============================================================

def _run(test_fn) -> bool:
    try:
        test_fn()
        return True
    except AssertionError as e:
        logger.error(f"FAIL: {e}")
        return False
    except Exception as e:
        logger.exception(f"FAIL: Unexpected error: {e}")
        return False


def run_all_tests():
    """Run all tests and report results."""
    logger.info("=" * 60)
    logger.info(" triage Test Suite")
    logger.info("=" * 60)

    results = {
        "Code Slicer": _run(test_code_slicer),
        "Routing & Prefilter": _run(test_routing_and_prefilter),
        "Decision Engine Paths": _run(test_decision_engine_paths),
        "Cached Validation": _run(test_cached_validation),
        "Orchestrator Integration": _run(test_orchestrator_integration),
    }

    logger.info("\n" + "=" * 60)
    logger.info(" TEST RESULTS")
    logger.info("=" * 60)

    all_passed = True
    for name, passed in results.items():
        status = "PASS" if passed else "FAIL"
        icon = "+" if passed else "X"
        logger.info(f"  [{icon}] {name}: {status}")
        if not passed:
            all_passed = False

    passed_count = sum(1 for v in results.values() if v)
    logger.info(f"\n  {passed_count}/{len(results)} tests passed")
    logger.info("=" * 60)

    if all_passed:
        logger.info(" ALL TESTS PASSED")
    else:
        logger.error(" SOME TESTS FAILED")
        sys.exit(1)


if __name__ == "__main__":
    run_all_tests()
