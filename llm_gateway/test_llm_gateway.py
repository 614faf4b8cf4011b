"""
Test suite for the llm_gateway package.

Covers:
    - Request/response models and cache-key derivation
    - RateLimiter budgets (simulated clock and wall clock)
    - PersistentCacheManager tiers, expiry and corruption handling
    - CachedLLMProvider hit/miss behavior
    - Provider fail-closed behavior, retries, SDK request shaping
    - Role resolution and factory fallback

No network access or API keys are needed; vendor SDK clients are mocked.

Usage:
    python -m llm_gateway.test_llm_gateway
    # or with pytest:
    pytest llm_gateway/test_llm_gateway.py
"""

import os
import sys
import json
import time
import shutil
import logging
import tempfile
import threading
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

# Ensure the parent directory is in the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from llm_gateway.base_provider import BaseLLMProvider
from llm_gateway.models import LLMRequest, LLMResponse

# Setup logging
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


# ============================================================
# Test Helpers
# ============================================================

class FakeProvider(BaseLLMProvider):
    """Provider double: counts calls, optionally fails the first N times."""

    PROVIDER_NAME = "fake"
    MODELS = ("fake-small", "fake-large")
    MODEL_ALIAS_MAP = {"fast": "fake-small", "standard": "fake-large", "premium": "fake-large"}

    def __init__(self, api_key="key", failures=0, error=ConnectionError("reset"), reply="ok", **kwargs):
        super().__init__(api_key=api_key, **kwargs)
        self.failures = failures
        self.error = error
        self.reply = reply
        self.calls = 0
        self._calls_lock = threading.Lock()

    def _create_client(self):
        return None

    def _send(self, request):
        with self._calls_lock:
            self.calls += 1
            call_no = self.calls
        if call_no <= self.failures:
            raise self.error
        return LLMResponse(content=f"{self.reply}:{request.model}", model=request.model,
                           prompt_tokens=10, completion_tokens=5, total_tokens=15)


class SimulatedClock:
    """Deterministic clock whose sleep() just advances time."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_request(user="Is this code vulnerable?", system="You are a C/C++ expert.",
                 model="fake-small", **kwargs):
    return LLMRequest.create(model=model, user=user, system=system, **kwargs)


# ============================================================
# Test 1: Models and cache keys
# ============================================================

def test_models_and_cache_key():
    logger.info("--- Test 1: Models and cache keys ---")

    from llm_gateway.models import Message, MessageRole
    from scan_engine.exceptions import ValidationError
    from scan_engine.utils import sha256_hex

    base = make_request(temperature=0.3, max_tokens=2000)
    same = make_request(temperature=0.3, max_tokens=8000, stream=True)
    assert base.cache_key() == same.cache_key(), "max_tokens/stream must not affect the key"
    assert base.cache_key() != make_request(user="Different?", temperature=0.3).cache_key()
    assert base.cache_key() != make_request(system="Other system", temperature=0.3).cache_key()
    assert base.cache_key() != make_request(temperature=0.31).cache_key()
    assert base.cache_key() != make_request(model="fake-large", temperature=0.3).cache_key()
    logger.info("  PASS: Cache key covers model/temperature/system/user only.")

    no_system = LLMRequest([Message.user("hi")], "m", temperature=0.5)
    expected_raw = f"model=m|temp=0.50|system=empty|user={sha256_hex('hi')}"
    assert no_system.cache_key() == sha256_hex(expected_raw)
    multi = LLMRequest([Message.user("a"), Message.assistant("x"), Message.user("b")], "m")
    assert multi.contents(MessageRole.USER) == ["a", "b"]
    assert multi.cache_key() == sha256_hex(
        f"model=m|temp=0.70|system=empty|user={sha256_hex('a|b')}"
    )
    logger.info("  PASS: Exact key layout.")

    assert LLMRequest([Message.user("x" * 100)], "m").estimate_tokens() == 30
    for bad in (([], "m"), ([Message.user("x")], "")):
        try:
            LLMRequest(*bad)
        except ValidationError:
            pass
        else:
            raise AssertionError(f"LLMRequest{bad} should fail")

    response = LLMResponse(content="hello", model="m", prompt_tokens=1, total_tokens=3)
    assert LLMResponse.from_dict(json.loads(json.dumps(response.to_dict()))) == response
    failed = LLMResponse.failure("nope", model="m", provider="p")
    assert not failed.success and failed.error == "nope"
    assert MessageRole.from_string("System") == MessageRole.SYSTEM
    logger.info("PASS: Model tests passed.")


# ============================================================
# Test 2: Rate limiter
# ============================================================

def test_rate_limiter():
    logger.info("--- Test 2: Rate limiter ---")

    from llm_gateway.rate_limiter import RateLimiter
    from scan_engine.config import ScanEngineConfig
    from scan_engine.metrics import MetricsCollector

    clock = SimulatedClock()
    limiter = RateLimiter(10.0, capacity=1, clock=clock.time, sleep=clock.sleep,
                          metrics=MetricsCollector())
    for _ in range(6):
        limiter.acquire()
    # (N - burst) / R = (6 - 1) / 10
    assert 0.5 - 1e-9 <= clock.now < 0.6, f"expected ~0.5s, got {clock.now}"
    logger.info(f"  PASS: Simulated budget respected ({clock.now:.3f}s).")

    oversized = RateLimiter(10.0, capacity=5, clock=clock.time, sleep=clock.sleep,
                            metrics=MetricsCollector())
    oversized.acquire(50)
    assert oversized.capacity == 50, "a single large call must be able to proceed"

    real = RateLimiter(20.0, capacity=1, metrics=MetricsCollector())
    start = time.monotonic()
    threads = [threading.Thread(target=real.acquire) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    elapsed = time.monotonic() - start
    assert elapsed >= (5 - 1) / 20.0 - 0.02, f"5 concurrent permits finished in {elapsed:.3f}s"
    logger.info(f"  PASS: Concurrent budget respected ({elapsed:.3f}s).")

    qps = RateLimiter.from_config(ScanEngineConfig(requests_per_second=5, safety_margin=0.8))
    assert abs(qps.rate - 4.0) < 1e-9 and qps.permits_for(make_request()) == 1
    tpm = RateLimiter.from_config(ScanEngineConfig(rate_limit_mode="tpm", tokens_per_minute=60000))
    assert abs(tpm.rate - 800.0) < 1e-9
    request = LLMRequest.create(model="m", user="x" * 400)
    assert tpm.permits_for(request) == 120
    logger.info("PASS: Rate limiter tests passed.")


# ============================================================
# Test 3: Persistent cache
# ============================================================

def test_cache_manager():
    logger.info("--- Test 3: Persistent cache ---")

    from llm_gateway.cache_manager import PersistentCacheManager
    from llm_gateway.exceptions import CacheError
    from scan_engine.metrics import MetricsCollector
    from scan_engine.utils import sha256_hex

    with tempfile.TemporaryDirectory() as tmpdir:
        key = sha256_hex("request-1")
        cache = PersistentCacheManager(tmpdir, "unit", metrics=MetricsCollector())
        assert cache.get(key) is None
        cache.put(key, "payload-1")
        assert cache.get(key) == "payload-1"
        cache_file = Path(tmpdir) / "unit" / f"{key}.cache"
        assert cache_file.read_text(encoding="utf-8") == "payload-1"
        logger.info("  PASS: put/get round trip, L2 layout.")

        fresh = PersistentCacheManager(tmpdir, "unit", metrics=MetricsCollector())
        assert fresh.get(key) == "payload-1"
        assert fresh.get(key) == "payload-1"
        stats = fresh.stats()
        assert stats["l2_hits"] == 1 and stats["l1_hits"] == 1 and stats["l1_size"] == 1
        logger.info("  PASS: L2 hit promoted to L1.")

        cache_file.write_bytes(b"\xff\xfe\x00bad")
        other = PersistentCacheManager(tmpdir, "unit", metrics=MetricsCollector())
        assert other.get(key) is None, "unreadable entry is a miss"
        assert not cache_file.exists(), "unreadable entry is deleted"

        other.put(key, "payload-2")
        old = time.time() - 8 * 24 * 3600
        os.utime(cache_file, (old, old))
        aged = PersistentCacheManager(tmpdir, "unit", metrics=MetricsCollector())
        assert aged.get(key) is None and not cache_file.exists()
        logger.info("  PASS: Corrupt and expired L2 entries are misses.")

        clock = SimulatedClock()
        small = PersistentCacheManager(tmpdir, "small", l1_max_size=2, l1_ttl_seconds=10,
                                       persistent=False, clock=clock.time,
                                       metrics=MetricsCollector())
        for n in range(3):
            small.put(sha256_hex(str(n)), str(n))
        assert small.stats()["l1_size"] == 2
        assert small.get(sha256_hex("0")) is None, "oldest entry evicted"
        clock.now += 11
        assert small.get(sha256_hex("2")) is None, "L1 TTL expired"
        logger.info("  PASS: L1 bound and TTL.")

        assert cache.clear() >= 0
        assert cache.get(key) is None

        broken = PersistentCacheManager(tmpdir, "broken", metrics=MetricsCollector())
        shutil.rmtree(broken.l2_path)
        broken.l2_path.write_text("not a directory")
        try:
            broken.put(key, "value")
        except CacheError as e:
            assert e.details["operation"] == "write"
        else:
            raise AssertionError("L2 write failure must raise CacheError")
        assert broken.get(key) == "value", "L1 still serves the value"
    logger.info("PASS: Cache manager tests passed.")


# ============================================================
# Test 4: Cached provider
# ============================================================

def test_cached_provider():
    logger.info("--- Test 4: Cached provider ---")

    from llm_gateway.cache_manager import PersistentCacheManager
    from llm_gateway.cached_provider import CachedLLMProvider

    with tempfile.TemporaryDirectory() as tmpdir:
        cache = PersistentCacheManager(tmpdir, "llm")
        delegate = FakeProvider(max_retries=1)
        provider = CachedLLMProvider(delegate, cache)
        assert provider.name == "fake (cached)"

        # Scenario: same request twice -> one delegate call
        first = provider.send_request(make_request())
        second = provider.send_request(make_request(max_tokens=50))
        assert delegate.calls == 1
        assert first.content == second.content == "ok:fake-small"
        logger.info("  PASS: Second identical request served from cache.")

        aliased = provider.send_request(make_request(model="fast"))
        assert delegate.calls == 1, "aliases resolve before keying"
        assert aliased.content == first.content

        key = make_request().cache_key()
        cache.put(key, json.dumps({"no_content": True}))
        third = provider.send_request(make_request())
        assert delegate.calls == 2, "corrupt payload is a miss"
        assert third.success

        failing = CachedLLMProvider(FakeProvider(failures=5, error=ValueError("bad"), max_retries=1), cache)
        req = make_request(user="never cached")
        assert not failing.send_request(req).success
        assert cache.get(req.cache_key()) is None, "failed responses are not cached"
        assert provider.get_cache_stats()["hits"] >= 2
    logger.info("PASS: Cached provider tests passed.")


# ============================================================
# Test 5: Providers
# ============================================================

def test_provider_fail_closed_and_retries():
    logger.info("--- Test 5: Provider fail-closed behavior and retries ---")

    from llm_gateway.openai_provider import OpenAIProvider
    from llm_gateway.rate_limiter import RateLimiter
    from scan_engine.metrics import MetricsCollector

    no_key = OpenAIProvider(api_key="")
    assert not no_key.is_available()
    response = no_key.send_request(make_request(model="gpt-4"))
    assert not response.success and "not available" in response.error
    logger.info("  PASS: Missing credentials -> failed response.")

    unsupported = FakeProvider().send_request(make_request(model="gpt-4"))
    assert not unsupported.success and "not supported" in unsupported.error

    clock = SimulatedClock()
    limiter = RateLimiter(100.0, clock=clock.time, sleep=clock.sleep, metrics=MetricsCollector())
    with mock.patch.object(limiter, "acquire", wraps=limiter.acquire) as acquire:
        flaky = FakeProvider(failures=1, max_retries=2, rate_limiter=limiter)
        result = flaky.send_request(make_request(model="standard"))
        assert result.success and result.content == "ok:fake-large"
        assert flaky.calls == 2
        assert acquire.call_count == 2, "every attempt draws from the limiter"
    logger.info("  PASS: Retryable error retried, limiter consulted per attempt.")

    fatal = FakeProvider(failures=1, error=ValueError("malformed"), max_retries=3)
    result = fatal.send_request(make_request())
    assert not result.success and "malformed" in result.error
    assert fatal.calls == 1, "non-retryable errors are not retried"

    exhausted = FakeProvider(failures=10, max_retries=1)
    result = exhausted.send_request(make_request())
    assert not result.success and "reset" in result.error
    logger.info("PASS: Provider behavior tests passed.")


def test_sdk_request_shaping():
    logger.info("--- Test 6: Vendor SDK request shaping ---")

    from llm_gateway.openai_provider import OpenAIProvider, SiliconFlowProvider
    from llm_gateway.claude_provider import ClaudeProvider

    openai_provider = OpenAIProvider(api_key="sk-test", max_retries=1)
    openai_provider._client = mock.MagicMock()
    openai_provider._client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="{\"ok\": true}"))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4, total_tokens=16),
        model="gpt-4",
    )
    response = openai_provider.send_request(make_request(model="gpt-4", temperature=0.3))
    assert response.success and response.content == "{\"ok\": true}"
    assert response.total_tokens == 16 and response.provider == "openai"
    kwargs = openai_provider._client.chat.completions.create.call_args.kwargs
    assert kwargs["messages"][0] == {"role": "system", "content": "You are a C/C++ expert."}
    assert kwargs["temperature"] == 0.3
    logger.info("  PASS: OpenAI chat-completions call shaped correctly.")

    silicon = SiliconFlowProvider(api_key="sf")
    assert silicon.base_url == "https://api.siliconflow.cn/v1"
    assert silicon.resolve_model("standard") == "Qwen/Qwen2.5-72B-Instruct"

    claude = ClaudeProvider(api_key="sk-ant", max_retries=1)
    claude._client = mock.MagicMock()
    claude._client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(type="text", text="fixed "), SimpleNamespace(type="text", text="code")],
        usage=SimpleNamespace(input_tokens=20, output_tokens=7),
        model="claude-3-sonnet-20240229",
    )
    response = claude.send_request(make_request(model="standard", max_tokens=8000))
    assert response.content == "fixed code" and response.total_tokens == 27
    kwargs = claude._client.messages.create.call_args.kwargs
    assert kwargs["system"] == "You are a C/C++ expert."
    assert all(m["role"] != "system" for m in kwargs["messages"])
    assert kwargs["model"] == "claude-3-sonnet-20240229" and kwargs["max_tokens"] == 8000
    logger.info("PASS: SDK shaping tests passed.")


# ============================================================
# Test 7: Roles and factory
# ============================================================

def test_roles_and_factory():
    logger.info("--- Test 7: Roles and factory ---")

    from llm_gateway.factory import ProviderFactory, parse_provider_model, resolve_role
    from llm_gateway.client import LLMClient, extract_json_object
    from llm_gateway.exceptions import LLMResponseError, ProviderUnavailableError
    from scan_engine.config import ScanEngineConfig
    from scan_engine.exceptions import ConfigError

    defaults = ScanEngineConfig()
    assert resolve_role("analyzer", defaults) == ("openai", "gpt-3.5-turbo")
    assert resolve_role("planner", defaults) == ("claude", "claude-3-sonnet-20240229")
    assert resolve_role("coder", defaults) == ("claude", "claude-3-sonnet-20240229")
    assert resolve_role("reviewer", defaults) == ("claude", "claude-3-opus-20240229")

    overridden = ScanEngineConfig(role_overrides={"coder": "openai::gpt-4", "reviewer": "claude::fast"})
    assert resolve_role("coder", overridden) == ("openai", "gpt-4")
    assert resolve_role("reviewer", overridden) == ("claude", "claude-3-haiku-20240307")
    try:
        parse_provider_model("gpt-4")
    except ConfigError:
        pass
    else:
        raise AssertionError("missing '::' must raise ConfigError")
    logger.info("  PASS: Role resolution defaults, overrides and aliases.")

    with tempfile.TemporaryDirectory() as tmpdir:
        config = ScanEngineConfig(openai_api_key="sk-test", cache_dir=tmpdir, max_retries=1)
        factory = ProviderFactory.create_default(config)
        assert factory.provider_names == ["openai", "claude", "siliconflow"]
        assert factory.available_providers() == ["openai"]
        assert factory.get_provider("OpenAI").name == "openai (cached)"

        provider, model = factory.get_provider_for_role("coder")
        assert provider.name == "openai (cached)"
        assert model == "gpt-4-turbo-preview", "fallback uses the provider's standard model"
        try:
            factory.get_provider("nhh")
        except ProviderUnavailableError:
            pass
        else:
            raise AssertionError("unknown provider must raise")
        logger.info("  PASS: Factory fallback to the first available provider.")

        nothing = ProviderFactory.create_default(ScanEngineConfig(cache_enabled=False))
        client = LLMClient(nothing)
        assert not client.is_available()
        response = client.complete("analyzer", "hello")
        assert not response.success
        try:
            client.complete_text("analyzer", "hello")
        except ProviderUnavailableError:
            pass
        else:
            raise AssertionError("complete_text must raise on a failed response")

    assert extract_json_object('```json\n{"is_vulnerability": true}\n```') == {"is_vulnerability": True}
    assert extract_json_object('Sure! {"a": 1} hope that helps')["a"] == 1
    try:
        extract_json_object("no json here")
    except LLMResponseError:
        pass
    else:
        raise AssertionError("missing JSON must raise LLMResponseError")
    logger.info("PASS: Roles and factory tests passed.")


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
    logger.info(" llm_gateway Test Suite")
    logger.info("=" * 60)

    results = {
        "Models & Cache Keys": _run(test_models_and_cache_key),
        "Rate Limiter": _run(test_rate_limiter),
        "Cache Manager": _run(test_cache_manager),
        "Cached Provider": _run(test_cached_provider),
        "Fail-Closed & Retries": _run(test_provider_fail_closed_and_retries),
        "SDK Request Shaping": _run(test_sdk_request_shaping),
        "Roles & Factory": _run(test_roles_and_factory),
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
