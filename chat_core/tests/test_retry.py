import pytest

from chat_core.domain.exceptions import (
    AuthenticationError,
    ErrorKind,
    PermissionDeniedError,
    ProviderError,
    RateLimitedError,
    RetryDecision,
    ServiceUnavailableError,
)
from chat_core.providers.retry import call_with_retry, classify_api_error


def test_classify_rate_limit_delays():
    delays = [classify_api_error(429, "slow down", attempt=a).delay_ms for a in range(3)]
    assert delays == [1000, 2000, 4000]
    last = classify_api_error(429, "slow down", attempt=3)
    assert isinstance(last, RateLimitedError)
    assert last.retryable is False


def test_classify_kinds():
    assert classify_api_error(401, "x").kind == ErrorKind.AUTHENTICATION
    assert isinstance(classify_api_error(403, "x"), PermissionDeniedError)
    assert classify_api_error(403, "x").kind.value == "PermissionError"
    assert isinstance(classify_api_error(500, "x"), ServiceUnavailableError)
    other = classify_api_error(418, "teapot", provider="deepseek")
    assert type(other) is ProviderError
    assert other.status == 418
    assert other.provider == "deepseek"
    assert "teapot" in other.message
    assert classify_api_error(None, "dns").code == "NETWORK_ERROR"


def test_retry_decision_exposes_structure():
    decision = classify_api_error(429, "x", attempt=1).retry_decision
    assert decision == RetryDecision(retryable=True, delay_ms=2000)
    assert classify_api_error(503, "x").retry_decision == RetryDecision(retryable=False)


def test_call_with_retry_sleeps_then_succeeds():
    slept = []
    attempts = []

    def fn(attempt):
        attempts.append(attempt)
        if attempt < 2:
            raise classify_api_error(429, "x", attempt=attempt)
        return "ok"

    assert call_with_retry(fn, max_retries=3, sleep=slept.append) == "ok"
    assert attempts == [0, 1, 2]
    assert slept == [1.0, 2.0]


def test_call_with_retry_surfaces_after_three_retries():
    slept = []

    def fn(attempt):
        raise classify_api_error(429, "x", attempt=attempt)

    with pytest.raises(RateLimitedError) as exc_info:
        call_with_retry(fn, max_retries=3, sleep=slept.append)
    assert slept == [1.0, 2.0, 4.0]
    assert exc_info.value.retryable is False


def test_call_with_retry_does_not_retry_auth_errors():
    calls = []

    def fn(attempt):
        calls.append(attempt)
        raise classify_api_error(401, "bad key", attempt=attempt)

    with pytest.raises(AuthenticationError):
        call_with_retry(fn, sleep=lambda s: pytest.fail("should not sleep"))
    assert calls == [0]
