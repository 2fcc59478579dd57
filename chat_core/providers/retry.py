"""Provider 错误分类与重试策略。

所有适配器共用同一套规则：

- 429：可重试，退避 2^attempt * 1000ms，attempt 达到 3 后直接失败；
- 401：AuthenticationError，不重试；
- 403：PermissionDeniedError，不重试；
- >=500：ServiceUnavailableError，本模块不自动重试；
- 其他非 2xx 或传输层错误：ProviderError。

适配器本身不做循环，只在每次调用时抛出带 retryable/delay_ms 的错误；
重试循环与计数由调用方持有，见 call_with_retry。
"""

import time
from typing import Callable, Optional, TypeVar

from chat_core.domain.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    ProviderError,
    RateLimitedError,
    RetryDecision,
    ServiceUnavailableError,
)

T = TypeVar("T")

MAX_RATE_LIMIT_ATTEMPTS = 3
BASE_DELAY_MS = 1000


def backoff_delay_ms(attempt: int) -> int:
    return (2 ** attempt) * BASE_DELAY_MS


def decide_retry(status: Optional[int], attempt: int) -> RetryDecision:
    if status == 429 and attempt < MAX_RATE_LIMIT_ATTEMPTS:
        return RetryDecision(retryable=True, delay_ms=backoff_delay_ms(attempt))
    return RetryDecision(retryable=False)


def classify_api_error(
    status: Optional[int],
    message: str,
    attempt: int = 0,
    provider: Optional[str] = None,
) -> ProviderError:
    """把上游状态码映射为带重试信息的 ProviderError 子类（只构造，不抛出）。"""

    decision = decide_retry(status, attempt)
    common = dict(
        status=status,
        retryable=decision.retryable,
        delay_ms=decision.delay_ms,
        provider=provider,
    )
    if status == 429:
        if decision.retryable:
            text = f"Rate limited, retry in {decision.delay_ms}ms"
        else:
            text = f"Rate limit persisted after {attempt} retries"
        return RateLimitedError(code="RATE_LIMIT", message=text, http_status=429, **common)
    if status == 401:
        return AuthenticationError(
            code="AUTHENTICATION_FAILED",
            message="Invalid API key or authentication failed",
            **common,
        )
    if status == 403:
        return PermissionDeniedError(
            code="PERMISSION_DENIED",
            message="Access forbidden - check API permissions",
            **common,
        )
    if status is not None and status >= 500:
        return ServiceUnavailableError(
            code="SERVICE_UNAVAILABLE",
            message="AI service temporarily unavailable",
            http_status=503,
            **common,
        )
    code = "NETWORK_ERROR" if status is None else "API_ERROR"
    return ProviderError(code=code, message=f"AI service error: {message}", **common)


def call_with_retry(
    fn: Callable[[int], T],
    max_retries: int = MAX_RATE_LIMIT_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[ProviderError, int], None]] = None,
) -> T:
    """调用方持有的重试循环。

    fn 接收当前 attempt（从 0 开始）；只有 retryable 的 ProviderError
    会触发退避重试，其余异常原样抛出。超过 max_retries 后抛出最后一次错误。
    """

    attempt = 0
    while True:
        try:
            return fn(attempt)
        except ProviderError as e:
            if not e.retryable or attempt >= max_retries:
                raise
            if on_retry is not None:
                on_retry(e, attempt)
            sleep(e.delay_ms / 1000)
            attempt += 1
