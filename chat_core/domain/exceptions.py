"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一捕获与用户提示。每个异常类带有固定的 kind，
调用方可以直接按 kind 分支，而不需要匹配错误文本。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """错误种类枚举，取值与对外暴露的错误名称一致。"""

    BUSINESS = "BusinessError"
    CONFIGURATION = "ConfigurationError"
    VALIDATION = "ValidationError"
    NOT_FOUND = "NotFoundError"
    AUTHENTICATION = "AuthenticationError"
    PERMISSION = "PermissionError"
    RATE_LIMITED = "RateLimitedError"
    SERVICE_UNAVAILABLE = "ServiceUnavailableError"
    PROVIDER = "ProviderError"
    PROCESSING = "ProcessingError"


@dataclass(frozen=True)
class RetryDecision:
    """调用方据此决定是否以及多久之后重试。"""

    retryable: bool
    delay_ms: int = 0


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    kind = ErrorKind.BUSINESS

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "code": self.code, "message": self.message}


class ConfigurationError(BusinessError):
    """凭证缺失或配置非法，不可重试。"""

    kind = ErrorKind.CONFIGURATION


class ValidationError(BusinessError):
    """参数校验失败，调用方需要修正输入。"""

    kind = ErrorKind.VALIDATION


class NotFoundError(BusinessError):
    """会话、角色等资源不存在（或已被软删除）。"""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, code: str, message: str, http_status: int = 404, **extra):
        super().__init__(code, message, http_status, **extra)


class ProviderError(BusinessError):
    """Provider 调用失败的兜底错误（传输层错误或未分类的非 2xx）。

    Attributes:
        status: 上游 HTTP 状态码；传输层错误时为 None。
        retryable: 调用方是否可以在 delay_ms 之后重试。
        delay_ms: 建议的退避时间（毫秒）。
        provider: 出错的 Provider 名称。
    """

    kind = ErrorKind.PROVIDER

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 502,
        status: Optional[int] = None,
        retryable: bool = False,
        delay_ms: int = 0,
        provider: Optional[str] = None,
        **extra,
    ):
        super().__init__(code, message, http_status, **extra)
        self.status = status
        self.retryable = retryable
        self.delay_ms = delay_ms
        self.provider = provider

    @property
    def retry_decision(self) -> RetryDecision:
        return RetryDecision(retryable=self.retryable, delay_ms=self.delay_ms)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            {
                "status": self.status,
                "retryable": self.retryable,
                "delay_ms": self.delay_ms,
                "provider": self.provider,
            }
        )
        return data


class AuthenticationError(ProviderError):
    """Provider 拒绝了凭证（HTTP 401），不重试。"""

    kind = ErrorKind.AUTHENTICATION


class PermissionDeniedError(ProviderError):
    """Provider 拒绝了访问范围（HTTP 403），不重试。

    对外的 kind 为 "PermissionError"；类名避免覆盖内置的 PermissionError。
    """

    kind = ErrorKind.PERMISSION


class RateLimitedError(ProviderError):
    """Provider 限流（HTTP 429），由调用方负责退避重试。"""

    kind = ErrorKind.RATE_LIMITED


class ServiceUnavailableError(ProviderError):
    """Provider 5xx，调用方可以按自己的策略重试。"""

    kind = ErrorKind.SERVICE_UNAVAILABLE


class ProcessingError(BusinessError):
    """编排层在 Provider 出错之后抛给最终调用方的通用错误。

    对外只暴露通用提示，真实原因通过异常链 (__cause__) 和日志保留。
    """

    kind = ErrorKind.PROCESSING
