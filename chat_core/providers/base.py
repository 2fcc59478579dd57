"""Provider 抽象接口。

上层 ChatOrchestrator 不直接依赖具体厂商的 HTTP 调用，而是依赖此协议：

- 每个厂商实现一个适配器（如 DeepSeekClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResponse。

这样可以在不改编排代码的前提下接入更多厂商（OpenAI、Kimi 等）。
BaseProviderAdapter 提供与厂商无关的公共逻辑：请求校验、消息组装、
token 估算以及统一的错误分类。
"""

import logging
import math
from typing import Any, Dict, List, NoReturn, Optional, Protocol

from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import ChatRequest, ChatResponse, ModelInfo, RateLimitInfo
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.retry import classify_api_error


class ProviderAdapter(Protocol):
    """LLM Provider 适配器协议。

    实现者需要提供：
    - send_message(req, attempt): 执行一次非流式对话调用，返回统一的 ChatResponse。
    - get_models(): 尽力而为地返回模型列表，失败时退回静态目录。
    - get_provider_name / is_configured / get_rate_limit_info: 无副作用的查询。
    """

    def send_message(self, request: ChatRequest, attempt: int = 0) -> ChatResponse:
        ...

    def get_models(self) -> List[ModelInfo]:
        ...

    def get_provider_name(self) -> str:
        ...

    def is_configured(self) -> bool:
        ...

    def get_rate_limit_info(self) -> RateLimitInfo:
        ...


def estimate_token_count(text: str) -> int:
    """粗略估算 token 数：英文文本约 4 个字符 1 个 token。"""

    return math.ceil(len(text or "") / 4)


def validate_generation_params(temperature: Optional[float], max_tokens: Optional[int]) -> None:
    if temperature is not None and not 0 <= temperature <= 2:
        raise ValidationError(
            code="INVALID_TEMPERATURE",
            message="Temperature must be between 0 and 2",
        )
    if max_tokens is not None and max_tokens < 1:
        raise ValidationError(code="INVALID_MAX_TOKENS", message="Max tokens must be greater than 0")


class BaseProviderAdapter:
    """各厂商适配器共享的辅助方法。"""

    name = "base"

    def get_provider_name(self) -> str:
        return self.name

    def validate_request(self, request: ChatRequest) -> None:
        if not request.messages:
            raise ValidationError(code="EMPTY_MESSAGES", message="Messages array cannot be empty")
        validate_generation_params(request.temperature, request.max_tokens)
        if request.role_config is not None:
            validate_generation_params(request.role_config.temperature, request.role_config.max_tokens)

    def build_messages(self, request: ChatRequest) -> List[Dict[str, Any]]:
        """组装发给 Provider 的消息数组：角色预设的 system 消息在前，其余按原顺序。"""

        messages: List[Dict[str, Any]] = []
        if request.role_config is not None:
            messages.append({"role": "system", "content": request.role_config.system_prompt})
        messages.extend({"role": m.role, "content": m.content} for m in request.messages)
        return messages

    @staticmethod
    def estimate_token_count(text: str) -> int:
        return estimate_token_count(text)

    def handle_api_error(self, status: Optional[int], message: str, attempt: int = 0) -> NoReturn:
        """分类并抛出 Provider 错误；抛出前先记录日志。"""

        error = classify_api_error(status, message, attempt=attempt, provider=self.get_provider_name())
        level = logging.WARNING if error.retryable else logging.ERROR
        logger.log(
            level,
            f"API Error: {message}",
            extra={"extra": {
                "provider": self.get_provider_name(),
                "status": status,
                "attempt": attempt,
                "error_kind": error.kind.value,
                "retryable": error.retryable,
                "delay_ms": error.delay_ms,
            }},
        )
        raise error
