"""DeepSeek Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest 并做参数校验。
2. 将其转换为 DeepSeek（OpenAI 兼容）的 HTTP API 请求格式。
3. 调用 HTTP 接口，把非 2xx 响应和网络异常交给统一的错误分类。
4. 将响应 JSON 解析为统一的 ChatResponse 结构。

接口约定：
- URL: {base_url}/chat/completions、{base_url}/models
- 认证: Authorization: Bearer <api_key>
"""

from typing import Any, Callable, Dict, List, Optional

import httpx

from chat_core.config.credentials import resolve_credential
from chat_core.config.settings import settings
from chat_core.domain.exceptions import ConfigurationError, ProviderError
from chat_core.domain.models import ChatRequest, ChatResponse, ModelInfo, RateLimitInfo
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import BaseProviderAdapter
from chat_core.providers.registry import DEEPSEEK_CONFIG

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


class DeepSeekClient(BaseProviderAdapter):
    """DeepSeek 提供方适配器实现。

    - name: Provider 名称（供日志/元数据使用）。
    - send_message: 对外统一调用入口，返回 ChatResponse。
    """

    name = "deepseek"

    def __init__(self, cfg=settings, credential_resolver: Callable[[str], Optional[str]] = resolve_credential):
        # Settings 里包含 base_url、超时等配置；API 密钥每次调用时重新解析
        self._settings = cfg
        self._resolve_credential = credential_resolver

    # ---- 查询 ----

    def is_configured(self) -> bool:
        return bool(self._api_key())

    def get_rate_limit_info(self) -> RateLimitInfo:
        return RateLimitInfo(
            requests_per_minute=DEEPSEEK_CONFIG.requests_per_minute,
            requests_per_hour=DEEPSEEK_CONFIG.requests_per_hour,
        )

    def get_default_model(self) -> str:
        return getattr(self._settings, "default_model", None) or DEEPSEEK_CONFIG.default_model

    def get_api_base_url(self) -> str:
        base = getattr(self._settings, "deepseek_base_url", None) or DEEPSEEK_CONFIG.base_url
        return base.rstrip("/")

    # ---- 对话 ----

    def send_message(self, request: ChatRequest, attempt: int = 0) -> ChatResponse:
        """执行一次非流式对话调用。

        步骤：
        1. 校验请求并确认凭证存在（两者都发生在任何网络 I/O 之前）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求，非 2xx/网络错误交给 handle_api_error 分类。
        4. 解析响应，构造 ChatResponse。

        attempt 由调用方的重试循环传入，仅用于计算 429 的退避时间。
        """

        self.validate_request(request)
        api_key = self._api_key()
        if not api_key:
            raise ConfigurationError(code="MISSING_API_KEY", message="DEEPSEEK_API_KEY not set")

        payload = self._build_payload(request)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self.get_api_base_url()}/chat/completions",
                    json=payload,
                    headers=self._headers(api_key),
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            self.handle_api_error(None, str(e), attempt)
        if not 200 <= resp.status_code < 300:
            self.handle_api_error(resp.status_code, resp.text or f"HTTP {resp.status_code}", attempt)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(
                code="INVALID_RESPONSE",
                message=f"AI service returned invalid JSON: {e}",
                status=resp.status_code,
                provider=self.name,
            ) from e
        return self._parse_response(data, payload["model"])

    def get_models(self) -> List[ModelInfo]:
        """拉取模型列表；任何传输失败都退回静态兜底目录。"""

        api_key = self._api_key()
        if not api_key:
            raise ConfigurationError(code="MISSING_API_KEY", message="DEEPSEEK_API_KEY not set")
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.get(f"{self.get_api_base_url()}/models", headers=self._headers(api_key))
        except httpx.RequestError as e:
            return self._fallback_with_warning(f"Failed to fetch DeepSeek models: {e}")
        if not 200 <= resp.status_code < 300:
            return self._fallback_with_warning(f"Failed to fetch DeepSeek models: HTTP {resp.status_code}")
        try:
            entries = (resp.json() or {}).get("data") or []
        except (ValueError, AttributeError) as e:
            return self._fallback_with_warning(f"Unexpected DeepSeek models payload: {e}")

        models = [
            ModelInfo(
                id=entry["id"],
                name=entry["id"],
                provider=self.name,
                context_window=DEEPSEEK_CONFIG.context_window_for(entry["id"]),
                supports_streaming=True,
            )
            for entry in entries
            if isinstance(entry, dict) and entry.get("id")
        ]
        if not models:
            return self._fallback_with_warning("DeepSeek returned an empty model catalog")
        return models

    # ---- 辅助方法 ----

    def _api_key(self) -> Optional[str]:
        return self._resolve_credential(self.name)

    @staticmethod
    def _headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成 DeepSeek 所需的请求 JSON。

        temperature / max_tokens 的优先级：请求 > 角色预设 > 默认值。
        """

        role_cfg = request.role_config
        temperature = request.temperature
        if temperature is None and role_cfg is not None:
            temperature = role_cfg.temperature
        max_tokens = request.max_tokens
        if max_tokens is None and role_cfg is not None:
            max_tokens = role_cfg.max_tokens
        return {
            "model": request.model or self.get_default_model(),
            "messages": self.build_messages(request),
            "temperature": DEFAULT_TEMPERATURE if temperature is None else temperature,
            "max_tokens": DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens,
            "stream": False,
        }

    def _parse_response(self, data: Dict[str, Any], requested_model: str) -> ChatResponse:
        """将 DeepSeek 的原始响应 JSON 解析为统一的 ChatResponse。"""

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices, list):
            raise self._invalid_response("AI service returned no choices")
        try:
            first = choices[0] or {}
            content = (first.get("message") or {}).get("content") or ""
            if not isinstance(content, str):
                raise TypeError(f"content is {type(content).__name__}")
            usage = data.get("usage") or None
            total_tokens = (usage or {}).get("total_tokens")
            token_count = int(total_tokens) if total_tokens else self.estimate_token_count(content)
            finish_reason = first.get("finish_reason") or "unknown"
        except (AttributeError, TypeError, ValueError) as e:
            raise self._invalid_response(f"AI service returned a malformed response: {e}") from e
        model = data.get("model") or requested_model
        return ChatResponse(
            message=content,
            model=model,
            token_count=token_count,
            finish_reason=finish_reason,
            metadata={
                "provider": self.name,
                "model": model,
                "usage": usage,
            },
        )

    def _invalid_response(self, message: str) -> ProviderError:
        return ProviderError(code="INVALID_RESPONSE", message=message, status=200, provider=self.name)

    def _fallback_with_warning(self, message: str) -> List[ModelInfo]:
        logger.warning(message, extra={"extra": {"provider": self.name}})
        return [
            ModelInfo(
                id=m.id,
                name=m.name,
                provider=self.name,
                context_window=m.context_window,
                supports_streaming=m.supports_streaming,
            )
            for m in DEEPSEEK_CONFIG.fallback_models
        ]
