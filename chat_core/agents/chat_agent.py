"""对话编排核心模块。

一次用户发言的处理顺序：确认 Provider 已配置 → 获取或新建会话 →
解析角色预设 → 先落库用户消息 → 取最近 N 条消息作为上下文 →
调用 Provider → 落库助手回复；调用失败时落库一条失败记录再抛出
ProcessingError。编排器自身不持有跨调用的状态，所有状态都在存储里。
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    Conversation,
    ConversationPage,
    ConversationStatus,
    ConversationStore,
    MessagePage,
    MessageRecord,
    NewMessage,
    UserStats,
)
from chat_core.domain.exceptions import (
    BusinessError,
    ConfigurationError,
    NotFoundError,
    ProcessingError,
    ProviderError,
    ValidationError,
)
from chat_core.domain.models import ChatMessage, ChatRequest, ChatResponse, ModelInfo, RoleConfig
from chat_core.domain.roles import RoleStore
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderAdapter, estimate_token_count, validate_generation_params
from chat_core.providers.retry import call_with_retry

FALLBACK_REPLY = "Sorry, something went wrong while processing your message. Please try again."


@dataclass
class OrchestratorConfig:
    max_context_messages: int = 20
    max_retries: int = 3  # 429 重试次数上限
    history_page_size: int = 50
    title_max_length: int = 50
    fallback_reply: str = FALLBACK_REPLY

    @classmethod
    def from_settings(cls, cfg=settings) -> "OrchestratorConfig":
        return cls(
            max_context_messages=cfg.max_context_messages,
            max_retries=cfg.rate_limit_max_retries,
            history_page_size=cfg.history_page_size,
            title_max_length=cfg.title_max_length,
        )


@dataclass
class SendMessageInput:
    """传输层交给编排器的一次用户发言。"""

    content: str
    conversation_id: Optional[str] = None
    role_id: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatTurnResult:
    message: MessageRecord
    conversation_id: str
    session_id: Optional[str]


@dataclass
class ConversationHistory:
    conversation: Conversation
    page: MessagePage


def make_title(content: str, max_length: int = 50) -> str:
    if len(content) > max_length:
        return content[:max_length] + "..."
    return content


class ChatOrchestrator:
    def __init__(
        self,
        store: ConversationStore,
        provider: ProviderAdapter,
        role_store: Optional[RoleStore] = None,
        config: Optional[OrchestratorConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._provider = provider
        self._roles = role_store
        self._config = config or OrchestratorConfig()
        self._sleep = sleep

    def send_message(self, user_id: str, data: SendMessageInput) -> ChatTurnResult:
        """处理一次用户发言并返回助手回复。

        Args:
            user_id: 调用方用户 ID（鉴权由外部完成）
            data: 发言内容与可选的会话/角色/生成参数

        Returns:
            ChatTurnResult，包含落库后的助手消息、会话 ID 与 session ID

        Raises:
            ConfigurationError: Provider 未配置，此时不会产生任何会话或消息
            ValidationError: 输入非法，同样不会产生副作用
            ProcessingError: Provider 调用失败，会话中已追加一条失败记录
        """
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "user_id": user_id,
            "provider": self._provider.get_provider_name(),
        }

        # 1. 配置检查（每次都重新判断，凭证可能随时被轮换）
        if not self._provider.is_configured():
            self._log(logging.ERROR, "Provider not configured", log_ctx)
            raise ConfigurationError(code="PROVIDER_NOT_CONFIGURED", message="AI service not configured")
        if not data.content or not data.content.strip():
            raise ValidationError(code="EMPTY_CONTENT", message="Message content cannot be empty")
        validate_generation_params(data.temperature, data.max_tokens)

        # 2. 获取或创建会话
        conv, created = self._store.find_or_create(
            data.conversation_id,
            user_id,
            make_title(data.content, self._config.title_max_length),
        )
        log_ctx["conversation_id"] = conv.id
        if created:
            self._log(
                logging.INFO,
                "Created new conversation",
                log_ctx,
                requested_id=data.conversation_id,
            )

        # 3. 角色预设：请求里的参数覆盖角色默认值
        role_config = self._resolve_role_config(data, log_ctx)

        # 4. 先落库用户消息
        user_rec = self._store.add_message(
            conv.id,
            NewMessage(
                role="user",
                content=data.content,
                token_count=estimate_token_count(data.content),
                metadata=dict(data.metadata or {}),
            ),
        )
        self._log(logging.INFO, "Stored user message", log_ctx, message_id=user_rec.id)

        # 5. 最近 N 条消息（按时间正序）作为上下文
        history = self._store.get_recent_messages(conv.id, self._config.max_context_messages)
        chat_messages: List[ChatMessage] = [ChatMessage(role=m.role, content=m.content) for m in history]

        req = ChatRequest(
            messages=chat_messages,
            model=data.model,
            temperature=data.temperature,
            max_tokens=data.max_tokens,
            session_id=conv.session_id,
            role_config=role_config,
        )

        # 6. 调用 Provider；8. 只有 Provider 调用失败才落库失败记录
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            model=data.model,
            message_count=len(chat_messages),
            role=role_config.name if role_config else None,
        )
        try:
            response = self._call_provider(req, log_ctx)
        except Exception as exc:
            self._record_failure(conv, exc, log_ctx)
            raise ProcessingError(
                code="AI_PROCESSING_FAILED",
                message="Error processing message with AI service",
                http_status=502,
                conversation_id=conv.id,
            ) from exc

        # 7. 落库助手回复；此后的存储错误原样抛出，不再追加失败记录
        assistant_rec = self._store.add_message(
            conv.id,
            NewMessage(
                role="assistant",
                content=response.message,
                token_count=response.token_count,
                model_used=response.model,
                metadata={
                    "provider": self._provider.get_provider_name(),
                    "finish_reason": response.finish_reason,
                    "usage": response.metadata.get("usage"),
                },
            ),
        )
        self._store.update_last_activity(conv.id)

        self._log(
            logging.INFO,
            "Processed chat message",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            user_message_id=user_rec.id,
            assistant_message_id=assistant_rec.id,
            token_count=response.token_count,
        )
        return ChatTurnResult(
            message=assistant_rec,
            conversation_id=conv.id,
            session_id=conv.session_id,
        )

    # ---- 会话读取与状态变更 ----

    def get_conversation_history(self, conversation_id: str) -> ConversationHistory:
        conv = self._require_conversation(conversation_id)
        page = self._store.get_messages(conversation_id, 1, self._config.history_page_size)
        return ConversationHistory(conversation=conv, page=page)

    def get_conversation_messages(self, conversation_id: str, page: int = 1, limit: int = 20) -> MessagePage:
        self._require_conversation(conversation_id)
        return self._store.get_messages(conversation_id, page, limit)

    def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        return self._store.create(user_id, title)

    def get_user_conversations(self, user_id: str, page: int = 1, limit: int = 20) -> ConversationPage:
        return self._store.find_user_conversations(user_id, page, limit)

    def archive_conversation(self, conversation_id: str, user_id: str) -> bool:
        return self._state_change("Archived conversation", self._store.archive(conversation_id, user_id), conversation_id, user_id)

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        return self._state_change("Deleted conversation", self._store.delete(conversation_id, user_id), conversation_id, user_id)

    def update_conversation_title(self, conversation_id: str, user_id: str, title: str) -> bool:
        if not title or not title.strip():
            raise ValidationError(code="EMPTY_TITLE", message="Title cannot be empty")
        return self._state_change(
            "Renamed conversation",
            self._store.update_title(conversation_id, user_id, title.strip()),
            conversation_id,
            user_id,
        )

    def get_user_stats(self, user_id: str) -> UserStats:
        return self._store.get_user_stats(user_id)

    def list_models(self) -> List[ModelInfo]:
        return self._provider.get_models()

    # ---- 内部方法 ----

    def _call_provider(self, req: ChatRequest, log_ctx: Dict[str, Any]) -> ChatResponse:
        def on_retry(error: ProviderError, attempt: int) -> None:
            self._log(
                logging.WARNING,
                "Rate limited, retrying",
                log_ctx,
                attempt=attempt,
                delay_ms=error.delay_ms,
            )

        return call_with_retry(
            lambda attempt: self._provider.send_message(req, attempt=attempt),
            max_retries=self._config.max_retries,
            sleep=self._sleep,
            on_retry=on_retry,
        )

    def _resolve_role_config(self, data: SendMessageInput, log_ctx: Dict[str, Any]) -> Optional[RoleConfig]:
        if not data.role_id or self._roles is None:
            return None
        role = self._roles.find_one(data.role_id)
        if role is None:
            self._log(logging.WARNING, "Role not found, continuing without it", log_ctx, role_id=data.role_id)
            return None
        defaults = role.configuration or {}
        self._roles.increment_usage_count(role.id)
        return RoleConfig(
            name=role.name,
            system_prompt=role.system_prompt,
            temperature=data.temperature if data.temperature is not None else defaults.get("temperature"),
            max_tokens=data.max_tokens if data.max_tokens is not None else defaults.get("maxTokens"),
        )

    def _record_failure(self, conv: Conversation, exc: Exception, log_ctx: Dict[str, Any]) -> None:
        """把失败写进会话，保证会话记录如实反映每一次尝试。"""

        kind = exc.kind.value if isinstance(exc, BusinessError) else type(exc).__name__
        logger.error(
            f"AI service error for conversation {conv.id}: {exc}",
            exc_info=exc,
            extra={"extra": {**log_ctx, "error_kind": kind}},
        )
        metadata: Dict[str, Any] = {
            "error": str(exc),
            "error_kind": kind,
            "provider": self._provider.get_provider_name(),
        }
        if isinstance(exc, ProviderError):
            metadata["status"] = exc.status
        try:
            self._store.add_message(
                conv.id,
                NewMessage(
                    role="assistant",
                    content=self._config.fallback_reply,
                    token_count=estimate_token_count(self._config.fallback_reply),
                    metadata=metadata,
                ),
            )
        except Exception as store_exc:
            logger.error(
                "Failed to store failure record",
                exc_info=store_exc,
                extra={"extra": {**log_ctx, "error": str(store_exc)}},
            )

    def _require_conversation(self, conversation_id: str) -> Conversation:
        conv = self._store.find_one(conversation_id)
        if conv is None or conv.status == ConversationStatus.DELETED:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message="Conversation not found")
        return conv

    def _state_change(self, message: str, ok: bool, conversation_id: str, user_id: str) -> bool:
        level = logging.INFO if ok else logging.WARNING
        suffix = "" if ok else " skipped (missing or not owned)"
        self._log(level, message + suffix, {"conversation_id": conversation_id, "user_id": user_id})
        return ok

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
