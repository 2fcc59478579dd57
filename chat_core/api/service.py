"""对外 API 服务模块。

提供简化的函数接口供传输层（HTTP 路由等）调用，返回可直接序列化的 dict。
"""

from typing import Any, Dict, List, Optional

from chat_core.agents.chat_agent import (
    ChatOrchestrator,
    ChatTurnResult,
    OrchestratorConfig,
    SendMessageInput,
)
from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore, MessageRecord
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.roles import Role
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.infrastructure.storage.role_store import JsonRoleStore
from chat_core.providers import create_provider


_store: Optional[ConversationStore] = None
_role_store: Optional[JsonRoleStore] = None
_orchestrator: Optional[ChatOrchestrator] = None


def get_default_orchestrator() -> ChatOrchestrator:
    """获取默认的 ChatOrchestrator 实例（单例）。"""
    global _store, _role_store, _orchestrator
    if _store is None:
        _store = JsonConversationStore(root=settings.storage_root)
    if _role_store is None:
        _role_store = JsonRoleStore(root=settings.storage_root)
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator(
            store=_store,
            provider=create_provider(),
            role_store=_role_store,
            config=OrchestratorConfig.from_settings(settings),
        )
    return _orchestrator


def get_default_role_store() -> JsonRoleStore:
    get_default_orchestrator()
    return _role_store


def reset_defaults() -> None:
    """丢弃已缓存的单例（配置变更后或测试中使用）。"""
    global _store, _role_store, _orchestrator
    _store = None
    _role_store = None
    _orchestrator = None


def send_message(
    user_id: str,
    content: str,
    conversation_id: Optional[str] = None,
    role_id: Optional[str] = None,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """发送一条消息并返回助手回复。

    Args:
        user_id: 已鉴权的用户ID
        content: 消息内容
        conversation_id: 会话ID（可选，不提供或不存在则创建新会话）
        role_id: 角色预设ID（可选）
        model / temperature / max_tokens: 生成参数（可选）
        metadata: 随用户消息保存的元数据（可选）

    Returns:
        {"message": {...}, "conversation_id": ..., "session_id": ...}

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        result = get_default_orchestrator().send_message(
            user_id,
            SendMessageInput(
                content=content,
                conversation_id=conversation_id,
                role_id=role_id,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                metadata=metadata or {},
            ),
        )
    except BusinessError as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "conversation_id": conversation_id,
            "error_kind": e.kind.value,
            "error": str(e),
        }})
        raise
    return turn_to_dict(result)


def get_conversation_history(conversation_id: str) -> Dict[str, Any]:
    history = get_default_orchestrator().get_conversation_history(conversation_id)
    page = history.page
    return {
        "conversation": conversation_to_dict(history.conversation),
        "messages": [message_to_dict(m) for m in page.messages],
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "total_pages": page.total_pages,
        },
    }


def list_conversations(user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    result = get_default_orchestrator().get_user_conversations(user_id, page, limit)
    return {
        "conversations": [conversation_to_dict(c) for c in result.conversations],
        "total": result.total,
        "total_pages": result.total_pages,
        "pagination": {"page": result.page, "limit": result.limit, "total_pages": result.total_pages},
    }


def create_conversation(user_id: str, title: Optional[str] = None) -> Dict[str, Any]:
    return conversation_to_dict(get_default_orchestrator().create_conversation(user_id, title))


def archive_conversation(conversation_id: str, user_id: str) -> bool:
    return get_default_orchestrator().archive_conversation(conversation_id, user_id)


def delete_conversation(conversation_id: str, user_id: str) -> bool:
    return get_default_orchestrator().delete_conversation(conversation_id, user_id)


def rename_conversation(conversation_id: str, user_id: str, title: str) -> bool:
    return get_default_orchestrator().update_conversation_title(conversation_id, user_id, title)


def get_user_stats(user_id: str) -> Dict[str, int]:
    stats = get_default_orchestrator().get_user_stats(user_id)
    return {
        "total_conversations": stats.total_conversations,
        "active_conversations": stats.active_conversations,
        "total_messages": stats.total_messages,
    }


def list_models() -> List[Dict[str, Any]]:
    return [
        {
            "id": m.id,
            "name": m.name,
            "provider": m.provider,
            "context_window": m.context_window,
            "supports_streaming": m.supports_streaming,
        }
        for m in get_default_orchestrator().list_models()
    ]


def list_roles() -> List[Dict[str, Any]]:
    return [role_to_dict(r) for r in get_default_role_store().find_all()]


# ---- 序列化 ----

def turn_to_dict(result: ChatTurnResult) -> Dict[str, Any]:
    return {
        "message": message_to_dict(result.message),
        "conversation_id": result.conversation_id,
        "session_id": result.session_id,
    }


def message_to_dict(m: MessageRecord) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "token_count": m.token_count,
        "model_used": m.model_used,
        "created_at": m.created_at.isoformat(),
        "metadata": m.metadata,
    }


def conversation_to_dict(c: Conversation) -> Dict[str, Any]:
    return {
        "id": c.id,
        "user_id": c.user_id,
        "title": c.title,
        "status": c.status.value,
        "session_id": c.session_id,
        "message_count": c.message_count,
        "last_activity_at": c.last_activity_at.isoformat() if c.last_activity_at else None,
        "created_at": c.created_at.isoformat(),
        "updated_at": c.updated_at.isoformat(),
    }


def role_to_dict(r: Role) -> Dict[str, Any]:
    return {
        "id": r.id,
        "name": r.name,
        "description": r.description,
        "type": r.type.value,
        "system_prompt": r.system_prompt,
        "configuration": r.configuration,
        "usage_count": r.usage_count,
    }
