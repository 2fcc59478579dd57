"""会话与消息的存储模型及 ConversationStore 抽象。

Conversation 独占其消息：消息只追加、不修改，会话只做软删除
（status 变为 deleted），本包从不物理删除数据。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .models import Role


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    status: ConversationStatus
    session_id: Optional[str]
    message_count: int
    last_activity_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MessageRecord:
    id: str
    conversation_id: str
    role: Role
    content: str
    token_count: int
    model_used: Optional[str]
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NewMessage:
    """追加消息时由调用方提供的数据，id/created_at 由存储层生成。"""

    role: Role
    content: str
    token_count: int
    model_used: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MessagePage:
    messages: List[MessageRecord]
    total: int
    total_pages: int
    page: int
    limit: int


@dataclass
class ConversationPage:
    conversations: List[Conversation]
    total: int
    total_pages: int
    page: int
    limit: int


@dataclass
class UserStats:
    total_conversations: int
    active_conversations: int
    total_messages: int


class ConversationStore(Protocol):
    """会话存储协议。

    实现者需要保证 add_message 的“追加 + message_count 自增 + 更新
    last_activity_at”是原子的；find_or_create 对同一个请求 id 只会创建
    一个会话。
    """

    def create(self, user_id: str, title: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> Conversation:
        ...

    def find_one(self, conversation_id: str) -> Optional[Conversation]:
        ...

    def find_or_create(self, conversation_id: Optional[str], user_id: str, title: str) -> Tuple[Conversation, bool]:
        ...

    def add_message(self, conversation_id: str, data: NewMessage) -> MessageRecord:
        ...

    def get_messages(self, conversation_id: str, page: int = 1, limit: int = 50) -> MessagePage:
        ...

    def get_recent_messages(self, conversation_id: str, limit: int) -> List[MessageRecord]:
        ...

    def update_last_activity(self, conversation_id: str) -> bool:
        ...

    def find_user_conversations(self, user_id: str, page: int = 1, limit: int = 20) -> ConversationPage:
        ...

    def archive(self, conversation_id: str, user_id: str) -> bool:
        ...

    def delete(self, conversation_id: str, user_id: str) -> bool:
        ...

    def update_title(self, conversation_id: str, user_id: str, title: str) -> bool:
        ...

    def get_user_stats(self, user_id: str) -> UserStats:
        ...
