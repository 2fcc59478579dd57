import json
import math
import os
import re
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
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
from chat_core.domain.exceptions import BusinessError, NotFoundError, ValidationError
from chat_core.infrastructure.logging.logger import logger

_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

_LOCKS: Dict[Path, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _root_lock(root: Path) -> threading.RLock:
    # 同一存储目录在进程内共用一把锁
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(root, threading.RLock())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def _paginate(total: int, page: int, limit: int) -> Tuple[int, int]:
    if page < 1 or limit < 1:
        raise ValidationError(code="INVALID_PAGINATION", message="page and limit must be >= 1")
    return (page - 1) * limit, math.ceil(total / limit)


class JsonConversationStore(ConversationStore):
    """基于本地 JSON 文件的会话存储。

    目录结构：<root>/conversations/<conversation_id>/meta.json + messages.jsonl。
    meta.json 通过临时文件 + os.replace 原子替换；所有写操作在同一把锁内完成。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._lock = _root_lock(self._root)

    # ---- 会话 ----

    def create(self, user_id: str, title: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> Conversation:
        with self._lock:
            return self._create_locked(user_id, title, meta)

    def find_one(self, conversation_id: str) -> Optional[Conversation]:
        conv = self._read(conversation_id)
        if conv is None or conv.status == ConversationStatus.DELETED:
            return None
        return conv

    def find_or_create(self, conversation_id: Optional[str], user_id: str, title: str) -> Tuple[Conversation, bool]:
        """“继续或新建”的原子操作。

        请求的 id 不存在时会新建一个会话，并把请求 id 记在 meta.requested_id 上，
        同一个请求 id 之后再来时会落到这次新建的会话上，而不是再建一个。
        属于其他用户的会话按“不存在”处理，两条查找路径都只返回调用方自己的会话。
        """

        with self._lock:
            if conversation_id:
                conv = self.find_one(conversation_id)
                if (
                    conv is not None
                    and conv.status == ConversationStatus.ACTIVE
                    and conv.user_id == user_id
                ):
                    return conv, False
                for candidate in self._iter_conversations():
                    if (
                        candidate.meta.get("requested_id") == conversation_id
                        and candidate.status == ConversationStatus.ACTIVE
                        and candidate.user_id == user_id
                    ):
                        return candidate, False
            meta = {"requested_id": conversation_id} if conversation_id else None
            return self._create_locked(user_id, title, meta), True

    def update_last_activity(self, conversation_id: str) -> bool:
        with self._lock:
            conv = self._read(conversation_id)
            if conv is None:
                return False
            now = _utcnow()
            conv.last_activity_at = now
            conv.updated_at = now
            self._write_meta(conv)
            return True

    def find_user_conversations(self, user_id: str, page: int = 1, limit: int = 20) -> ConversationPage:
        items = [
            c
            for c in self._iter_conversations()
            if c.user_id == user_id and c.status == ConversationStatus.ACTIVE
        ]
        items.sort(key=lambda c: c.last_activity_at or c.created_at, reverse=True)
        offset, total_pages = _paginate(len(items), page, limit)
        return ConversationPage(
            conversations=items[offset:offset + limit],
            total=len(items),
            total_pages=total_pages,
            page=page,
            limit=limit,
        )

    def archive(self, conversation_id: str, user_id: str) -> bool:
        return self._transition(conversation_id, user_id, lambda c: setattr(c, "status", ConversationStatus.ARCHIVED))

    def delete(self, conversation_id: str, user_id: str) -> bool:
        # 软删除：只改状态，不删文件
        return self._transition(conversation_id, user_id, lambda c: setattr(c, "status", ConversationStatus.DELETED))

    def update_title(self, conversation_id: str, user_id: str, title: str) -> bool:
        return self._transition(conversation_id, user_id, lambda c: setattr(c, "title", title))

    def get_user_stats(self, user_id: str) -> UserStats:
        owned = [c for c in self._iter_conversations() if c.user_id == user_id]
        return UserStats(
            total_conversations=sum(1 for c in owned if c.status != ConversationStatus.DELETED),
            active_conversations=sum(1 for c in owned if c.status == ConversationStatus.ACTIVE),
            total_messages=sum(c.message_count for c in owned),
        )

    # ---- 消息 ----

    def add_message(self, conversation_id: str, data: NewMessage) -> MessageRecord:
        with self._lock:
            conv = self._read(conversation_id)
            if conv is None or conv.status != ConversationStatus.ACTIVE:
                raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=f"Conversation {conversation_id} not found")
            now = _utcnow()
            record = MessageRecord(
                id=f"m-{uuid4().hex}",
                conversation_id=conversation_id,
                role=data.role,
                content=data.content,
                token_count=data.token_count,
                model_used=data.model_used,
                created_at=now,
                metadata=dict(data.metadata or {}),
            )
            msgs_path = self._conv_dir(conversation_id) / "messages.jsonl"
            try:
                payload = asdict(record)
                payload["created_at"] = _iso(record.created_at)
                with msgs_path.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
            except OSError as e:
                raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
            conv.message_count += 1
            conv.last_activity_at = now
            conv.updated_at = now
            self._write_meta(conv)
        logger.info(
            "Added message",
            extra={"extra": {"conversation_id": conversation_id, "message_id": record.id, "role": record.role}},
        )
        return record

    def get_messages(self, conversation_id: str, page: int = 1, limit: int = 50) -> MessagePage:
        msgs = self._load_messages(conversation_id)
        offset, total_pages = _paginate(len(msgs), page, limit)
        return MessagePage(
            messages=msgs[offset:offset + limit],
            total=len(msgs),
            total_pages=total_pages,
            page=page,
            limit=limit,
        )

    def get_recent_messages(self, conversation_id: str, limit: int) -> List[MessageRecord]:
        if limit < 1:
            return []
        return self._load_messages(conversation_id)[-limit:]

    # ---- 内部方法 ----

    def _create_locked(self, user_id: str, title: Optional[str], meta: Optional[Dict[str, Any]]) -> Conversation:
        now = _utcnow()
        conv = Conversation(
            id=f"c-{uuid4().hex}",
            user_id=user_id,
            title=title or f"Conversation {now.strftime('%Y-%m-%d %H:%M:%S')}",
            status=ConversationStatus.ACTIVE,
            session_id=f"s-{uuid4().hex}",
            message_count=0,
            last_activity_at=now,
            created_at=now,
            updated_at=now,
            meta=dict(meta or {}),
        )
        self._conv_dir(conv.id).mkdir(parents=True, exist_ok=True)
        self._write_meta(conv)
        logger.info("Created conversation", extra={"extra": {"conversation_id": conv.id, "user_id": user_id}})
        return conv

    def _transition(self, conversation_id: str, user_id: str, mutate: Callable[[Conversation], None]) -> bool:
        with self._lock:
            conv = self._read(conversation_id)
            if conv is None or conv.status == ConversationStatus.DELETED or conv.user_id != user_id:
                return False
            mutate(conv)
            conv.updated_at = _utcnow()
            self._write_meta(conv)
            return True

    def _conv_dir(self, conversation_id: str) -> Path:
        return self._conv_root / conversation_id

    def _read(self, conversation_id: str) -> Optional[Conversation]:
        if not conversation_id or not _ID_RE.match(conversation_id):
            return None
        meta_path = self._conv_dir(conversation_id) / "meta.json"
        if not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        return self._to_conversation(data)

    def _iter_conversations(self) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in sorted(self._conv_root.glob("*/")):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                items.append(self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8"))))
            except (OSError, json.JSONDecodeError, KeyError, ValueError):
                continue
        return items

    def _load_messages(self, conversation_id: str) -> List[MessageRecord]:
        if not conversation_id or not _ID_RE.match(conversation_id):
            return []
        msgs_path = self._conv_dir(conversation_id) / "messages.jsonl"
        items: List[MessageRecord] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue
        # 追加日志本身就是时间顺序，稳定排序保证同一时刻的消息保持写入顺序
        items.sort(key=lambda m: m.created_at)
        return items

    def _write_meta(self, conv: Conversation) -> None:
        cdir = self._conv_dir(conv.id)
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "user_id": conv.user_id,
            "title": conv.title,
            "status": conv.status.value,
            "session_id": conv.session_id,
            "message_count": conv.message_count,
            "last_activity_at": _iso(conv.last_activity_at),
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
            "meta": conv.meta,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            user_id=data["user_id"],
            title=data.get("title") or "",
            status=ConversationStatus(data.get("status", ConversationStatus.ACTIVE.value)),
            session_id=data.get("session_id"),
            message_count=int(data.get("message_count", 0)),
            last_activity_at=_parse_dt(data.get("last_activity_at")),
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
            meta=data.get("meta") or {},
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            token_count=int(data.get("token_count", 0)),
            model_used=data.get("model_used"),
            created_at=_parse_dt(data["created_at"]),
            metadata=data.get("metadata") or {},
        )
