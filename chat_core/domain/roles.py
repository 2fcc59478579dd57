"""角色预设模型与 RoleStore 抽象。"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol


class RoleType(str, Enum):
    SYSTEM = "system"
    CUSTOM = "custom"


@dataclass
class Role:
    """一个命名的系统提示词 / 生成参数预设。

    configuration 中可选的 temperature、maxTokens 是该角色的默认生成参数。
    """

    id: str
    name: str
    description: str
    type: RoleType
    system_prompt: str
    configuration: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    usage_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RoleStore(Protocol):
    def find_one(self, role_id: str) -> Optional[Role]:
        ...

    def find_by_name(self, name: str) -> Optional[Role]:
        ...

    def find_all(self) -> List[Role]:
        ...

    def increment_usage_count(self, role_id: str) -> None:
        ...
