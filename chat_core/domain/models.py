"""统一的对话与结果数据模型。

本模块定义了编排层与各 Provider 适配器之间共享的标准数据结构：

- ChatMessage: 一条发给 Provider 的对话消息（system/user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResponse: 从 Provider 解析后的统一响应结果。
- RoleConfig: 角色预设（系统提示词 + 生成参数）。
- ModelInfo / RateLimitInfo: Provider 的描述信息，不做持久化。

所有 Provider 适配器（如 DeepSeekClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# LLM 消息角色类型（与 OpenAI / DeepSeek 等厂商的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，发给 Provider 之后不再修改。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - metadata: 附加元数据，不直接发给 Provider。
    """

    role: Role
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RoleConfig:
    """角色预设：作为合成的 system 消息插在最前面，不会被存成消息记录。"""

    name: str
    system_prompt: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    编排层将上下文裁剪后生成 ChatRequest，再交给具体 Provider 适配器。
    取值范围（非空消息、temperature ∈ [0, 2]、max_tokens ≥ 1）由适配器
    在发出请求之前校验。
    """

    messages: List[ChatMessage]
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    session_id: Optional[str] = None
    role_config: Optional[RoleConfig] = None


@dataclass
class ChatResponse:
    """一次对话调用的统一结果。"""

    message: str
    model: str
    token_count: int
    finish_reason: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelInfo:
    id: str
    name: str
    provider: str
    context_window: int
    supports_streaming: bool


@dataclass
class RateLimitInfo:
    requests_per_minute: int
    requests_per_hour: int
