"""Provider 与模型配置。

每个 Provider 的静态信息集中在这里：默认地址、默认模型、
模型 id → 上下文窗口的查找表、限流额度，以及拉取模型列表失败时
使用的兜底目录。上层只通过 ProviderConfig 访问这些常量。
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

DEFAULT_CONTEXT_WINDOW = 4096


@dataclass
class ModelConfig:
    """单个模型的静态描述。"""

    id: str
    name: str
    context_window: int
    supports_streaming: bool = True


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    default_model: str
    requests_per_minute: int
    requests_per_hour: int
    context_windows: Dict[str, int] = field(default_factory=dict)
    fallback_models: List[ModelConfig] = field(default_factory=list)

    def context_window_for(self, model_id: str) -> int:
        return self.context_windows.get(model_id, DEFAULT_CONTEXT_WINDOW)


DEEPSEEK_CONFIG = ProviderConfig(
    name="deepseek",
    base_url="https://api.deepseek.com/v1",
    default_model="deepseek-chat",
    requests_per_minute=60,
    requests_per_hour=1000,
    context_windows={
        "deepseek-chat": 32768,
        "deepseek-coder": 16384,
        "deepseek-reasoner": 65536,
    },
    fallback_models=[
        ModelConfig(id="deepseek-chat", name="DeepSeek Chat", context_window=32768),
        ModelConfig(id="deepseek-coder", name="DeepSeek Coder", context_window=16384),
    ],
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "deepseek": DEEPSEEK_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
