"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 适配器协议与公共逻辑 (base)。
- 统一的错误分类与重试策略 (retry)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (如 deepseek_client)。
"""

from typing import Callable, Dict, Optional

from chat_core.config.settings import settings
from chat_core.providers.base import ProviderAdapter
from chat_core.providers.deepseek_client import DeepSeekClient
from chat_core.providers.registry import get_provider_config

# registry 中的 provider 名称 -> 适配器构造函数
PROVIDER_CLIENTS: Dict[str, Callable[..., ProviderAdapter]] = {
    "deepseek": DeepSeekClient,
}


def create_provider(name: Optional[str] = None) -> ProviderAdapter:
    """根据名称创建 Provider 实例，默认取配置中的 provider。

    名称通过 registry 解析（不区分大小写），未知名称抛出 KeyError。
    """

    provider_cfg = get_provider_config(name or getattr(settings, "default_provider", "deepseek"))
    return PROVIDER_CLIENTS[provider_cfg.name](settings)
