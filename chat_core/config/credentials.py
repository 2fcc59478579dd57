"""Provider 凭证解析。

凭证可能在两次调用之间被注入或吊销，因此每次都重新读取，
不缓存“已配置/未配置”的结论：

1. 进程环境变量 <PROVIDER>_API_KEY；
2. 当前工作目录下 .env 文件中的同名键。
"""

import os
from pathlib import Path
from typing import Optional

from chat_core.config.env_utils import read_env_file


def credential_env_name(provider_name: str) -> str:
    return f"{provider_name.upper()}_API_KEY"


def resolve_credential(provider_name: str, env_file: Optional[Path] = None) -> Optional[str]:
    """返回 Provider 的 API 密钥；缺失或为空白时返回 None。"""

    key = credential_env_name(provider_name)
    value = os.environ.get(key)
    if value is None:
        value = read_env_file(env_file).get(key)
    if value is None or not value.strip():
        return None
    return value.strip()
