"""角色预设加载工具。

从 prompts 目录读取 roles.yaml 中的系统角色定义，
用于初始化角色存储（见 JsonRoleStore）。
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


PROMPTS_DIR = Path(__file__).resolve().parent


def load_role_presets(path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """读取角色预设列表；文件缺失时返回空列表。

    每一项至少包含 name 与 system_prompt，description、configuration 可选。
    """

    fname = path or PROMPTS_DIR / "roles.yaml"
    if not fname.exists():
        return []
    data = yaml.safe_load(fname.read_text(encoding="utf-8")) or []
    if not isinstance(data, list):
        raise ValueError(f"Role presets file {fname} must contain a list")
    return [
        item
        for item in data
        if isinstance(item, dict) and item.get("name") and item.get("system_prompt")
    ]
