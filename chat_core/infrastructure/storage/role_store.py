"""基于 JSON 文件的角色预设存储。

所有角色保存在 <root>/roles.json 中；文件不存在时用 prompts/roles.yaml
里的系统预设初始化。删除只是把 is_active 置为 False。
"""

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError, NotFoundError, ValidationError
from chat_core.domain.roles import Role, RoleStore, RoleType
from chat_core.infrastructure.logging.logger import logger
from chat_core.prompts import load_role_presets
from chat_core.providers.base import validate_generation_params

_UPDATABLE_FIELDS = {"name", "description", "system_prompt", "configuration", "is_active"}


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def _validate_configuration(configuration: Optional[Dict[str, Any]]) -> None:
    """角色的 temperature / maxTokens 与请求参数使用同样的取值范围。"""

    if configuration is None:
        return
    if not isinstance(configuration, dict):
        raise ValidationError(code="INVALID_ROLE_CONFIGURATION", message="Role configuration must be an object")
    temperature = configuration.get("temperature")
    max_tokens = configuration.get("maxTokens")
    if temperature is not None and (isinstance(temperature, bool) or not isinstance(temperature, (int, float))):
        raise ValidationError(code="INVALID_TEMPERATURE", message="Temperature must be between 0 and 2")
    if max_tokens is not None and (isinstance(max_tokens, bool) or not isinstance(max_tokens, int)):
        raise ValidationError(code="INVALID_MAX_TOKENS", message="Max tokens must be greater than 0")
    validate_generation_params(temperature, max_tokens)


class JsonRoleStore(RoleStore):
    def __init__(self, root: str | Path | None = None, presets: Optional[List[Dict[str, Any]]] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "roles.json"
        self._lock = threading.RLock()
        if not self._path.exists():
            self._seed(load_role_presets() if presets is None else presets)

    # ---- 查询 ----

    def find_one(self, role_id: str) -> Optional[Role]:
        for role in self._load():
            if role.id == role_id and role.is_active:
                return role
        return None

    def find_by_name(self, name: str) -> Optional[Role]:
        for role in self._load():
            if role.name == name and role.is_active:
                return role
        return None

    def find_all(self) -> List[Role]:
        return sorted((r for r in self._load() if r.is_active), key=lambda r: r.name)

    def get_system_roles(self) -> List[Role]:
        return [r for r in self.find_all() if r.type == RoleType.SYSTEM]

    def get_custom_roles(self) -> List[Role]:
        return [r for r in self.find_all() if r.type == RoleType.CUSTOM]

    # ---- 修改 ----

    def create(
        self,
        name: str,
        description: str,
        system_prompt: str,
        configuration: Optional[Dict[str, Any]] = None,
    ) -> Role:
        _validate_configuration(configuration)
        with self._lock:
            roles = self._load()
            if any(r.name == name for r in roles):
                raise ValidationError(code="ROLE_NAME_EXISTS", message="Role name already exists")
            role = self._new_role(name, description, system_prompt, configuration, RoleType.CUSTOM)
            roles.append(role)
            self._save(roles)
        logger.info("Created role", extra={"extra": {"role_id": role.id, "role_name": role.name}})
        return role

    def update(self, role_id: str, **changes: Any) -> Role:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(code="INVALID_ROLE_FIELDS", message=f"Unknown role fields: {sorted(unknown)}")
        if "configuration" in changes:
            _validate_configuration(changes["configuration"])
        with self._lock:
            roles = self._load()
            role = next((r for r in roles if r.id == role_id and r.is_active), None)
            if role is None:
                raise NotFoundError(code="ROLE_NOT_FOUND", message="Role not found")
            new_name = changes.get("name")
            if new_name and new_name != role.name and any(r.name == new_name for r in roles):
                raise ValidationError(code="ROLE_NAME_EXISTS", message="Role name already exists")
            for key, value in changes.items():
                setattr(role, key, value)
            role.updated_at = datetime.now(timezone.utc)
            self._save(roles)
        logger.info("Updated role", extra={"extra": {"role_id": role.id, "role_name": role.name}})
        return role

    def remove(self, role_id: str) -> Role:
        return self.update(role_id, is_active=False)

    def increment_usage_count(self, role_id: str) -> None:
        with self._lock:
            roles = self._load()
            for role in roles:
                if role.id == role_id:
                    role.usage_count += 1
                    self._save(roles)
                    return

    # ---- 内部方法 ----

    def _seed(self, presets: List[Dict[str, Any]]) -> None:
        roles = [
            self._new_role(
                p["name"],
                p.get("description") or "",
                p["system_prompt"],
                p.get("configuration"),
                RoleType.SYSTEM,
            )
            for p in presets
        ]
        self._save(roles)

    @staticmethod
    def _new_role(
        name: str,
        description: str,
        system_prompt: str,
        configuration: Optional[Dict[str, Any]],
        role_type: RoleType,
    ) -> Role:
        now = datetime.now(timezone.utc)
        return Role(
            id=f"r-{uuid4().hex}",
            name=name,
            description=description,
            type=role_type,
            system_prompt=system_prompt,
            configuration=dict(configuration or {}),
            created_at=now,
            updated_at=now,
        )

    def _load(self) -> List[Role]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        return [
            Role(
                id=item["id"],
                name=item["name"],
                description=item.get("description") or "",
                type=RoleType(item.get("type", RoleType.CUSTOM.value)),
                system_prompt=item["system_prompt"],
                configuration=item.get("configuration") or {},
                is_active=bool(item.get("is_active", True)),
                usage_count=int(item.get("usage_count", 0)),
                created_at=_parse_dt(item.get("created_at")),
                updated_at=_parse_dt(item.get("updated_at")),
            )
            for item in raw
        ]

    def _save(self, roles: List[Role]) -> None:
        data = [
            {
                "id": r.id,
                "name": r.name,
                "description": r.description,
                "type": r.type.value,
                "system_prompt": r.system_prompt,
                "configuration": r.configuration,
                "is_active": r.is_active,
                "usage_count": r.usage_count,
                "created_at": _iso(r.created_at),
                "updated_at": _iso(r.updated_at),
            }
            for r in roles
        ]
        tmp_path = self._root / f"roles.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
