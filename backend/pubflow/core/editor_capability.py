from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

from pubflow.core.errors import AuthorizationError
from pubflow.lib.api_client import supabase_admin

logger = logging.getLogger("pubflow.auth")

SUPER_ADMIN_ROLE = "super_admin"
EDITOR_ROLES = {"editor", "section_editor", SUPER_ADMIN_ROLE}


@dataclass(frozen=True)
class CapabilityCheck:
    authorized: bool
    user_id: Optional[str]
    source: Optional[str] = None  # "tenant_users" | "user_role_assignments"


class EditorCapabilityOracle(Protocol):
    def check(self, *, user_id: Optional[str], journal_id: Optional[str]) -> CapabilityCheck: ...


def normalize_roles(roles: Iterable[str] | None) -> set[str]:
    out: set[str] = set()
    for raw in roles or []:
        role = str(raw or "").strip().lower()
        if role:
            out.add(role)
    return out


def _is_missing_table_error(error_text: str) -> bool:
    text = (error_text or "").lower()
    return "pgrst205" in text or "does not exist" in text or "schema cache" in text


class EditorCapabilityResolver:
    """
    单一的编辑权限入口，内部合并两套存储：

    - legacy: `tenant_users`（journal -> tenant -> 用户角色）
    - new: `user_role_assignments`（可按 journal / tenant / 全局授权）

    中文注释: 流水线只消费 (authorized, user_id)，不关心是哪张表授权的。
    """

    def __init__(self, client: Any | None = None):
        self.client = client or supabase_admin

    def _rows(self, query: Any, *, table: str) -> list[dict[str, Any]]:
        try:
            resp = query.execute()
        except Exception as e:
            if _is_missing_table_error(str(e)):
                logger.warning("[Capability] %s table missing (ignored): %s", table, e)
                return []
            raise
        return list(getattr(resp, "data", None) or [])

    def _journal_tenant_id(self, journal_id: str) -> Optional[str]:
        rows = self._rows(
            self.client.table("journals").select("id,tenant_id").eq("id", journal_id).limit(1),
            table="journals",
        )
        if not rows:
            return None
        tenant_id = str(rows[0].get("tenant_id") or "").strip()
        return tenant_id or None

    def _legacy_grants(self, *, user_id: str, tenant_id: Optional[str]) -> bool:
        if not tenant_id:
            return False
        rows = self._rows(
            self.client.table("tenant_users")
            .select("user_id,role")
            .eq("tenant_id", tenant_id)
            .eq("user_id", user_id),
            table="tenant_users",
        )
        return bool(normalize_roles(r.get("role") for r in rows) & EDITOR_ROLES)

    def _active_assignments(self, user_id: str) -> list[dict[str, Any]]:
        return self._rows(
            self.client.table("user_role_assignments")
            .select("role,journal_id,tenant_id,is_active")
            .eq("user_id", user_id)
            .eq("is_active", True),
            table="user_role_assignments",
        )

    def _global_admin(self, user_id: str) -> bool:
        for row in self._active_assignments(user_id):
            role = str(row.get("role") or "").strip().lower()
            if role == SUPER_ADMIN_ROLE and not row.get("journal_id") and not row.get("tenant_id"):
                return True
        return False

    def _assignment_grants(self, *, user_id: str, journal_id: str, tenant_id: Optional[str]) -> bool:
        for row in self._active_assignments(user_id):
            role = str(row.get("role") or "").strip().lower()
            if role not in EDITOR_ROLES:
                continue
            scoped_journal = str(row.get("journal_id") or "").strip()
            scoped_tenant = str(row.get("tenant_id") or "").strip()
            if role == SUPER_ADMIN_ROLE and not scoped_journal and not scoped_tenant:
                return True
            if scoped_journal and scoped_journal == journal_id:
                return True
            if scoped_tenant and tenant_id and scoped_tenant == tenant_id:
                return True
        return False

    def check(self, *, user_id: Optional[str], journal_id: Optional[str]) -> CapabilityCheck:
        uid = str(user_id or "").strip()
        jid = str(journal_id or "").strip()
        if not uid:
            return CapabilityCheck(authorized=False, user_id=None)
        if journal_id is None:
            # 中文注释: 不限定期刊的跨刊读取，只认全局 super_admin
            if self._global_admin(uid):
                return CapabilityCheck(authorized=True, user_id=uid, source="user_role_assignments")
            return CapabilityCheck(authorized=False, user_id=uid)
        if not jid:
            return CapabilityCheck(authorized=False, user_id=uid)

        tenant_id = self._journal_tenant_id(jid)
        if self._assignment_grants(user_id=uid, journal_id=jid, tenant_id=tenant_id):
            return CapabilityCheck(authorized=True, user_id=uid, source="user_role_assignments")
        if self._legacy_grants(user_id=uid, tenant_id=tenant_id):
            return CapabilityCheck(authorized=True, user_id=uid, source="tenant_users")
        return CapabilityCheck(authorized=False, user_id=uid)


def require_editor(
    oracle: EditorCapabilityOracle,
    *,
    user_id: Optional[str],
    journal_id: Optional[str],
    action: str,
) -> str:
    """
    Returns the acting user id or raises AuthorizationError.

    journal_id=None asks for a global super admin (cross-journal reads).
    """
    result = oracle.check(user_id=user_id, journal_id=journal_id)
    if not result.authorized or not result.user_id:
        if journal_id is None:
            raise AuthorizationError(f"Only super admins can {action} across journals")
        raise AuthorizationError(f"Only editors of this journal can {action}")
    return result.user_id
