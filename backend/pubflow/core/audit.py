from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pubflow.lib.api_client import supabase_admin

logger = logging.getLogger("pubflow.audit")


class AuditLogger:
    """
    Fire-and-forget writer for `activity_logs`.

    中文注释:
    - 审计写入失败只记录 warning，绝不能中断决策/发布/DOI 流程。
    - 调用方不关心返回值。
    """

    def __init__(self, client: Any | None = None):
        self.client = client or supabase_admin

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        details: dict[str, Any] | None = None,
        *,
        user_id: Optional[str] = None,
    ) -> None:
        row = {
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details or {},
            "user_id": user_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.client.table("activity_logs").insert(row).execute()
        except Exception as e:
            logger.warning("[Audit] %s on %s:%s failed (ignored): %s", action, entity_type, entity_id, e)
