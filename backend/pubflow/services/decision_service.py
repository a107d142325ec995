from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pubflow.core.audit import AuditLogger
from pubflow.core.editor_capability import (
    EditorCapabilityOracle,
    EditorCapabilityResolver,
    require_editor,
)
from pubflow.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationFailed,
)
from pubflow.lib.api_client import supabase_admin
from pubflow.models.submission import (
    DecisionOutcome,
    DecisionType,
    SubmissionStatus,
    normalize_status,
    parse_decision_type,
)

logger = logging.getLogger("pubflow.decision")

_SUBMISSION_FIELDS = "id,journal_id,section_id,title,status,editor_id,current_round,last_modified"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DecisionService:
    """
    Applies editorial decisions to submissions.

    中文注释:
    - 状态写入与 editorial_decisions 追加在逻辑上是一个事务。PostgREST 没有客户端事务，
      因此采用“带旧状态条件的乐观更新 + 追加失败时回滚提交行”的做法。
    - decision 行的 round 永远是本次决策之前的 current_round。
    """

    def __init__(
        self,
        *,
        client: Any | None = None,
        capability: EditorCapabilityOracle | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.capability = capability or EditorCapabilityResolver(self.client)
        self.audit = audit or AuditLogger(self.client)

    def get_submission(self, submission_id: str) -> dict[str, Any]:
        resp = (
            self.client.table("submissions")
            .select(_SUBMISSION_FIELDS)
            .eq("id", submission_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFoundError("Submission not found")
        return rows[0]

    def _restore_submission(self, submission_id: str, previous: dict[str, Any]) -> None:
        try:
            (
                self.client.table("submissions")
                .update(
                    {
                        "status": previous.get("status"),
                        "current_round": previous.get("current_round"),
                        "editor_id": previous.get("editor_id"),
                        "last_modified": previous.get("last_modified"),
                    }
                )
                .eq("id", submission_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "[Decision] rollback of submission %s failed, manual repair needed: %s",
                submission_id,
                e,
                exc_info=True,
            )

    def apply_decision(
        self,
        *,
        submission_id: str,
        decision_type: str | DecisionType,
        actor_id: Optional[str],
        comments: Optional[str] = None,
    ) -> DecisionOutcome:
        decision = parse_decision_type(
            decision_type.value if isinstance(decision_type, DecisionType) else decision_type
        )
        if decision is None:
            raise ValidationFailed(
                "Invalid decision_type",
                details={"allowed": [d.value for d in DecisionType]},
            )
        sid = str(submission_id or "").strip()
        if not sid:
            raise ValidationFailed("submission_id is required")

        submission = self.get_submission(sid)
        editor_id = require_editor(
            self.capability,
            user_id=actor_id,
            journal_id=submission.get("journal_id"),
            action="make decisions",
        )

        previous_status = str(submission.get("status") or "")
        if normalize_status(previous_status) == SubmissionStatus.PUBLISHED.value:
            raise InvalidStateError("Published submissions cannot receive editorial decisions")

        previous_round = int(submission.get("current_round") or 1)
        now = _utc_now_iso()
        updates: dict[str, Any] = {
            "status": decision.target_status.value,
            "editor_id": editor_id,
            "last_modified": now,
        }
        if decision.advances_round:
            updates["current_round"] = previous_round + 1

        try:
            resp = (
                self.client.table("submissions")
                .update(updates)
                .eq("id", sid)
                .eq("status", previous_status)
                .execute()
            )
        except Exception as e:
            logger.error("[Decision] status update failed for %s: %s", sid, e, exc_info=True)
            raise StorageError("Failed to update submission status") from e

        rows = getattr(resp, "data", None) or []
        if not rows:
            # 中文注释: 读到的旧状态已被并发请求改掉（乐观锁失败），本次不做任何写入。
            raise ConflictError("Submission was modified by another request; reload and retry")
        updated = rows[0]

        record = {
            "submission_id": sid,
            "editor_id": editor_id,
            "decision_type": decision.value,
            "round": previous_round,
            "comments": comments or None,
            "created_at": now,
        }
        try:
            inserted = self.client.table("editorial_decisions").insert(record).execute()
            decision_rows = getattr(inserted, "data", None) or []
            if not decision_rows:
                raise RuntimeError("editorial_decisions insert returned no row")
        except Exception as e:
            logger.error("[Decision] decision record insert failed for %s, rolling back: %s", sid, e)
            self._restore_submission(sid, submission)
            raise StorageError("Failed to record editorial decision") from e

        self.audit.record(
            "editorial_decision",
            "submission",
            sid,
            {
                "decision_type": decision.value,
                "round": previous_round,
                "from_status": previous_status,
                "to_status": decision.target_status.value,
            },
            user_id=editor_id,
        )
        logger.info(
            "[Decision] %s -> %s (%s, round %s) by %s",
            sid,
            decision.target_status.value,
            decision.value,
            previous_round,
            editor_id,
        )
        return DecisionOutcome(
            submission=updated,
            decision=decision_rows[0],
            previous_status=previous_status,
            previous_round=previous_round,
        )
