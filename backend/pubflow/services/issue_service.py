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
    looks_like_unique_violation,
)
from pubflow.lib.api_client import supabase_admin
from pubflow.models.issue import (
    Issue,
    IssueCreate,
    IssueList,
    IssueStatus,
    IssueUpdate,
    with_derived_status,
)

logger = logging.getLogger("pubflow.issues")

_DUPLICATE_MESSAGE = "An issue with this volume, number, and year already exists for this journal"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _clean_number(value: Any) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    return text or None


def find_duplicate_issue(
    client: Any,
    *,
    journal_id: str,
    volume: Optional[int],
    number: Optional[str],
    year: Optional[int],
    exclude_id: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """
    Another issue of the same journal with equal (volume, number, year).

    Only applies when both volume and number are set; otherwise any number
    of issues may share the year.
    """
    number = _clean_number(number)
    if volume is None or number is None:
        return None

    q = (
        client.table("issues")
        .select("id,journal_id,volume,number,year")
        .eq("journal_id", journal_id)
        .eq("volume", volume)
        .eq("number", number)
        .eq("year", year)
    )
    if exclude_id:
        q = q.neq("id", exclude_id)
    resp = q.limit(1).execute()
    rows = getattr(resp, "data", None) or []
    return rows[0] if rows else None


def ensure_unique_issue_key(client: Any, **key: Any) -> None:
    duplicate = find_duplicate_issue(client, **key)
    if duplicate:
        raise ConflictError(_DUPLICATE_MESSAGE, details={"existing_issue_id": duplicate.get("id")})


class IssueService:
    """
    期（Issue）的管理。

    中文注释:
    - status 只由 (is_published, published_date) 推导，不落库，见 derive_issue_status。
    - (journal_id, volume, number, year) 唯一性在写入前检查，写入时再由数据库部分唯一索引兜底。
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

    def _to_issue(self, row: dict[str, Any], article_count: int = 0) -> Issue:
        return Issue(**{**with_derived_status(row), "article_count": article_count})

    def _article_counts(self, issue_ids: list[str]) -> dict[str, int]:
        # 中文注释: 一页只查一次 articles，按 issue_id 计数
        if not issue_ids:
            return {}
        resp = self.client.table("articles").select("id,issue_id").in_("issue_id", issue_ids).execute()
        counts: dict[str, int] = {}
        for row in getattr(resp, "data", None) or []:
            key = str(row.get("issue_id") or "")
            counts[key] = counts.get(key, 0) + 1
        return counts

    def _get_issue_row(self, issue_id: str) -> dict[str, Any]:
        resp = self.client.table("issues").select("*").eq("id", issue_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFoundError("Issue not found")
        return rows[0]

    def _write(self, query: Any, *, action: str) -> dict[str, Any]:
        try:
            resp = query.execute()
        except Exception as e:
            if looks_like_unique_violation(e):
                raise ConflictError(_DUPLICATE_MESSAGE) from e
            logger.error("[Issues] %s failed: %s", action, e, exc_info=True)
            raise StorageError(f"Failed to {action}") from e
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise StorageError(f"Failed to {action}")
        return rows[0]

    def get_issue(self, issue_id: str, *, actor_id: Optional[str]) -> Issue:
        row = self._get_issue_row(issue_id)
        require_editor(self.capability, user_id=actor_id, journal_id=row.get("journal_id"), action="view issues")
        return self._to_issue(row, self._article_counts([issue_id]).get(issue_id, 0))

    def list_issues(
        self,
        *,
        actor_id: Optional[str],
        journal_id: Optional[str] = None,
        status: str = "all",
        page: int = 1,
        limit: int = 20,
    ) -> IssueList:
        page = max(1, int(page))
        limit = max(1, min(int(limit), 100))
        wanted = (status or "all").strip().lower()
        if wanted not in {"all", "future", "back"}:
            raise ValidationFailed("status must be one of: all, future, back")
        journal_id = str(journal_id or "").strip() or None
        require_editor(self.capability, user_id=actor_id, journal_id=journal_id, action="view issues")

        q = self.client.table("issues").select("*", count="exact")
        if journal_id:
            q = q.eq("journal_id", journal_id)
        if wanted == "future":
            q = q.eq("is_published", False)
        elif wanted == "back":
            q = q.eq("is_published", True)
        start = (page - 1) * limit
        q = (
            q.order("year", desc=True)
            .order("volume", desc=True)
            .order("number", desc=True)
            .range(start, start + limit - 1)
        )
        resp = q.execute()
        rows = getattr(resp, "data", None) or []
        total = int(getattr(resp, "count", None) or 0) or len(rows)
        counts = self._article_counts([str(r["id"]) for r in rows])
        return IssueList(
            items=[self._to_issue(r, counts.get(str(r["id"]), 0)) for r in rows],
            total=total,
            page=page,
            limit=limit,
        )

    def create_issue(self, data: IssueCreate, *, actor_id: Optional[str]) -> Issue:
        user_id = require_editor(
            self.capability, user_id=actor_id, journal_id=data.journal_id, action="manage issues"
        )

        published_date = _iso(data.published_date)
        if data.status == IssueStatus.PUBLISHED:
            is_published = True
            published_date = published_date or _utc_now_iso()
        elif data.status == IssueStatus.SCHEDULED:
            is_published = False
            if not published_date:
                raise ValidationFailed("published_date is required for scheduled status")
        else:
            is_published = False
            published_date = None

        number = _clean_number(data.number)
        ensure_unique_issue_key(
            self.client,
            journal_id=data.journal_id,
            volume=data.volume,
            number=number,
            year=data.year,
        )

        now = _utc_now_iso()
        row = self._write(
            self.client.table("issues").insert(
                {
                    "journal_id": data.journal_id,
                    "volume": data.volume,
                    "number": number,
                    "year": data.year,
                    "title": data.title or None,
                    "description": data.description or None,
                    "published_date": published_date,
                    "is_published": is_published,
                    "access_status": data.access_status,
                    "cover_image_url": data.cover_image_url,
                    "created_at": now,
                    "updated_at": now,
                }
            ),
            action="create issue",
        )
        self.audit.record(
            "issue_created",
            "issue",
            str(row.get("id") or "") or None,
            {
                "journal_id": data.journal_id,
                "volume": data.volume,
                "number": number,
                "year": data.year,
                "status": data.status.value,
            },
            user_id=user_id,
        )
        return self._to_issue(row)

    def update_issue(self, issue_id: str, data: IssueUpdate, *, actor_id: Optional[str]) -> Issue:
        existing = self._get_issue_row(issue_id)
        user_id = require_editor(
            self.capability,
            user_id=actor_id,
            journal_id=existing.get("journal_id"),
            action="manage issues",
        )
        fields = data.model_dump(exclude_unset=True)
        nulled = sorted(k for k in ("journal_id", "year", "access_status") if k in fields and fields[k] is None)
        if nulled:
            raise ValidationFailed(f"{', '.join(nulled)} cannot be null", details={"fields": nulled})
        if fields.get("journal_id") and fields["journal_id"] != existing.get("journal_id"):
            require_editor(
                self.capability,
                user_id=actor_id,
                journal_id=fields["journal_id"],
                action="move issues to this journal",
            )

        updates: dict[str, Any] = {"updated_at": _utc_now_iso()}
        for key in ("journal_id", "volume", "year", "title", "description", "access_status", "cover_image_url"):
            if key in fields:
                updates[key] = fields[key]
        if "number" in fields:
            updates["number"] = _clean_number(fields["number"])

        status = fields.get("status")
        date_given = "published_date" in fields
        new_date = _iso(fields.get("published_date"))
        if status == IssueStatus.PUBLISHED:
            updates["is_published"] = True
            if date_given:
                updates["published_date"] = new_date or _utc_now_iso()
            elif not existing.get("published_date"):
                updates["published_date"] = _utc_now_iso()
        elif status == IssueStatus.SCHEDULED:
            updates["is_published"] = False
            if date_given:
                if not new_date:
                    raise ValidationFailed("published_date is required for scheduled status")
                updates["published_date"] = new_date
            elif not existing.get("published_date"):
                raise ValidationFailed("published_date is required for scheduled status")
        elif status == IssueStatus.DRAFT:
            updates["is_published"] = False
            updates["published_date"] = new_date if date_given else None
        elif date_given:
            updates["published_date"] = new_date

        if any(k in fields for k in ("journal_id", "volume", "number", "year")):
            merged = {**existing, **updates}
            ensure_unique_issue_key(
                self.client,
                journal_id=merged.get("journal_id"),
                volume=merged.get("volume"),
                number=merged.get("number"),
                year=merged.get("year"),
                exclude_id=issue_id,
            )

        row = self._write(
            self.client.table("issues").update(updates).eq("id", issue_id),
            action="update issue",
        )
        self.audit.record(
            "issue_updated",
            "issue",
            issue_id,
            {"changes": sorted(k for k in updates if k != "updated_at")},
            user_id=user_id,
        )
        return self._to_issue(row)

    def publish_issue(self, issue_id: str, *, actor_id: Optional[str]) -> Issue:
        existing = self._get_issue_row(issue_id)
        user_id = require_editor(
            self.capability,
            user_id=actor_id,
            journal_id=existing.get("journal_id"),
            action="publish issues",
        )
        if existing.get("is_published"):
            raise InvalidStateError("Issue is already published")

        now = _utc_now_iso()
        updates: dict[str, Any] = {"is_published": True, "updated_at": now}
        if not existing.get("published_date"):
            updates["published_date"] = now
        row = self._write(
            self.client.table("issues").update(updates).eq("id", issue_id),
            action="publish issue",
        )
        self.audit.record("issue_published", "issue", issue_id, {"published_date": row.get("published_date")}, user_id=user_id)
        return self._to_issue(row)

    def delete_issue(self, issue_id: str, *, actor_id: Optional[str]) -> dict[str, Any]:
        existing = self._get_issue_row(issue_id)
        user_id = require_editor(
            self.capability,
            user_id=actor_id,
            journal_id=existing.get("journal_id"),
            action="manage issues",
        )
        resp = self.client.table("articles").select("id", count="exact").eq("issue_id", issue_id).execute()
        article_count = int(getattr(resp, "count", None) or 0) or len(getattr(resp, "data", None) or [])
        if article_count:
            raise ConflictError(
                f"Cannot delete issue: It contains {article_count} article(s). Please remove articles first.",
                details={"article_count": article_count},
            )

        self.client.table("issues").delete().eq("id", issue_id).execute()
        self.audit.record(
            "issue_deleted",
            "issue",
            issue_id,
            {
                "journal_id": existing.get("journal_id"),
                "volume": existing.get("volume"),
                "number": existing.get("number"),
                "year": existing.get("year"),
            },
            user_id=user_id,
        )
        return {"id": issue_id, "deleted": True}
