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
from pubflow.models.article import PublicationOutcome, PublishRequest
from pubflow.models.doi import DOIRegistrationStatus
from pubflow.models.submission import SubmissionStatus, normalize_status

logger = logging.getLogger("pubflow.publish")

_AUTHOR_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "affiliation",
    "country",
    "orcid_id",
    "researcher_id",
)
_FILE_FIELDS = ("file_type", "file_name", "file_path", "file_size", "mime_type", "version")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sequence_key(indexed: tuple[int, dict[str, Any]]) -> tuple[int, int]:
    idx, author = indexed
    raw = author.get("sequence")
    try:
        return int(raw), idx
    except (TypeError, ValueError):
        return idx, idx


class PublishingService:
    """
    Turns an accepted submission into a published article.

    中文注释:
    - 主写入（articles 行 + submission 状态）是严格的：任一失败都回滚 article 并报错。
    - 次要写入（作者/文件复制、Drive 关联、发布历史、DOI pending 行）逐行尽力而为，
      失败进入 warnings 返回给调用方，不会吞掉。
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

    # === loaders ===
    def _get_submission(self, submission_id: str) -> dict[str, Any]:
        resp = (
            self.client.table("submissions")
            .select("*")
            .eq("id", submission_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFoundError("Submission not found")
        return rows[0]

    def find_article_for_submission(self, submission_id: str) -> Optional[dict[str, Any]]:
        resp = (
            self.client.table("articles")
            .select("id,submission_id,doi")
            .eq("submission_id", submission_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        return rows[0] if rows else None

    def _check_target_issue(self, issue_id: str, journal_id: Optional[str]) -> dict[str, Any]:
        resp = (
            self.client.table("issues")
            .select("id,journal_id")
            .eq("id", issue_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFoundError("Issue not found", details={"issue_id": issue_id})
        issue = rows[0]
        if str(issue.get("journal_id") or "") != str(journal_id or ""):
            raise ValidationFailed(
                "Issue belongs to a different journal",
                details={"issue_id": issue_id, "journal_id": issue.get("journal_id")},
            )
        return issue

    def _load_children(self, table: str, submission_id: str, warnings: list[str]) -> list[dict[str, Any]]:
        try:
            resp = self.client.table(table).select("*").eq("submission_id", submission_id).execute()
        except Exception as e:
            logger.warning("[Publish] load %s for %s failed: %s", table, submission_id, e)
            warnings.append(f"Could not load {table}: {e}")
            return []
        return list(getattr(resp, "data", None) or [])

    # === primary writes ===
    def _insert_article(
        self, submission: dict[str, Any], overrides: PublishRequest, now: str
    ) -> dict[str, Any]:
        payload = {
            "submission_id": submission["id"],
            "journal_id": submission.get("journal_id"),
            "section_id": submission.get("section_id"),
            "title": submission.get("title") or "",
            "abstract": submission.get("abstract"),
            "keywords": list(submission.get("keywords") or []),
            "doi": overrides.doi or None,
            "volume": overrides.volume,
            "issue": overrides.issue_number or None,
            "year": overrides.year,
            "pages": overrides.pages or None,
            "issue_id": overrides.issue_id or None,
            "published_date": now,
            "views_count": 0,
            "downloads_count": 0,
            "citation_count": 0,
        }
        try:
            resp = self.client.table("articles").insert(payload).execute()
        except Exception as e:
            if looks_like_unique_violation(e):
                # 中文注释: articles.submission_id 唯一约束兜底并发发布
                raise ConflictError("An article already exists for this submission") from e
            logger.error("[Publish] article insert failed: %s", e, exc_info=True)
            raise StorageError("Failed to create article") from e

        rows = getattr(resp, "data", None) or []
        if not rows:
            raise StorageError("Failed to create article")
        return rows[0]

    def _discard_article(self, article_id: str) -> None:
        try:
            self.client.table("articles").delete().eq("id", article_id).execute()
        except Exception as e:
            logger.error(
                "[Publish] could not discard article %s after failed publish: %s",
                article_id,
                e,
                exc_info=True,
            )

    def _mark_submission_published(self, submission_id: str, article_id: str, now: str) -> dict[str, Any]:
        try:
            resp = (
                self.client.table("submissions")
                .update({"status": SubmissionStatus.PUBLISHED.value, "last_modified": now})
                .eq("id", submission_id)
                .eq("status", SubmissionStatus.ACCEPTED.value)
                .execute()
            )
        except Exception as e:
            self._discard_article(article_id)
            logger.error("[Publish] submission status update failed: %s", e, exc_info=True)
            raise StorageError("Failed to mark submission published") from e

        rows = getattr(resp, "data", None) or []
        if not rows:
            self._discard_article(article_id)
            raise ConflictError("Submission is no longer accepted; it was changed by another request")
        return rows[0]

    # === secondary writes ===
    def _copy_authors(
        self, article_id: str, authors: list[dict[str, Any]], warnings: list[str]
    ) -> list[dict[str, Any]]:
        copied: list[dict[str, Any]] = []
        for position, author in sorted(enumerate(authors), key=_sequence_key):
            sequence, _ = _sequence_key((position, author))
            row = {field: author.get(field) for field in _AUTHOR_FIELDS}
            row.update({"article_id": article_id, "sequence": sequence})
            try:
                resp = self.client.table("article_authors").insert(row).execute()
                copied.extend(getattr(resp, "data", None) or [])
            except Exception as e:
                name = " ".join(p for p in [author.get("first_name"), author.get("last_name")] if p) or "?"
                logger.warning("[Publish] author copy failed for %s (%s): %s", article_id, name, e)
                warnings.append(f"Author '{name}' was not copied: {e}")
        return copied

    def _relink_drive_file(
        self, submission_file_id: str, article_file_id: str, warnings: list[str]
    ) -> None:
        try:
            resp = (
                self.client.table("google_drive_files")
                .select("id")
                .eq("submission_file_id", submission_file_id)
                .limit(1)
                .execute()
            )
            rows = getattr(resp, "data", None) or []
            if not rows:
                return
            (
                self.client.table("google_drive_files")
                .update({"article_file_id": article_file_id})
                .eq("id", rows[0]["id"])
                .execute()
            )
        except Exception as e:
            logger.warning(
                "[Publish] drive link hand-off failed for submission file %s: %s",
                submission_file_id,
                e,
            )
            warnings.append(f"External storage link for file {submission_file_id} was not moved: {e}")

    def _copy_files(
        self, article_id: str, files: list[dict[str, Any]], warnings: list[str]
    ) -> list[dict[str, Any]]:
        copied: list[dict[str, Any]] = []
        for f in files:
            row = {field: f.get(field) for field in _FILE_FIELDS}
            row["article_id"] = article_id
            try:
                resp = self.client.table("article_files").insert(row).execute()
                new_rows = getattr(resp, "data", None) or []
            except Exception as e:
                logger.warning("[Publish] file copy failed for %s (%s): %s", article_id, f.get("file_name"), e)
                warnings.append(f"File '{f.get('file_name')}' was not copied: {e}")
                continue
            copied.extend(new_rows)
            if new_rows and f.get("id"):
                self._relink_drive_file(str(f["id"]), str(new_rows[0]["id"]), warnings)
        return copied

    def _record_history(
        self,
        article: dict[str, Any],
        authors: list[dict[str, Any]],
        files: list[dict[str, Any]],
        actor_id: str,
        now: str,
        warnings: list[str],
    ) -> None:
        try:
            self.client.table("publication_history").insert(
                {
                    "article_id": article["id"],
                    "action": "published",
                    "performed_by": actor_id,
                    "new_data": {"article": article, "authors": authors, "files": files},
                    "created_at": now,
                }
            ).execute()
        except Exception as e:
            logger.warning("[Publish] publication_history insert failed (ignored): %s", e)
            warnings.append(f"Publication history was not recorded: {e}")

    def _create_pending_registration(
        self, article_id: str, doi: str, warnings: list[str]
    ) -> Optional[dict[str, Any]]:
        try:
            resp = (
                self.client.table("doi_registrations")
                .insert(
                    {
                        "article_id": article_id,
                        "doi": doi,
                        "status": DOIRegistrationStatus.PENDING.value,
                        "registration_agency": "crossref",
                        "retry_count": 0,
                    }
                )
                .execute()
            )
            rows = getattr(resp, "data", None) or []
            return rows[0] if rows else None
        except Exception as e:
            logger.warning("[Publish] pending DOI registration for %s not created: %s", article_id, e)
            warnings.append(f"DOI registration record was not created: {e}")
            return None

    def publish(
        self,
        *,
        submission_id: str,
        actor_id: Optional[str],
        overrides: PublishRequest | None = None,
    ) -> PublicationOutcome:
        sid = str(submission_id or "").strip()
        if not sid:
            raise ValidationFailed("submission_id is required")
        overrides = overrides or PublishRequest()

        submission = self._get_submission(sid)
        editor_id = require_editor(
            self.capability,
            user_id=actor_id,
            journal_id=submission.get("journal_id"),
            action="publish articles",
        )

        # 中文注释: 先查 article 是否存在，重复发布返回 Conflict 而不是 InvalidState
        existing = self.find_article_for_submission(sid)
        if existing:
            raise ConflictError(
                "An article already exists for this submission",
                details={"article_id": existing.get("id")},
            )
        if normalize_status(submission.get("status")) != SubmissionStatus.ACCEPTED.value:
            raise InvalidStateError(
                "Only accepted submissions can be published",
                details={"status": submission.get("status")},
            )
        if overrides.issue_id:
            self._check_target_issue(overrides.issue_id, submission.get("journal_id"))

        now = _utc_now_iso()
        article = self._insert_article(submission, overrides, now)
        article_id = str(article["id"])
        self._mark_submission_published(sid, article_id, now)

        warnings: list[str] = []
        authors = self._copy_authors(
            article_id, self._load_children("submission_authors", sid, warnings), warnings
        )
        files = self._copy_files(
            article_id, self._load_children("submission_files", sid, warnings), warnings
        )
        self._record_history(article, authors, files, editor_id, now, warnings)

        registration = None
        if overrides.doi:
            registration = self._create_pending_registration(article_id, overrides.doi, warnings)

        self.audit.record(
            "article_published",
            "article",
            article_id,
            {
                "submission_id": sid,
                "doi": overrides.doi,
                "issue_id": overrides.issue_id,
                "authors_copied": len(authors),
                "files_copied": len(files),
                "warnings": len(warnings),
            },
            user_id=editor_id,
        )
        logger.info(
            "[Publish] submission %s published as article %s (%d warnings)", sid, article_id, len(warnings)
        )
        return PublicationOutcome(
            article=article,
            authors=authors,
            files=files,
            doi_registration=registration,
            warnings=warnings,
        )
