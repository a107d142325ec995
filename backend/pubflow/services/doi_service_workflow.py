from __future__ import annotations

import asyncio
from typing import Any, Optional

from pubflow.core.editor_capability import require_editor
from pubflow.core.errors import ExternalServiceError, StorageError, ValidationFailed
from pubflow.models.doi import CrossrefDepositResult, DOIRegistrationStatus
from pubflow.services.crossref_client import doi_url, validate_doi_format
from pubflow.services.doi_service_common import (
    REGISTRATION_AGENCY,
    logger,
    now_iso,
    truncate,
)


class DOIServiceWorkflowMixin:
    async def _attempt_deposit(self, payload: dict[str, Any]) -> CrossrefDepositResult:
        """
        Run the external call under a hard timeout.

        中文注释: 超时/异常都折叠成 status=error，绝不让注册行停留在 pending。
        """
        try:
            return await asyncio.wait_for(self.crossref.register(payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            return CrossrefDepositResult(
                status="error",
                message=f"Crossref registration timed out after {self.timeout:g}s",
                timestamp=now_iso(),
            )
        except Exception as e:
            logger.error("[DOI] deposit call crashed for %s: %s", payload.get("doi"), e, exc_info=True)
            return CrossrefDepositResult(
                status="error",
                message=truncate(f"Crossref registration failed: {e}"),
                timestamp=now_iso(),
            )

    def _upsert_registration(self, row: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = (
                self.client.table("doi_registrations")
                .upsert(row, on_conflict="article_id,doi")
                .execute()
            )
        except Exception as e:
            logger.error("[DOI] registration upsert failed for %s: %s", row.get("doi"), e, exc_info=True)
            raise StorageError("Failed to save DOI registration") from e
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise StorageError("Failed to save DOI registration")
        return rows[0]

    async def register(
        self,
        *,
        article_id: str,
        actor_id: Optional[str],
        doi: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Register (or re-register) the DOI of a published article.

        Every attempt upserts the same `(article_id, doi)` row and bumps
        retry_count by one. On failure the row is saved first and then
        ExternalServiceError is raised with the row attached.
        """
        aid = str(article_id or "").strip()
        if not aid:
            raise ValidationFailed("article_id is required")

        article = self._load_article(aid)
        editor_id = require_editor(
            self.capability,
            user_id=actor_id,
            journal_id=article.get("journal_id"),
            action="register DOIs",
        )

        article_doi = str(doi or article.get("doi") or "").strip()
        if not article_doi:
            raise ValidationFailed(
                "DOI is required. Please provide DOI in request or ensure article has DOI."
            )
        if not validate_doi_format(article_doi):
            raise ValidationFailed("DOI must follow format: 10.xxxx/xxxxx", details={"doi": article_doi})

        existing = self._load_registration_row(article_id=aid, doi=article_doi)
        previous_count = int((existing or {}).get("retry_count") or 0)

        payload = self._build_deposit_payload(
            article,
            self._load_article_authors(aid),
            self._load_journal_meta(article.get("journal_id")),
            article_doi,
        )
        result = await self._attempt_deposit(payload)

        attempt_at = now_iso()
        row: dict[str, Any] = {
            "article_id": aid,
            "doi": article_doi,
            "status": (
                DOIRegistrationStatus.REGISTERED.value if result.ok else DOIRegistrationStatus.FAILED.value
            ),
            "crossref_deposit_id": result.deposit_id,
            "crossref_response": result.model_dump(mode="json"),
            "error_message": None if result.ok else truncate(result.message or "Registration failed"),
            "last_attempt": attempt_at,
            "registration_agency": REGISTRATION_AGENCY,
            "retry_count": previous_count + 1,
        }
        if result.ok:
            # registration_date is left out on failure so the upsert keeps the stored value
            row["registration_date"] = attempt_at

        registration = self._upsert_registration(row)

        if result.ok:
            self._persist_article_doi(article, article_doi)

        self.audit.record(
            "doi_registered" if result.ok else "doi_registration_failed",
            "doi",
            str(registration.get("id") or "") or None,
            {
                "article_id": aid,
                "doi": article_doi,
                "status": result.status,
                "deposit_id": result.deposit_id,
                "retry_count": registration.get("retry_count"),
            },
            user_id=editor_id,
        )

        if not result.ok:
            logger.warning(
                "[DOI] registration of %s failed (attempt %s): %s",
                article_doi,
                row["retry_count"],
                row["error_message"],
            )
            raise ExternalServiceError(
                f"Failed to register DOI: {row['error_message']}",
                response=result.model_dump(mode="json"),
                registration=registration,
                details={"doi": article_doi, "retry_count": registration.get("retry_count")},
            )

        logger.info("[DOI] %s registered for article %s (deposit %s)", article_doi, aid, result.deposit_id)
        return {
            "message": "DOI registered successfully with Crossref",
            "doi": article_doi,
            "doi_url": doi_url(article_doi),
            "status": result.status,
            "deposit_id": result.deposit_id,
            "registration": registration,
            "crossref_result": result.model_dump(mode="json"),
        }
