from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pubflow.core.config import app_config
from pubflow.core.editor_capability import require_editor
from pubflow.core.errors import NotFoundError, StorageError, ValidationFailed
from pubflow.models.doi import (
    DOIRegistration,
    DOIRegistrationList,
    DOIRegistrationStatus,
    DOIStatusLookup,
)
from pubflow.services.crossref_client import doi_url
from pubflow.services.doi_service_common import logger, looks_like_missing_schema


class DOIServiceDataMixin:
    def _to_registration_model(self, row: dict[str, Any]) -> DOIRegistration:
        return DOIRegistration(**row)

    def _load_article(self, article_id: str) -> dict[str, Any]:
        resp = self.client.table("articles").select("*").eq("id", article_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFoundError("Article not found")
        return rows[0]

    def _load_article_authors(self, article_id: str) -> list[dict[str, Any]]:
        try:
            resp = (
                self.client.table("article_authors")
                .select("*")
                .eq("article_id", article_id)
                .order("sequence", desc=False)
                .execute()
            )
        except Exception as e:
            logger.warning("[DOI] article_authors load failed for %s (ignored): %s", article_id, e)
            return []
        return list(getattr(resp, "data", None) or [])

    def _load_journal_meta(self, journal_id: str | None) -> dict[str, Any]:
        if not journal_id:
            return {}
        try:
            resp = (
                self.client.table("journals")
                .select("id,title,issn,e_issn")
                .eq("id", str(journal_id))
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning("[DOI] journal metadata load failed for %s (ignored): %s", journal_id, e)
            return {}
        rows = getattr(resp, "data", None) or []
        return rows[0] if rows else {}

    def _load_registration_row(self, *, article_id: str, doi: str) -> Optional[dict[str, Any]]:
        try:
            resp = (
                self.client.table("doi_registrations")
                .select("*")
                .eq("article_id", article_id)
                .eq("doi", doi)
                .limit(1)
                .execute()
            )
        except Exception as e:
            if looks_like_missing_schema(str(e)):
                raise StorageError("DB not migrated: doi_registrations table missing") from e
            logger.error("[DOI] registration lookup failed for %s: %s", doi, e, exc_info=True)
            raise StorageError("Failed to load DOI registration") from e
        rows = getattr(resp, "data", None) or []
        return rows[0] if rows else None

    def _build_public_article_url(self, article_id: str) -> str:
        return f"{app_config.public_base_url}/article/{article_id}"

    def _build_deposit_payload(
        self,
        article: dict[str, Any],
        authors: list[dict[str, Any]],
        journal: dict[str, Any],
        doi: str,
    ) -> dict[str, Any]:
        article_id = str(article.get("id") or "")
        published = str(article.get("published_date") or article.get("created_at") or "")
        if not published:
            published = datetime.now(timezone.utc).isoformat()

        year = article.get("year")
        if not year and published[:4].isdigit():
            year = int(published[:4])

        author_payload = []
        for a in authors:
            author_payload.append(
                {
                    "given": a.get("first_name") or "",
                    "family": a.get("last_name") or "",
                    "affiliation": a.get("affiliation") or None,
                    "orcid": a.get("orcid_id") or None,
                }
            )

        if not journal.get("title") and self.config:
            journal = {**journal, "title": self.config.journal_title}

        return {
            "id": article_id,
            "doi": doi,
            "title": str(article.get("title") or "Untitled"),
            "abstract": article.get("abstract") or None,
            "authors": author_payload,
            "journal": {
                "title": journal.get("title") or "",
                "issn": journal.get("issn") or None,
                "e_issn": journal.get("e_issn") or None,
            },
            "volume": article.get("volume"),
            "issue": article.get("issue"),
            "year": year,
            "pages": article.get("pages"),
            "keywords": list(article.get("keywords") or []),
            "publication_date": published,
            "url": self._build_public_article_url(article_id),
        }

    def _persist_article_doi(self, article: dict[str, Any], doi: str) -> None:
        if str(article.get("doi") or "").strip():
            return
        # 中文注释: 回写 articles.doi，is null 条件保证重复注册时是空写。
        try:
            (
                self.client.table("articles")
                .update({"doi": doi})
                .eq("id", str(article["id"]))
                .is_("doi", "null")
                .execute()
            )
        except Exception as e:
            logger.warning("[DOI] articles.doi update failed (ignored): %s", e)

    def _journal_for_registration(self, doi: str, row: Optional[dict[str, Any]]) -> Optional[str]:
        q = self.client.table("articles").select("id,journal_id")
        q = q.eq("id", str(row.get("article_id"))) if row else q.eq("doi", doi)
        rows = getattr(q.limit(1).execute(), "data", None) or []
        if not rows:
            return None
        return str(rows[0].get("journal_id") or "") or None

    async def list_registrations(
        self,
        *,
        actor_id: Optional[str],
        journal_id: Optional[str] = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> DOIRegistrationList:
        page = max(1, int(page))
        limit = max(1, min(int(limit), 100))
        wanted = (status or "all").strip().lower()
        if wanted != "all" and wanted not in {s.value for s in DOIRegistrationStatus}:
            raise ValidationFailed(f"Unknown registration status filter: {status}")

        jid = str(journal_id or "").strip() or None
        require_editor(self.capability, user_id=actor_id, journal_id=jid, action="view DOI registrations")

        q = self.client.table("doi_registrations").select("*", count="exact")
        if jid:
            articles = self.client.table("articles").select("id").eq("journal_id", jid).execute()
            article_ids = [str(a["id"]) for a in (getattr(articles, "data", None) or [])]
            if not article_ids:
                return DOIRegistrationList(items=[], total=0, page=page, limit=limit)
            q = q.in_("article_id", article_ids)
        if wanted != "all":
            q = q.eq("status", wanted)
        start = (page - 1) * limit
        q = q.order("created_at", desc=True).range(start, start + limit - 1)
        resp = q.execute()

        rows = getattr(resp, "data", None) or []
        total = int(getattr(resp, "count", None) or 0)
        if total == 0 and rows:
            total = len(rows)
        return DOIRegistrationList(
            items=[self._to_registration_model(r) for r in rows],
            total=total,
            page=page,
            limit=limit,
        )

    async def get_status(self, doi: str, *, actor_id: Optional[str], live: bool = False) -> DOIStatusLookup:
        """
        Stored registration state of a DOI, optionally merged with a live
        Crossref lookup.

        中文注释: 按 DOI 所属文章的期刊鉴权；找不到文章时只有全局 super_admin 可查。
        """
        value = str(doi or "").strip()
        if not value:
            raise ValidationFailed("DOI is required")

        resp = (
            self.client.table("doi_registrations")
            .select("*")
            .eq("doi", value)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        require_editor(
            self.capability,
            user_id=actor_id,
            journal_id=self._journal_for_registration(value, rows[0] if rows else None),
            action="view DOI status",
        )
        registration = self._to_registration_model(rows[0]) if rows else None

        lookup = DOIStatusLookup(
            doi=value,
            url=doi_url(value),
            status=registration.status.value if registration else "unknown",
            registered=bool(registration and registration.status == DOIRegistrationStatus.REGISTERED),
            registration=registration,
        )
        if live:
            remote = await self.crossref.get_doi_status(value)
            lookup.crossref_status = str(remote.get("status") or "")
            lookup.registered_date = remote.get("registered_date")
        return lookup
