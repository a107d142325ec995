from __future__ import annotations

import logging
from typing import Any, Optional

from pubflow.core.errors import ErrorKind, ExternalServiceError, PipelineError
from pubflow.models.article import PublishRequest
from pubflow.models.results import ErrorPayload, PipelineResult
from pubflow.services.decision_service import DecisionService
from pubflow.services.doi_service import DOIService
from pubflow.services.publishing_service import PublishingService

logger = logging.getLogger("pubflow")


class PipelineService:
    """
    Sequences decision -> publish -> DOI registration for the admin layer.

    中文注释:
    - 每个阶段都是一次独立的同步单元，不持有跨请求的锁。
    - Validation/Authorization/NotFound/Conflict/InvalidState 对当前阶段是终止性的；
      DOI 注册失败只降级为“已发布，DOI 待重试”。
    """

    def __init__(
        self,
        *,
        decisions: DecisionService | None = None,
        publishing: PublishingService | None = None,
        doi: DOIService | None = None,
    ) -> None:
        self.decisions = decisions or DecisionService()
        self.publishing = publishing or PublishingService()
        self.doi = doi or DOIService()

    def decide(
        self,
        *,
        submission_id: str,
        decision_type: str,
        actor_id: Optional[str],
        comments: Optional[str] = None,
    ) -> PipelineResult:
        try:
            outcome = self.decisions.apply_decision(
                submission_id=submission_id,
                decision_type=decision_type,
                actor_id=actor_id,
                comments=comments,
            )
        except PipelineError as exc:
            logger.info("[Pipeline] decide %s rejected: %s (%s)", submission_id, exc.message, exc.kind.value)
            return PipelineResult.from_error(exc)
        return PipelineResult.ok(outcome.model_dump())

    async def publish(
        self,
        *,
        submission_id: str,
        actor_id: Optional[str],
        overrides: PublishRequest | None = None,
    ) -> PipelineResult:
        overrides = overrides or PublishRequest()
        try:
            outcome = self.publishing.publish(
                submission_id=submission_id,
                actor_id=actor_id,
                overrides=overrides,
            )
        except PipelineError as exc:
            logger.info("[Pipeline] publish %s rejected: %s (%s)", submission_id, exc.message, exc.kind.value)
            return PipelineResult.from_error(exc)

        data: dict[str, Any] = outcome.model_dump()
        warnings = list(outcome.warnings)
        details: dict[str, Any] | None = None

        if overrides.doi and overrides.register_doi:
            article_id = str(outcome.article["id"])
            try:
                registered = await self.doi.register(
                    article_id=article_id,
                    actor_id=actor_id,
                    doi=overrides.doi,
                )
                data["doi_registration"] = registered["registration"]
            except ExternalServiceError as exc:
                # 文章已提交；DOI 失败只作为部分成功返回，供调用方单独重试
                data["doi_registration"] = exc.registration
                warnings.append(exc.message)
                details = {
                    "doi_error": ErrorPayload(kind=exc.kind, message=exc.message).model_dump(mode="json"),
                    "crossref_response": exc.response,
                }
            except PipelineError as exc:
                warnings.append(f"DOI registration skipped: {exc.message}")
                details = {"doi_error": exc.to_payload()}
            except Exception as exc:
                # 中文注释: 文章与投稿状态已提交，任何注册阶段的存储异常都不能把结果变成 500
                logger.error("[Pipeline] DOI step crashed for article %s: %s", article_id, exc, exc_info=True)
                warnings.append(f"DOI registration failed: {exc}")
                details = {
                    "doi_error": ErrorPayload(kind=ErrorKind.STORAGE, message=str(exc)).model_dump(mode="json"),
                }

        return PipelineResult.ok(data, warnings=warnings, details=details, http_status=201)

    async def retry_doi(
        self,
        *,
        article_id: str,
        actor_id: Optional[str],
        doi: Optional[str] = None,
    ) -> PipelineResult:
        try:
            registered = await self.doi.register(article_id=article_id, actor_id=actor_id, doi=doi)
        except ExternalServiceError as exc:
            result = PipelineResult.from_error(exc, data={"registration": exc.registration})
            result.details = {"crossref_response": exc.response, **(exc.details or {})}
            return result
        except PipelineError as exc:
            return PipelineResult.from_error(exc)
        return PipelineResult.ok(registered)
