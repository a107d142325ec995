from __future__ import annotations

from typing import Any, Optional

from pubflow.core.audit import AuditLogger
from pubflow.core.config import CrossrefConfig, get_crossref_timeout
from pubflow.core.editor_capability import EditorCapabilityOracle, EditorCapabilityResolver
from pubflow.lib.api_client import supabase_admin
from pubflow.services.crossref_client import CrossrefClient
from pubflow.services.doi_service_data import DOIServiceDataMixin
from pubflow.services.doi_service_workflow import DOIServiceWorkflowMixin


class DOIService(DOIServiceDataMixin, DOIServiceWorkflowMixin):
    """
    DOI/Crossref 注册服务。

    中文注释:
    - `doi_registrations` 以 (article_id, doi) 为唯一键，每次尝试都 upsert 同一行。
    - retry_count 在同一键上单调递增；注册失败时行里保留 error_message，后续人工重试从当前计数继续。
    - 外部调用带超时，超时按失败处理。
    """

    def __init__(
        self,
        config: Optional[CrossrefConfig] = None,
        *,
        client: Any | None = None,
        crossref_client: CrossrefClient | None = None,
        capability: EditorCapabilityOracle | None = None,
        audit: AuditLogger | None = None,
        timeout: float | None = None,
    ):
        self.config = config
        self.client = client or supabase_admin
        self.crossref = crossref_client or CrossrefClient(config)
        self.capability = capability or EditorCapabilityResolver(self.client)
        self.audit = audit or AuditLogger(self.client)
        self.timeout = float(timeout) if timeout is not None else get_crossref_timeout(config)
