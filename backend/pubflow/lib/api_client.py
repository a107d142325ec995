from typing import Any, Callable, Optional

from supabase import Client, create_client

from pubflow.core.config import app_config


class _LazySupabaseClient:
    """
    延迟初始化 Supabase Client，避免在 import 时因为缺少环境变量导致整个模块导入失败。

    中文注释:
    - 单元测试通过构造函数注入 fake client，因此这里必须保证“可导入”。
    - 真实运行时，如果缺少 URL/KEY，在第一次访问 client 时抛出清晰错误即可。
    """

    def __init__(self, factory: Callable[[], Client], *, name: str):
        self._factory = factory
        self._name = name
        self._client: Optional[Client] = None

    def _get(self) -> Client:
        if self._client is None:
            self._client = self._factory()
        return self._client

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get(), item)

    def __repr__(self) -> str:
        state = "ready" if self._client is not None else "lazy"
        return f"<{self._name} ({state})>"


def _create_supabase_admin() -> Client:
    if not app_config.supabase_url:
        raise RuntimeError("SUPABASE_URL is required")
    if not app_config.supabase_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is required")
    return create_client(app_config.supabase_url, app_config.supabase_key)


# === 管理端 Supabase 客户端（延迟初始化） ===
# 流水线的所有读写都以 service_role 身份执行；权限由 EditorCapabilityResolver 在应用层判定。
supabase_admin: Client = _LazySupabaseClient(_create_supabase_admin, name="supabase_admin")  # type: ignore[assignment]
