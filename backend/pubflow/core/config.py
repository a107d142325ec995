import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    """
    Application environment config.
    """

    env: str  # 'development', 'staging', 'production'
    is_staging: bool
    supabase_url: str
    supabase_key: str
    public_base_url: str

    @staticmethod
    def from_env() -> "AppConfig":
        env = (os.environ.get("APP_ENV") or "development").strip().lower()

        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        # 中文注释: 核心流水线一律走 service_role（跨租户写 articles/doi_registrations），
        # 本地开发缺省时回退到 SUPABASE_KEY。
        supabase_key = (
            os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
            or os.environ.get("SUPABASE_KEY")
            or ""
        ).strip()
        public_base_url = (
            os.environ.get("PUBLIC_APP_URL") or "http://localhost:3000"
        ).strip().rstrip("/")

        return AppConfig(
            env=env,
            is_staging=env == "staging",
            supabase_url=supabase_url,
            supabase_key=supabase_key,
            public_base_url=public_base_url,
        )


# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class CrossrefConfig:
    """
    Crossref DOI deposit configuration.
    """

    depositor_email: str
    depositor_password: str
    doi_prefix: str
    api_url: str
    metadata_url: str
    journal_title: str
    journal_issn: Optional[str]
    timeout_seconds: float = 30.0

    @staticmethod
    def from_env() -> Optional["CrossrefConfig"]:
        depositor_email = (os.environ.get("CROSSREF_DEPOSITOR_EMAIL") or "").strip()
        if not depositor_email:
            # 允许为空，此时注册请求会被记录为 failed，而不是让进程崩溃
            return None

        depositor_password = (
            os.environ.get("CROSSREF_DEPOSITOR_PASSWORD") or ""
        ).strip()
        doi_prefix = (os.environ.get("CROSSREF_DOI_PREFIX") or "10.12345").strip()
        api_url = (
            os.environ.get("CROSSREF_API_URL")
            or "https://test.crossref.org/servlet/deposit"
        ).strip()
        metadata_url = (
            os.environ.get("CROSSREF_METADATA_URL") or "https://api.crossref.org"
        ).strip().rstrip("/")
        journal_title = (os.environ.get("JOURNAL_TITLE") or "PubFlow Journal").strip()
        journal_issn = (os.environ.get("JOURNAL_ISSN") or "").strip() or None
        timeout_seconds = max(1.0, _env_float("CROSSREF_TIMEOUT_SECONDS", 30.0))

        return CrossrefConfig(
            depositor_email=depositor_email,
            depositor_password=depositor_password,
            doi_prefix=doi_prefix,
            api_url=api_url,
            metadata_url=metadata_url,
            journal_title=journal_title,
            journal_issn=journal_issn,
            timeout_seconds=timeout_seconds,
        )


def get_crossref_timeout(config: Optional[CrossrefConfig]) -> float:
    """
    External deposit timeout in seconds.

    Without a deposit config we still need a bound for the registrar's
    wait, so fall back to the env value (or 30s).
    """
    if config is not None:
        return config.timeout_seconds
    return max(1.0, _env_float("CROSSREF_TIMEOUT_SECONDS", 30.0))


@dataclass(frozen=True)
class SentryConfig:
    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        environment = (
            os.environ.get("SENTRY_ENVIRONMENT") or os.environ.get("APP_ENV") or "development"
        ).strip()
        traces_sample_rate = min(1.0, max(0.0, _env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0)))
        return SentryConfig(
            enabled=_env_bool("SENTRY_ENABLED", True),
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
        )
