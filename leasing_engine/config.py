from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_version: str = "2026-10-01.v1"
    database_url: str = "sqlite:///./leasing.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Auth / tenancy ----
    auth_mode: str = "dev"  # dev|header; real identity lives upstream
    dev_auto_provision: bool = True

    # Dev header names
    dev_header_org_slug: str = "X-Org-Slug"
    dev_header_user_email: str = "X-User-Email"
    dev_header_user_role: str = "X-User-Role"

    # ---- Celery ----
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None

    # ---- Payments ----
    payments_provider: str = "stub"

    # ---- Application intake ----
    draft_lookback_days: int = 7
    session_ttl_days: int = 30
    draft_ttl_days: int = 30
    co_applicant_inactivity_days: int = 7

    # ---- Queue ----
    queue_stale_days: int = 7
    sla_warning_hours: int = 24
    sla_breach_hours: int = 48

    # ---- Background jobs ----
    leasing_jobs_enabled: bool = False
    leasing_jobs_interval_seconds: int = 300

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
