from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for background workers (RLS bypass)

    # Inbound webhooks
    webhook_secret: Optional[str] = None
    webhook_signature_header: str = "X-Webhook-Signature"
    webhook_require_signature: bool = True  # Only enforced in production when no secret is set
    webhook_rate_limit: str = "300/minute"

    # Processing retries
    webhook_max_retries: int = 3
    webhook_retry_base_delay: float = 5.0  # seconds
    webhook_retry_max_delay: float = 300.0  # seconds
    retry_scheduler_enabled: bool = True
    retry_scheduler_interval: int = 60  # seconds
    webhook_pending_grace_seconds: int = 120  # pending events older than this are swept up

    # Outbound delivery
    webhook_delivery_timeout: float = 10.0

    # Monitoring thresholds
    long_execution_threshold_ms: int = 300000
    memory_peak_threshold_bytes: int = 1024 * 1024 * 1024
    state_retention_days: int = 30

    # App
    app_name: str = "workflow-orchestrator"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",
        extra="ignore"
    )


settings = Settings()
