from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase settings
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None

    # Request signing for edge function calls
    INTERNAL_SIGNING_SECRET: str | None = None

    # Only honour X-Forwarded-For behind a trusted load balancer
    TRUST_X_FORWARDED_FOR: bool = False

    # =================================================================
    # EDGE FUNCTION SETTINGS
    # =================================================================
    EDGE_FUNCTION_TIMEOUT: float = 30.0
    ONBOARDING_FUNCTION_PATH: str = "/functions/v1/onboarding"
    EDGE_FUNCTIONS_PATH: str = "/functions/v1"

    # Audit trail shipping
    AUDIT_RPC_NAME: str = "insert_audit_logs_batch"
    AUDIT_REMOTE_ENABLED: bool = True
    # Ship rows from background tasks so the audit store never delays a response
    AUDIT_BACKGROUND_WRITES: bool = True
    AUDIT_WRITE_TIMEOUT: float = 5.0

    # =================================================================
    # REQUEST COALESCER SETTINGS
    # =================================================================
    COALESCER_TTL_SECONDS: float = 60.0
    COALESCER_MAX_ENTRIES: int = 100
    COALESCER_SWEEP_INTERVAL: float = 60.0  # 1 minute

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("SUPABASE_URL", "SUPABASE_KEY", "INTERNAL_SIGNING_SECRET", mode="before")
    @classmethod
    def empty_string_to_none(cls, value: str | None) -> str | None:
        if value == "":
            return None
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_KEY)

    def onboarding_function_url(self) -> str:
        """
        Base URL of the onboarding edge function, e.g.
        https://abc.supabase.co -> https://abc.supabase.co/functions/v1/onboarding
        """
        base = (self.SUPABASE_URL or "").rstrip("/")
        return f"{base}{self.ONBOARDING_FUNCTION_PATH}"

    def edge_functions_url(self) -> str:
        base = (self.SUPABASE_URL or "").rstrip("/")
        return f"{base}{self.EDGE_FUNCTIONS_PATH}"

    def audit_rpc_url(self) -> str:
        base = (self.SUPABASE_URL or "").rstrip("/")
        return f"{base}/rest/v1/rpc/{self.AUDIT_RPC_NAME}"


settings = Settings()
