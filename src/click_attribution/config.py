"""Application settings using Pydantic Settings"""
from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DIRECT_POLICY_RECORD = "direct_record"
DIRECT_POLICY_SESSION = "click_session"


class Settings(BaseSettings):
    DATABASE_URL: str

    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    STORE_CONNECT_RETRIES: int = 3
    STORE_CONNECT_RETRY_DELAY_SECONDS: float = 2.0
    STORE_CONNECT_TIMEOUT_SECONDS: int = 10

    PHONE_COUNTRY_CODE: str = "91"
    PHONE_NATIONAL_NUMBER_LENGTH: int = 10
    CHANNEL_MATCH_WINDOW_MINUTES: int = 5
    CHANNEL_MATCH_BATCH_LIMIT: int = 5
    CONTEXT_TOKEN_SECRET: str = ""

    DIRECT_ENGAGEMENT_POLICY: str = DIRECT_POLICY_RECORD
    DUPLICATE_WINDOW_MINUTES: int = 10

    SHEETS_SPREADSHEET_ID: str = ""
    SHEETS_SHEET_NAME: str = "Sheet1"
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    EXPORT_BATCH_SIZE: int = 250
    EXPORT_MAX_RETRIES: int = 3
    EXPORT_RETRY_DELAY_SECONDS: float = 2.0
    EXPORT_INCLUDE_UNATTRIBUTED: bool = False
    EXPORT_ON_ENGAGEMENT: bool = True
    LAST_MESSAGE_MAX_LENGTH: int = 150
    CONTACT_NAME_MAX_LENGTH: int = 100
    REMOTE_CALL_TIMEOUT_SECONDS: float = 30.0

    SCHEDULER_ENABLED: bool = True
    SYNC_INTERVAL_MINUTES: int = 5

    GCP_PROJECT_ID: str = ""
    WEBHOOK_TOKEN_SECRET_NAME: str = "webhook-token"
    WEBHOOK_TOKEN: str = ""

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = ["dev", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of: {allowed}")
        return v

    @field_validator("DIRECT_ENGAGEMENT_POLICY")
    @classmethod
    def validate_direct_policy(cls, v: str) -> str:
        allowed = [DIRECT_POLICY_RECORD, DIRECT_POLICY_SESSION]
        if v not in allowed:
            raise ValueError(f"DIRECT_ENGAGEMENT_POLICY must be one of: {allowed}")
        return v

    @field_validator("PHONE_COUNTRY_CODE")
    @classmethod
    def validate_country_code(cls, v: str) -> str:
        v = v.strip().lstrip("+")
        if not v.isdigit():
            raise ValueError("PHONE_COUNTRY_CODE must contain digits only")
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "prod"

    @property
    def uses_secret_manager(self) -> bool:
        return bool(self.GCP_PROJECT_ID)

    @property
    def sheets_configured(self) -> bool:
        return bool(self.SHEETS_SPREADSHEET_ID)

    def validate_for_production(self) -> None:
        if self.is_production:
            errors = []
            if not self.uses_secret_manager and not self.WEBHOOK_TOKEN:
                errors.append("GCP_PROJECT_ID or WEBHOOK_TOKEN must be set in production")
            if not self.sheets_configured:
                errors.append("SHEETS_SPREADSHEET_ID must be set in production")
            if errors:
                raise ValueError("; ".join(errors))

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()


def get_settings() -> Settings:
    return settings
