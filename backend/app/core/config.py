from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import os

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=os.getenv("ENV_FILE", ".env"), extra="ignore")

    APP_NAME: str = "esim-hub"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    APP_BASE_URL: str = "http://localhost:3000"

    DATABASE_URL: str

    REDIS_URL: str = "redis://localhost:6379/0"

    CORS_ORIGINS: str = ""  # comma separated
    HTTP_TIMEOUT_SECONDS: int = 15

    # admin actions (refunds) require "Authorization: Bearer <ADMIN_API_TOKEN>"
    ADMIN_API_TOKEN: str = ""

    # payment processor (Stripe-style signed webhooks)
    PAYMENT_WEBHOOK_SECRET: str = ""
    PAYMENT_WEBHOOK_TOLERANCE_SECONDS: int = 300
    # secret API key for refunds; unset means "log and skip"
    PAYMENT_API_KEY: str = ""

    # provisioning / metering partner
    ESIMACCESS_API_URL: str = "https://api.esimaccess.com/api/v1/open"
    ESIMACCESS_ACCESS_CODE: str = ""
    ESIMACCESS_WEBHOOK_SECRET: str = ""
    ESIMACCESS_RATE_LIMIT_PER_SECOND: int = 8
    ESIMACCESS_USAGE_MAX_BATCH: int = 10

    # inbound notification intake, per client ip
    WEBHOOK_RATE_LIMIT_PER_MINUTE: int = 240

    # downstream collaborators; unset means "log and skip"
    COMMISSION_LEDGER_URL: str = ""
    EMAIL_DISPATCH_URL: str = ""

    DEPLETION_FLOOR_BYTES: int = 1024 * 1024

    # reconciliation schedules
    EXPIRY_SYNC_SECONDS: int = 3600
    EXPIRY_SYNC_BATCH_SIZE: int = 500
    USAGE_SYNC_SECONDS: int = 3 * 3600
    USAGE_SYNC_BATCH_SIZE: int = 500
    STUCK_ORDER_SYNC_SECONDS: int = 300
    STUCK_ORDER_BATCH_SIZE: int = 50
    STUCK_ORDER_GRACE_MINUTES: int = 5
    PROVISIONING_GIVE_UP_HOURS: int = 48

    # fallback activation signal when the partner never reports one
    ACTIVATE_ON_DETAIL_READ: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        if not self.CORS_ORIGINS:
            return []
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
