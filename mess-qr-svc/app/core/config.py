from __future__ import annotations
from functools import cached_property
from pydantic_settings import BaseSettings
from pydantic import Field
import secrets

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field("http://localhost:8001/.well-known/jwks.json", alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # Mess QR tokens
    qr_secret: str | None = Field(default=None, alias="QR_SECRET")
    qr_max_age_days: int | None = Field(default=None, alias="QR_MAX_AGE_DAYS")  # None = valid until rotated
    qr_image_box_size: int = Field(default=10, alias="QR_IMAGE_BOX_SIZE")
    qr_image_border: int = Field(default=2, alias="QR_IMAGE_BORDER")

    # Entitlements / stats
    mess_timezone: str = Field(default="Asia/Kolkata", alias="MESS_TIMEZONE")
    stats_expiring_soon_days: int = Field(default=30, alias="STATS_EXPIRING_SOON_DAYS")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=30, alias="RL_MAX_REQS")

    # NATS
    nats_enabled: bool = Field(default=True, alias="NATS_ENABLED")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_verification: str = Field("mess.verifications.recorded", alias="NATS_SUBJECT_VERIFICATION")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @cached_property
    def qr_secret_effective(self) -> str:
        # generated once per process; printed codes stop working on restart unless QR_SECRET is set
        return self.qr_secret or secrets.token_urlsafe(48)

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
