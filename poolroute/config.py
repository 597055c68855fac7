# poolroute/config.py
from datetime import time
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    run_mode: Literal["all", "web", "worker"] = "all"
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5

    # Security
    admin_token: str | None = None
    allowed_origins: list[str] = ["*"]

    # Dispatch schedule. All wall-clock values are read in dispatch_timezone,
    # regardless of where the operator or the server happens to be.
    dispatch_timezone: str = "America/New_York"
    morning_digest_time: str = "06:30"   # full route plan
    midday_digest_time: str = "12:00"    # first delta
    evening_digest_time: str = "21:00"   # second delta
    scheduler_enabled: bool = False      # Master switch, enable explicitly in worker service
    scheduler_tick_seconds: float = 30.0

    # Customer notification queue drain
    customer_notification_poll_seconds: int = 120
    customer_notification_batch_size: int = 30

    # Delivery
    delivery_timeout_seconds: float = 10.0
    digest_max_concurrency: int = 1          # 1 = technicians processed one after another
    dispatch_lease_ttl_seconds: int = 600    # renewed between technician groups after half the TTL

    # Mail transport (SMTP)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None

    # Route API (used by the HTTP commit gateway of an edit session)
    route_api_base_url: str = "http://localhost:8000"

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.dispatch_timezone)

    @property
    def smtp_enabled(self) -> bool:
        """Check if the SMTP transport is configured"""
        return bool(
            self.smtp_host
            and self.smtp_user
            and self.smtp_password
            and self.smtp_sender
        )

    @property
    def smtp_sender(self) -> str | None:
        return self.smtp_from or self.smtp_user

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
            f"?connect_timeout={self.pg_connect_timeout}"
        )

    def digest_times(self) -> dict[str, time]:
        """Window name -> local wall-clock time of its pass."""
        return {
            "MORNING": parse_clock(self.morning_digest_time),
            "MIDDAY": parse_clock(self.midday_digest_time),
            "EVENING": parse_clock(self.evening_digest_time),
        }

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("admin_token", self.admin_token),
            ("database_url", self.database_url),
        ]
        if self.run_mode in ("all", "worker") and self.scheduler_enabled:
            required_fields.extend([
                ("smtp_host", self.smtp_host),
                ("smtp_user", self.smtp_user),
                ("smtp_password", self.smtp_password),
            ])

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def parse_clock(value: str) -> time:
    """Parse ``"HH:MM"`` into a :class:`datetime.time`."""
    hour, _, minute = value.strip().partition(":")
    return time(int(hour), int(minute or 0))


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.admin_token:
        warnings.append("admin_token is not set (route and admin endpoints will reject every request).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if not s.smtp_enabled:
        warnings.append("SMTP is not configured (every digest and customer email will be logged as FAILED).")

    if s.digest_max_concurrency > 1:
        warnings.append(
            f"digest_max_concurrency={s.digest_max_concurrency}: technicians are processed in parallel "
            "(each technician's create -> send -> claim sequence stays ordered)."
        )

    try:
        s.digest_times()
    except ValueError:
        warnings.append("digest times must be HH:MM (morning/midday/evening_digest_time).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
