from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


# ----------------------------
# Config & Constants
# ----------------------------
@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./cicada.db"
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    # defaults to the pool size
    db_gate_limit: Optional[int] = None

    # 'mock' | 'stripe'
    payment_backend: str = "mock"
    mock_secret: str = "supersecret"
    mock_webhook_url: str = "http://localhost:8000/payments/webhook"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # 'outbox' | 'resend'
    mail_backend: str = "outbox"
    resend_api_key: Optional[str] = None
    mail_from: str = "Cicada Collective <noreply@mucicada.com>"
    mail_attach_pdf: bool = True

    session_secret: str = "dev-secret-change-me"
    admin_username: str = "admin"
    admin_password: str = "supasecret"

    public_base_url: str = "http://localhost:8000"

    log_level: str = "INFO"
    log_json: bool = False

    def engine_options(self) -> dict:
        return {
            "pool_size": self.db_pool_size,
            "max_overflow": self.db_max_overflow,
            "pool_timeout": self.db_pool_timeout,
            "gate_limit": self.db_gate_limit,
        }

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            database_url=os.environ.get("DATABASE_URL", defaults.database_url),
            db_pool_size=_env_int("DB_POOL_SIZE", defaults.db_pool_size),
            db_max_overflow=_env_int(
                "DB_MAX_OVERFLOW", defaults.db_max_overflow
            ),
            db_pool_timeout=_env_int(
                "DB_POOL_TIMEOUT", defaults.db_pool_timeout
            ),
            db_gate_limit=_env_int("DB_GATE_LIMIT", defaults.db_gate_limit),
            payment_backend=os.environ.get(
                "PAYMENT_BACKEND", defaults.payment_backend
            ).lower(),
            mock_secret=os.environ.get("MOCK_SECRET", defaults.mock_secret),
            mock_webhook_url=os.environ.get(
                "MOCK_WEBHOOK_URL", defaults.mock_webhook_url
            ),
            stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET"),
            mail_backend=os.environ.get(
                "MAIL_BACKEND", defaults.mail_backend
            ).lower(),
            resend_api_key=os.environ.get("RESEND_API_KEY"),
            mail_from=os.environ.get("MAIL_FROM", defaults.mail_from),
            mail_attach_pdf=_env_bool(
                "MAIL_ATTACH_PDF", defaults.mail_attach_pdf
            ),
            session_secret=os.environ.get(
                "SESSION_SECRET", defaults.session_secret
            ),
            admin_username=os.environ.get(
                "ADMIN_USERNAME", defaults.admin_username
            ),
            admin_password=os.environ.get(
                "ADMIN_PASSWORD", defaults.admin_password
            ),
            public_base_url=os.environ.get(
                "PUBLIC_BASE_URL", defaults.public_base_url
            ).rstrip("/"),
            log_level=os.environ.get("LOG_LEVEL", defaults.log_level).upper(),
            log_json=_env_bool("LOG_JSON", defaults.log_json),
        )
