import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from dotenv import load_dotenv


class ConfigurationError(RuntimeError):
    pass


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    jwt_secret: str
    mongo_uri: str = "mongodb://localhost:27017/jewel_orders"
    mongo_timeout_ms: int = 5000
    token_ttl: timedelta = timedelta(days=7)
    cookie_secure: bool = False
    cors_allowed_origins: List[str] = field(default_factory=list)
    trusted_proxy_hops: int = 1
    default_admin_email: str = ""
    resend_api_key: str = ""
    decision_sender_email: str = "accounts@jewel-orders.app"
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        load_dotenv()

        jwt_secret = overrides.pop("jwt_secret", None) or (
            os.getenv("JWT_SECRET") or os.getenv("JWT_SECRET_KEY") or ""
        ).strip()
        if not jwt_secret:
            raise ConfigurationError(
                "JWT_SECRET is not set; refusing to start without a signing secret."
            )

        environment = (os.getenv("APP_ENV") or os.getenv("FLASK_ENV") or "").strip().lower()
        origins = [
            origin.strip()
            for origin in (os.getenv("CORS_ALLOWED_ORIGINS") or "").split(",")
            if origin.strip()
        ]

        values = dict(
            jwt_secret=jwt_secret,
            mongo_uri=(os.getenv("MONGO_URI") or cls.mongo_uri).strip(),
            mongo_timeout_ms=max(_env_int("MONGO_TIMEOUT_MS", cls.mongo_timeout_ms), 1),
            token_ttl=timedelta(days=max(_env_int("TOKEN_TTL_DAYS", 7), 1)),
            cookie_secure=_env_flag("COOKIE_SECURE", environment == "production"),
            cors_allowed_origins=origins,
            trusted_proxy_hops=max(_env_int("TRUSTED_PROXY_HOPS", 1), 0),
            default_admin_email=(os.getenv("DEFAULT_ADMIN_EMAIL") or "").strip().lower(),
            resend_api_key=(os.getenv("RESEND_API_KEY") or "").strip(),
            decision_sender_email=(
                os.getenv("DECISION_SENDER_EMAIL") or cls.decision_sender_email
            ).strip(),
            telegram_bot_token=(os.getenv("TELEGRAM_BOT_TOKEN") or "").strip(),
            telegram_chat_id=(os.getenv("TELEGRAM_CHAT_ID") or "").strip(),
            telegram_timeout_seconds=float(_env_int("TELEGRAM_TIMEOUT_SECONDS", 5)),
        )
        values.update(overrides)
        return cls(**values)

    def mongo_client_options(self) -> dict:
        return {
            "serverSelectionTimeoutMS": self.mongo_timeout_ms,
            "connectTimeoutMS": self.mongo_timeout_ms,
            "socketTimeoutMS": self.mongo_timeout_ms,
        }

    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def decision_email_enabled(self) -> bool:
        return bool(self.resend_api_key)
