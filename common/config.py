import os
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator


_ENV_PREFIX = "KWH_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _is_on(name: str, default: str = "off") -> bool:
    return (_env(name, default) or "").strip().casefold() in {"1", "true", "yes", "on"}


def _parse_ids(raw: Optional[str]) -> list[int]:
    if not raw:
        return []
    return [int(part) for part in raw.replace(";", ",").split(",") if part.strip()]


class Settings(BaseModel):
    admin_ids: list[int] = Field(default_factory=list)
    admin_chat_id: Optional[int] = None

    invite_code_enabled: bool = True
    invite_code_expiry_days: int = Field(default=7, ge=1)

    max_amount: Decimal = Field(default=Decimal("10000"), gt=0)
    low_balance_threshold: Decimal = Field(default=Decimal("20"), ge=0)

    idle_timeout_minutes: int = Field(default=30, ge=1)
    reap_interval_minutes: int = Field(default=60, ge=1)

    history_page_size: int = Field(default=10, ge=1)
    history_limit: int = Field(default=100, ge=1)
    latest_history_limit: int = Field(default=10, ge=1)

    write_retries: int = Field(default=3, ge=1)

    log_level: str = "INFO"
    test_mode: bool = False

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @property
    def notification_targets(self) -> list[int]:
        """Where admin notifications go: the admin chat if set, else every admin."""
        if self.admin_chat_id is not None:
            return [self.admin_chat_id]
        return list(self.admin_ids)

    @classmethod
    def from_env(cls) -> "Settings":
        data: dict = {
            "admin_ids": _parse_ids(_env("ADMIN_IDS")),
            "invite_code_enabled": _is_on("INVITE_CODE_ENABLED", "on"),
            "test_mode": _is_on("TEST_MODE"),
        }
        chat_id = _env("ADMIN_CHAT_ID")
        if chat_id:
            data["admin_chat_id"] = int(chat_id)

        optional = {
            "invite_code_expiry_days": "INVITE_CODE_EXPIRY_DAYS",
            "max_amount": "MAX_AMOUNT",
            "low_balance_threshold": "LOW_BALANCE_THRESHOLD",
            "idle_timeout_minutes": "IDLE_TIMEOUT_MINUTES",
            "reap_interval_minutes": "REAP_INTERVAL_MINUTES",
            "history_page_size": "HISTORY_PAGE_SIZE",
            "history_limit": "HISTORY_LIMIT",
            "latest_history_limit": "LATEST_HISTORY_LIMIT",
            "write_retries": "WRITE_RETRIES",
            "log_level": "LOG_LEVEL",
        }
        for field_name, env_name in optional.items():
            raw = _env(env_name)
            if raw is not None and raw.strip():
                data[field_name] = raw.strip()
        return cls.model_validate(data)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
