import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


# --- robust env loading ---
def _env(name, *alts):
    for k in (name,) + alts:
        v = os.getenv(k)
        if v and isinstance(v, str) and v.strip() and v.strip() not in ("...", "<set-me>", "CHANGE_ME"):
            return v.strip().strip('"').strip("'")
    return None


def _env_int(name: str, default: int) -> int:
    v = _env(name)
    try:
        return int(v) if v is not None else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: str = "sqlite+aiosqlite:///./paysync.db"
    webhook_secret: Optional[str] = None
    webhook_signature_header: str = "X-Splynx-Signature"
    webhook_allow_unsigned: bool = False
    uisp_api_url: str = "http://localhost/crm/api/v1.0"
    uisp_app_key: Optional[str] = None
    uisp_payment_method_id: Optional[str] = None
    uisp_timeout: float = 20.0
    uisp_sync_page_size: int = 100
    default_currency: str = "KES"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        return cls(
            database_url=_env("DATABASE_URL") or cls.database_url,
            webhook_secret=_env("SPLYNX_WEBHOOK_SECRET", "WEBHOOK_SECRET"),
            webhook_signature_header=_env("WEBHOOK_SIGNATURE_HEADER") or cls.webhook_signature_header,
            webhook_allow_unsigned=_env_bool("WEBHOOK_ALLOW_UNSIGNED"),
            uisp_api_url=(_env("UISP_API_URL") or cls.uisp_api_url).rstrip("/"),
            uisp_app_key=_env("UISP_APP_KEY", "UISP_API_KEY"),
            uisp_payment_method_id=_env("UISP_PAYMENT_METHOD_ID"),
            uisp_timeout=float(_env_int("UISP_TIMEOUT", 20)),
            uisp_sync_page_size=_env_int("UISP_SYNC_PAGE_SIZE", 100),
            default_currency=_env("DEFAULT_CURRENCY") or cls.default_currency,
            log_level=(_env("LOG_LEVEL") or cls.log_level).upper(),
            log_file=_env("LOG_FILE"),
            host=_env("HOST") or cls.host,
            port=_env_int("PORT", 8000),
        )
