import json
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    log_level: str
    store_base_url: str
    frontend_url: str
    currency: str
    base_delivery_fee: Decimal
    whatsapp_phone: str
    payment_api_base: str
    payment_secret_key: str
    payment_webhook_secret: str
    payment_timeout_seconds: float
    payment_redirect_url: str
    admin_username: str
    admin_password: str


def validate_currency(value: Optional[str]) -> str:
    v = (value or "NGN").strip().upper()
    if len(v) != 3 or not v.isalpha():
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def validate_delivery_fee(value) -> Decimal:
    try:
        fee = Decimal(str(value if value not in (None, "") else "2000"))
    except InvalidOperation:
        raise ValueError(f"Invalid delivery fee: {value!r}")
    if fee < 0:
        raise ValueError("Delivery fee must be >= 0")
    return fee.quantize(Decimal("0.01"))


def _load_settings_file() -> dict:
    path = Path(__file__).resolve().parents[1] / "data" / "settings.json"
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def load_env() -> AppConfig:
    load_dotenv()
    # data/settings.json wins over the environment for non-secret values
    s = _load_settings_file()

    def pick(key: str, default: str = "") -> str:
        return str(s.get(key) or os.getenv(key) or default)

    store_base_url = pick("STORE_BASE_URL", "http://127.0.0.1:5000").rstrip("/")
    return AppConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=os.getenv("SECRET_KEY", "dev_secret"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        store_base_url=store_base_url,
        frontend_url=pick("FRONTEND_URL", "https://selebrityaboki.com").rstrip("/"),
        currency=validate_currency(pick("CURRENCY")),
        base_delivery_fee=validate_delivery_fee(pick("BASE_DELIVERY_FEE")),
        whatsapp_phone=pick("WHATSAPP_PHONE", "2348032958708"),
        payment_api_base=pick("PAYMENT_API_BASE", "https://api.flutterwave.com/v3").rstrip("/"),
        payment_secret_key=os.getenv("PAYMENT_SECRET_KEY", ""),
        payment_webhook_secret=os.getenv("PAYMENT_WEBHOOK_SECRET", ""),
        payment_timeout_seconds=float(pick("PAYMENT_TIMEOUT_SECONDS", "30")),
        payment_redirect_url=pick("PAYMENT_REDIRECT_URL", f"{store_base_url}/payment/complete"),
        admin_username=os.getenv("ADMIN_USERNAME", "admin"),
        admin_password=os.getenv("ADMIN_PASSWORD", "change-me"),
    )
