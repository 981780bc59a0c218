"""Application configuration, loaded once from the environment (and .env)."""

import base64
import binascii
import json
from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, SettingsError

INSECURE_SECRET_KEYS = {"", "your-secret-key-change-in-production", "dev-secret-change-in-production"}


class Settings(BaseSettings):
    """Settings validated at startup. Missing payment secrets fail fast."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Razorpay
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    razorpay_reconcile_orders: bool = True
    payment_currency: str = "USD"
    gateway_timeout_seconds: float = 15.0

    # Identity
    identity_provider: Literal["firebase", "local"] = "firebase"
    firebase_project_id: str = ""
    firebase_service_account_key: str = ""
    firebase_database_url: str = ""
    firebase_certs_url: str = (
        "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
    )
    identity_timeout_seconds: float = 10.0
    secret_key: str = ""
    algorithm: str = "HS256"

    # Database
    database_url: str = "sqlite:///./chat_billing.db"

    # Rate limits
    trust_proxy_headers: bool = False
    trusted_proxy_ips: str = ""
    create_order_rate_limit: int = 10
    create_order_rate_window_seconds: int = 900
    verify_rate_limit: int = 20
    verify_rate_window_seconds: int = 900

    cors_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        # Accepts a JSON list or a comma-separated string.
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [item.strip() for item in raw.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _check_required(self) -> "Settings":
        self.razorpay_key_id = self.razorpay_key_id.strip()
        self.razorpay_key_secret = self.razorpay_key_secret.strip()
        if not self.razorpay_key_id or not self.razorpay_key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set.")

        currency = self.payment_currency.strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValueError("PAYMENT_CURRENCY must be a three-letter ISO code.")
        self.payment_currency = currency
        self.razorpay_api_base = self.razorpay_api_base.rstrip("/")

        if self.gateway_timeout_seconds <= 0 or self.identity_timeout_seconds <= 0:
            raise ValueError("Network timeouts must be positive.")

        if self.identity_provider == "firebase":
            if not self.firebase_project_id:
                self.firebase_project_id = _project_id_from_service_account(
                    self.firebase_service_account_key
                ) or ""
            if not self.firebase_project_id:
                raise ValueError(
                    "FIREBASE_PROJECT_ID (or FIREBASE_SERVICE_ACCOUNT_KEY) must be set "
                    "when IDENTITY_PROVIDER=firebase."
                )
        elif self.secret_key.strip() in INSECURE_SECRET_KEYS:
            raise ValueError("A strong SECRET_KEY must be set when IDENTITY_PROVIDER=local.")
        return self

    @property
    def trusted_proxy_ip_set(self) -> set[str]:
        return {item.strip() for item in self.trusted_proxy_ips.split(",") if item.strip()}


def _project_id_from_service_account(raw: str) -> Optional[str]:
    # The service account key is shipped base64-encoded JSON.
    if not raw:
        return None
    try:
        data = json.loads(base64.b64decode(raw).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_KEY is not base64-encoded JSON.") from exc
    if not isinstance(data, dict):
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_KEY must decode to a JSON object.")
    project_id = str(data.get("project_id") or "").strip()
    return project_id or None


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, raising RuntimeError on invalid config."""
    try:
        return Settings()
    except (ValidationError, SettingsError) as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
