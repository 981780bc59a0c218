import logging
import re
import threading
from typing import Any

import requests
from fastapi import Depends

from app.config import Settings, get_settings
from app.errors import GatewayError

logger = logging.getLogger(__name__)


def looks_like_razorpay_id(value: str | None, prefix: str) -> bool:
    return bool(re.fullmatch(rf"{prefix}_[A-Za-z0-9]+", (value or "").strip()))


class RazorpayClient:
    """Thin Razorpay REST client: basic auth, bounded timeout, no retries."""

    def __init__(self, key_id: str, key_secret: str, api_base: str, timeout: float) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        json_payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = requests.request(
                method=method.upper(),
                url=url,
                auth=(self.key_id, self.key_secret),
                json=json_payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Failed to contact Razorpay %s %s: %s", method.upper(), path, exc)
            raise GatewayError("Failed to contact payment provider") from exc

        if response.status_code >= 400:
            logger.error(
                "Razorpay %s %s rejected with status=%s body=%s",
                method.upper(),
                path,
                response.status_code,
                response.text[:500],
            )
            raise GatewayError("Payment provider rejected the request")

        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError("Invalid response received from payment provider") from exc

        if not isinstance(payload, dict):
            raise GatewayError("Unexpected response format from payment provider")
        return payload

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, str],
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/orders",
            json_payload={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes,
            },
        )

    def fetch_order(self, order_id: str) -> dict[str, Any]:
        return self._request("GET", f"/orders/{order_id}")


_client: RazorpayClient | None = None
_client_lock = threading.Lock()


def get_razorpay_client(settings: Settings = Depends(get_settings)) -> RazorpayClient:
    global _client
    if _client is not None:
        return _client
    with _client_lock:
        if _client is None:
            _client = RazorpayClient(
                key_id=settings.razorpay_key_id,
                key_secret=settings.razorpay_key_secret,
                api_base=settings.razorpay_api_base,
                timeout=settings.gateway_timeout_seconds,
            )
    return _client
