"""Payment gateway adapter (Razorpay-compatible orders API).

Only two capabilities are needed by the lifecycle: creating an order for a
subscription and verifying the HMAC signatures the gateway attaches to
client callbacks and webhooks.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests

from gymledger.core.config import settings
from gymledger.core.errors import PaymentServiceError

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    id: str
    amount: int
    currency: str
    receipt: str

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "amount": self.amount, "currency": self.currency, "receipt": self.receipt}


class PaymentGateway(Protocol):
    def create_order(
        self, amount_minor_units: int, receipt: str, currency: str, notes: Optional[Dict[str, str]] = None
    ) -> GatewayOrder: ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...

    def verify_webhook_signature(self, raw_body: bytes, signature: str, secret: str) -> bool: ...


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _same_digest(expected: str, received: str) -> bool:
    # compare_digest rejects non-ASCII str, so compare the encoded bytes
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8", "surrogateescape"))


class RazorpayGateway:
    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.gateway_key_id
        self.key_secret = key_secret if key_secret is not None else settings.gateway_key_secret
        self.base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self.session = session or requests.Session()

    def create_order(
        self, amount_minor_units: int, receipt: str, currency: str, notes: Optional[Dict[str, str]] = None
    ) -> GatewayOrder:
        body = {
            "amount": amount_minor_units,
            "currency": currency,
            # the gateway caps receipts at 40 chars
            "receipt": receipt[:40],
            "notes": notes or {},
        }
        try:
            resp = self.session.post(
                f"{self.base_url}/orders",
                json=body,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(
                "gateway_create_order_failed",
                extra={"extra": {"event": "gateway_create_order_failed", "receipt": receipt, "error": str(e)}},
            )
            raise PaymentServiceError() from e

        if not data.get("id"):
            raise PaymentServiceError("Payment service returned an order without an id")

        return GatewayOrder(
            id=data["id"],
            amount=int(data.get("amount", amount_minor_units)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", body["receipt"]),
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (order_id and payment_id and isinstance(signature, str) and signature):
            return False
        expected = hmac_sha256_hex(self.key_secret, f"{order_id}|{payment_id}".encode("utf-8"))
        return _same_digest(expected, signature)

    def verify_webhook_signature(self, raw_body: bytes, signature: str, secret: str) -> bool:
        if not (isinstance(signature, str) and signature and secret):
            return False
        expected = hmac_sha256_hex(secret, raw_body)
        return _same_digest(expected, signature)


_default_gateway: Optional[RazorpayGateway] = None


def get_gateway() -> RazorpayGateway:
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = RazorpayGateway()
    return _default_gateway
