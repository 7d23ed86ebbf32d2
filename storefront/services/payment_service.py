"""
Payment provider integration (Flutterwave-style hosted checkout).

- ``PaymentProviderClient`` talks to the provider over HTTP with timeouts.
- ``PaymentService`` initiates payment for a stored order and applies the
  signed webhook: signature check, provider re-verification, then a single
  conditional update. Client-reported payment success is never trusted.
"""
import hashlib
import hmac
import json
import secrets
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests
from sqlalchemy import case, update

from ..db.session import get_session
from ..errors import Conflict, InvalidInput, NotFound, Unauthorized, UpstreamError
from ..models.order import ORDER_CANCELLED, PAYMENT_PENDING, PAYMENT_SUCCESS, Order
from ..utils.money import to_money
from .logging import log_event


SIGNATURE_HEADER = "X-Webhook-Signature"
CHARGE_COMPLETED = "charge.completed"


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not secret or not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


class PaymentProviderClient:
    """Thin HTTP client for the hosted-payment and verify endpoints."""

    def __init__(self, base_url: str, secret_key: str, timeout: float = 30.0, http=None) -> None:
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self._http = http or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self._http.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise UpstreamError("Payment provider timed out", {"endpoint": path})
        except requests.exceptions.RequestException as exc:
            raise UpstreamError("Payment provider unreachable", {"endpoint": path, "exception": str(exc)})
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code not in (200, 201) or not isinstance(body, dict) or body.get("status") != "success":
            raise UpstreamError(
                "Payment provider rejected the request",
                {"endpoint": path, "status": resp.status_code, "message": (body or {}).get("message") if isinstance(body, dict) else None},
            )
        return body

    def create_payment_link(self, payload: Dict[str, Any]) -> str:
        body = self._call("POST", "/payments", json=payload)
        data = body.get("data") or {}
        link = data.get("link") if isinstance(data, dict) else None
        if not link:
            raise UpstreamError("Payment provider returned no payment link", {"endpoint": "/payments"})
        return str(link)

    def verify_transaction(self, transaction_id: str) -> Dict[str, Any]:
        body = self._call("GET", f"/transactions/{transaction_id}/verify")
        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamError("Payment provider returned no transaction", {"transaction_id": transaction_id})
        return data


class PaymentService:
    """Payment initiation and webhook-driven confirmation for orders."""

    def __init__(
        self,
        client: PaymentProviderClient,
        *,
        webhook_secret: str,
        currency: str = "NGN",
        redirect_url: str = "",
        session_factory=get_session,
        clock=datetime.utcnow,
    ):
        self._client = client
        self._webhook_secret = webhook_secret
        self._currency = currency
        self._redirect_url = redirect_url
        self._session_factory = session_factory
        self._clock = clock

    # -- initiation --------------------------------------------------------

    def initiate_payment(self, order_id: str, redirect_url: Optional[str] = None) -> Dict:
        with self._session_factory() as s:
            order = s.get(Order, order_id)
            if order is None:
                raise NotFound("Order not found")
            self._ensure_payable(order)
            tx_ref = order.payment_ref or self._reserve_reference(s, order_id)
            payload = {
                "tx_ref": tx_ref,
                "amount": str(to_money(order.total_amount)),
                "currency": self._currency,
                "redirect_url": redirect_url or self._redirect_url,
                "customer": {
                    "email": order.customer_email,
                    "name": order.customer_name,
                    "phonenumber": order.customer_phone,
                },
                "meta": {"order_id": order.id},
            }

        # no transaction is held open across the provider call
        link = self._client.create_payment_link(payload)

        with self._session_factory() as s:
            still_payable = (
                s.query(Order.id)
                .filter(
                    Order.id == order_id,
                    Order.payment_ref == tx_ref,
                    Order.payment_status == PAYMENT_PENDING,
                    Order.status != ORDER_CANCELLED,
                )
                .first()
            )
            if still_payable is None:
                raise Conflict("Order can no longer be paid")
        log_event("info", "payment.initiated", order_id=order_id, tx_ref=tx_ref, amount=payload["amount"])
        return {"paymentLink": link, "txRef": tx_ref}

    def _reserve_reference(self, session, order_id: str) -> str:
        """Store a fresh reference unless a concurrent initiation stored one first.

        Every provider session for an order carries the one stored reference.
        """
        candidate = f"{order_id}-{secrets.token_hex(3).upper()}"
        result = session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_ref.is_(None),
                Order.payment_status == PAYMENT_PENDING,
                Order.status != ORDER_CANCELLED,
            )
            .values(payment_ref=candidate)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return candidate
        stored = session.query(Order.payment_ref).filter(Order.id == order_id).scalar()
        if not stored:
            raise Conflict("Order can no longer be paid")
        return stored

    @staticmethod
    def _ensure_payable(order: Order) -> None:
        if order.payment_status == PAYMENT_SUCCESS:
            raise Conflict("Order is already paid")
        if order.status == ORDER_CANCELLED:
            raise Conflict("Order has been cancelled")

    # -- confirmation ------------------------------------------------------

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict:
        if not verify_signature(raw_body, signature, self._webhook_secret):
            log_event("warning", "webhook.signature_invalid")
            raise Unauthorized("Invalid webhook signature")
        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise InvalidInput("Webhook body must be JSON")
        if not isinstance(payload, dict):
            raise InvalidInput("Webhook body must be a JSON object")

        event = payload.get("event")
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        tx_ref = data.get("tx_ref") or data.get("reference")
        log_event("info", "webhook.received", webhook_event=event, tx_ref=tx_ref)
        if event != CHARGE_COMPLETED:
            return {"status": "ignored", "reason": "unhandled_event"}
        if str(data.get("status") or "").lower() != "successful":
            log_event("warning", "webhook.charge_not_successful", tx_ref=tx_ref, charge_status=data.get("status"))
            return {"status": "ignored", "reason": "charge_not_successful"}
        if not tx_ref or data.get("id") in (None, ""):
            return {"status": "ignored", "reason": "missing_reference"}
        return self.confirm_payment(str(tx_ref), str(data["id"]))

    def confirm_payment(self, tx_ref: str, transaction_id: str) -> Dict:
        with self._session_factory() as s:
            order = s.query(Order).filter(Order.payment_ref == tx_ref).first()
            if order is None:
                log_event("warning", "webhook.unknown_reference", tx_ref=tx_ref)
                return {"status": "ignored", "reason": "unknown_reference"}
            order_id = order.id
            total = to_money(order.total_amount)
            if order.payment_status == PAYMENT_SUCCESS:
                log_event("info", "payment.duplicate", order_id=order_id, tx_ref=tx_ref)
                return {"status": "duplicate", "orderId": order_id}
            if order.status == ORDER_CANCELLED:
                log_event("warning", "payment.rejected", order_id=order_id, reason="order_cancelled")
                return {"status": "rejected", "orderId": order_id, "reason": "order_cancelled"}

        verified = self._client.verify_transaction(transaction_id)
        reason = self._check_verified(verified, tx_ref, total)
        if reason:
            log_event("warning", "payment.rejected", order_id=order_id, reason=reason)
            return {"status": "rejected", "orderId": order_id, "reason": reason}

        with self._session_factory() as s:
            result = s.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.payment_status == PAYMENT_PENDING,
                    Order.status != ORDER_CANCELLED,
                )
                .values(
                    payment_status=PAYMENT_SUCCESS,
                    status=case((Order.status == "PENDING", "CONFIRMED"), else_=Order.status),
                    paid_at=self._clock(),
                    provider_transaction_id=transaction_id,
                )
                .execution_options(synchronize_session=False)
            )
        if not result.rowcount:
            # lost a race with another delivery or a cancellation
            log_event("info", "payment.duplicate", order_id=order_id, tx_ref=tx_ref)
            return {"status": "duplicate", "orderId": order_id}
        log_event("info", "payment.confirmed", order_id=order_id, tx_ref=tx_ref, amount=total)
        return {"status": "confirmed", "orderId": order_id}

    def _check_verified(self, verified: Dict[str, Any], tx_ref: str, total: Decimal) -> Optional[str]:
        if str(verified.get("status") or "").lower() != "successful":
            return "not_successful"
        if str(verified.get("currency") or "").upper() != self._currency:
            return "currency_mismatch"
        if verified.get("tx_ref") not in (None, tx_ref):
            return "reference_mismatch"
        try:
            amount = to_money(verified.get("amount"))
        except (InvalidOperation, ValueError):
            return "amount_invalid"
        if verified.get("amount") is None or amount < total:
            return "underpaid"
        return None
