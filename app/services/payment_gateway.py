"""Mercado Pago payment gateway integration."""

import hashlib
import hmac
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.errors import GatewayError
from app.metrics import GATEWAY_REQUESTS

logger = logging.getLogger(__name__)

READ_RETRY_BACKOFF = 0.5
BOLETO_PAYMENT_METHOD = "bolbradesco"


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, GatewayError) and exc.retryable


# Reads are idempotent; creations are never wrapped with this.
retry_read = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(max(1, settings.gateway_read_retries)),
    wait=wait_exponential(multiplier=READ_RETRY_BACKOFF, max=4),
    reraise=True,
)


def to_reais(centavos: int) -> float:
    return round(centavos / 100, 2)


def payment_data_from(payment: dict[str, Any]) -> dict[str, str | None]:
    """Pull the payer-facing artefacts (QR code, ticket link) out of a payment."""
    transaction = (payment.get("point_of_interaction") or {}).get(
        "transaction_data"
    ) or {}
    details = payment.get("transaction_details") or {}
    return {
        "qr_code": transaction.get("qr_code"),
        "qr_code_base64": transaction.get("qr_code_base64"),
        "ticket_url": transaction.get("ticket_url")
        or details.get("external_resource_url"),
    }


class MercadoPagoGateway:
    """Thin wrapper around the Mercado Pago REST API."""

    def __init__(self) -> None:
        self._access_token = settings.mercadopago_access_token
        self._base_url = settings.mercadopago_base_url.rstrip("/")
        self._timeout = settings.gateway_timeout_seconds
        self._webhook_secret = settings.mercadopago_webhook_secret

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def is_configured(self) -> bool:
        return bool(self._access_token)

    def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> Any:
        if not self.is_configured():
            raise GatewayError("Mercado Pago is not configured", retryable=False)
        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.request(
                    method,
                    f"{self._base_url}{path}",
                    json=json,
                    params=params,
                    headers=self._headers(idempotency_key),
                )
        except httpx.TimeoutException as exc:
            GATEWAY_REQUESTS.labels(operation, "timeout").inc()
            logger.warning("Mercado Pago %s timed out", operation)
            raise GatewayError(
                f"Mercado Pago {operation} timed out", outcome_unknown=True
            ) from exc
        except httpx.HTTPError as exc:
            GATEWAY_REQUESTS.labels(operation, "transport_error").inc()
            logger.warning("Mercado Pago %s transport error: %s", operation, exc)
            raise GatewayError(f"Mercado Pago {operation} failed: {exc}") from exc

        if resp.status_code >= 400:
            GATEWAY_REQUESTS.labels(operation, "error").inc()
            retryable = resp.status_code >= 500 or resp.status_code == 429
            logger.error(
                "Mercado Pago %s failed with status %s", operation, resp.status_code
            )
            raise GatewayError(
                f"Mercado Pago {operation} returned {resp.status_code}",
                retryable=retryable,
                status=resp.status_code,
            )
        GATEWAY_REQUESTS.labels(operation, "ok").inc()
        if resp.status_code == 204:
            return {}
        return resp.json()

    # ── Invoice payments ─────────────────────────────────

    def create_pix_payment(
        self,
        amount: int,
        description: str,
        email: str,
        *,
        idempotency_key: str,
        external_reference: str | None = None,
    ) -> dict[str, Any]:
        """Create a PIX charge. ``amount`` is in centavos."""
        payload: dict[str, Any] = {
            "transaction_amount": to_reais(amount),
            "description": description,
            "payment_method_id": "pix",
            "payer": {"email": email},
        }
        if external_reference:
            payload["external_reference"] = external_reference
        data = self._request(
            "create_pix_payment",
            "POST",
            "/v1/payments",
            json=payload,
            idempotency_key=idempotency_key,
        )
        logger.info("Created Mercado Pago PIX payment: %s", data.get("id"))
        return data

    def create_boleto_payment(
        self,
        amount: int,
        description: str,
        payer: dict[str, Any],
        *,
        idempotency_key: str,
        external_reference: str | None = None,
    ) -> dict[str, Any]:
        """Create a boleto charge. ``amount`` is in centavos."""
        payload: dict[str, Any] = {
            "transaction_amount": to_reais(amount),
            "description": description,
            "payment_method_id": BOLETO_PAYMENT_METHOD,
            "payer": payer,
        }
        if external_reference:
            payload["external_reference"] = external_reference
        data = self._request(
            "create_boleto_payment",
            "POST",
            "/v1/payments",
            json=payload,
            idempotency_key=idempotency_key,
        )
        logger.info("Created Mercado Pago boleto payment: %s", data.get("id"))
        return data

    @retry_read
    def get_payment(self, payment_id: str) -> dict[str, Any]:
        return self._request("get_payment", "GET", f"/v1/payments/{payment_id}")

    def get_payment_status(self, payment_id: str) -> str:
        return str(self.get_payment(payment_id).get("status", "unknown"))

    @retry_read
    def find_payment_by_reference(self, external_reference: str) -> dict[str, Any] | None:
        """Latest payment carrying ``external_reference``, if the gateway has one."""
        data = self._request(
            "search_payment",
            "GET",
            "/v1/payments/search",
            params={
                "external_reference": external_reference,
                "sort": "date_created",
                "criteria": "desc",
            },
        )
        results = data.get("results") or []
        return results[0] if results else None

    def create_card_payment(
        self,
        customer_id: str,
        card_id: str,
        amount: int,
        description: str,
        *,
        idempotency_key: str,
        external_reference: str | None = None,
        security_code: str | None = None,
    ) -> dict[str, Any]:
        """Charge a saved card once. ``amount`` is in centavos."""
        token_payload: dict[str, Any] = {"card_id": card_id}
        if security_code:
            token_payload["security_code"] = security_code
        token = self._request(
            "create_card_token", "POST", "/v1/card_tokens", json=token_payload
        )
        payload: dict[str, Any] = {
            "transaction_amount": to_reais(amount),
            "description": description,
            "token": token.get("id"),
            "installments": 1,
            "payer": {"type": "customer", "id": customer_id},
        }
        if external_reference:
            payload["external_reference"] = external_reference
        data = self._request(
            "create_card_payment",
            "POST",
            "/v1/payments",
            json=payload,
            idempotency_key=idempotency_key,
        )
        logger.info(
            "Created Mercado Pago card payment: %s (%s)",
            data.get("id"),
            data.get("status"),
        )
        return data

    # ── Customers & cards ────────────────────────────────

    def create_customer(
        self, email: str, first_name: str | None = None, last_name: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"email": email}
        if first_name:
            payload["first_name"] = first_name
        if last_name:
            payload["last_name"] = last_name
        data = self._request(
            "create_customer",
            "POST",
            "/v1/customers",
            json=payload,
            idempotency_key=f"customer-{email}",
        )
        logger.info("Created Mercado Pago customer: %s", data.get("id"))
        return data

    @retry_read
    def get_customer_by_email(self, email: str) -> dict[str, Any] | None:
        data = self._request(
            "search_customer", "GET", "/v1/customers/search", params={"email": email}
        )
        results = data.get("results") or []
        return results[0] if results else None

    def save_card(self, customer_id: str, card_token: str) -> dict[str, Any]:
        data = self._request(
            "save_card",
            "POST",
            f"/v1/customers/{customer_id}/cards",
            json={"token": card_token},
            idempotency_key=f"card-{customer_id}-{card_token}",
        )
        logger.info("Saved card %s for customer %s", data.get("id"), customer_id)
        return data

    @retry_read
    def get_customer_cards(self, customer_id: str) -> list[dict[str, Any]]:
        data = self._request(
            "list_cards", "GET", f"/v1/customers/{customer_id}/cards"
        )
        return list(data or [])

    def delete_card(self, customer_id: str, card_id: str) -> None:
        self._request(
            "delete_card", "DELETE", f"/v1/customers/{customer_id}/cards/{card_id}"
        )
        logger.info("Deleted card %s for customer %s", card_id, customer_id)

    # ── Subscriptions (preapproval) ──────────────────────

    def create_subscription(
        self,
        *,
        payer_email: str,
        card_token_id: str,
        reason: str,
        external_reference: str,
        frequency: int,
        frequency_type: str,
        amount: int,
        currency: str,
    ) -> dict[str, Any]:
        payload = {
            "reason": reason,
            "external_reference": external_reference,
            "payer_email": payer_email,
            "card_token_id": card_token_id,
            "auto_recurring": {
                "frequency": frequency,
                "frequency_type": frequency_type,
                "transaction_amount": to_reais(amount),
                "currency_id": currency,
            },
            "status": "authorized",
        }
        data = self._request(
            "create_subscription",
            "POST",
            "/preapproval",
            json=payload,
            idempotency_key=external_reference,
        )
        logger.info("Created Mercado Pago subscription: %s", data.get("id"))
        return data

    def _set_subscription_status(self, subscription_id: str, status: str) -> dict:
        return self._request(
            f"{status}_subscription",
            "PUT",
            f"/preapproval/{subscription_id}",
            json={"status": status},
        )

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._set_subscription_status(subscription_id, "cancelled")

    def pause_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._set_subscription_status(subscription_id, "paused")

    def resume_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._set_subscription_status(subscription_id, "authorized")

    # ── Webhook ──────────────────────────────────────────

    def validate_webhook_signature(
        self, signature_header: str, request_id: str, data_id: str
    ) -> bool:
        """Validate the ``x-signature`` header (``ts=...,v1=...``) HMAC."""
        if not self._webhook_secret or not signature_header:
            return False
        parts = {}
        for chunk in signature_header.split(","):
            key, _, value = chunk.strip().partition("=")
            parts[key] = value
        ts, received = parts.get("ts"), parts.get("v1")
        if not ts or not received:
            return False
        manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
        expected = hmac.new(
            self._webhook_secret.encode("utf-8"),
            manifest.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, received)


class StubGateway:
    """Deterministic in-process gateway for development; never touches the network.

    Charges are keyed by their idempotency key, so replays return the same
    payment. PIX and boleto charges stay ``pending`` until :meth:`settle`
    is called; card charges are approved unless ``should_approve`` is off.
    """

    def __init__(self) -> None:
        self.should_approve = True
        self.payments: dict[str, dict[str, Any]] = {}
        self._by_key: dict[str, str] = {}
        self.customers: dict[str, dict[str, Any]] = {}
        self.cards: dict[str, list[dict[str, Any]]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}

    def configure(self, should_approve: bool = True) -> None:
        self.should_approve = should_approve

    def is_configured(self) -> bool:
        return True

    @staticmethod
    def _stub_id(prefix: str, seed: str) -> str:
        return f"stub-{prefix}-{hashlib.sha1(seed.encode('utf-8')).hexdigest()[:12]}"

    def _create(self, idempotency_key: str, payment: dict[str, Any]) -> dict:
        existing = self._by_key.get(idempotency_key)
        if existing:
            return self.payments[existing]
        payment_id = self._stub_id("pay", idempotency_key)
        payment["id"] = payment_id
        self.payments[payment_id] = payment
        self._by_key[idempotency_key] = payment_id
        return payment

    def settle(self, payment_id: str, status: str = "approved") -> None:
        self.payments[payment_id]["status"] = status

    def create_pix_payment(
        self, amount, description, email, *, idempotency_key, external_reference=None
    ) -> dict[str, Any]:
        return self._create(
            idempotency_key,
            {
                "status": "pending",
                "transaction_amount": to_reais(amount),
                "external_reference": external_reference,
                "point_of_interaction": {
                    "transaction_data": {
                        "qr_code": f"00020126STUBPIX{idempotency_key}",
                        "qr_code_base64": "c3R1Yg==",
                        "ticket_url": f"https://stub.invalid/pix/{idempotency_key}",
                    }
                },
            },
        )

    def create_boleto_payment(
        self, amount, description, payer, *, idempotency_key, external_reference=None
    ) -> dict[str, Any]:
        return self._create(
            idempotency_key,
            {
                "status": "pending",
                "transaction_amount": to_reais(amount),
                "external_reference": external_reference,
                "transaction_details": {
                    "external_resource_url": f"https://stub.invalid/boleto/{idempotency_key}"
                },
            },
        )

    def get_payment(self, payment_id: str) -> dict[str, Any]:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise GatewayError(
                f"Stub payment {payment_id} not found", retryable=False, status=404
            )
        return payment

    def get_payment_status(self, payment_id: str) -> str:
        return str(self.get_payment(payment_id)["status"])

    def find_payment_by_reference(self, external_reference: str) -> dict[str, Any] | None:
        for payment in reversed(list(self.payments.values())):
            if payment.get("external_reference") == external_reference:
                return payment
        return None

    def create_card_payment(
        self,
        customer_id,
        card_id,
        amount,
        description,
        *,
        idempotency_key,
        external_reference=None,
        security_code=None,
    ) -> dict[str, Any]:
        approved = self.should_approve
        return self._create(
            idempotency_key,
            {
                "status": "approved" if approved else "rejected",
                "status_detail": "accredited" if approved else "cc_rejected_other_reason",
                "transaction_amount": to_reais(amount),
                "external_reference": external_reference,
            },
        )

    def create_customer(self, email, first_name=None, last_name=None) -> dict:
        customer = {"id": self._stub_id("cus", email), "email": email}
        self.customers[email] = customer
        return customer

    def get_customer_by_email(self, email: str) -> dict[str, Any] | None:
        return self.customers.get(email)

    def save_card(self, customer_id: str, card_token: str) -> dict[str, Any]:
        card = {
            "id": self._stub_id("card", f"{customer_id}:{card_token}"),
            "first_six_digits": "503143",
            "last_four_digits": "6351",
            "payment_method": {"id": "master", "name": "Mastercard"},
            "cardholder": {"name": "STUB HOLDER"},
            "expiration_month": 11,
            "expiration_year": 2030,
        }
        cards = self.cards.setdefault(customer_id, [])
        if not any(existing["id"] == card["id"] for existing in cards):
            cards.append(card)
        return card

    def get_customer_cards(self, customer_id: str) -> list[dict[str, Any]]:
        return list(self.cards.get(customer_id, []))

    def delete_card(self, customer_id: str, card_id: str) -> None:
        self.cards[customer_id] = [
            card for card in self.cards.get(customer_id, []) if card["id"] != card_id
        ]

    def create_subscription(
        self,
        *,
        payer_email,
        card_token_id,
        reason,
        external_reference,
        frequency,
        frequency_type,
        amount,
        currency,
    ) -> dict[str, Any]:
        days = frequency * 30 if frequency_type == "months" else frequency
        subscription = {
            "id": self._stub_id("sub", external_reference),
            "status": "authorized",
            "external_reference": external_reference,
            "next_payment_date": (datetime.now(UTC) + timedelta(days=days)).isoformat(),
        }
        self.subscriptions[subscription["id"]] = subscription
        return subscription

    def _set_status(self, subscription_id: str, status: str) -> dict[str, Any]:
        subscription = self.subscriptions.setdefault(
            subscription_id, {"id": subscription_id}
        )
        subscription["status"] = status
        return subscription

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._set_status(subscription_id, "cancelled")

    def pause_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._set_status(subscription_id, "paused")

    def resume_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._set_status(subscription_id, "authorized")

    def validate_webhook_signature(
        self, signature_header: str, request_id: str, data_id: str
    ) -> bool:
        return True


mercadopago_gateway = MercadoPagoGateway()
stub_gateway = StubGateway()


def get_payment_gateway() -> MercadoPagoGateway | StubGateway:
    if settings.payment_gateway_backend == "stub":
        return stub_gateway
    return mercadopago_gateway
