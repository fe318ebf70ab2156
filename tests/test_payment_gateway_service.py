"""Unit tests for the Mercado Pago gateway service."""

import hashlib
import hmac
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.errors import GatewayError
from app.services import payment_gateway


@pytest.fixture()
def webhook_secret() -> str:
    return "whsec_abc123"


@pytest.fixture()
def configured_gateway(
    monkeypatch: pytest.MonkeyPatch, webhook_secret: str
) -> payment_gateway.MercadoPagoGateway:
    monkeypatch.setattr(payment_gateway.settings, "mercadopago_access_token", "TEST-token")
    monkeypatch.setattr(payment_gateway.settings, "mercadopago_webhook_secret", webhook_secret)
    return payment_gateway.MercadoPagoGateway()


@pytest.fixture()
def unconfigured_gateway(monkeypatch: pytest.MonkeyPatch) -> payment_gateway.MercadoPagoGateway:
    monkeypatch.setattr(payment_gateway.settings, "mercadopago_access_token", "")
    return payment_gateway.MercadoPagoGateway()


@pytest.fixture()
def response_factory() -> Callable[[dict[str, Any], int], MagicMock]:
    def _build(payload: dict[str, Any], status_code: int = 200) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = payload
        return response

    return _build


@pytest.fixture()
def mocked_http_client() -> tuple[MagicMock, MagicMock]:
    with patch("app.services.payment_gateway.httpx.Client") as mock_client_cls:
        mock_client = MagicMock(name="mock_httpx_client")
        mock_client_cls.return_value.__enter__.return_value = mock_client
        yield mock_client_cls, mock_client


def _sign(secret: str, data_id: str, request_id: str, ts: str = "1767225600") -> str:
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    digest = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"


def test_is_configured(configured_gateway, unconfigured_gateway):
    assert configured_gateway.is_configured() is True
    assert unconfigured_gateway.is_configured() is False


def test_unconfigured_gateway_refuses_requests(unconfigured_gateway, mocked_http_client):
    mock_client_cls, _ = mocked_http_client
    with pytest.raises(GatewayError) as exc_info:
        unconfigured_gateway.get_payment("1")
    assert exc_info.value.retryable is False
    mock_client_cls.assert_not_called()


def test_to_reais():
    assert payment_gateway.to_reais(2500) == 25.0
    assert payment_gateway.to_reais(1999) == 19.99


def test_create_pix_payment_sends_idempotency_key(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory({"id": 123, "status": "pending"})

    result = configured_gateway.create_pix_payment(
        2500,
        "Invoice",
        "owner@example.com",
        idempotency_key="invoice-abc-pix",
        external_reference="abc",
    )

    assert result["id"] == 123
    method, url = mock_client.request.call_args.args
    kwargs = mock_client.request.call_args.kwargs
    assert method == "POST"
    assert url == "https://api.mercadopago.test/v1/payments"
    assert kwargs["headers"]["X-Idempotency-Key"] == "invoice-abc-pix"
    assert kwargs["headers"]["Authorization"] == "Bearer TEST-token"
    assert kwargs["json"]["transaction_amount"] == 25.0
    assert kwargs["json"]["payment_method_id"] == "pix"
    assert kwargs["json"]["external_reference"] == "abc"


def test_create_boleto_payment(configured_gateway, mocked_http_client, response_factory):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory({"id": 7})
    payer = {"email": "a@b.example", "identification": {"type": "CPF", "number": "1"}}

    configured_gateway.create_boleto_payment(
        1000, "Invoice", payer, idempotency_key="k"
    )

    payload = mock_client.request.call_args.kwargs["json"]
    assert payload["payment_method_id"] == payment_gateway.BOLETO_PAYMENT_METHOD
    assert payload["payer"] == payer
    assert "external_reference" not in payload


def test_timeout_is_outcome_unknown(configured_gateway, mocked_http_client):
    _, mock_client = mocked_http_client
    mock_client.request.side_effect = httpx.ReadTimeout("timed out")

    with pytest.raises(GatewayError) as exc_info:
        configured_gateway.create_pix_payment(
            1000, "Invoice", "a@b.example", idempotency_key="k"
        )

    assert exc_info.value.outcome_unknown is True
    assert mock_client.request.call_count == 1


def test_creation_is_not_retried_on_server_error(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory({}, 503)

    with pytest.raises(GatewayError) as exc_info:
        configured_gateway.create_pix_payment(
            1000, "Invoice", "a@b.example", idempotency_key="k"
        )

    assert exc_info.value.status == 503
    assert mock_client.request.call_count == 1


def test_reads_are_retried_on_server_error(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.side_effect = [
        response_factory({}, 502),
        response_factory({"id": 1, "status": "approved"}),
    ]

    assert configured_gateway.get_payment_status("1") == "approved"
    assert mock_client.request.call_count == 2


def test_reads_are_not_retried_on_client_error(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory({}, 404)

    with pytest.raises(GatewayError) as exc_info:
        configured_gateway.get_payment("missing")

    assert exc_info.value.retryable is False
    assert mock_client.request.call_count == 1


def test_customer_search_returns_first_match(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory(
        {"results": [{"id": "cus-1"}, {"id": "cus-2"}]}
    )
    assert configured_gateway.get_customer_by_email("a@b.example") == {"id": "cus-1"}

    mock_client.request.return_value = response_factory({"results": []})
    assert configured_gateway.get_customer_by_email("a@b.example") is None


def test_payment_search_by_reference_returns_latest(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory(
        {"results": [{"id": 22, "status": "approved"}, {"id": 21, "status": "rejected"}]}
    )

    found = configured_gateway.find_payment_by_reference("subscription_payment_x")

    assert found == {"id": 22, "status": "approved"}
    assert mock_client.request.call_args.args == (
        "GET",
        "https://api.mercadopago.test/v1/payments/search",
    )
    assert mock_client.request.call_args.kwargs["params"] == {
        "external_reference": "subscription_payment_x",
        "sort": "date_created",
        "criteria": "desc",
    }

    mock_client.request.return_value = response_factory({"results": []})
    assert configured_gateway.find_payment_by_reference("subscription_payment_x") is None


def test_card_payment_tokenizes_saved_card(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.side_effect = [
        response_factory({"id": "tok-1"}),
        response_factory({"id": 99, "status": "approved"}),
    ]

    result = configured_gateway.create_card_payment(
        "cus-1", "card-1", 4990, "Premium", idempotency_key="k", security_code="123"
    )

    assert result["status"] == "approved"
    token_call, payment_call = mock_client.request.call_args_list
    assert token_call.kwargs["json"] == {"card_id": "card-1", "security_code": "123"}
    assert payment_call.kwargs["json"]["token"] == "tok-1"
    assert payment_call.kwargs["json"]["payer"] == {"type": "customer", "id": "cus-1"}


def test_delete_card_accepts_no_content(
    configured_gateway, mocked_http_client, response_factory
):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory({}, 204)
    configured_gateway.delete_card("cus-1", "card-1")
    assert mock_client.request.call_args.args[0] == "DELETE"


def test_pause_subscription(configured_gateway, mocked_http_client, response_factory):
    _, mock_client = mocked_http_client
    mock_client.request.return_value = response_factory({"id": "sub-1", "status": "paused"})
    configured_gateway.pause_subscription("sub-1")
    assert mock_client.request.call_args.args == (
        "PUT",
        "https://api.mercadopago.test/preapproval/sub-1",
    )
    assert mock_client.request.call_args.kwargs["json"] == {"status": "paused"}


def test_validate_webhook_signature(configured_gateway, webhook_secret):
    header = _sign(webhook_secret, "123", "req-1")
    assert configured_gateway.validate_webhook_signature(header, "req-1", "123") is True
    assert configured_gateway.validate_webhook_signature(header, "req-1", "999") is False
    assert configured_gateway.validate_webhook_signature("ts=1", "req-1", "123") is False
    assert configured_gateway.validate_webhook_signature("", "req-1", "123") is False


def test_payment_data_from_pix_and_boleto():
    pix = {
        "point_of_interaction": {
            "transaction_data": {"qr_code": "000201", "ticket_url": "https://pix"}
        }
    }
    boleto = {"transaction_details": {"external_resource_url": "https://boleto"}}
    assert payment_gateway.payment_data_from(pix)["qr_code"] == "000201"
    assert payment_gateway.payment_data_from(boleto)["ticket_url"] == "https://boleto"


def test_stub_gateway_is_idempotent():
    stub = payment_gateway.StubGateway()
    first = stub.create_pix_payment(100, "x", "a@b.example", idempotency_key="k")
    second = stub.create_pix_payment(100, "x", "a@b.example", idempotency_key="k")
    assert first["id"] == second["id"]
    assert first["status"] == "pending"


def test_backend_selection(monkeypatch):
    monkeypatch.setattr(payment_gateway.settings, "payment_gateway_backend", "stub")
    assert payment_gateway.get_payment_gateway() is payment_gateway.stub_gateway
    monkeypatch.setattr(payment_gateway.settings, "payment_gateway_backend", "mercadopago")
    assert payment_gateway.get_payment_gateway() is payment_gateway.mercadopago_gateway
