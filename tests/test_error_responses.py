"""Tests for structured error responses with request_id."""
from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.errors import GatewayError, NotFoundError, ValidationError, register_error_handlers
from app.observability import ObservabilityMiddleware


@pytest.fixture
def app_with_errors() -> FastAPI:
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)
    register_error_handlers(app)

    @app.get("/ok")
    def ok():
        return {"ok": True}

    @app.get("/http-error")
    def http_error():
        raise HTTPException(status_code=403, detail="Forbidden")

    @app.get("/http-error-dict")
    def http_error_dict():
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_input", "message": "Bad field", "details": {"field": "name"}},
        )

    @app.get("/not-found")
    def not_found():
        raise NotFoundError("Invoice not found")

    @app.get("/invalid")
    def invalid():
        raise ValidationError("fee_value must be positive")

    @app.get("/gateway")
    def gateway():
        raise GatewayError("Mercado Pago get_payment timed out", outcome_unknown=True)

    @app.get("/typed/{value}")
    def typed(value: int):
        return {"value": value}

    @app.get("/crash")
    def crash():
        raise RuntimeError("boom")

    return app


@pytest.fixture
def client(app_with_errors: FastAPI) -> TestClient:
    return TestClient(app_with_errors, raise_server_exceptions=False)


class TestErrorResponses:
    def test_http_error_includes_request_id(self, client: TestClient) -> None:
        resp = client.get("/http-error")
        assert resp.status_code == 403
        body = resp.json()
        assert "request_id" in body
        assert body["code"] == "http_403"
        assert body["message"] == "Forbidden"

    def test_http_error_dict_detail(self, client: TestClient) -> None:
        resp = client.get("/http-error-dict")
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "invalid_input"
        assert body["details"] == {"field": "name"}

    def test_not_found_error(self, client: TestClient) -> None:
        resp = client.get("/not-found")
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"
        assert resp.json()["message"] == "Invoice not found"

    def test_validation_error(self, client: TestClient) -> None:
        resp = client.get("/invalid")
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"

    def test_gateway_error_carries_retry_hints(self, client: TestClient) -> None:
        resp = client.get("/gateway")
        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == "gateway_error"
        assert body["details"]["outcome_unknown"] is True
        assert body["details"]["retryable"] is True

    def test_request_validation_error(self, client: TestClient) -> None:
        resp = client.get("/typed/abc")
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "validation_error"
        assert isinstance(body["details"], list)

    def test_unhandled_exception_includes_request_id(self, client: TestClient) -> None:
        resp = client.get("/crash")
        assert resp.status_code == 500
        body = resp.json()
        assert body["code"] == "internal_error"
        assert "request_id" in body
        # Should NOT leak exception details
        assert body["details"] is None

    def test_request_id_propagated_from_header(self, client: TestClient) -> None:
        custom_id = "test-request-id-12345"
        resp = client.get("/http-error", headers={"X-Request-Id": custom_id})
        assert resp.json()["request_id"] == custom_id

    def test_success_response_has_request_id_header(self, client: TestClient) -> None:
        resp = client.get("/ok")
        assert resp.status_code == 200
        assert "x-request-id" in resp.headers
