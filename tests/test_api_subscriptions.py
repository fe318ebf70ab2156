"""Tests for plan, card, subscription and premium endpoints."""

import uuid

import pytest


@pytest.fixture()
def card_id(client, partner, partner_headers):
    response = client.post(
        f"/partners/{partner.id}/cards",
        json={"card_token": "tok_visa"},
        headers=partner_headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture()
def subscription_id(client, partner, partner_headers, plan, card_id):
    response = client.post(
        f"/partners/{partner.id}/subscriptions",
        json={"plan_id": str(plan.id), "card_id": card_id},
        headers=partner_headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_list_plans(client, plan, partner_headers):
    response = client.get("/plans", headers=partner_headers)
    assert response.status_code == 200
    assert "Plano Mensal" in [item["name"] for item in response.json()]


def test_list_plans_requires_auth(client):
    assert client.get("/plans").status_code == 401


def test_cards_roundtrip(client, partner, partner_headers, card_id):
    listed = client.get(f"/partners/{partner.id}/cards", headers=partner_headers)
    assert [card["id"] for card in listed.json()] == [card_id]
    assert listed.json()[0]["is_default"] is True

    removed = client.delete(
        f"/partners/{partner.id}/cards/{card_id}", headers=partner_headers
    )
    assert removed.status_code == 204
    assert client.get(f"/partners/{partner.id}/cards", headers=partner_headers).json() == []


def test_subscribe_grants_premium(client, partner, partner_headers, subscription_id):
    active = client.get(
        f"/partners/{partner.id}/subscriptions/active", headers=partner_headers
    )
    assert active.json()["id"] == subscription_id
    assert active.json()["status"] == "active"

    premium = client.get(f"/partners/{partner.id}/premium", headers=partner_headers)
    assert premium.json()["is_premium"] is True
    assert premium.json()["premium_source"] == "subscription"


def test_second_subscription_is_rejected(
    client, partner, partner_headers, plan, card_id, subscription_id
):
    response = client.post(
        f"/partners/{partner.id}/subscriptions",
        json={"plan_id": str(plan.id), "card_id": card_id},
        headers=partner_headers,
    )
    assert response.status_code == 422


def test_pause_resume_cancel(client, partner_headers, subscription_id):
    paused = client.post(f"/subscriptions/{subscription_id}/pause", headers=partner_headers)
    assert paused.json()["status"] == "paused"
    resumed = client.post(
        f"/subscriptions/{subscription_id}/resume", headers=partner_headers
    )
    assert resumed.json()["status"] == "active"
    cancelled = client.post(
        f"/subscriptions/{subscription_id}/cancel", headers=partner_headers
    )
    assert cancelled.json()["status"] == "cancelled"
    again = client.post(f"/subscriptions/{subscription_id}/cancel", headers=partner_headers)
    assert again.status_code == 422


def test_other_partner_cannot_control_subscription(
    client, other_partner_headers, subscription_id
):
    response = client.post(
        f"/subscriptions/{subscription_id}/pause", headers=other_partner_headers
    )
    assert response.status_code == 403


def test_unknown_subscription(client, partner_headers):
    response = client.post(f"/subscriptions/{uuid.uuid4()}/pause", headers=partner_headers)
    assert response.status_code == 404


def test_one_off_payment(client, partner, partner_headers, plan, card_id):
    response = client.post(
        f"/partners/{partner.id}/subscription-payments",
        json={"plan_id": str(plan.id), "card_id": card_id},
        headers=partner_headers,
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    premium = client.get(f"/partners/{partner.id}/premium", headers=partner_headers)
    assert premium.json()["premium_source"] == "manual"


def test_grant_premium_requires_admin(client, partner, partner_headers, admin_headers):
    denied = client.post(
        f"/partners/{partner.id}/premium/grant", json={"days": 30}, headers=partner_headers
    )
    assert denied.status_code == 403

    granted = client.post(
        f"/partners/{partner.id}/premium/grant", json={"days": 30}, headers=admin_headers
    )
    assert granted.status_code == 200
    assert granted.json()["is_premium"] is True
    assert granted.json()["premium_valid_until"] is not None
