"""
Tests for the Recurly client: mock-mode state loading and simulated writes,
plus live-mode response handling against a stubbed HTTP session.
"""

import json

import pytest
import requests

from conftest import MOCK_DATA_PATH
from dimely.exceptions import RecurlyApiError
from dimely.recurly_client import RecurlyClient


@pytest.fixture
def mock_client():
    return RecurlyClient(use_mock_data=True, mock_data_path=MOCK_DATA_PATH)


@pytest.fixture
def live_client():
    return RecurlyClient(
        api_key="test-key", base_url="https://recurly.test/", use_mock_data=False
    )


def make_response(status_code, body=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode() if body is not None else b""
    return response


def stub_session(client, monkeypatch, response):
    sent = []

    def fake_request(**kwargs):
        sent.append(kwargs)
        return response

    monkeypatch.setattr(client.session, "request", fake_request)
    return sent


def test_mock_state_loads_with_hyphenated_filename(mock_client):
    state = mock_client.get_account_state("globex_corp")

    assert state.account.company_name == "Globex Corporation"
    assert [s.plan_code for s in state.subscriptions] == ["platform_pro", "support_standard"]
    assert state.invoices[0].invoice_number == "INV-1001"


def test_mock_state_missing_account(mock_client):
    assert mock_client.get_account_state("no_such_account") is None


def test_mock_writes_are_simulated(mock_client):
    account = mock_client.create_account({"account_code": "acme_corp", "email": "a@b.example"})
    first = mock_client.create_subscription(
        "acme_corp",
        {"plan_code": "platform_pro", "unit_amount_in_cents": 100000, "quantity": 1},
    )
    second = mock_client.create_subscription(
        "acme_corp",
        {
            "plan_code": "support",
            "unit_amount_in_cents": 5000,
            "collection_method": "manual",
            "net_terms": 30,
        },
    )

    assert account.account_code == "acme_corp"
    assert first.uuid.startswith("mock_sub_")
    assert first.uuid != second.uuid
    assert second.collection_method == "manual"
    assert second.net_terms == 30
    assert mock_client.cancel_subscription(first.uuid) is None
    assert mock_client.check_connection()["connected"] is True


def test_session_carries_auth_and_accept_header(live_client):
    assert live_client.session.auth == ("test-key", "")
    assert "recurly" in live_client.session.headers["Accept"]
    assert live_client.base_url == "https://recurly.test"


def test_live_create_subscription(live_client, monkeypatch):
    sent = stub_session(
        live_client,
        monkeypatch,
        make_response(
            201,
            {
                "uuid": "abc123",
                "plan": {"code": "platform_pro"},
                "state": "active",
                "unit_amount": 1000.0,
                "quantity": 2,
                "collection_method": "manual",
                "net_terms": 30,
            },
        ),
    )

    subscription = live_client.create_subscription(
        "acme_corp",
        {"plan_code": "platform_pro", "unit_amount_in_cents": 100000, "quantity": 2},
    )

    assert subscription.uuid == "abc123"
    assert subscription.unit_amount_in_cents == 100000
    assert subscription.net_terms == 30
    assert sent[0]["method"] == "POST"
    assert sent[0]["url"] == "https://recurly.test/subscriptions"
    assert sent[0]["json"]["account"] == {"code": "acme_corp"}


def test_live_write_failure_raises(live_client, monkeypatch):
    stub_session(
        live_client,
        monkeypatch,
        make_response(422, {"error": {"type": "validation", "message": "Plan not found"}}),
    )

    with pytest.raises(RecurlyApiError) as exc_info:
        live_client.cancel_subscription("abc123")

    assert exc_info.value.status_code == 422
    assert str(exc_info.value) == "Failed to cancel subscription: Plan not found"


def test_live_state_not_found_returns_none(live_client, monkeypatch):
    stub_session(live_client, monkeypatch, make_response(404, {"error": {"message": "Not found"}}))

    assert live_client.get_account_state("missing") is None


def test_live_connection_error_is_reported(live_client, monkeypatch):
    def fail(**kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(live_client.session, "request", fail)

    status = live_client.check_connection()

    assert status["connected"] is False
    assert "connection refused" in status["message"]


def test_only_reads_are_retried(live_client):
    """Writes, including rollback cancellations, are never retried."""
    retry = live_client.session.get_adapter("https://v3.recurly.com").max_retries

    assert retry.is_retry("GET", 503) is True
    assert retry.is_retry("PUT", 500) is False
    assert retry.is_retry("POST", 500) is False
    assert retry.is_retry("DELETE", 500) is False


def test_live_account_state_maps_recurly_fields(live_client, monkeypatch):
    bodies = {
        "/accounts/code-acme": {
            "id": "a1",
            "code": "acme",
            "email": "billing@acme.example",
            "first_name": "Jane",
            "last_name": "Smith",
            "company": "Acme Corp",
            "state": "active",
            "created_at": "2024-01-05T10:00:00Z",
            "billing_info": {"payment_method": {"card_type": "Visa"}},
        },
        "/accounts/code-acme/subscriptions": {
            "object": "list",
            "data": [
                {
                    "id": "s1",
                    "uuid": "s1uuid",
                    "plan": {"code": "pro", "name": "Pro"},
                    "state": "active",
                    "unit_amount": 10.0,
                    "quantity": 3,
                    "collection_method": "automatic",
                    "net_terms": 0,
                    "activated_at": "2024-01-05T10:00:00Z",
                },
                {"id": "s2", "plan": {"code": "old"}, "state": "failed", "unit_amount": 5.5},
            ],
        },
        "/accounts/code-acme/invoices": {
            "data": [
                {
                    "id": "i1",
                    "number": "1001",
                    "state": "paid",
                    "total": 30.0,
                    "line_items": {"data": [{"id": "li1"}]},
                }
            ]
        },
        "/accounts/code-acme/transactions": {
            "data": [
                {
                    "id": "t1",
                    "type": "purchase",
                    "origin": "recurring",
                    "amount": 30.0,
                    "status": "declined",
                    "invoice": {"number": "1001"},
                }
            ]
        },
    }

    def fake_request(**kwargs):
        path = kwargs["url"][len("https://recurly.test"):]
        return make_response(200, bodies[path])

    monkeypatch.setattr(live_client.session, "request", fake_request)

    state = live_client.get_account_state("acme")

    assert state.account.account_code == "acme"
    assert state.account.company_name == "Acme Corp"
    assert state.account.billing_info == {"payment_method": {"card_type": "Visa"}}

    active, failed = state.subscriptions
    assert active.uuid == "s1uuid"
    assert active.plan_code == "pro"
    assert active.unit_amount_in_cents == 1000
    assert active.quantity == 3
    assert failed.uuid == "s2"
    assert failed.state == "expired"
    assert failed.unit_amount_in_cents == 550

    assert state.invoices[0].invoice_number == "1001"
    assert state.invoices[0].total_in_cents == 3000
    assert state.invoices[0].line_items == [{"id": "li1"}]

    assert state.transactions[0].amount_in_cents == 3000
    assert state.transactions[0].status == "failed"
    assert state.transactions[0].invoice_number == "1001"


def test_live_writes_send_whole_quantities_as_integers(live_client, monkeypatch):
    sent = stub_session(
        live_client,
        monkeypatch,
        make_response(200, {"uuid": "abc123", "plan": {"code": "seats"}, "quantity": 10}),
    )

    live_client.create_subscription(
        "acme_corp", {"plan_code": "seats", "unit_amount_in_cents": 5000, "quantity": 10.0}
    )
    live_client.update_subscription(
        "abc123", {"plan_code": "seats", "unit_amount_in_cents": 5000, "quantity": 2.5}
    )

    assert sent[0]["json"]["quantity"] == 10
    assert isinstance(sent[0]["json"]["quantity"], int)
    assert sent[1]["json"]["quantity"] == 2.5
