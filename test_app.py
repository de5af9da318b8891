"""
End-to-end tests for the processing entry points, run against the sample
opportunities and the mock Recurly snapshots.
"""

import json
import os
from datetime import date

import pytest

from app import process_opportunity, process_opportunity_file
from conftest import MOCK_DATA_PATH, SAMPLE_DATA_PATH, FakeProvider
from dimely.billing_engine import BillingEngine
from dimely.recurly_client import RecurlyClient

TODAY = date(2026, 10, 19)


@pytest.fixture
def client():
    return RecurlyClient(use_mock_data=True, mock_data_path=MOCK_DATA_PATH)


@pytest.fixture
def engine(client):
    return BillingEngine(client, clock=lambda: TODAY)


def sample_path(name):
    return os.path.join(SAMPLE_DATA_PATH, name)


def action_types(result):
    return [a["type"] for a in result["review_sheet"]["billing_actions"]]


def test_new_business_file(client, engine):
    result = process_opportunity_file(sample_path("new-business.json"), client, engine)

    assert result["success"] is True
    sheet = result["review_sheet"]
    assert action_types(result) == ["create_account", "create_subscription", "charge_one_time"]
    assert sheet["estimated_total_impact"] == 100000 + 500000
    assert sheet["manual_review_required"] is True
    assert result["warnings"] == []


def test_renewal_file_uses_mock_state(client, engine):
    result = process_opportunity_file(sample_path("renewal.json"), client, engine)

    assert result["success"] is True
    actions = result["review_sheet"]["billing_actions"]
    assert [a["type"] for a in actions] == [
        "update_subscription",
        "update_subscription",
        "create_subscription",
    ]
    assert actions[0]["details"]["uuid"] == "sub_globex_platform"
    assert actions[0]["requires_review"] is True
    assert actions[0]["notes"] == ["Annual 10% price uplift"]
    assert actions[1]["requires_review"] is False
    assert actions[2]["notes"] == ["New product added during renewal"]


def test_insertion_order_file(client, engine):
    result = process_opportunity_file(sample_path("insertion-order.json"), client, engine)

    actions = result["review_sheet"]["billing_actions"]
    assert [a["type"] for a in actions] == [
        "create_invoice",
        "prorate_charges",
        "create_subscription",
        "charge_one_time",
    ]
    assert actions[0]["amount_in_cents"] == 800000
    assert actions[1]["details"]["calculation_method"] == "monthly_based"
    assert actions[1]["amount_in_cents"] > 0


def test_conversion_file(client, engine):
    result = process_opportunity_file(sample_path("conversion.json"), client, engine)

    actions = result["review_sheet"]["billing_actions"]
    assert [a["type"] for a in actions] == [
        "cancel_subscription",
        "apply_credit",
        "create_subscription",
    ]
    assert actions[0]["details"]["subscription_id"] == "sub_hooli_team"
    assert actions[1]["amount_in_cents"] == 13300
    assert actions[2]["details"]["collection_method"] == "manual"
    assert actions[2]["details"]["net_terms"] == 30
    assert result["review_sheet"]["estimated_total_impact"] == 600000 - 13300


def test_unknown_account_adds_warning(client, engine):
    with open(sample_path("renewal.json"), "r", encoding="utf-8") as f:
        data = json.load(f)
    data["recurly_account_code"] = "vanished_corp"

    result = process_opportunity(data, client, engine)

    assert result["success"] is True
    assert result["warnings"] == ["No Recurly account found for: vanished_corp"]
    actions = result["review_sheet"]["billing_actions"]
    assert len(actions) == 1
    assert actions[0]["description"].startswith("ERROR")


def test_invalid_payload_returns_errors(client, engine):
    result = process_opportunity({"type": "renewal"}, client, engine)

    assert result["success"] is False
    assert result["review_sheet"] is None
    assert {"id", "account_id", "contact_info"} <= {e["field"] for e in result["errors"]}


def test_missing_file(client, engine):
    result = process_opportunity_file(sample_path("does-not-exist.json"), client, engine)

    assert result["success"] is False
    assert result["errors"][0]["field"] == "file"


def test_provider_failure_is_reported_in_review_sheet():
    with open(sample_path("new-business.json"), "r", encoding="utf-8") as f:
        data = json.load(f)
    provider = FakeProvider(fail_on={"create_subscription": 1})

    result = process_opportunity(data, provider, BillingEngine(provider, clock=lambda: TODAY))

    assert result["success"] is True
    sheet = result["review_sheet"]
    assert action_types(result)[-1] == "error"
    assert sheet["high_risk_actions"] == 2
    assert sheet["manual_review_required"] is True
