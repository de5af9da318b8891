"""
Tests for date parsing and opportunity parsing.
"""

import json
import os
from datetime import date

import pytest

from conftest import SAMPLE_DATA_PATH
from dimely.exceptions import InvalidDateError
from dimely.models import OrderType
from dimely.validation_utils import (
    parse_date,
    parse_opportunity,
    validate_date_format,
    validate_date_range,
)


def load_sample(name):
    with open(os.path.join(SAMPLE_DATA_PATH, name), "r", encoding="utf-8") as f:
        return json.load(f)


def test_parse_date():
    assert parse_date("2024-02-29") == date(2024, 2, 29)
    assert parse_date("2024-02-29T10:00:00Z") == date(2024, 2, 29)
    assert parse_date(date(2024, 1, 1)) == date(2024, 1, 1)


@pytest.mark.parametrize("value", ["", None, "2023-02-29", "02/01/2024", "tomorrow"])
def test_parse_date_rejects_invalid(value):
    with pytest.raises(InvalidDateError):
        parse_date(value, "close_date")


def test_validate_date_helpers():
    assert validate_date_format("2024-11-01") == (True, None)
    assert validate_date_format("11-01-2024")[0] is False
    assert validate_date_range("2024-01-01", "2024-12-31") == (True, None)
    assert validate_date_range("2024-12-31", "2024-12-31") == (
        False,
        "Contract start date must be before end date",
    )


@pytest.mark.parametrize(
    "filename, order_type",
    [
        ("new-business.json", OrderType.NEW_BUSINESS),
        ("renewal.json", OrderType.RENEWAL),
        ("insertion-order.json", OrderType.INSERTION_ORDER),
        ("conversion.json", OrderType.CONVERSION_ORDER),
    ],
)
def test_sample_opportunities_parse(filename, order_type):
    opportunity, issues = parse_opportunity(load_sample(filename))

    assert issues == []
    assert opportunity.type == order_type
    assert opportunity.line_items


def test_parse_opportunity_reports_field_issues():
    data = load_sample("new-business.json")
    del data["id"]
    data["line_items"][0]["quantity"] = 0

    opportunity, issues = parse_opportunity(data)

    assert opportunity is None
    fields = {issue.field for issue in issues}
    assert "id" in fields
    assert "line_items.0.quantity" in fields


def test_parse_opportunity_rejects_unknown_order_type():
    data = load_sample("new-business.json")
    data["type"] = "legacy_upgrade"

    opportunity, issues = parse_opportunity(data)

    assert opportunity is None
    assert issues[0].field == "type"
    assert issues[0].value == "legacy_upgrade"


def test_parse_opportunity_rejects_bad_date_format():
    data = load_sample("new-business.json")
    data["contract_start_date"] = "11/01/2026"

    opportunity, issues = parse_opportunity(data)

    assert opportunity is None
    assert issues[0].field == "contract_start_date"


def test_parse_opportunity_requires_object():
    opportunity, issues = parse_opportunity(["not", "an", "object"])

    assert opportunity is None
    assert issues[0].field == "root"
