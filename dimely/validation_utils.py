"""
Common validation utilities for opportunities.

Provides date parsing plus the structural checks the billing engine runs
before any action generator is invoked.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .exceptions import InvalidDateError
from .models import Opportunity, ValidationIssue

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}"


def parse_date(value: Any, field_name: str = "date") -> date:
    """
    Parse a YYYY-MM-DD string (an ISO timestamp suffix is tolerated).

    Raises:
        InvalidDateError: if the value is empty or not a real calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str) or not re.match(DATE_PATTERN, value):
        raise InvalidDateError(field_name, value)
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d").date()
    except ValueError as e:
        raise InvalidDateError(field_name, value) from e


def validate_date_format(
    date_str: str, field_name: str = "date"
) -> Tuple[bool, Optional[str]]:
    """
    Validate date is in YYYY-MM-DD format.

    Returns:
        Tuple of (is_valid, error_message)
        error_message is None if valid
    """
    try:
        parse_date(date_str, field_name)
        return True, None
    except InvalidDateError:
        return False, f"Invalid {field_name} format. Use YYYY-MM-DD (e.g., 2024-01-01)"


def validate_date_range(start_date: str, end_date: str) -> Tuple[bool, Optional[str]]:
    """
    Validate end_date is after start_date.

    Returns:
        Tuple of (is_valid, error_message)
        error_message is None if valid
    """
    try:
        start = parse_date(start_date, "contract_start_date")
        end = parse_date(end_date, "contract_end_date")
    except InvalidDateError as e:
        return False, f"Invalid contract dates: {str(e)}"
    if end <= start:
        return False, "Contract start date must be before end date"
    return True, None


def validate_opportunity(opportunity: Opportunity) -> List[str]:
    """
    Check the required fields and invariants of an opportunity.

    Returns:
        List of error messages; empty when the opportunity is valid
    """
    errors = []

    if not opportunity.id:
        errors.append("Opportunity ID is required")
    if not opportunity.type:
        errors.append("Opportunity type is required")
    if not opportunity.account_id:
        errors.append("Account ID is required")

    if not opportunity.contract_start_date or not opportunity.contract_end_date:
        errors.append("Contract start and end dates are required")
    else:
        is_valid, error = validate_date_range(
            opportunity.contract_start_date, opportunity.contract_end_date
        )
        if not is_valid:
            errors.append(error)

    if not opportunity.line_items:
        errors.append("At least one line item is required")

    for index, item in enumerate(opportunity.line_items):
        if not item.product_code or not item.product_name:
            errors.append(
                f"Line item {index}: product code and name are required for all line items"
            )
        if item.unit_price is None or item.unit_price <= 0:
            errors.append(f"Line item {index}: unit price must be greater than 0")
        if item.quantity is None or item.quantity <= 0:
            errors.append(f"Line item {index}: quantity must be greater than 0")

    return errors


def parse_opportunity(
    data: Dict[str, Any],
) -> Tuple[Optional[Opportunity], List[ValidationIssue]]:
    """
    Build an Opportunity from raw structured data.

    Returns:
        Tuple of (opportunity, issues); opportunity is None when issues exist
    """
    if not isinstance(data, dict):
        return None, [
            ValidationIssue(field="root", message="Opportunity must be a JSON object")
        ]

    try:
        opportunity = Opportunity(**data)
    except ValidationError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in err["loc"]) or "root",
                message=err["msg"],
                value=err.get("input"),
            )
            for err in e.errors()
        ]
        return None, issues

    issues = []
    for field_name in ("contract_start_date", "contract_end_date"):
        is_valid, error = validate_date_format(
            getattr(opportunity, field_name), field_name
        )
        if not is_valid:
            issues.append(
                ValidationIssue(
                    field=field_name,
                    message=error,
                    value=getattr(opportunity, field_name),
                )
            )
    if issues:
        return None, issues

    return opportunity, []
