"""
Proration engine.

Computes the charge for the partial period from "now" (or the contract
start, if that is later) through the contract end. The clock is injected so
the calculation stays deterministic under test.
"""

import calendar
import logging
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple

from .amounts import round_half_up
from .exceptions import InvalidDateError, InvalidDateRange, NoRemainingPeriod
from .models import LineItem, ProrationDetails, ProrationResult
from .validation_utils import parse_date

logger = logging.getLogger(__name__)

MINIMUM_CHARGE_CENTS = 100  # $1.00
DELAYED_START_DISCOUNT = 0.9

Clock = Callable[[], date]


class ProrationEngine:
    """Day-based partial-period billing for monthly, quarterly and annual terms."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or date.today

    def calculate_proration(
        self,
        line_item: LineItem,
        start_date: str,
        end_date: str,
        billing_frequency: str,
        proration_details: Optional[ProrationDetails] = None,
        now: Optional[date] = None,
    ) -> ProrationResult:
        """
        Calculate the prorated charge for a line item.

        Invalid or exhausted date ranges never raise: they produce a
        zero-amount result whose notes explain why.

        Args:
            line_item: Item being prorated (unit_price is the monthly price)
            start_date: Contract start date (YYYY-MM-DD)
            end_date: Contract end date (YYYY-MM-DD)
            billing_frequency: monthly, quarterly or annually
            proration_details: Optional business-rule hints
            now: Override for the current date; defaults to the engine clock

        Returns:
            ProrationResult with amount in cents, method and day count
        """
        frequency = getattr(billing_frequency, "value", billing_frequency)
        today = now or self.clock()

        try:
            effective_start, end, days_remaining = self._resolve_period(
                start_date, end_date, today
            )
        except InvalidDateRange as e:
            return ProrationResult(
                amount_in_cents=0,
                calculation_method="invalid_dates",
                days_calculated=0,
                billing_frequency=frequency,
                notes=[str(e)],
            )
        except NoRemainingPeriod as e:
            return ProrationResult(
                amount_in_cents=0,
                calculation_method="no_remaining_period",
                days_calculated=0,
                billing_frequency=frequency,
                notes=[str(e)],
            )

        notes = [f"{frequency} proration applied"]
        monthly_amount = line_item.unit_price * line_item.quantity
        amount = self._base_proration(
            monthly_amount, effective_start, days_remaining, frequency, notes
        )

        if proration_details:
            amount = self._apply_business_rules(
                amount, line_item, proration_details, today, notes
            )

        amount = self._apply_minimum_charge(amount, line_item, notes)

        if line_item.affects_base_subscription:
            notes.append("Affects base subscription")

        return ProrationResult(
            amount_in_cents=max(amount, 0),
            calculation_method=f"{frequency}_based",
            days_calculated=days_remaining,
            billing_frequency=frequency,
            notes=notes,
        )

    def _resolve_period(
        self, start_date: str, end_date: str, today: date
    ) -> Tuple[date, date, int]:
        try:
            start = parse_date(start_date, "start date")
            end = parse_date(end_date, "end date")
        except InvalidDateError as e:
            raise InvalidDateRange(
                f"Invalid dates provided for proration calculation: {e}"
            ) from e

        if start >= end:
            raise InvalidDateRange("Start date must be before end date for proration")

        effective_start = max(start, today)
        days_remaining = (end - effective_start).days
        if days_remaining <= 0:
            raise NoRemainingPeriod(
                f"No days remaining for proration: contract ended {end.isoformat()}"
            )

        return effective_start, end, days_remaining

    def _base_proration(
        self,
        monthly_amount: float,
        effective_start: date,
        days_remaining: int,
        frequency: str,
        notes: List[str],
    ) -> int:
        if frequency == "quarterly":
            period_amount = monthly_amount * 3
            period_days = days_in_quarter(effective_start)
        elif frequency == "annually":
            period_amount = monthly_amount * 12
            period_days = 366 if calendar.isleap(effective_start.year) else 365
        else:
            if frequency != "monthly":
                logger.warning(
                    f"Unrecognized billing frequency '{frequency}', using monthly proration"
                )
                notes.append(
                    f"Unrecognized billing frequency '{frequency}'; monthly method used"
                )
            period_amount = monthly_amount
            period_days = calendar.monthrange(
                effective_start.year, effective_start.month
            )[1]

        daily_rate = period_amount / period_days
        return round_half_up(daily_rate * days_remaining * 100)

    def _apply_business_rules(
        self,
        amount: int,
        line_item: LineItem,
        details: ProrationDetails,
        today: date,
        notes: List[str],
    ) -> int:
        scenarios = details.billing_scenarios
        if not scenarios:
            return amount

        if scenarios.immediate_invoice and details.upsell_start_date:
            try:
                activation = parse_date(details.upsell_start_date, "upsell_start_date")
            except InvalidDateError:
                notes.append("Upsell start date unreadable; delayed-start discount skipped")
            else:
                if activation > today:
                    amount = round_half_up(amount * DELAYED_START_DISCOUNT)
                    notes.append("Delayed start: 10% reduction applied")

        if scenarios.subscription_update:
            previous = line_item.previous_price
            if previous and previous > 0 and line_item.unit_price > previous:
                # Scaled by the new price, not the delta's own base
                ratio = (line_item.unit_price - previous) / line_item.unit_price
                amount = round_half_up(amount * ratio)
                notes.append(
                    f"Partial increase proration: {previous:g} -> {line_item.unit_price:g}"
                )

        return amount

    def _apply_minimum_charge(
        self, amount: int, line_item: LineItem, notes: List[str]
    ) -> int:
        if 0 < amount < MINIMUM_CHARGE_CENTS:
            if line_item.affects_subscription:
                notes.append("Minimum charge of $1.00 applied")
                return MINIMUM_CHARGE_CENTS
            notes.append("Charge below $1.00 waived")
            return 0
        return amount


def days_in_quarter(day: date) -> int:
    """Number of days in the calendar quarter containing `day`, both ends inclusive."""
    first_month = ((day.month - 1) // 3) * 3 + 1
    quarter_start = date(day.year, first_month, 1)
    if first_month == 10:
        next_quarter = date(day.year + 1, 1, 1)
    else:
        next_quarter = date(day.year, first_month + 3, 1)
    quarter_end = next_quarter - timedelta(days=1)
    return (quarter_end - quarter_start).days + 1
