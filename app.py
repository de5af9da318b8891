import json
import logging
import time
from typing import Any, Dict, Optional

from dimely.billing_engine import BillingEngine
from dimely.models import ProcessingResult, ValidationIssue
from dimely.observability import (
    initialize_observability,
    get_tracer,
    get_metrics_collector,
    trace_function,
)
from dimely.recurly_client import RecurlyClient, get_recurly_client
from dimely.review_sheet import generate_review_sheet
from dimely.validation_utils import parse_opportunity

logger = logging.getLogger(__name__)


@trace_function(span_name="dimely.process_opportunity", attributes={"component": "entrypoint"})
def process_opportunity(
    data: Any,
    client: Optional[RecurlyClient] = None,
    engine: Optional[BillingEngine] = None,
) -> Dict[str, Any]:
    """
    Process an opportunity record and generate billing instructions for review.

    Args:
        data: Opportunity record as parsed JSON
        client: Billing provider; defaults to the shared Recurly client
        engine: Billing engine; defaults to one built on `client`

    Returns:
        ProcessingResult as a dict
    """
    initialize_observability()
    tracer = get_tracer()
    metrics = get_metrics_collector()
    start_time = time.time()

    client = client or get_recurly_client()
    engine = engine or BillingEngine(client)
    order_type = data.get("type", "unknown") if isinstance(data, dict) else "unknown"

    try:
        # Phase 1: Parse and validate
        with tracer.start_as_current_span("opportunity.parse") as span:
            opportunity, issues = parse_opportunity(data)
            span.set_attribute("num_issues", len(issues))
            if issues:
                span.set_attribute("error", True)
                logger.error(
                    f"Opportunity validation failed: "
                    f"{'; '.join(f'{i.field}: {i.message}' for i in issues)}"
                )
                metrics.record_opportunity(
                    order_type, (time.time() - start_time) * 1000, success=False
                )
                return ProcessingResult(success=False, errors=issues).model_dump(
                    mode="json"
                )
            span.set_attribute("opportunity_id", opportunity.id)

        logger.info(
            f"Parsed {opportunity.order_type_label} opportunity: "
            f"{opportunity.opportunity_name or opportunity.id}"
        )
        warnings = []

        # Phase 2: Fetch existing billing state
        state = None
        if opportunity.recurly_account_code:
            with tracer.start_as_current_span("recurly.state.fetch") as span:
                span.set_attribute("account_code", opportunity.recurly_account_code)
                state = client.get_account_state(opportunity.recurly_account_code)
                span.set_attribute("found", state is not None)
            if state is None:
                message = f"No Recurly account found for: {opportunity.recurly_account_code}"
                logger.warning(message)
                warnings.append(message)

        # Phase 3: Generate billing actions
        with tracer.start_as_current_span("billing.actions.generate") as span:
            actions = engine.generate_actions(opportunity, state)
            span.set_attribute("num_actions", len(actions))

        # Phase 4: Build review sheet
        with tracer.start_as_current_span("review_sheet.build") as span:
            review_sheet = generate_review_sheet(opportunity, actions)
            span.set_attribute("manual_review_required", review_sheet.manual_review_required)

        logger.info(f"Generated {len(actions)} billing actions for review")
        return ProcessingResult(
            success=True, review_sheet=review_sheet, warnings=warnings
        ).model_dump(mode="json")

    except Exception as e:
        logger.exception("Error processing opportunity")
        metrics.record_opportunity(
            order_type, (time.time() - start_time) * 1000, success=False
        )
        return ProcessingResult(
            success=False,
            errors=[ValidationIssue(field="root", message=f"Processing failed: {e}")],
        ).model_dump(mode="json")


def process_opportunity_file(
    file_path: str,
    client: Optional[RecurlyClient] = None,
    engine: Optional[BillingEngine] = None,
) -> Dict[str, Any]:
    """Load an opportunity JSON file and process it."""
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        return ProcessingResult(
            success=False,
            errors=[ValidationIssue(field="file", message=f"Failed to read file: {e}")],
        ).model_dump(mode="json")
    return process_opportunity(data, client=client, engine=engine)
