"""
Recurly API client.
Reads a customer's billing state and performs the account/subscription
writes the action generators request. In mock mode, state comes from JSON
snapshots on disk and writes are simulated.
"""

import json
import logging
import os
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import (
    RECURLY_API_KEY,
    RECURLY_BASE_URL,
    RECURLY_USE_MOCK_DATA,
    RECURLY_MOCK_DATA_PATH,
    RECURLY_API_RETRY_ATTEMPTS,
    RECURLY_API_RETRY_BACKOFF_FACTOR,
    RECURLY_API_CONNECTION_POOL_SIZE,
    RECURLY_API_REQUEST_TIMEOUT,
)
from .amounts import as_quantity, to_cents
from .exceptions import RecurlyApiError
from .models import (
    RecurlyAccount,
    RecurlyInvoice,
    RecurlyState,
    RecurlySubscription,
    RecurlyTransaction,
)
from .observability import get_tracer, get_metrics_collector, trace_function

logger = logging.getLogger(__name__)

RECURLY_ACCEPT_HEADER = "application/vnd.recurly.v2021-02-25+json"

ACCOUNT_STATES = {"active", "closed", "past_due"}
SUBSCRIPTION_STATES = {
    "active", "canceled", "expired", "future", "in_trial", "live", "paused", "past_due",
}
TRANSACTION_STATUSES = {
    "success": "success",
    "void": "void",
    "pending": "pending",
    "processing": "pending",
    "scheduled": "pending",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecurlyClient:
    """
    Recurly API client.

    Handles:
    - Account state snapshots (account, subscriptions, invoices, transactions)
    - Account creation
    - Subscription create, update and cancel
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        use_mock_data: Optional[bool] = None,
        mock_data_path: Optional[str] = None,
    ):
        self.api_key = api_key or RECURLY_API_KEY
        self.base_url = (base_url or RECURLY_BASE_URL).rstrip("/")
        self.use_mock_data = (
            RECURLY_USE_MOCK_DATA if use_mock_data is None else use_mock_data
        )
        self.mock_data_path = mock_data_path or RECURLY_MOCK_DATA_PATH

        self.tracer = get_tracer()
        self.metrics = get_metrics_collector()
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create HTTP session with connection pooling and retry logic."""
        session = requests.Session()

        retry_strategy = Retry(
            total=RECURLY_API_RETRY_ATTEMPTS,
            backoff_factor=RECURLY_API_RETRY_BACKOFF_FACTOR,  # type: ignore[arg-type]
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(
            pool_connections=RECURLY_API_CONNECTION_POOL_SIZE,
            pool_maxsize=RECURLY_API_CONNECTION_POOL_SIZE,
            max_retries=retry_strategy,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.auth = (self.api_key, "")
        session.headers.update(
            {"Accept": RECURLY_ACCEPT_HEADER, "Content-Type": "application/json"}
        )
        return session

    def _request(
        self,
        method: str,
        endpoint: str,
        operation: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        """
        Make an authenticated request to the Recurly API.

        Returns:
            dict with 'success' plus 'data', or 'error', 'status_code' and 'details'
        """
        with self.tracer.start_as_current_span("recurly.api.request") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.url", endpoint)

            start_time = time.time()
            try:
                response = self.session.request(
                    method=method,
                    url=f"{self.base_url}{endpoint}",
                    json=data,
                    params=params,
                    timeout=RECURLY_API_REQUEST_TIMEOUT,
                )
            except requests.RequestException as e:
                duration_ms = (time.time() - start_time) * 1000
                span.set_attribute("error", True)
                span.record_exception(e)
                self.metrics.record_provider_call(operation, duration_ms, False)
                self.metrics.record_provider_error(operation, type(e).__name__)
                return {"success": False, "error": str(e), "status_code": None}

            duration_ms = (time.time() - start_time) * 1000
            span.set_attribute("http.status_code", response.status_code)

            if response.status_code in (200, 201, 204):
                self.metrics.record_provider_call(operation, duration_ms, True)
                body = response.json() if response.content else {}
                return {"success": True, "data": body}

            error_data = {}
            if response.content:
                try:
                    error_data = response.json()
                except ValueError:
                    error_data = {"message": response.text}
            span.set_attribute("error", True)
            self.metrics.record_provider_call(operation, duration_ms, False)
            self.metrics.record_provider_error(operation, f"http_{response.status_code}")
            error = error_data.get("error", error_data)
            return {
                "success": False,
                "error": error.get("message", f"HTTP {response.status_code}")
                if isinstance(error, dict)
                else str(error),
                "status_code": response.status_code,
                "details": error_data,
            }

    def _write(
        self, operation: str, method: str, endpoint: str, data: Optional[Dict] = None
    ) -> Dict[str, Any]:
        result = self._request(method, endpoint, operation, data=data)
        if not result["success"]:
            logger.error(f"Recurly {operation} failed: {result['error']}")
            raise RecurlyApiError(
                operation,
                result["error"],
                status_code=result.get("status_code"),
                details=result.get("details"),
            )
        return result["data"]

    # =========================================================================
    # Account State
    # =========================================================================

    @trace_function(span_name="recurly.account_state.get", attributes={"operation": "get"})
    def get_account_state(self, account_code: str) -> Optional[RecurlyState]:
        """
        Get the complete billing state for an account.

        Returns:
            RecurlyState, or None when the account does not exist
        """
        if self.use_mock_data:
            return self._load_mock_state(account_code)

        account_result = self._request(
            "GET", f"/accounts/code-{account_code}", "get_account"
        )
        if not account_result["success"]:
            if account_result.get("status_code") == 404:
                return None
            raise RecurlyApiError(
                "retrieve account state",
                account_result["error"],
                status_code=account_result.get("status_code"),
            )

        return RecurlyState(
            account=self._account_from_response(account_result["data"]),
            subscriptions=[
                self._subscription_from_response(s)
                for s in self._list(account_code, "subscriptions")
            ],
            invoices=[
                self._invoice_from_response(i)
                for i in self._list(account_code, "invoices")
            ],
            transactions=[
                self._transaction_from_response(t)
                for t in self._list(account_code, "transactions")
            ],
        )

    def _list(self, account_code: str, resource: str) -> List[Dict[str, Any]]:
        result = self._request(
            "GET",
            f"/accounts/code-{account_code}/{resource}",
            f"list_{resource}",
            params={"limit": 50, "sort": "created_at", "order": "desc"},
        )
        if not result["success"]:
            logger.warning(
                f"Failed to get {resource} for {account_code}: {result['error']}"
            )
            return []
        return result["data"].get("data", [])

    def _load_mock_state(self, account_code: str) -> Optional[RecurlyState]:
        candidates = [
            f"recurly-account-{account_code.replace('_', '-')}.json",
            f"recurly-account-{account_code}.json",
        ]
        for filename in candidates:
            file_path = os.path.join(self.mock_data_path, filename)
            if os.path.exists(file_path):
                with open(file_path, "r", encoding="utf-8") as f:
                    return RecurlyState(**json.load(f))

        logger.warning(f"No mock data found for account: {account_code}")
        return None

    # =========================================================================
    # Account Operations
    # =========================================================================

    @trace_function(span_name="recurly.accounts.create", attributes={"operation": "create"})
    def create_account(self, fields: Dict[str, Any]) -> RecurlyAccount:
        """
        Create a new account.

        Args:
            fields: account_code, company_name, email and optional name fields
        """
        if self.use_mock_data:
            logger.info(f"Mock: would create account {fields.get('account_code')}")
            now = _now_iso()
            return RecurlyAccount(
                account_code=fields.get("account_code") or "mock_account",
                email=fields.get("email") or "mock@example.com",
                first_name=fields.get("first_name") or "Mock",
                last_name=fields.get("last_name") or "User",
                company_name=fields.get("company_name") or "Mock Company",
                state="active",
                created_at=now,
                updated_at=now,
            )

        data = self._write("create account", "POST", "/accounts", data={
            "code": fields.get("account_code"),
            "company": fields.get("company_name"),
            "email": fields.get("email"),
            "first_name": fields.get("first_name"),
            "last_name": fields.get("last_name"),
        })
        return self._account_from_response(data, fields.get("account_code"))

    # =========================================================================
    # Subscription Operations
    # =========================================================================

    @trace_function(span_name="recurly.subscriptions.create", attributes={"operation": "create"})
    def create_subscription(
        self, account_code: str, spec: Dict[str, Any]
    ) -> RecurlySubscription:
        """
        Create a subscription on an account.

        Args:
            account_code: Account the subscription belongs to
            spec: plan_code, unit_amount_in_cents, quantity and optional
                  collection_method / net_terms / dates
        """
        if self.use_mock_data:
            logger.info(
                f"Mock: would create subscription {spec.get('plan_code')} for {account_code}"
            )
            return self._mock_subscription(f"mock_sub_{uuid.uuid4().hex[:12]}", spec)

        data = self._write("create subscription", "POST", "/subscriptions", data={
            "plan_code": spec.get("plan_code"),
            "account": {"code": account_code},
            "currency": "USD",
            "unit_amount": spec.get("unit_amount_in_cents", 0) / 100,
            "quantity": as_quantity(spec.get("quantity", 1)),
            "collection_method": spec.get("collection_method", "automatic"),
            "net_terms": spec.get("net_terms", 0),
        })
        return self._subscription_from_response(data, spec)

    @trace_function(span_name="recurly.subscriptions.update", attributes={"operation": "update"})
    def update_subscription(
        self, subscription_id: str, spec: Dict[str, Any]
    ) -> RecurlySubscription:
        """
        Change the price, quantity or plan of an existing subscription.

        Args:
            subscription_id: Subscription uuid
            spec: plan_code, unit_amount_in_cents, quantity
        """
        if self.use_mock_data:
            logger.info(f"Mock: would update subscription {subscription_id}")
            return self._mock_subscription(subscription_id, spec)

        data = self._write(
            "update subscription",
            "POST",
            f"/subscriptions/uuid-{subscription_id}/change",
            data={
                "plan_code": spec.get("plan_code"),
                "unit_amount": spec.get("unit_amount_in_cents", 0) / 100,
                "quantity": as_quantity(spec.get("quantity", 1)),
                "timeframe": "renewal",
            },
        )
        return self._subscription_from_response(data, spec, subscription_id)

    @trace_function(span_name="recurly.subscriptions.cancel", attributes={"operation": "cancel"})
    def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription; raises RecurlyApiError on failure."""
        if self.use_mock_data:
            logger.info(f"Mock: would cancel subscription {subscription_id}")
            return

        self._write(
            "cancel subscription", "PUT", f"/subscriptions/uuid-{subscription_id}/cancel"
        )

    def _mock_subscription(
        self, subscription_id: str, spec: Dict[str, Any]
    ) -> RecurlySubscription:
        now = datetime.now(timezone.utc)
        return RecurlySubscription(
            uuid=subscription_id,
            plan_code=spec.get("plan_code") or "mock_plan",
            state="active",
            unit_amount_in_cents=spec.get("unit_amount_in_cents") or 0,
            quantity=spec.get("quantity") or 1,
            current_period_started_at=now.isoformat(),
            current_period_ends_at=(now + timedelta(days=30)).isoformat(),
            started_at=now.isoformat(),
            collection_method=spec.get("collection_method", "automatic"),
            net_terms=spec.get("net_terms", 0),
        )

    # =========================================================================
    # Response Mapping (Recurly v3 JSON -> snapshot models)
    # =========================================================================

    def _account_from_response(
        self, data: Dict[str, Any], account_code: Optional[str] = None
    ) -> RecurlyAccount:
        state = data.get("state")
        return RecurlyAccount(
            account_code=data.get("code") or account_code or "",
            email=data.get("email") or "",
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            company_name=data.get("company") or "",
            state=state if state in ACCOUNT_STATES else "active",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            billing_info=data.get("billing_info"),
            address=data.get("address"),
        )

    def _subscription_from_response(
        self,
        data: Dict[str, Any],
        spec: Optional[Dict[str, Any]] = None,
        subscription_id: Optional[str] = None,
    ) -> RecurlySubscription:
        spec = spec or {}
        plan = data.get("plan") or {}
        unit_amount = data.get("unit_amount")
        state = data.get("state") or "active"
        return RecurlySubscription(
            uuid=data.get("uuid") or data.get("id") or subscription_id or "",
            plan_code=plan.get("code") or spec.get("plan_code", ""),
            # failed and other non-billing states count as inactive
            state=state if state in SUBSCRIPTION_STATES else "expired",
            unit_amount_in_cents=to_cents(unit_amount)
            if unit_amount is not None
            else spec.get("unit_amount_in_cents", 0),
            quantity=data.get("quantity") or spec.get("quantity", 1),
            current_period_started_at=data.get("current_period_started_at"),
            current_period_ends_at=data.get("current_period_ends_at"),
            started_at=data.get("activated_at"),
            expires_at=data.get("expires_at"),
            collection_method=data.get("collection_method")
            or spec.get("collection_method", "automatic"),
            net_terms=data.get("net_terms", spec.get("net_terms", 0)),
            add_ons=data.get("add_ons") or [],
        )

    def _invoice_from_response(self, data: Dict[str, Any]) -> RecurlyInvoice:
        line_items = data.get("line_items") or {}
        return RecurlyInvoice(
            invoice_number=str(data.get("number") or data.get("id") or ""),
            state=data.get("state") or "pending",
            total_in_cents=to_cents(data.get("total") or 0),
            created_at=data.get("created_at"),
            due_at=data.get("due_at"),
            closed_at=data.get("closed_at"),
            line_items=line_items.get("data", [])
            if isinstance(line_items, dict)
            else line_items,
        )

    def _transaction_from_response(self, data: Dict[str, Any]) -> RecurlyTransaction:
        status = data.get("status") or "pending"
        invoice = data.get("invoice") or {}
        return RecurlyTransaction(
            type=data.get("type") or "unknown",
            action=data.get("origin") or "",
            amount_in_cents=to_cents(data.get("amount") or 0),
            status=TRANSACTION_STATUSES.get(status, "failed"),
            created_at=data.get("created_at"),
            invoice_number=str(invoice["number"]) if invoice.get("number") else None,
        )

    # =========================================================================
    # Utility Methods
    # =========================================================================

    @trace_function(span_name="recurly.connection.check", attributes={"operation": "check"})
    def check_connection(self) -> Dict[str, Any]:
        """
        Check connectivity to the Recurly API.

        Returns:
            Connection status with base URL and mode
        """
        if self.use_mock_data:
            return {
                "connected": True,
                "base_url": self.base_url,
                "message": "Mock mode: connection check always succeeds",
            }

        result = self._request("GET", "/plans", "check_connection", params={"limit": 1})
        return {
            "connected": result["success"],
            "base_url": self.base_url,
            "message": "Connected to Recurly"
            if result["success"]
            else f"Connection failed: {result.get('error')}",
        }


# Global client instance
_client: Optional[RecurlyClient] = None


def get_recurly_client() -> RecurlyClient:
    """Get or create the global Recurly client instance."""
    global _client
    if _client is None:
        _client = RecurlyClient()
    return _client
