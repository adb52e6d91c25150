"""HTTP client for the commission platform's payables feeds and batch endpoints."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from payables.config import API_BASE_URL, API_TOKEN, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

SUMMARY_QUERY = """
query ($date: Date!) {
  unreleasedSummary(date: $date) {
    bonusTitle
    earningsClass
    released
    paidAmount
    paidCount
    customerPaidCount
    totalVolume
    period { id begin end }
  }
}
"""

LEAF_QUERY = """
query ($date: Date, $bonusTitle: String, $earningsClass: EarningsClass, $periodId: BigInt, $offset: Int, $first: Int) {
  unreleased(
    date: $date
    bonusTitle: $bonusTitle
    earningsClass: $earningsClass
    periodId: $periodId
    offset: $offset
    first: $first
  ) {
    amount
    bonusTitle
    released
    period { id }
    customer {
      id
      fullName
      webAlias
      status { name statusClass earningsClass }
      customerType { id name }
    }
  }
}
"""

CUSTOMER_QUERY = """
query ($nodeId: String, $date: Date) {
  customers(idList: [$nodeId]) {
    id
    fullName
    webAlias
    status { id name statusClass earningsClass }
    customerType { id name }
  }
  unreleased(date: $date, nodeIds: [$nodeId], offset: 0, first: 10000) {
    bonusId
    nodeId
    amount
    bonusTitle
    level
    released
    commissionDate
    period { id begin end }
  }
}
"""

VALIDATE_PATH = "/api/v1/Batches/validate"
CREATE_PATH = "/api/v1/Batches/Create"


class PayablesClientError(Exception):
    """Base error for failed calls to the commission platform."""


class FeedError(PayablesClientError):
    """A read query failed or returned GraphQL errors."""


class BatchRequestError(PayablesClientError):
    """Validate or Create was rejected or could not be sent."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _date_variable(cutoff: Optional[datetime]) -> Optional[str]:
    return cutoff.isoformat() if cutoff is not None else None


class PayablesClient:
    """Blocking client; callers on the event loop wrap calls in ``asyncio.to_thread``."""

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        token: str = API_TOKEN,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(
                f"{self.base_url}/graphql",
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise FeedError(f"GraphQL request failed: {exc}") from exc
        except ValueError as exc:
            raise FeedError("GraphQL response was not valid JSON") from exc

        errors = body.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            raise FeedError(messages)
        return body.get("data") or {}

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise BatchRequestError(f"Request to {path} failed: {exc}") from exc

        if not response.ok:
            detail = response.text.strip() or response.reason
            raise BatchRequestError(detail or f"HTTP {response.status_code}", status_code=response.status_code)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise BatchRequestError(f"Response from {path} was not valid JSON") from exc

    def fetch_summary(self, cutoff: Optional[datetime]) -> List[Dict[str, Any]]:
        data = self._graphql(SUMMARY_QUERY, {"date": _date_variable(cutoff)})
        return list(data.get("unreleasedSummary") or [])

    def fetch_leaves(
        self,
        cutoff: Optional[datetime],
        earnings_class: str,
        period_id: str,
        bonus_title: str,
        offset: int = 0,
        first: int = 10000,
    ) -> List[Dict[str, Any]]:
        variables = {
            "date": _date_variable(cutoff),
            "bonusTitle": bonus_title,
            "earningsClass": earnings_class,
            "periodId": period_id,
            "offset": offset,
            "first": first,
        }
        data = self._graphql(LEAF_QUERY, variables)
        return list(data.get("unreleased") or [])

    def fetch_customer(
        self, cutoff: Optional[datetime], customer_id: str
    ) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        data = self._graphql(CUSTOMER_QUERY, {"date": _date_variable(cutoff), "nodeId": customer_id})
        customers = data.get("customers") or []
        return (customers[0] if customers else None), list(data.get("unreleased") or [])

    def validate_batch(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Validating batch with %d groups", len(payload.get("groups") or []))
        return self._post(VALIDATE_PATH, payload)

    def create_batch(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Creating batch with %d groups", len(payload.get("groups") or []))
        return self._post(CREATE_PATH, payload)


__all__ = [
    "BatchRequestError",
    "FeedError",
    "PayablesClient",
    "PayablesClientError",
]
