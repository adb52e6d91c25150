import copy

import pytest


def summary_row(earnings_class, period_id, title, paid, released, count):
    return {
        "earningsClass": earnings_class,
        "bonusTitle": title,
        "paidAmount": paid,
        "released": released,
        "paidCount": count,
        "customerPaidCount": count,
        "totalVolume": "0",
        "period": {"id": period_id, "begin": "2025-01-01T00:00:00", "end": "2025-01-31T23:59:59"},
    }


DEFAULT_SUMMARY = [
    summary_row("RELEASE", "P1", "Fast Start", "1000", "200", 10),
    summary_row("FORFEIT", "P1", "Matching", "60", "0", 2),
    summary_row("HOLD", "P1", "Fast Start", "300", "0", 3),
]


class FakeFeed:
    """In-memory stand-in for the commission platform client."""

    def __init__(self):
        self.summary = copy.deepcopy(DEFAULT_SUMMARY)
        self.summary_error = None
        self.leaves = {}
        self.customers = {}
        self.validation = {"hasNegatives": False, "totals": {"totalPayables": 12}, "negativeItems": []}
        self.validate_error = None
        self.create_error = None
        self.validated = []
        self.created = []
        self.leaf_calls = []

    def fetch_summary(self, cutoff):
        if self.summary_error:
            raise self.summary_error
        return copy.deepcopy(self.summary)

    def fetch_leaves(self, cutoff, earnings_class, period_id, bonus_title, offset, first):
        self.leaf_calls.append((earnings_class, period_id, bonus_title, offset, first))
        rows = self.leaves.get((earnings_class, period_id, bonus_title.lower()), [])
        return rows[offset:offset + first]

    def fetch_customer(self, cutoff, customer_id):
        return self.customers.get(customer_id, (None, []))

    def validate_batch(self, payload):
        self.validated.append(payload)
        if self.validate_error:
            raise self.validate_error
        return self.validation

    def create_batch(self, payload):
        self.created.append(payload)
        if self.create_error:
            raise self.create_error
        return {"batchId": 501, "groupCount": len(payload["groups"])}


def leaf_row(customer_id, name, amount, released="0"):
    return {
        "amount": amount,
        "released": released,
        "customer": {"id": customer_id, "fullName": name, "status": {"name": "Active", "statusClass": "active"}},
    }


def customer_entry(customer_id, name, earnings_class, items):
    customer = {"id": customer_id, "fullName": name, "status": {"name": "Active", "earningsClass": earnings_class}}
    rows = [
        {"bonusTitle": title, "amount": amount, "released": "0", "level": 1, "period": {"id": period_id}}
        for period_id, title, amount in items
    ]
    return customer, rows


@pytest.fixture
def feed():
    feed = FakeFeed()
    feed.leaves[("RELEASE", "P1", "fast start")] = [
        leaf_row(f"C{i}", f"Customer {i:02d}", "100", "20") for i in range(1, 11)
    ]
    feed.customers["C7"] = customer_entry("C7", "Casey Seven", "RELEASE", [("P1", "Fast Start", "80")])
    return feed
