import json
from datetime import datetime

import pytest
import requests

from payables.client import CREATE_PATH, VALIDATE_PATH, BatchRequestError, FeedError, PayablesClient

CUTOFF = datetime(2025, 3, 31, 23, 59, 59)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")
        self.content = self.text.encode()
        self.reason = "Error" if status_code >= 400 else "OK"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} {self.reason}")


class FakeSession:
    def __init__(self, *responses):
        self.headers = {}
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(*responses):
    session = FakeSession(*responses)
    return PayablesClient(base_url="https://pay.example.com/", token="secret", timeout=5, session=session), session


def test_summary_query_posts_graphql_with_cutoff():
    rows = [{"bonusTitle": "Fast Start", "earningsClass": "RELEASE"}]
    client, session = _client(FakeResponse(body={"data": {"unreleasedSummary": rows}}))

    assert client.fetch_summary(CUTOFF) == rows
    post = session.posts[0]
    assert post["url"] == "https://pay.example.com/graphql"
    assert post["json"]["variables"] == {"date": "2025-03-31T23:59:59"}
    assert post["timeout"] == 5
    assert session.headers["Authorization"] == "Bearer secret"


def test_leaf_query_passes_group_and_page_window():
    client, session = _client(FakeResponse(body={"data": {"unreleased": [{"amount": 1}]}}))

    assert client.fetch_leaves(CUTOFF, "RELEASE", "7", "Fast Start", offset=20, first=10) == [{"amount": 1}]
    assert session.posts[0]["json"]["variables"] == {
        "date": "2025-03-31T23:59:59",
        "bonusTitle": "Fast Start",
        "earningsClass": "RELEASE",
        "periodId": "7",
        "offset": 20,
        "first": 10,
    }


def test_customer_query_returns_profile_and_rows():
    body = {"data": {"customers": [{"id": "C7"}], "unreleased": [{"amount": 3}]}}
    client, _ = _client(FakeResponse(body=body), FakeResponse(body={"data": {"customers": []}}))

    assert client.fetch_customer(CUTOFF, "C7") == ({"id": "C7"}, [{"amount": 3}])
    assert client.fetch_customer(CUTOFF, "C8") == (None, [])


def test_graphql_errors_raise_feed_error():
    client, _ = _client(FakeResponse(body={"errors": [{"message": "bad date"}], "data": None}))
    with pytest.raises(FeedError, match="bad date"):
        client.fetch_summary(CUTOFF)


def test_transport_failures_raise_feed_error():
    client, _ = _client(requests.ConnectionError("refused"), FakeResponse(status_code=500, text="oops"))
    with pytest.raises(FeedError):
        client.fetch_summary(CUTOFF)
    with pytest.raises(FeedError):
        client.fetch_summary(CUTOFF)


def test_batch_endpoints_post_payload():
    payload = {"cutoffDate": "2025-03-31T23:59:59", "groups": [], "options": {}}
    client, session = _client(FakeResponse(body={"hasNegatives": False}), FakeResponse(status_code=204, text=""))

    assert client.validate_batch(payload) == {"hasNegatives": False}
    assert client.create_batch(payload) == {}
    assert session.posts[0]["url"] == f"https://pay.example.com{VALIDATE_PATH}"
    assert session.posts[1]["url"] == f"https://pay.example.com{CREATE_PATH}"
    assert session.posts[1]["json"] is payload


def test_rejected_batch_raises_with_status():
    client, _ = _client(FakeResponse(status_code=422, text="Unknown bonus title"))
    with pytest.raises(BatchRequestError) as excinfo:
        client.create_batch({"groups": []})
    assert excinfo.value.status_code == 422
    assert "Unknown bonus title" in str(excinfo.value)
