"""Unit tests for long-running operation polling.

Tests LongRunningOperationTransport with:
- Accept (202 + Location) followed by in-progress polls then success
- Remote failure surfaced as OperationFailed
- Deadline expiry surfaced as OperationTimedOut without an extra request
- Pass-through of unrelated requests
- Status decoding
"""

import httpx
import pytest
from helpers import FakeClock, RecordingSleep, RecordingTransport, json_response

from graph_connector.graph.operations import (
    Failed,
    LongRunningOperationTransport,
    OperationFailed,
    OperationTimedOut,
    Pending,
    Succeeded,
    decode_operation_status,
)

BASE = "https://graph.microsoft.com/beta"
SCHEMA_URL = "/external/connections/GitHubIssues/schema"
OPERATION_URL = f"{BASE}/external/connections/GitHubIssues/operations/op-1"


def scripted_graph(statuses: list[dict], accept_location: str | None = OPERATION_URL):
    """Handler answering the schema PATCH with 202 and polls from ``statuses``."""
    remaining = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PATCH":
            headers = {"Location": accept_location} if accept_location else {}
            return json_response(202 if accept_location else 200, None, headers)
        if "/operations/" in request.url.path:
            return json_response(200, remaining.pop(0))
        return json_response(204)

    return handler


def make_client(handler, timeout: float = 1500.0, interval: float = 60.0):
    clock = FakeClock()
    sleep = RecordingSleep(clock)
    inner = RecordingTransport(handler)
    transport = LongRunningOperationTransport(
        inner, poll_interval=interval, timeout=timeout, sleep=sleep, clock=clock
    )
    client = httpx.AsyncClient(
        base_url=BASE, transport=transport, headers={"Authorization": "Bearer test-token"}
    )
    return client, inner, sleep


SCHEMA_BODY = {"baseType": "microsoft.graph.externalItem", "properties": []}


class TestSchemaOperation:
    @pytest.mark.asyncio
    async def test_in_progress_then_succeeded(self):
        """Two in-progress polls, then completed: one call, three polls."""
        client, inner, sleep = make_client(
            scripted_graph([{"status": "inprogress"}, {"status": "inprogress"}, {"status": "completed"}])
        )

        async with client:
            response = await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

        assert response.status_code == 200
        assert response.json() == {"status": "completed"}
        assert inner.paths() == [
            "PATCH /beta/external/connections/GitHubIssues/schema",
            "GET /beta/external/connections/GitHubIssues/operations/op-1",
            "GET /beta/external/connections/GitHubIssues/operations/op-1",
            "GET /beta/external/connections/GitHubIssues/operations/op-1",
        ]
        assert sleep.calls == [60.0, 60.0, 60.0]

    @pytest.mark.asyncio
    async def test_poll_carries_authorization_without_body_headers(self):
        client, inner, _ = make_client(scripted_graph([{"status": "completed"}]))

        async with client:
            await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

        poll = inner.requests[1]
        assert poll.method == "GET"
        assert poll.headers["Authorization"] == "Bearer test-token"
        assert "content-type" not in poll.headers
        assert poll.content == b""

    @pytest.mark.asyncio
    async def test_relative_location_resolved_against_request(self):
        client, inner, _ = make_client(
            scripted_graph(
                [{"status": "completed"}],
                accept_location="/beta/external/connections/GitHubIssues/operations/op-1",
            )
        )

        async with client:
            await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

        assert str(inner.requests[1].url) == OPERATION_URL

    @pytest.mark.asyncio
    async def test_in_progress_then_failed(self):
        """A failed status raises OperationFailed with the remote detail."""
        client, inner, _ = make_client(
            scripted_graph(
                [
                    {"status": "inprogress"},
                    {
                        "status": "failed",
                        "error": {"code": "SchemaInvalid", "message": "Property 'x' is invalid"},
                    },
                ]
            )
        )

        async with client:
            with pytest.raises(OperationFailed) as exc_info:
                await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

        assert exc_info.value.code == "SchemaInvalid"
        assert exc_info.value.detail == "Property 'x' is invalid"
        assert exc_info.value.handle == OPERATION_URL
        assert len(inner.requests) == 3

    @pytest.mark.asyncio
    async def test_deadline_expires(self):
        """Polling stops at the deadline without issuing another request."""
        statuses = [{"status": "inprogress"} for _ in range(10)]
        client, inner, sleep = make_client(scripted_graph(statuses), timeout=150.0)

        async with client:
            with pytest.raises(OperationTimedOut) as exc_info:
                await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

        # deadline starts with polling: polls at +0, +60, +120; +180 is past 150
        polls = [r for r in inner.requests if r.method == "GET"]
        assert len(polls) == 3
        assert exc_info.value.handle == OPERATION_URL
        assert exc_info.value.timeout == 150.0
        assert len(sleep.calls) == 4

    @pytest.mark.asyncio
    async def test_no_location_returns_immediately(self):
        client, inner, sleep = make_client(scripted_graph([], accept_location=None))

        async with client:
            response = await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

        assert response.status_code == 200
        assert len(inner.requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_error_poll_response_returned_unchanged(self):
        def handler(request):
            if request.method == "PATCH":
                return json_response(202, None, {"Location": OPERATION_URL})
            return json_response(404, {"error": {"code": "NotFound", "message": "gone"}})

        client, inner, _ = make_client(handler)

        async with client:
            response = await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NotFound"
        assert len(inner.requests) == 2


class TestPassThrough:
    @pytest.mark.asyncio
    async def test_other_requests_unmodified(self):
        client, inner, sleep = make_client(scripted_graph([]))

        async with client:
            response = await client.put(
                "/external/connections/GitHubIssues/items/7", json={"id": "7"}
            )

        assert response.status_code == 204
        assert inner.paths() == ["PUT /beta/external/connections/GitHubIssues/items/7"]
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_patch_to_connection_not_intercepted(self):
        """Only the schema path starts an operation."""

        def handler(request):
            return json_response(202, None, {"Location": OPERATION_URL})

        client, inner, sleep = make_client(handler)

        async with client:
            response = await client.patch("/external/connections/GitHubIssues", json={})

        assert response.status_code == 202
        assert len(inner.requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_direct_status_poll_loops(self):
        """A caller polling the operation URL directly gets the final result."""
        client, inner, sleep = make_client(
            scripted_graph([{"status": "inprogress"}, {"status": "completed"}])
        )

        async with client:
            response = await client.get(OPERATION_URL)

        assert response.json() == {"status": "completed"}
        assert len(inner.requests) == 2
        assert sleep.calls == [60.0]

    @pytest.mark.asyncio
    async def test_aclose_closes_inner_transport(self):
        client, inner, _ = make_client(scripted_graph([]))
        await client.aclose()
        assert inner.closed


class TestDecodeOperationStatus:
    @pytest.mark.parametrize("status", ["inprogress", "InProgress", "in-progress", "notStarted"])
    def test_pending(self, status):
        assert decode_operation_status(f'{{"status": "{status}"}}'.encode()) == Pending()

    @pytest.mark.parametrize("status", ["completed", "succeeded"])
    def test_succeeded(self, status):
        assert decode_operation_status(f'{{"status": "{status}"}}'.encode()) == Succeeded()

    def test_failed_with_detail(self):
        body = b'{"status": "failed", "error": {"code": "E1", "message": "bad"}}'
        assert decode_operation_status(body) == Failed(message="bad", code="E1")

    def test_failed_without_detail(self):
        status = decode_operation_status(b'{"status": "failed"}')
        assert isinstance(status, Failed)
        assert status.code is None

    def test_failed_with_plain_error_text(self):
        body = b'{"status": "failed", "error": "quota exceeded"}'
        assert decode_operation_status(body) == Failed(message="quota exceeded", code=None)

    @pytest.mark.asyncio
    async def test_plain_error_text_raises_operation_failed(self):
        client, _, _ = make_client(
            scripted_graph([{"status": "failed", "error": "quota exceeded"}])
        )

        async with client:
            with pytest.raises(OperationFailed, match="quota exceeded"):
                await client.patch(SCHEMA_URL, json=SCHEMA_BODY)

    @pytest.mark.parametrize("body", [b"not json", b"[]", b'{"status": "mystery"}', b"{}"])
    def test_undecodable(self, body):
        with pytest.raises(OperationFailed):
            decode_operation_status(body)
