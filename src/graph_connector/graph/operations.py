"""Long-running operation handling for Microsoft Graph connectors.

Schema registration (PATCH /external/connections/{id}/schema) is accepted
with 202 and a Location header pointing at a connectionOperation resource.
LongRunningOperationTransport sits in the httpx transport chain of the Graph
client and turns that into one call from the caller's point of view:

    Idle -> RequestSent -> Completed              (no Location header)
    Idle -> RequestSent -> PollRequired
    PollRequired -> PollRequired                  (status: inprogress)
    PollRequired -> Completed                     (status: completed)
    PollRequired -> Failed                        (status: failed)
    PollRequired -> TimedOut                      (deadline reached)

Polls are sequential, separated by a fixed interval, and bounded by a
deadline that starts when polling begins. The deadline is checked at the
top of every iteration; an in-flight request is never cancelled.

Reference: https://learn.microsoft.com/graph/api/externalconnectors-schema-create
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Union

import httpx

from graph_connector.metrics import (
    operation_duration_seconds,
    operation_outcomes_total,
    operation_polls_total,
)

logger = logging.getLogger("graph_connector.graph.operations")

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_POLL_TIMEOUT",
    "LongRunningOperationTransport",
    "Operation",
    "OperationError",
    "OperationFailed",
    "OperationStatus",
    "OperationTimedOut",
    "Pending",
    "Succeeded",
    "Failed",
    "decode_operation_status",
]

DEFAULT_POLL_INTERVAL = 60.0  # seconds
DEFAULT_POLL_TIMEOUT = 25 * 60.0  # seconds

# /external/connections/{connection-id}/schema
SCHEMA_PATH = re.compile(r"/external/connections/[0-9a-zA-Z]+/schema$", re.IGNORECASE)
# /external/connections/{connection-id}/operations/{operation-id}
OPERATION_PATH = re.compile(
    r"/external/connections/[0-9a-zA-Z]+/operations/.+", re.IGNORECASE
)

# Request headers that describe a body; dropped when a PATCH becomes a GET
_BODY_HEADERS = {"content-length", "content-type", "content-encoding", "transfer-encoding"}


class OperationError(Exception):
    """Base class for long-running operation failures."""


class OperationFailed(OperationError):
    """The remote service reported the operation as failed.

    Attributes:
        code: Remote error code, if supplied
        detail: Remote error message
        handle: Status-check URL of the failed operation
    """

    def __init__(self, detail: str, code: str | None = None, handle: str | None = None):
        self.code = code
        self.detail = detail
        self.handle = handle
        prefix = f"{code}: " if code else ""
        super().__init__(f"Operation failed: {prefix}{detail}")


class OperationTimedOut(OperationError):
    """Polling exceeded the deadline before a terminal status was reported.

    The remote operation may still complete; the handle can be polled later.
    """

    def __init__(self, handle: str, timeout: float):
        self.handle = handle
        self.timeout = timeout
        super().__init__(
            f"Operation timed out after {timeout:.0f}s while checking status of {handle}"
        )


# -- Operation status: closed tagged variant ---------------------------


@dataclass(frozen=True)
class Pending:
    pass


@dataclass(frozen=True)
class Succeeded:
    pass


@dataclass(frozen=True)
class Failed:
    message: str
    code: str | None = None


OperationStatus = Union[Pending, Succeeded, Failed]

_PENDING_VALUES = {"inprogress", "in-progress", "in_progress", "notstarted", "running"}
_SUCCEEDED_VALUES = {"completed", "succeeded"}
_FAILED_VALUES = {"failed"}


def decode_operation_status(body: bytes) -> OperationStatus:
    """Decode a connectionOperation body into an OperationStatus.

    Raises:
        OperationFailed: If the body is not JSON or its status is unrecognized
    """
    try:
        payload = json.loads(body or b"{}")
    except ValueError as e:
        raise OperationFailed(f"Could not parse operation status: {e}") from e
    if not isinstance(payload, dict):
        raise OperationFailed("Could not get operation from API.")

    status = str(payload.get("status", "")).lower()
    if status in _PENDING_VALUES:
        return Pending()
    if status in _SUCCEEDED_VALUES:
        return Succeeded()
    if status in _FAILED_VALUES:
        error = payload.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        code = error.get("code")
        return Failed(
            message=str(error.get("message") or "Schema registration failed."),
            code=str(code) if code is not None else None,
        )
    raise OperationFailed(f"Unrecognized operation status: {status or '<missing>'}")


class OperationState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class Operation:
    """One asynchronous unit of remote work, owned by a single poll loop."""

    handle: str
    deadline: float
    status: OperationState = OperationState.PENDING
    error: str | None = None

    def expired(self, now: float) -> bool:
        return now >= self.deadline


class LongRunningOperationTransport(httpx.AsyncBaseTransport):
    """httpx transport that drives schema registration polling to completion.

    Args:
        transport: The transport that actually sends requests
        poll_interval: Seconds to wait before each status poll
        timeout: Maximum seconds to spend polling one operation
        sleep: Async sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport or httpx.AsyncHTTPTransport(retries=0)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "PATCH" and SCHEMA_PATH.search(path):
            return await self._start_operation(request)
        if request.method == "GET" and OPERATION_PATH.search(path):
            return await self._poll(request)
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def _start_operation(self, request: httpx.Request) -> httpx.Response:
        response = await self._transport.handle_async_request(request)

        location = response.headers.get("Location")
        if location is None:
            return response

        # The accept response is replaced by the final poll response
        await response.aread()
        await response.aclose()

        poll_request = httpx.Request(
            "GET",
            request.url.join(location),
            headers=[
                (name, value)
                for name, value in request.headers.multi_items()
                if name.lower() not in _BODY_HEADERS
            ],
            extensions=request.extensions,
        )
        logger.info(
            "Waiting %.0fs to poll %s", self.poll_interval, poll_request.url,
            extra={"operation": str(poll_request.url)},
        )
        await self._sleep(self.poll_interval)
        return await self._poll(poll_request)

    async def _poll(self, request: httpx.Request) -> httpx.Response:
        started = self._clock()
        operation = Operation(handle=str(request.url), deadline=started + self.timeout)

        while True:
            if operation.expired(self._clock()):
                operation_outcomes_total.labels(outcome="timed_out").inc()
                logger.error(
                    "Operation timed out while checking for status",
                    extra={"operation": operation.handle, "timeout_seconds": self.timeout},
                )
                raise OperationTimedOut(operation.handle, self.timeout)

            operation_polls_total.inc()
            response = await self._transport.handle_async_request(request)
            if not 200 <= response.status_code < 300:
                # Error statuses are the Graph client's to interpret
                return response

            body = await response.aread()
            status = decode_operation_status(body)

            if isinstance(status, Pending):
                logger.info(
                    "Waiting %.0fs to poll %s", self.poll_interval, operation.handle,
                    extra={"operation": operation.handle},
                )
                await response.aclose()
                await self._sleep(self.poll_interval)
                continue

            operation_duration_seconds.observe(self._clock() - started)

            if isinstance(status, Failed):
                operation.status = OperationState.FAILED
                operation.error = status.message
                operation_outcomes_total.labels(outcome="failed").inc()
                await response.aclose()
                raise OperationFailed(status.message, code=status.code, handle=operation.handle)

            operation.status = OperationState.SUCCEEDED
            operation_outcomes_total.labels(outcome="succeeded").inc()
            logger.info("Operation completed", extra={"operation": operation.handle})
            return response
