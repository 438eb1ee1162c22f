"""Microsoft Graph external connections client.

Async httpx-based client for the connectors API: connection management,
schema registration, item upsert and activities. Requests go through
LongRunningOperationTransport, so register_schema() returns only when the
schema is provisioned (or raises OperationFailed / OperationTimedOut).

Reference: https://learn.microsoft.com/graph/api/resources/externalconnectors-externalconnection
"""

import logging
from typing import Any

import httpx

from graph_connector.graph.models import (
    ExternalActivity,
    ExternalConnection,
    ExternalItem,
    Identity,
    Schema,
)
from graph_connector.graph.operations import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_TIMEOUT,
    LongRunningOperationTransport,
)

logger = logging.getLogger("graph_connector.graph.client")

CONNECTOR_TICKET_HEADER = "GraphConnectors-Ticket"


class GraphClientError(Exception):
    """Base class for Graph client failures."""


class GraphTransportError(GraphClientError):
    """Raised when a request cannot be delivered (DNS, connect, read timeout)."""


class GraphServiceError(GraphClientError):
    """Raised when Graph answers with an error status.

    Attributes:
        status_code: HTTP status code
        code: OData error code (e.g. "InvalidRequest")
        message: OData error message
    """

    def __init__(self, status_code: int, code: str | None, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"Graph API error {status_code}: {code or 'unknown'}: {message}")


class SearchConnectorClient:
    """Client for Microsoft Graph external connections.

    Attributes:
        base_url: Graph base URL (default beta, which exposes connectorId)
        placeholder_user_id: Entra user every GitHub login is mapped to

    Example:
        >>> auth = ClientCredentialsAuth(token_url, client_id, secret)
        >>> async with SearchConnectorClient(auth, placeholder_user_id="...") as graph:
        ...     connections = await graph.list_connections()
    """

    BASE_URL = "https://graph.microsoft.com/beta"
    TIMEOUT = 60.0  # seconds, per I/O operation

    def __init__(
        self,
        auth: httpx.Auth | None,
        placeholder_user_id: str = "",
        base_url: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Graph client.

        Args:
            auth: httpx auth flow providing Bearer tokens
            placeholder_user_id: Entra user ID used for every activity actor
            base_url: Graph base URL
            poll_interval: Seconds between schema status polls
            poll_timeout: Maximum seconds to poll one schema registration
            transport: Inner transport wrapped by the operation poller (tests)
        """
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.placeholder_user_id = placeholder_user_id
        self._operations = LongRunningOperationTransport(
            transport, poll_interval=poll_interval, timeout=poll_timeout
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=auth,
            headers={"Accept": "application/json"},
            timeout=self.TIMEOUT,
            transport=self._operations,
        )

    async def __aenter__(self) -> "SearchConnectorClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # --- Connections ---

    async def create_connection(
        self,
        connection: ExternalConnection,
        connector_ticket: str | None = None,
    ) -> ExternalConnection:
        """Create a connection.

        The connector ID and the GraphConnectors-Ticket header are only
        sent when both are present; Graph rejects one without the other.

        Args:
            connection: Connection to create
            connector_ticket: Ticket from a lifecycle notification
        """
        body = connection.to_wire()
        headers = {}
        if connector_ticket and connection.connector_id:
            headers[CONNECTOR_TICKET_HEADER] = connector_ticket
        else:
            body.pop("connectorId", None)

        data = await self._request("POST", "/external/connections", json=body, headers=headers)
        return ExternalConnection.model_validate(data)

    async def list_connections(self) -> list[ExternalConnection]:
        """List existing connections (follows @odata.nextLink)."""
        connections: list[ExternalConnection] = []
        url: str | None = "/external/connections"
        while url:
            data = await self._request("GET", url)
            connections.extend(ExternalConnection.model_validate(c) for c in data.get("value", []))
            url = data.get("@odata.nextLink")
        return connections

    async def delete_connection(self, connection_id: str) -> None:
        await self._request("DELETE", f"/external/connections/{connection_id}")

    async def register_schema(self, connection_id: str, schema: Schema) -> None:
        """Register a schema and wait for provisioning to finish.

        Raises:
            OperationFailed: Graph reported the registration as failed
            OperationTimedOut: Provisioning did not finish within the poll timeout
        """
        logger.info("Registering schema for connection %s", connection_id)
        await self._request(
            "PATCH",
            f"/external/connections/{connection_id}/schema",
            json=schema.to_wire(),
        )
        logger.info("Schema registered for connection %s", connection_id)

    # --- Items ---

    async def upsert_item(self, connection_id: str, item: ExternalItem) -> None:
        """Create or replace an item, keyed by its ID."""
        await self._request(
            "PUT",
            f"/external/connections/{connection_id}/items/{item.id}",
            json=item.to_wire(),
        )

    async def add_activities(
        self,
        connection_id: str,
        item_id: str,
        activities: list[ExternalActivity],
    ) -> dict[str, Any] | None:
        """Add activities to an existing item. No request is made for an empty list."""
        if not activities:
            return None
        return await self._request(
            "POST",
            f"/external/connections/{connection_id}/items/{item_id}"
            "/microsoft.graph.externalConnectors.addActivities",
            json={"activities": [a.to_wire() for a in activities]},
        )

    def identity_for_github_user(self, github_login: str | None) -> Identity:
        """Map a GitHub login to an Entra identity.

        Every login maps to the configured placeholder user.
        """
        return Identity(id=self.placeholder_user_id, type="user")

    # --- Core HTTP ---

    async def _request(
        self,
        method: str,
        url: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the parsed body ({} when empty).

        Raises:
            GraphServiceError: On any non-2xx response
            GraphTransportError: On transport failure
        """
        try:
            response = await self._client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise GraphTransportError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            code, message = None, response.text
            try:
                error = response.json().get("error") or {}
                code = error.get("code")
                message = error.get("message") or message
            except (ValueError, AttributeError):
                pass
            raise GraphServiceError(response.status_code, code, message)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}
