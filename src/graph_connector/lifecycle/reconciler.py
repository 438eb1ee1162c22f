"""Reconcile connector lifecycle signals against existing connections.

When an admin enables the connector app, a connection linked to the app's
connector ID is created and the issues schema registered; when the app is
disabled, that connection is deleted. Each signal is compared against a
freshly listed set of connections, so replayed or duplicated signals are
no-ops.
"""

import logging

from graph_connector.graph.client import SearchConnectorClient
from graph_connector.graph.models import ExternalConnection
from graph_connector.graph.schemas import ITEM_TYPE_ISSUES, build_connection, schema_for
from graph_connector.lifecycle.signals import (
    DesiredState,
    LifecycleSignal,
    ReconciliationResult,
    SignalDiscarded,
)
from graph_connector.lifecycle.tokens import TokenValidator
from graph_connector.metrics import lifecycle_signals_total

logger = logging.getLogger("graph_connector.lifecycle.reconciler")

APP_CONNECTION_ID = "GitHubIssuesM365"
APP_CONNECTION_NAME = "GitHub Issues for M365 App"
APP_CONNECTION_DESCRIPTION = "This connector was created by an M365 app"


class LifecycleReconciler:
    """Apply desired connector state from lifecycle signals.

    Attributes:
        graph: Graph client used to list, create and delete connections
        validator: Token validator; signals are acted on only if every token passes
        owner: GitHub owner used in the connection's URL resolver
        repo: GitHub repository used in the connection's URL resolver
    """

    def __init__(
        self,
        graph: SearchConnectorClient,
        validator: TokenValidator,
        owner: str,
        repo: str | None,
    ) -> None:
        self.graph = graph
        self.validator = validator
        self.owner = owner
        self.repo = repo

    async def handle_signal(
        self,
        raw_body: bytes | str,
        proof_tokens: list[str] | None = None,
    ) -> ReconciliationResult:
        """Authenticate a signal and converge connection state.

        Args:
            raw_body: Notification collection as received
            proof_tokens: Tokens to validate; defaults to the body's validationTokens

        Returns:
            The reconciliation result, DISCARDED for unparseable or
            unauthenticated signals (no remote calls are made for those)

        Raises:
            GraphClientError: Listing, creating or deleting connections failed
            OperationError: Schema registration failed or timed out
        """
        try:
            signal = LifecycleSignal.parse(raw_body)
            tokens = proof_tokens if proof_tokens is not None else list(signal.proof_tokens)
            await self.validator.validate_all(tokens)
        except SignalDiscarded as e:
            logger.warning("Discarding lifecycle signal: %s", e)
            lifecycle_signals_total.labels(result=ReconciliationResult.DISCARDED.value).inc()
            return ReconciliationResult.DISCARDED

        logger.info(
            "Lifecycle signal for connector %s: %s",
            signal.resource_id,
            signal.desired_state.value,
            extra={"connector_id": signal.resource_id},
        )

        try:
            result = await self._reconcile(signal)
        except Exception:
            lifecycle_signals_total.labels(result="error").inc()
            raise

        lifecycle_signals_total.labels(result=result.value).inc()
        logger.info(
            "Lifecycle signal reconciled: %s",
            result.value,
            extra={"connector_id": signal.resource_id},
        )
        return result

    async def _reconcile(self, signal: LifecycleSignal) -> ReconciliationResult:
        existing = await self._find_connection(signal.resource_id)

        if signal.desired_state == DesiredState.ENABLED:
            if existing is not None:
                logger.info("Connection %s already exists", existing.id)
                return ReconciliationResult.ALREADY_EXISTS_NOOP
            await self._create(signal)
            return ReconciliationResult.CREATED

        if existing is None:
            logger.info("No connection for connector %s", signal.resource_id)
            return ReconciliationResult.ALREADY_ABSENT_NOOP
        logger.info("Deleting connection %s", existing.id)
        await self.graph.delete_connection(existing.id)
        return ReconciliationResult.DELETED

    async def _find_connection(self, connector_id: str) -> ExternalConnection | None:
        for connection in await self.graph.list_connections():
            if connection.connector_id == connector_id:
                return connection
        return None

    async def _create(self, signal: LifecycleSignal) -> None:
        connection = build_connection(
            connection_id=APP_CONNECTION_ID,
            name=APP_CONNECTION_NAME,
            description=APP_CONNECTION_DESCRIPTION,
            item_type=ITEM_TYPE_ISSUES,
            owner=self.owner,
            repo=self.repo,
            connector_id=signal.resource_id,
        )
        logger.info("Creating connection %s", APP_CONNECTION_ID)
        await self.graph.create_connection(connection, connector_ticket=signal.ticket)
        await self.graph.register_schema(APP_CONNECTION_ID, schema_for(ITEM_TYPE_ISSUES))
