"""Inbound lifecycle webhook.

FastAPI application receiving connector lifecycle notifications. Every
delivery is acknowledged with 202 Accepted before reconciliation starts;
the notifier never waits on (or retries because of) reconciliation.

- POST /         lifecycle notification collection
- GET  /health   liveness probe
- GET  /metrics  Prometheus metrics
"""

import logging
from typing import Any

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request, status
from fastapi.responses import Response
from prometheus_client import make_asgi_app

from graph_connector.lifecycle.reconciler import LifecycleReconciler

logger = logging.getLogger("graph_connector.lifecycle.webhook")


async def run_reconciliation(reconciler: LifecycleReconciler, body: bytes) -> None:
    """Reconcile one signal; failures are logged and never reach the server."""
    try:
        await reconciler.handle_signal(body)
    except Exception as e:
        logger.error(
            "Lifecycle reconciliation failed: %s",
            e,
            exc_info=True,
            extra={"error_type": type(e).__name__},
        )


def create_app(reconciler: LifecycleReconciler) -> FastAPI:
    """Build the webhook application around a reconciler."""
    app = FastAPI(
        title="GitHub Connector Lifecycle Webhook",
        description="Receives Microsoft 365 connector lifecycle notifications",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
    )
    app.mount("/metrics", make_asgi_app())

    @app.post("/", status_code=status.HTTP_202_ACCEPTED, tags=["Lifecycle"])
    async def receive_notification(request: Request, background_tasks: BackgroundTasks):
        """Acknowledge a lifecycle notification and reconcile it in the background."""
        body = await request.body()
        logger.info("Lifecycle notification received", extra={"bytes": len(body)})
        background_tasks.add_task(run_reconciliation, reconciler, body)
        return Response(status_code=status.HTTP_202_ACCEPTED)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        """Liveness probe."""
        return {"status": "alive"}

    return app


class WebhookListener:
    """uvicorn server hosting the webhook app.

    Example:
        >>> listener = WebhookListener(reconciler, host="127.0.0.1", port=7071)
        >>> await listener.serve()      # until shutdown() is called
    """

    def __init__(
        self,
        reconciler: LifecycleReconciler,
        host: str = "127.0.0.1",
        port: int = 7071,
    ) -> None:
        self.app = create_app(reconciler)
        self.host = host
        self.port = port
        self._server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=host,
                port=port,
                log_level="warning",
                log_config=None,  # keep graph_connector logging configuration
            )
        )

    async def serve(self) -> None:
        logger.info("Listening for lifecycle notifications on http://%s:%d", self.host, self.port)
        await self._server.serve()

    def shutdown(self) -> None:
        """Ask the server to exit after in-flight requests finish."""
        self._server.should_exit = True
