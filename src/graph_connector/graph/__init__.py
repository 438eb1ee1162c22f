"""Microsoft Graph external connectors package.

Client, wire models, schemas and the long-running operation transport used
for schema registration.
"""

from .client import (
    GraphClientError,
    GraphServiceError,
    GraphTransportError,
    SearchConnectorClient,
)
from .operations import LongRunningOperationTransport, OperationFailed, OperationTimedOut

__all__ = [
    "GraphClientError",
    "GraphServiceError",
    "GraphTransportError",
    "LongRunningOperationTransport",
    "OperationFailed",
    "OperationTimedOut",
    "SearchConnectorClient",
]
