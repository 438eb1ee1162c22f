"""GitHub search connector for Microsoft Graph.

Indexes GitHub issues and repositories in a Microsoft Search connection:
- GitHub REST client with rate-limit-aware retries
- Graph external connections client with long-running schema operations
- Lifecycle webhook reconciling connector enable/disable signals
- Sync pipeline composing GitHub records into external items

Python Version: 3.10+ required
"""

from .__version__ import __version__
from .config import ConnectorConfig, get_config, reset_config
from .logging_config import StructuredFormatter, configure_logging

__all__ = [
    "ConnectorConfig",
    "StructuredFormatter",
    "__version__",
    "configure_logging",
    "get_config",
    "reset_config",
]
