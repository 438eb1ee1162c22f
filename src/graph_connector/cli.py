"""Command-line interface for the GitHub search connector.

Usage:
    graph-connector create-connection --id GitHubIssues --name "GitHub issues" --type issues
    graph-connector list-connections
    graph-connector register-schema --id GitHubIssues --type issues
    graph-connector push issues --id GitHubIssues
    graph-connector delete-connection --id GitHubIssues
    graph-connector listen

Settings come from the environment or .env (see ConnectorConfig).
"""

import argparse
import asyncio
import logging
import signal
import sys

import httpx

from graph_connector.__version__ import __version__
from graph_connector.config import ConnectorConfig, get_config, require
from graph_connector.github.client import GitHubClient, GitHubClientError
from graph_connector.graph.auth import AuthenticationError, ClientCredentialsAuth
from graph_connector.graph.client import GraphClientError, SearchConnectorClient
from graph_connector.graph.operations import OperationError
from graph_connector.graph.schemas import ITEM_TYPES, build_connection, schema_for
from graph_connector.lifecycle.reconciler import LifecycleReconciler
from graph_connector.lifecycle.tokens import SigningKeyCache, TokenValidator
from graph_connector.lifecycle.webhook import WebhookListener
from graph_connector.logging_config import configure_logging
from graph_connector.sync import PartialBatchFailure, SyncPipeline

logger = logging.getLogger("graph_connector.cli")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2

GRAPH_SETTINGS = ("tenant_id", "client_id", "client_secret")
GITHUB_SETTINGS = ("github_token", "github_repo_owner")


def build_graph_client(config: ConnectorConfig) -> SearchConnectorClient:
    require(config, *GRAPH_SETTINGS)
    auth = ClientCredentialsAuth(
        token_url=config.get_token_url(),
        client_id=config.client_id,
        client_secret=config.client_secret.get_secret_value(),
    )
    return SearchConnectorClient(
        auth,
        placeholder_user_id=config.placeholder_user_id,
        base_url=config.graph_base_url,
        poll_interval=config.schema_poll_interval,
        poll_timeout=config.schema_poll_timeout,
    )


def build_github_client(config: ConnectorConfig) -> GitHubClient:
    require(config, *GITHUB_SETTINGS)
    return GitHubClient(
        token=config.github_token.get_secret_value(),
        owner=config.github_repo_owner,
        repo=config.github_repo or None,
        base_url=config.github_base_url,
    )


# -- Commands ------------------------------------------------------------


async def create_connection(config: ConnectorConfig, args: argparse.Namespace) -> int:
    connection = build_connection(
        connection_id=args.id,
        name=args.name,
        description=args.description,
        item_type=args.type,
        owner=config.github_repo_owner,
        repo=config.github_repo or None,
    )
    async with build_graph_client(config) as graph:
        created = await graph.create_connection(connection)
    print(f"Connection {created.id} created")
    return EXIT_SUCCESS


async def list_connections(config: ConnectorConfig, args: argparse.Namespace) -> int:
    async with build_graph_client(config) as graph:
        connections = await graph.list_connections()
    if not connections:
        print("No connections")
    for connection in connections:
        linked = f" (connector {connection.connector_id})" if connection.connector_id else ""
        print(f"{connection.id}\t{connection.name or ''}\t{connection.state or ''}{linked}")
    return EXIT_SUCCESS


async def delete_connection(config: ConnectorConfig, args: argparse.Namespace) -> int:
    async with build_graph_client(config) as graph:
        await graph.delete_connection(args.id)
    print(f"Connection {args.id} deleted")
    return EXIT_SUCCESS


async def register_schema(config: ConnectorConfig, args: argparse.Namespace) -> int:
    print("Registering schema, this may take a moment...")
    async with build_graph_client(config) as graph:
        await graph.register_schema(args.id, schema_for(args.type))
    print("Schema registered")
    return EXIT_SUCCESS


async def push(config: ConnectorConfig, args: argparse.Namespace) -> int:
    if args.kind == "issues":
        require(config, "github_repo")
    async with (
        build_graph_client(config) as graph,
        build_github_client(config) as github,
        httpx.AsyncClient(timeout=30.0) as content_client,
    ):
        pipeline = SyncPipeline(
            github,
            graph,
            connection_id=args.id,
            max_retries=config.rate_limit_retries,
            content_client=content_client,
        )
        report = await pipeline.sync_all(args.kind)

    print(f"Pushed {len(report.succeeded)} of {len(report.outcomes)} {args.kind}")
    try:
        report.raise_for_failures()
    except PartialBatchFailure as e:
        print(str(e), file=sys.stderr)
        return EXIT_PARTIAL
    return EXIT_SUCCESS


async def listen(config: ConnectorConfig, args: argparse.Namespace) -> int:
    require(config, "tenant_id", "client_id")
    key_cache = SigningKeyCache(config.openid_config_url)
    validator = TokenValidator(
        client_id=config.client_id,
        issuers=config.get_issuers(),
        key_cache=key_cache,
        policy=config.signing_key_cache_policy,
    )
    async with build_graph_client(config) as graph:
        reconciler = LifecycleReconciler(
            graph, validator, owner=config.github_repo_owner, repo=config.github_repo or None
        )
        listener = WebhookListener(
            reconciler,
            host=args.host or config.webhook_host,
            port=args.port or config.webhook_port,
        )
        try:
            await listener.serve()
        finally:
            await key_cache.close()
    return EXIT_SUCCESS


# -- Entry point ---------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graph-connector",
        description="Index GitHub issues and repositories in Microsoft Search",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-connection", help="Create a connection")
    create.add_argument("--id", required=True, help="Connection ID (3-32 alphanumerics)")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument("--description", default=None, help="Connection description")
    create.add_argument("--type", choices=ITEM_TYPES, default="issues", help="Item type")
    create.set_defaults(handler=create_connection)

    subparsers.add_parser("list-connections", help="List connections").set_defaults(
        handler=list_connections
    )

    delete = subparsers.add_parser("delete-connection", help="Delete a connection")
    delete.add_argument("--id", required=True, help="Connection ID")
    delete.set_defaults(handler=delete_connection)

    schema = subparsers.add_parser(
        "register-schema", help="Register a schema and wait for provisioning"
    )
    schema.add_argument("--id", required=True, help="Connection ID")
    schema.add_argument("--type", choices=ITEM_TYPES, default="issues", help="Item type")
    schema.set_defaults(handler=register_schema)

    push_parser = subparsers.add_parser("push", help="Push GitHub records into a connection")
    push_parser.add_argument("kind", choices=ITEM_TYPES, help="Records to push")
    push_parser.add_argument("--id", required=True, help="Connection ID")
    push_parser.set_defaults(handler=push)

    listen_parser = subparsers.add_parser("listen", help="Serve the lifecycle webhook")
    listen_parser.add_argument("--host", default=None, help="Bind host (WEBHOOK_HOST)")
    listen_parser.add_argument("--port", type=int, default=None, help="Bind port (WEBHOOK_PORT)")
    listen_parser.set_defaults(handler=listen)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config.log_level, config.log_format)

    try:
        return asyncio.run(args.handler(config, args))
    except KeyboardInterrupt:
        return 128 + signal.SIGINT
    except (
        ValueError,
        AuthenticationError,
        GitHubClientError,
        GraphClientError,
        OperationError,
    ) as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
