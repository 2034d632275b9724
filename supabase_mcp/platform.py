"""Wires settings, the HTTP client and the SQL gateway into the service objects."""

import logging

from supabase_mcp.auth import AuthOperations
from supabase_mcp.branching import BranchReconciler, BranchRepository, MigrationLedger
from supabase_mcp.database import DatabaseOperations
from supabase_mcp.debugging import DebuggingOperations
from supabase_mcp.development import DevelopmentOperations
from supabase_mcp.docs import DocsOperations
from supabase_mcp.errors import SupabaseMcpError
from supabase_mcp.functions import EdgeFunctionOperations
from supabase_mcp.http import ServiceClient
from supabase_mcp.operations import OperationsOperations
from supabase_mcp.sql import PgMetaGateway, PostgresGateway
from supabase_mcp.storage import StorageOperations

logger = logging.getLogger("supabase-mcp.platform")


def make_gateway(settings, client):
    if settings.postgres_url:
        logger.info("SQL gateway: direct Postgres")
        return PostgresGateway(settings.postgres_url)
    logger.info("SQL gateway: pg-meta at %s/pg/query", settings.base_url)
    return PgMetaGateway(client)


class Platform:
    """Everything a tool call needs, built once per server."""

    def __init__(self, settings, client=None, gateway=None, docs=None):
        self.settings = settings
        self.client = client or ServiceClient(settings)
        self.gateway = gateway or make_gateway(settings, self.client)

        self.database = DatabaseOperations(self.gateway)
        self.debugging = DebuggingOperations(self.client, self.gateway)
        self.development = DevelopmentOperations(settings, self.gateway)
        self.storage = StorageOperations(self.client, self.gateway)
        self.auth = AuthOperations(self.client)
        self.functions = EdgeFunctionOperations(self.client)
        self.docs = docs or DocsOperations(timeout=settings.http_timeout)
        self.operations = OperationsOperations(self.client, self.gateway)

        self.branches = BranchRepository(self.gateway)
        self.ledger = MigrationLedger(self.gateway)
        self.reconciler = BranchReconciler(self.branches, self.ledger)

    def check_connection(self):
        """Probe the REST gateway. Logs a warning instead of failing."""
        try:
            response = self.client.probe("/rest/v1/")
        except SupabaseMcpError as e:
            logger.warning("Could not verify connection to Supabase: %s", e)
            return False
        if not response.ok and response.status_code != 404:
            logger.warning(
                "Could not verify connection to Supabase at %s (HTTP %s)",
                self.settings.base_url,
                response.status_code,
            )
            return False
        return True

    def close(self):
        self.gateway.close()
        self.client.session.close()
