"""Logs (analytics/logflare) and SQL-based advisors."""

import logging

from supabase_mcp.errors import SupabaseMcpError, ValidationError
from supabase_mcp.http import is_json

logger = logging.getLogger("supabase-mcp.debugging")

CONTAINERS = {
    "api": "supabase-kong",
    "postgres": "supabase-db",
    "auth": "supabase-auth",
    "storage": "supabase-storage",
    "realtime": "supabase-realtime",
    "functions": "supabase-functions",
}

_LOG_SOURCES = {
    "api": "edge_logs",
    "auth": "auth_logs",
    "storage": "storage_logs",
    "realtime": "realtime_logs",
    "functions": "function_edge_logs",
}


def get_log_query(service, limit=100):
    """Logflare SQL for the most recent entries of a service."""
    if service == "postgres":
        return (
            "select identifier, postgres_logs.timestamp, id, event_message, parsed.error_severity "
            "from postgres_logs "
            "cross join unnest(metadata) as m "
            "cross join unnest(m.parsed) as parsed "
            f"order by timestamp desc limit {limit}"
        )
    source = _LOG_SOURCES.get(service)
    if source is None:
        raise ValidationError(f"Unknown service: {service}. Valid services: {', '.join(CONTAINERS)}")
    return f"select id, {source}.timestamp, event_message from {source} order by timestamp desc limit {limit}"


SECURITY_QUERIES = {
    "tables_without_rls": """
        SELECT schemaname, tablename
        FROM pg_tables
        WHERE schemaname = 'public'
          AND tablename NOT IN (
            SELECT tablename FROM pg_policies WHERE schemaname = 'public'
          )
        ORDER BY tablename
    """,
}

PERFORMANCE_QUERIES = {
    "missing_fk_indexes": """
        SELECT
            c.conrelid::regclass::text AS table_name,
            a.attname AS column_name
        FROM pg_constraint c
        JOIN pg_attribute a ON a.attnum = ANY(c.conkey) AND a.attrelid = c.conrelid
        WHERE c.contype = 'f'
          AND NOT EXISTS (
            SELECT 1 FROM pg_index i
            WHERE i.indrelid = c.conrelid
              AND a.attnum = ANY(i.indkey)
          )
        LIMIT 10
    """,
}


class DebuggingOperations:
    def __init__(self, client, gateway):
        self.client = client
        self.gateway = gateway

    def get_logs(self, service, iso_timestamp_start=None, iso_timestamp_end=None):
        """Fetch logs from the analytics service, or explain where to look instead."""
        sql = get_log_query(service)
        container = CONTAINERS[service]
        try:
            response = self.client.request(
                "POST",
                "/analytics/v1/query",
                json={
                    "sql": sql,
                    "iso_timestamp_start": iso_timestamp_start,
                    "iso_timestamp_end": iso_timestamp_end,
                },
            )
        except SupabaseMcpError as e:
            return {
                "message": f"Failed to fetch logs: {e}",
                "suggestion": f"Check Docker logs directly: docker logs {container}",
                "alternative": f"docker compose logs {service}",
            }

        if not response.ok:
            return {
                "message": "Analytics logs are not available in this self-hosted configuration",
                "suggestion": f"Check Docker logs directly: docker logs {container}",
                "alternative": f"docker logs {container} --tail 100 --since 1h",
            }
        if not is_json(response):
            return {
                "message": "Analytics service returned non-JSON response (possibly not configured)",
                "suggestion": f"Check Docker logs directly: docker logs {container}",
                "note": "Self-hosted Supabase requires explicit analytics/logflare setup",
            }
        return response.json()

    def _run_checks(self, queries, label):
        try:
            return {key: self.gateway.execute(q, read_only=True) or [] for key, q in queries.items()}
        except SupabaseMcpError as e:
            logger.warning("%s advisors failed: %s", label, e)
            return {"error": f"Failed to fetch {label} advisors"}

    def get_security_advisors(self):
        return self._run_checks(SECURITY_QUERIES, "security")

    def get_performance_advisors(self):
        return self._run_checks(PERFORMANCE_QUERIES, "performance")
