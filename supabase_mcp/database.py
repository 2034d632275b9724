"""SQL-level database tools: tables, extensions, migrations, raw SQL."""

import logging
import time

from supabase_mcp.errors import SupabaseMcpError, ValidationError
from supabase_mcp.sql import quote_literal

logger = logging.getLogger("supabase-mcp.database")

MIGRATIONS_TABLE = "supabase_migrations.schema_migrations"


def _new_version():
    # Millisecond timestamp: 13 digits until 2286, so versions sort as strings
    return str(int(time.time() * 1000))


class DatabaseOperations:
    def __init__(self, gateway):
        self.gateway = gateway

    def execute_sql(self, query, read_only=False):
        if not query or not query.strip():
            raise ValidationError("Empty SQL statement.")
        return self.gateway.execute(query, read_only=read_only)

    def list_tables(self, schemas=None):
        schemas = schemas or ["public"]
        schema_list = ", ".join(quote_literal(s) for s in schemas)
        return self.gateway.execute(
            f"""
            SELECT
                t.table_schema AS schema,
                t.table_name AS name,
                (SELECT count(*) FROM information_schema.columns c
                 WHERE c.table_schema = t.table_schema AND c.table_name = t.table_name) AS column_count,
                COALESCE(cls.relrowsecurity, false) AS rls_enabled
            FROM information_schema.tables t
            LEFT JOIN pg_namespace ns ON ns.nspname = t.table_schema
            LEFT JOIN pg_class cls ON cls.relnamespace = ns.oid AND cls.relname = t.table_name
            WHERE t.table_schema IN ({schema_list})
              AND t.table_type = 'BASE TABLE'
            ORDER BY t.table_schema, t.table_name
            """,
            read_only=True,
        )

    def list_extensions(self):
        return self.gateway.execute(
            """
            SELECT
                e.name,
                e.default_version,
                e.installed_version,
                n.nspname AS schema
            FROM pg_available_extensions e
            LEFT JOIN pg_extension x ON x.extname = e.name
            LEFT JOIN pg_namespace n ON n.oid = x.extnamespace
            ORDER BY e.name
            """,
            read_only=True,
        )

    def list_migrations(self):
        try:
            rows = self.gateway.execute(
                f"SELECT version, name FROM {MIGRATIONS_TABLE} ORDER BY version DESC",
                read_only=True,
            )
        except SupabaseMcpError as e:
            logger.debug("Migration table unavailable: %s", e)
            return []
        return [{"version": r["version"], "name": r.get("name")} for r in rows]

    def apply_migration(self, name, query):
        """Run the migration, then record it in supabase_migrations.

        The migration itself is not rolled back when recording fails; the
        failure is logged and the returned dict reports ``recorded: False``.
        """
        if not name or not name.strip():
            raise ValidationError("Migration name is required.")
        self.execute_sql(query, read_only=False)

        version = _new_version()
        recorded = True
        try:
            self.gateway.execute(
                f"INSERT INTO {MIGRATIONS_TABLE} (version, name) "
                f"VALUES ({quote_literal(version)}, {quote_literal(name)})"
            )
        except SupabaseMcpError as e:
            logger.warning("Failed to record migration %s: %s", name, e)
            recorded = False
        return {"success": True, "version": version, "name": name, "recorded": recorded}
