"""Project URL, publishable keys and TypeScript type generation."""

from supabase_mcp.errors import ValidationError

_PG_TO_TS = {
    "integer": "number",
    "bigint": "number",
    "smallint": "number",
    "decimal": "number",
    "numeric": "number",
    "real": "number",
    "double precision": "number",
    "serial": "number",
    "bigserial": "number",
    "text": "string",
    "character varying": "string",
    "varchar": "string",
    "char": "string",
    "character": "string",
    "uuid": "string",
    "date": "string",
    "time": "string",
    "timestamp": "string",
    "timestamp with time zone": "string",
    "timestamp without time zone": "string",
    "boolean": "boolean",
    "json": "Json",
    "jsonb": "Json",
    "bytea": "string",
    "array": "unknown[]",
}

_SCHEMA_QUERY = """
    SELECT
        t.table_name,
        c.column_name,
        c.data_type,
        c.is_nullable,
        c.column_default
    FROM information_schema.tables t
    JOIN information_schema.columns c
      ON t.table_name = c.table_name AND t.table_schema = c.table_schema
    WHERE t.table_schema = 'public'
      AND t.table_type = 'BASE TABLE'
    ORDER BY t.table_name, c.ordinal_position
"""

_JSON_TYPE = """export type Json =
  | string
  | number
  | boolean
  | null
  | { [key: string]: Json | undefined }
  | Json[]
"""


def pg_to_ts(pg_type):
    return _PG_TO_TS.get((pg_type or "").lower(), "unknown")


def render_types(columns):
    """Render a Database type from information_schema column rows."""
    tables = {}
    for col in columns:
        tables.setdefault(col["table_name"], []).append(col)

    lines = [_JSON_TYPE, "export type Database = {", "  public: {", "    Tables: {"]
    for table_name, cols in tables.items():
        lines.append(f"      {table_name}: {{")
        for section in ("Row", "Insert", "Update"):
            lines.append(f"        {section}: {{")
            for col in cols:
                nullable = col["is_nullable"] == "YES"
                ts_type = pg_to_ts(col["data_type"]) + (" | null" if nullable else "")
                if section == "Row":
                    optional = ""
                elif section == "Insert":
                    optional = "?" if col.get("column_default") is not None or nullable else ""
                else:
                    optional = "?"
                lines.append(f"          {col['column_name']}{optional}: {ts_type}")
            lines.append("        }")
        lines.append("      }")
    lines += ["    }", "    Views: {}", "    Functions: {}", "    Enums: {}", "  }", "}", ""]
    return "\n".join(lines)


class DevelopmentOperations:
    def __init__(self, settings, gateway):
        self.settings = settings
        self.gateway = gateway

    def get_project_url(self):
        return self.settings.base_url

    def get_publishable_keys(self):
        # The service role key is never publishable
        if not self.settings.anon_key:
            raise ValidationError(
                "No anon key configured. Please provide SUPABASE_ANON_KEY to expose publishable keys."
            )
        return [
            {
                "api_key": self.settings.anon_key,
                "name": "anon",
                "type": "legacy",
                "description": "Anonymous key for client-side access",
            }
        ]

    def generate_typescript_types(self):
        columns = self.gateway.execute(_SCHEMA_QUERY, read_only=True)
        return {"types": render_types(columns)}
