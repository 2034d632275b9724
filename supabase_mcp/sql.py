"""SQL execution gateways and identifier/literal quoting.

Two gateways implement the same contract, ``execute(query, read_only=False)``
returning a list of row dicts:

  - PgMetaGateway: POSTs to pg-meta's /query endpoint (Kong routes /pg/* to it).
  - PostgresGateway: direct psycopg2 connection pool, used when a Postgres URL
    is configured.
"""

import logging
import re
import threading
from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

import psycopg2
import psycopg2.pool

from supabase_mcp.errors import BackendRejectedError, BackendUnavailableError, ValidationError
from supabase_mcp.http import is_json

logger = logging.getLogger("supabase-mcp.sql")

_UNSAFE_IDENT_CHARS = re.compile(r"[^A-Za-z0-9_]")


# ── Quoting ──────────────────────────────────────────────────────────


def sanitize_identifier(name):
    """Replace every character outside [A-Za-z0-9_] with an underscore."""
    if name is None or name == "":
        raise ValidationError("Identifier must be a non-empty string.")
    return _UNSAFE_IDENT_CHARS.sub("_", str(name))


def quote_ident(name):
    """Double-quote an identifier, escaping embedded quotes.

    Use for names read back from the catalog, which must keep their exact
    spelling. User-supplied schema names go through schema_ident instead.
    """
    text = str(name)
    if not text or "\x00" in text:
        raise ValidationError(f"Invalid identifier: {name!r}")
    return '"' + text.replace('"', '""') + '"'


def schema_ident(name):
    """Sanitize a user-supplied schema/branch name and quote it."""
    return quote_ident(sanitize_identifier(name))


def quote_literal(value):
    """Render a Python value as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    text = str(value)
    if "\x00" in text:
        raise ValidationError("String literals may not contain NUL bytes.")
    return "'" + text.replace("'", "''") + "'"


def text_array(values):
    """ARRAY['a', 'b']::text[] for a list of strings."""
    return "ARRAY[" + ", ".join(quote_literal(v) for v in values) + "]::text[]"


# ── Row serialization ────────────────────────────────────────────────


def _serialize_value(val):
    """Serialize a single value for JSON output."""
    if val is None:
        return None
    if isinstance(val, Decimal):
        return float(val)
    if isinstance(val, (date, datetime, time)):
        return val.isoformat()
    if isinstance(val, UUID):
        return str(val)
    if isinstance(val, memoryview):
        return val.tobytes().hex()
    return val


def _rows_to_dicts(cur):
    """Convert cursor results to list of dicts with serialization."""
    if not cur.description:
        return []
    columns = [desc[0] for desc in cur.description]
    return [
        {columns[i]: _serialize_value(v) for i, v in enumerate(row)}
        for row in cur.fetchall()
    ]


# ── pg-meta gateway ──────────────────────────────────────────────────

_PG_META_HINT = (
    "Troubleshooting:\n"
    "1. Check if pg-meta service is running: docker ps | grep meta\n"
    "2. Verify Kong routing in volumes/api/kong.yml\n"
    "3. Check pg-meta logs: docker logs supabase-meta"
)


class PgMetaGateway:
    """Executes SQL through pg-meta. pg-meta has no read-only mode, so the flag is advisory."""

    def __init__(self, client):
        self.client = client

    def execute(self, query, read_only=False):
        try:
            response = self.client.request("POST", "/pg/query", json={"query": query})
        except BackendUnavailableError as e:
            raise BackendUnavailableError(
                f"Failed to connect to pg-meta service.\nError: {e}\n\n" + _PG_META_HINT
            ) from e

        if response.ok and is_json(response):
            return response.json()

        body = response.text
        if response.status_code == 404:
            raise BackendRejectedError(
                f"pg-meta service not accessible at {self.client.url('/pg/query')}\n\n" + _PG_META_HINT,
                status=404,
                body=body,
            )
        raise BackendRejectedError(
            f"SQL execution failed: {body}", status=response.status_code, body=body
        )

    def close(self):
        # The HTTP session belongs to the ServiceClient
        pass


# ── Direct Postgres gateway ──────────────────────────────────────────


class PostgresGateway:
    """psycopg2 pool behind the same execute() contract as PgMetaGateway."""

    def __init__(self, dsn, minconn=1, maxconn=5):
        self.dsn = dsn
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool = None
        self._lock = threading.Lock()

    def _get_pool(self):
        with self._lock:
            if self._pool is None:
                try:
                    self._pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=self.minconn, maxconn=self.maxconn, dsn=self.dsn
                    )
                except psycopg2.OperationalError as e:
                    raise BackendUnavailableError(f"Failed to connect to Postgres: {e}") from e
                logger.info("Postgres pool initialized (max %d connections)", self.maxconn)
            return self._pool

    def _get_conn(self):
        pool = self._get_pool()
        try:
            return pool.getconn()
        except psycopg2.pool.PoolError as e:
            raise BackendUnavailableError(f"Postgres pool exhausted: {e}") from e
        except psycopg2.OperationalError as e:
            raise BackendUnavailableError(f"Failed to connect to Postgres: {e}") from e

    def _put_conn(self, conn, close=False):
        if self._pool is not None and conn is not None:
            self._pool.putconn(conn, close=close)

    def _run(self, conn, query, read_only):
        with conn.cursor() as cur:
            if read_only:
                cur.execute("SET TRANSACTION READ ONLY")
            cur.execute(query)
            rows = _rows_to_dicts(cur)
        if read_only:
            conn.rollback()
        else:
            conn.commit()
        return rows

    def execute(self, query, read_only=False):
        conn = self._get_conn()
        broken = False
        try:
            return self._run(conn, query, read_only)
        except psycopg2.OperationalError as e:
            # Connection is unusable; drop it instead of returning it to the pool
            broken = True
            raise BackendUnavailableError(f"Postgres connection failed: {e}") from e
        except psycopg2.Error as e:
            conn.rollback()
            raise BackendRejectedError(f"SQL execution failed: {e}", body=str(e)) from e
        finally:
            self._put_conn(conn, close=broken)

    def close(self):
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
                logger.info("Postgres pool closed")
