"""Schema-based branching.

A branch is a PostgreSQL schema. ``public`` is the root branch. Creating a
branch copies the *shape* of every base table in the parent schema
(``LIKE ... INCLUDING ALL``), never data or ledger rows. Each schema may
carry its own ``schema_migrations`` ledger; merge and rebase only diff and
copy ledger rows, they never replay DDL.

None of the multi-statement operations here run in a transaction. A
failure part way through leaves whatever already succeeded in place.
"""

import logging
from dataclasses import asdict, dataclass, field

from supabase_mcp.errors import SupabaseMcpError, ValidationError
from supabase_mcp.sql import quote_ident, quote_literal, sanitize_identifier, schema_ident

logger = logging.getLogger("supabase-mcp.branching")

DEFAULT_BRANCH = "public"
LEDGER_TABLE = "schema_migrations"

RESERVED_SCHEMAS = (
    "pg_catalog",
    "information_schema",
    "pg_toast",
    "pg_temp_1",
    "pg_toast_temp_1",
)

# Outcome labels for per-item results
COPIED = "copied"
INSERTED = "inserted"
SKIPPED = "skipped"
FAILED = "failed"


def _is_reserved(schema_name):
    return schema_name in RESERVED_SCHEMAS or schema_name.startswith("pg_")


@dataclass
class ItemOutcome:
    name: str
    status: str
    reason: str | None = None

    def to_dict(self):
        d = {"name": self.name, "status": self.status}
        if self.reason:
            d["reason"] = self.reason
        return d


@dataclass
class Branch:
    name: str
    schema_name: str
    is_default: bool
    parent_branch: str | None = None
    tables: list[ItemOutcome] | None = None

    def to_dict(self):
        d = {k: v for k, v in asdict(self).items() if k != "tables" and v is not None}
        if self.tables is not None:
            d["tables"] = [t.to_dict() for t in self.tables]
        return d


@dataclass
class MergeResult:
    success: bool
    migrations_applied: list[str] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


@dataclass
class RebaseResult:
    success: bool
    versions: list[ItemOutcome] = field(default_factory=list)

    def to_dict(self):
        return {"success": self.success, "versions": [v.to_dict() for v in self.versions]}


# ── Branch repository ────────────────────────────────────────────────


class BranchRepository:
    """CRUD over the schemas that back branches."""

    def __init__(self, gateway):
        self.gateway = gateway

    def list(self):
        reserved = ", ".join(quote_literal(s) for s in RESERVED_SCHEMAS)
        rows = self.gateway.execute(
            f"""
            SELECT n.nspname AS schema_name
            FROM pg_namespace n
            WHERE n.nspname NOT IN ({reserved})
              AND n.nspname NOT LIKE 'pg\\_%'
            ORDER BY n.nspname
            """,
            read_only=True,
        )
        names = sorted({r["schema_name"] for r in rows if not _is_reserved(r["schema_name"])})
        return [
            Branch(name=n, schema_name=n, is_default=n == DEFAULT_BRANCH)
            for n in names
        ]

    def base_tables(self, schema_name):
        rows = self.gateway.execute(
            f"""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = {quote_literal(schema_name)}
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            read_only=True,
        )
        return [r["table_name"] for r in rows]

    def create(self, name, parent_branch=DEFAULT_BRANCH):
        """Create the schema and clone every parent base table into it.

        Tables are copied one statement at a time. A table that already
        exists in the new schema is reported as skipped; any other error is
        reported as failed and the loop moves on to the next table.
        """
        schema_name = sanitize_identifier(name)
        parent_schema = sanitize_identifier(parent_branch or DEFAULT_BRANCH)
        if schema_name == parent_schema:
            raise ValidationError(f"Branch '{schema_name}' cannot be its own parent.")
        if schema_name == DEFAULT_BRANCH:
            logger.warning("Copying tables from %s into the public branch", parent_schema)

        self.gateway.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(schema_name)}")

        existing = set(self.base_tables(schema_name))
        outcomes = []
        for table in self.base_tables(parent_schema):
            if table in existing:
                outcomes.append(ItemOutcome(table, SKIPPED, "already exists"))
                continue
            try:
                self.gateway.execute(
                    f"CREATE TABLE {quote_ident(schema_name)}.{quote_ident(table)} "
                    f"(LIKE {quote_ident(parent_schema)}.{quote_ident(table)} INCLUDING ALL)"
                )
            except SupabaseMcpError as e:
                if "already exists" in str(e):
                    outcomes.append(ItemOutcome(table, SKIPPED, "already exists"))
                else:
                    logger.warning("Copying table %s into %s failed: %s", table, schema_name, e)
                    outcomes.append(ItemOutcome(table, FAILED, str(e)))
                continue
            outcomes.append(ItemOutcome(table, COPIED))

        logger.info(
            "Branch %s created from %s (%d tables copied)",
            schema_name,
            parent_schema,
            sum(1 for o in outcomes if o.status == COPIED),
        )
        return Branch(
            name=schema_name,
            schema_name=schema_name,
            is_default=schema_name == DEFAULT_BRANCH,
            parent_branch=parent_schema,
            tables=outcomes,
        )

    def delete(self, name):
        if name == DEFAULT_BRANCH or sanitize_identifier(name) == DEFAULT_BRANCH:
            raise ValidationError("Cannot delete the public schema")
        self.gateway.execute(f"DROP SCHEMA IF EXISTS {schema_ident(name)} CASCADE")
        logger.info("Branch %s dropped", sanitize_identifier(name))

    def recreate(self, name):
        """Drop the schema with everything in it and create it again, empty."""
        ident = schema_ident(name)
        self.gateway.execute(f"DROP SCHEMA IF EXISTS {ident} CASCADE")
        self.gateway.execute(f"CREATE SCHEMA {ident}")


# ── Migration ledger ─────────────────────────────────────────────────


class MigrationLedger:
    """Access to the per-schema ``schema_migrations`` table.

    Versions compare as strings. Versions written by apply_migration are
    13-digit millisecond timestamps, so string order is chronological for
    them; hand-written versions of other widths are not.
    """

    def __init__(self, gateway):
        self.gateway = gateway

    def _table(self, schema_name):
        return f"{schema_ident(schema_name)}.{quote_ident(LEDGER_TABLE)}"

    def missing_versions(self, from_schema, to_schema):
        """Ledger rows in from_schema whose version is absent in to_schema.

        Returns an empty list when either ledger table is missing or the
        lookup fails for any other reason.
        """
        try:
            return self.gateway.execute(
                f"""
                SELECT version, name
                FROM {self._table(from_schema)}
                WHERE version NOT IN (
                    SELECT version FROM {self._table(to_schema)}
                )
                ORDER BY version
                """,
                read_only=True,
            )
        except SupabaseMcpError as e:
            logger.debug("Ledger diff %s -> %s unavailable: %s", from_schema, to_schema, e)
            return []

    def truncate_after(self, schema_name, version):
        self.gateway.execute(
            f"DELETE FROM {self._table(schema_name)} WHERE version > {quote_literal(version)}"
        )

    def record(self, schema_name, version):
        """Insert a version; returns False when it was already present."""
        rows = self.gateway.execute(
            f"INSERT INTO {self._table(schema_name)} (version) "
            f"VALUES ({quote_literal(version)}) "
            f"ON CONFLICT DO NOTHING RETURNING version"
        )
        return bool(rows)


# ── Reconciler ───────────────────────────────────────────────────────


class BranchReconciler:
    def __init__(self, repository, ledger):
        self.repository = repository
        self.ledger = ledger

    def merge(self, source_branch, target_branch=DEFAULT_BRANCH):
        """Report the source migrations the target has not recorded.

        Nothing is applied to the target: neither its tables nor its ledger
        are touched. ``migrations_applied`` lists what a merge *would* bring.
        """
        source = sanitize_identifier(source_branch)
        target = sanitize_identifier(target_branch or DEFAULT_BRANCH)
        missing = self.ledger.missing_versions(source, target)
        return MergeResult(success=True, migrations_applied=[str(m["version"]) for m in missing])

    def reset(self, branch_name, migration_version=None):
        schema_name = sanitize_identifier(branch_name)
        if migration_version is not None and migration_version != "":
            self.ledger.truncate_after(schema_name, str(migration_version))
            return
        if schema_name == DEFAULT_BRANCH:
            logger.info("Reset without a version is a no-op on the public branch")
            return
        self.repository.recreate(schema_name)

    def rebase(self, branch_name, target_branch=DEFAULT_BRANCH):
        """Record in the branch ledger every version the target has and the branch lacks."""
        schema_name = sanitize_identifier(branch_name)
        target = sanitize_identifier(target_branch or DEFAULT_BRANCH)
        outcomes = []
        for row in self.ledger.missing_versions(target, schema_name):
            version = str(row["version"])
            try:
                inserted = self.ledger.record(schema_name, version)
            except SupabaseMcpError as e:
                outcomes.append(ItemOutcome(version, FAILED, str(e)))
                continue
            outcomes.append(ItemOutcome(version, INSERTED if inserted else SKIPPED))
        return RebaseResult(success=True, versions=outcomes)
