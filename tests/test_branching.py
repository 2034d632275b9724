"""Tests for schema-based branching: repository, ledger and reconciler."""

import pytest

from supabase_mcp.branching import (
    COPIED,
    FAILED,
    INSERTED,
    SKIPPED,
    BranchReconciler,
    BranchRepository,
    MigrationLedger,
)
from supabase_mcp.errors import BackendRejectedError, ValidationError


@pytest.fixture
def repository(catalog):
    return BranchRepository(catalog)


@pytest.fixture
def ledger(catalog):
    return MigrationLedger(catalog)


@pytest.fixture
def reconciler(repository, ledger):
    return BranchReconciler(repository, ledger)


@pytest.fixture
def seeded(catalog):
    """public with two tables and a ledger holding three versions."""
    catalog.add_table("public", "users")
    catalog.add_table("public", "posts")
    catalog.add_ledger("public", ["1700000000001", "1700000000002", "1700000000003"])
    return catalog


class TestListBranches:
    """Listing schemas as branches."""

    def test_reserved_and_pg_schemas_hidden(self, repository, catalog):
        """pg_catalog, information_schema, pg_toast and any pg_* schema never show up."""
        catalog.add_table("feature_a", "users")
        names = [b.schema_name for b in repository.list()]
        assert names == ["feature_a", "public"]

    def test_public_is_default(self, repository):
        branches = {b.name: b for b in repository.list()}
        assert branches["public"].is_default is True

    def test_to_dict_omits_unset_fields(self, repository):
        d = repository.list()[0].to_dict()
        assert d == {"name": "public", "schema_name": "public", "is_default": True}


class TestCreateBranch:
    """Creating a branch copies table shapes from the parent."""

    def test_create_then_list(self, repository, seeded):
        """A created branch is listed as a non-default branch."""
        repository.create("x", "public")
        branches = {b.schema_name: b for b in repository.list()}
        assert "x" in branches
        assert branches["x"].is_default is False

    def test_name_is_sanitized(self, repository, seeded):
        branch = repository.create("feature/x")
        assert branch.name == "feature_x"
        assert branch.schema_name == "feature_x"
        assert branch.parent_branch == "public"
        assert "feature_x" in seeded.schemas

    @pytest.mark.parametrize("raw,expected", [
        ("feature-1", "feature_1"),
        ("my branch", "my_branch"),
        ("a.b.c", "a_b_c"),
        ("dev;DROP", "dev_DROP"),
        ("ünïcode", "_n_code"),
        ("already_ok_9", "already_ok_9"),
    ])
    def test_schema_name_replaces_unsafe_characters(self, repository, catalog, raw, expected):
        assert repository.create(raw).schema_name == expected
        assert expected in catalog.schemas

    def test_every_parent_table_copied(self, repository, seeded):
        branch = repository.create("dev")
        outcomes = {t.name: t.status for t in branch.tables}
        assert outcomes == {"posts": COPIED, "schema_migrations": COPIED, "users": COPIED}
        assert seeded.schemas["dev"] == {"posts", "schema_migrations", "users"}

    def test_new_branch_starts_with_empty_ledger(self, repository, seeded):
        """Only the shape of the ledger is copied, never its rows."""
        repository.create("dev")
        assert seeded.ledgers["dev"] == {}
        assert len(seeded.ledgers["public"]) == 3

    def test_copy_uses_like_including_all(self, repository, seeded):
        repository.create("dev")
        creates = [q for q, _ in seeded.queries if q.startswith("CREATE TABLE")]
        assert 'CREATE TABLE "dev"."users" (LIKE "public"."users" INCLUDING ALL)' in creates

    def test_existing_tables_reported_as_skipped(self, repository, seeded):
        repository.create("dev")
        again = repository.create("dev")
        assert {t.status for t in again.tables} == {SKIPPED}
        assert all(t.reason == "already exists" for t in again.tables)

    def test_failure_on_one_table_continues_with_the_rest(self, repository, seeded):
        seeded.failing_tables.add("posts")
        branch = repository.create("dev")
        outcomes = {t.name: t for t in branch.tables}
        assert outcomes["posts"].status == FAILED
        assert "permission denied" in outcomes["posts"].reason
        assert outcomes["users"].status == COPIED
        assert "users" in seeded.schemas["dev"]

    def test_already_exists_error_counts_as_skipped(self, gateway):
        """A table created concurrently between listing and copying is skipped."""
        gateway.on(r"table_schema = 'public'", [{"table_name": "users"}])
        gateway.on(r"CREATE TABLE", BackendRejectedError('relation "users" already exists'))
        branch = BranchRepository(gateway).create("dev")
        assert branch.tables[0].status == SKIPPED

    def test_from_non_public_parent(self, repository, seeded):
        repository.create("dev")
        branch = repository.create("dev_child", "dev")
        assert branch.parent_branch == "dev"
        assert seeded.schemas["dev_child"] == {"posts", "schema_migrations", "users"}

    def test_public_from_other_parent_is_default(self, repository, catalog, caplog):
        """Creating into public reports it as the default branch, matching list()."""
        catalog.add_table("feature_x", "t1")
        with caplog.at_level("WARNING", logger="supabase-mcp.branching"):
            branch = repository.create("public", "feature_x")
        listed = {b.schema_name: b for b in repository.list()}
        assert branch.is_default is True
        assert branch.is_default == listed["public"].is_default
        assert "t1" in catalog.schemas["public"]
        assert "into the public branch" in caplog.text

    def test_own_parent_rejected(self, repository, catalog):
        with pytest.raises(ValidationError):
            repository.create("public", "public")
        assert catalog.queries == []

    def test_empty_name_rejected(self, repository, catalog):
        with pytest.raises(ValidationError):
            repository.create("")
        assert catalog.queries == []

    def test_to_dict_lists_table_outcomes(self, repository, seeded):
        d = repository.create("dev").to_dict()
        assert d["is_default"] is False
        assert {"name": "users", "status": "copied"} in d["tables"]


class TestDeleteBranch:
    """Dropping branch schemas."""

    def test_public_rejected_without_sql(self, repository, catalog):
        with pytest.raises(ValidationError):
            repository.delete("public")
        assert catalog.queries == []
        assert "public" in catalog.schemas

    def test_delete_sanitizes_name(self, repository, seeded):
        repository.create("feature/x")
        repository.delete("feature/x")
        assert "feature_x" not in seeded.schemas
        assert ('DROP SCHEMA IF EXISTS "feature_x" CASCADE', False) in seeded.queries

    def test_delete_missing_branch_is_quiet(self, repository, catalog):
        repository.delete("never_created")
        assert "never_created" not in catalog.schemas


class TestMerge:
    """Merge reports the source migrations the target lacks, without applying them."""

    def test_reports_missing_versions(self, reconciler, repository, seeded):
        repository.create("dev")
        seeded.ledgers["dev"].update({"1700000000001": None, "1700000000009": None})
        result = reconciler.merge("dev", "public")
        assert result.success is True
        assert result.migrations_applied == ["1700000000009"]

    def test_target_ledger_untouched(self, reconciler, repository, seeded):
        repository.create("dev")
        seeded.ledgers["dev"].update({"1700000000007": None, "1700000000008": None})
        before = dict(seeded.ledgers["public"])
        reconciler.merge("dev")
        assert seeded.ledgers["public"] == before
        assert all(read_only for q, read_only in seeded.queries if "schema_migrations" in q and "NOT IN" in q)

    def test_missing_ledger_is_empty_result(self, reconciler, catalog):
        catalog.add_table("dev", "users")
        result = reconciler.merge("dev")
        assert result.to_dict() == {"success": True, "migrations_applied": []}


class TestReset:
    """Reset truncates the ledger or recreates the schema."""

    def test_removes_versions_lexicographically_greater(self, reconciler, catalog):
        catalog.add_ledger("dev", ["099", "0999", "100", "1000", "101", "2"])
        reconciler.reset("dev", "100")
        assert catalog.versions("dev") == ["099", "0999", "100"]

    def test_without_version_recreates_empty_schema(self, reconciler, repository, seeded):
        repository.create("dev")
        reconciler.reset("dev")
        assert seeded.schemas["dev"] == set()
        assert "dev" not in seeded.ledgers

    def test_without_version_on_public_is_noop(self, reconciler, seeded):
        reconciler.reset("public")
        assert seeded.queries == []
        assert "users" in seeded.schemas["public"]

    def test_name_is_sanitized(self, reconciler, catalog):
        catalog.add_ledger("feature_x", ["1", "5"])
        reconciler.reset("feature/x", "1")
        assert catalog.versions("feature_x") == ["1"]


class TestRebase:
    """Rebase records the target's versions in the branch ledger."""

    def test_inserts_missing_versions(self, reconciler, repository, seeded):
        repository.create("dev")
        result = reconciler.rebase("dev")
        assert [v.status for v in result.versions] == [INSERTED] * 3
        assert seeded.versions("dev") == seeded.versions("public")

    def test_twice_is_idempotent(self, reconciler, repository, seeded):
        repository.create("dev")
        reconciler.rebase("dev")
        after_first = seeded.versions("dev")
        second = reconciler.rebase("dev")
        assert second.versions == []
        assert seeded.versions("dev") == after_first

    def test_rebase_does_not_touch_target(self, reconciler, repository, seeded):
        repository.create("dev")
        seeded.ledgers["dev"]["1800000000000"] = None
        reconciler.rebase("dev")
        assert "1800000000000" not in seeded.ledgers["public"]

    def test_missing_ledger_is_empty_result(self, reconciler, catalog):
        catalog.add_table("dev", "users")
        assert reconciler.rebase("dev").to_dict() == {"success": True, "versions": []}

    def test_conflict_reported_as_skipped(self, gateway):
        gateway.on(r"NOT IN", [{"version": "1", "name": None}])
        gateway.on(r"INSERT INTO", [])
        result = BranchReconciler(BranchRepository(gateway), MigrationLedger(gateway)).rebase("dev")
        assert result.versions[0].status == SKIPPED

    def test_insert_failure_reported_per_version(self, gateway):
        gateway.on(r"NOT IN", [{"version": "1", "name": None}, {"version": "2", "name": None}])
        gateway.on(r"VALUES \('1'\)", BackendRejectedError("permission denied"))
        gateway.on(r"INSERT INTO", [{"version": "2"}])
        result = BranchReconciler(BranchRepository(gateway), MigrationLedger(gateway)).rebase("dev")
        assert [(v.name, v.status) for v in result.versions] == [("1", FAILED), ("2", INSERTED)]
        assert result.to_dict()["versions"][0]["reason"] == "permission denied"
