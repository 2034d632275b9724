"""Tests for settings resolution."""

import pytest

from supabase_mcp.config import FEATURE_GROUPS, ConfigError, load_settings, parse_list
from supabase_mcp.server import build_parser

ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_ANON_KEY",
    "SUPABASE_DB_URL",
    "SUPABASE_PROJECT_ID",
    "SUPABASE_READ_ONLY",
    "SUPABASE_MCP_FEATURES",
    "MCP_TRANSPORT",
    "HOST",
    "PORT",
    "SUPABASE_HTTP_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def parse(*argv):
    return build_parser().parse_args(list(argv))


class TestLoadSettings:
    """CLI flags first, then environment variables, then defaults."""

    def test_from_flags(self):
        settings = load_settings(parse(
            "--supabase-url", "http://localhost:8000/",
            "--service-role-key", "key",
        ))
        assert settings.base_url == "http://localhost:8000"
        assert settings.service_role_key == "key"
        assert settings.project_id == "default"
        assert settings.transport == "stdio"
        assert settings.read_only is False
        assert settings.features == frozenset(FEATURE_GROUPS)
        assert settings.anon_key is None
        assert settings.postgres_url is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "http://db.internal:8000")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "env-key")
        monkeypatch.setenv("SUPABASE_READ_ONLY", "true")
        monkeypatch.setenv("SUPABASE_DB_URL", "postgresql://postgres@db/postgres")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("SUPABASE_HTTP_TIMEOUT", "12.5")
        settings = load_settings(parse())
        assert settings.base_url == "http://db.internal:8000"
        assert settings.read_only is True
        assert settings.postgres_url == "postgresql://postgres@db/postgres"
        assert settings.port == 9000
        assert settings.http_timeout == 12.5

    def test_flags_win_over_env(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "http://from-env")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "env-key")
        settings = load_settings(parse("--supabase-url", "http://from-flag"))
        assert settings.base_url == "http://from-flag"
        assert settings.service_role_key == "env-key"

    def test_without_args(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "http://localhost:8000")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "key")
        assert load_settings().base_url == "http://localhost:8000"

    def test_missing_url(self):
        with pytest.raises(ConfigError, match="--supabase-url"):
            load_settings(parse("--service-role-key", "key"))

    def test_missing_key(self):
        with pytest.raises(ConfigError, match="SUPABASE_SERVICE_ROLE_KEY"):
            load_settings(parse("--supabase-url", "http://localhost:8000"))

    def test_feature_subset(self):
        settings = load_settings(parse(
            "--supabase-url", "http://x", "--service-role-key", "k",
            "--features", "branching, database",
        ))
        assert settings.features == frozenset({"branching", "database"})
        assert settings.feature_enabled("branching")
        assert not settings.feature_enabled("storage")

    def test_unknown_feature(self):
        with pytest.raises(ConfigError, match="Unknown feature group"):
            load_settings(parse(
                "--supabase-url", "http://x", "--service-role-key", "k", "--features", "billing",
            ))

    def test_non_numeric_port(self, monkeypatch):
        monkeypatch.setenv("PORT", "eighty")
        with pytest.raises(ConfigError, match="Invalid PORT: eighty"):
            load_settings(parse("--supabase-url", "http://x", "--service-role-key", "k"))

    def test_non_numeric_timeout(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_HTTP_TIMEOUT", "soon")
        with pytest.raises(ConfigError, match="Invalid SUPABASE_HTTP_TIMEOUT: soon"):
            load_settings(parse("--supabase-url", "http://x", "--service-role-key", "k"))

    def test_unknown_transport_from_env(self, monkeypatch):
        monkeypatch.setenv("MCP_TRANSPORT", "sse")
        with pytest.raises(ConfigError, match="Unknown transport"):
            load_settings(parse("--supabase-url", "http://x", "--service-role-key", "k"))


class TestParseList:
    def test_blanks_dropped(self):
        assert parse_list(" a, ,b,") == ["a", "b"]

    def test_empty(self):
        assert parse_list(None) == []
