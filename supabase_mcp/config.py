"""Server settings, resolved once from CLI flags and environment variables."""

import os
from dataclasses import dataclass, field

FEATURE_GROUPS = (
    "database",
    "debugging",
    "development",
    "storage",
    "auth",
    "functions",
    "branching",
    "docs",
    "operations",
)

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """Raised when required settings are missing or malformed."""


def parse_list(value):
    """Split a comma-separated flag value, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_float(name):
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"Invalid {name}: {raw}") from None


def _port(raw):
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid PORT: {raw}") from None


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    service_role_key: str
    anon_key: str | None = None
    postgres_url: str | None = None
    project_id: str = "default"
    read_only: bool = False
    features: frozenset = field(default_factory=lambda: frozenset(FEATURE_GROUPS))
    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 8000
    http_timeout: float | None = None

    @property
    def base_url(self) -> str:
        return self.supabase_url.rstrip("/")

    def feature_enabled(self, group: str) -> bool:
        return group in self.features


def load_settings(args=None) -> Settings:
    """Build Settings from parsed argparse args, falling back to env vars.

    CLI flags win over environment variables. Raises ConfigError when the
    Supabase URL or the service role key cannot be found anywhere.
    """
    def pick(attr, env, default=None):
        value = getattr(args, attr, None) if args is not None else None
        if value is None or value == "":
            value = os.environ.get(env, default)
        return value

    supabase_url = pick("supabase_url", "SUPABASE_URL")
    if not supabase_url:
        raise ConfigError(
            "Please provide the Supabase URL with --supabase-url flag "
            "or set the SUPABASE_URL environment variable"
        )
    service_role_key = pick("service_role_key", "SUPABASE_SERVICE_ROLE_KEY")
    if not service_role_key:
        raise ConfigError(
            "Please provide the service role key with --service-role-key flag "
            "or set the SUPABASE_SERVICE_ROLE_KEY environment variable"
        )

    raw_features = pick("features", "SUPABASE_MCP_FEATURES")
    features = parse_list(raw_features) if raw_features else list(FEATURE_GROUPS)
    unknown = sorted(set(features) - set(FEATURE_GROUPS))
    if unknown:
        raise ConfigError(
            f"Unknown feature group(s): {', '.join(unknown)}. "
            f"Valid groups: {', '.join(FEATURE_GROUPS)}"
        )

    read_only = bool(getattr(args, "read_only", False)) or _env_flag("SUPABASE_READ_ONLY")

    transport = pick("transport", "MCP_TRANSPORT", "stdio")
    if transport not in ("stdio", "http"):
        raise ConfigError(f"Unknown transport: {transport}. Use stdio or http.")

    return Settings(
        supabase_url=supabase_url.rstrip("/"),
        service_role_key=service_role_key,
        anon_key=pick("anon_key", "SUPABASE_ANON_KEY") or None,
        postgres_url=pick("postgres_url", "SUPABASE_DB_URL") or None,
        project_id=pick("project_id", "SUPABASE_PROJECT_ID", "default"),
        read_only=read_only,
        features=frozenset(features),
        transport=transport,
        host=pick("host", "HOST", "127.0.0.1"),
        port=_port(pick("port", "PORT", "8000")),
        http_timeout=_env_float("SUPABASE_HTTP_TIMEOUT"),
    )
