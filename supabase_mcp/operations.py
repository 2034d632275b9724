"""SRE operations: health, stats, and shell-script instructions."""

import logging
from datetime import datetime, timezone

from supabase_mcp.errors import SupabaseMcpError, ValidationError

logger = logging.getLogger("supabase-mcp.operations")

HEALTH_ENDPOINTS = (
    ("REST API", "/rest/v1/"),
    ("Auth", "/auth/v1/health"),
    ("Storage", "/storage/v1/status"),
)

SECRET_SCRIPTS = {
    "jwt": "rotate-jwt-secret.sh",
    "postgres_password": "rotate-postgres-password.sh",
    "vault_key": "rotate-vault-key.sh",
    "anon_key": "generate-keys.sh",
    "service_role_key": "generate-keys.sh",
}

SCRIPTS = {
    "check-health": "Comprehensive health check",
    "backup": "Create database backup",
    "env-info": "Show environment information",
    "show-mcp": "Show MCP configuration",
}

DEFAULT_MAX_CONNECTIONS = 100


def _now():
    return datetime.now(timezone.utc)


def overall_status(checks):
    unhealthy = sum(1 for c in checks if c["status"] == "unhealthy")
    if unhealthy == 0:
        return "healthy"
    if unhealthy < 2:
        return "degraded"
    return "unhealthy"


class OperationsOperations:
    def __init__(self, client, gateway):
        self.client = client
        self.gateway = gateway

    def check_health(self):
        endpoints = []
        for name, path in HEALTH_ENDPOINTS:
            try:
                response = self.client.probe(path)
                endpoints.append({
                    "name": name,
                    "status": "healthy" if response.ok else "unhealthy",
                    "message": "OK" if response.ok else f"HTTP {response.status_code}",
                })
            except SupabaseMcpError as e:
                endpoints.append({"name": name, "status": "unhealthy", "message": str(e)})

        services = []
        try:
            self.gateway.execute("SELECT 1", read_only=True)
            services.append({"name": "Database", "status": "healthy", "message": "Connected"})
        except SupabaseMcpError as e:
            services.append({"name": "Database", "status": "unhealthy", "message": str(e)})

        return {
            "overall": overall_status(services + endpoints),
            "services": services,
            "endpoints": endpoints,
            "timestamp": _now().isoformat(),
        }

    def get_stats(self):
        stats = {"size": "unknown", "active": 0, "users": 0}
        queries = (
            ("size", "SELECT pg_size_pretty(pg_database_size(current_database())) AS value"),
            ("active", "SELECT count(*) AS value FROM pg_stat_activity WHERE state = 'active'"),
            ("users", "SELECT count(*) AS value FROM auth.users"),
        )
        for key, query in queries:
            try:
                rows = self.gateway.execute(query, read_only=True)
            except SupabaseMcpError as e:
                logger.debug("Stat %s unavailable: %s", key, e)
                continue
            if rows and rows[0].get("value") is not None:
                stats[key] = rows[0]["value"]

        return {
            "database": {
                "size": stats["size"],
                "connections_active": int(stats["active"]),
                "connections_max": DEFAULT_MAX_CONNECTIONS,
            },
            "users": {"total_count": int(stats["users"])},
            "timestamp": _now().isoformat(),
        }

    def backup_now(self, output_path=None):
        stamp = _now().strftime("%Y-%m-%dT%H-%M-%S")
        return {
            "success": True,
            "timestamp": _now().isoformat(),
            "message": (
                "To create a backup, run:\n\n"
                f"docker exec supabase-db pg_dumpall -U postgres > backup_{stamp}.sql\n\n"
                "Or use the backup script:\n"
                f"./scripts/backup.sh {output_path or ''}".rstrip() + "\n\n"
                "To restore:\n"
                f"docker exec -i supabase-db psql -U postgres < backup_{stamp}.sql"
            ),
        }

    def rotate_secret(self, secret_type, dry_run=True):
        script = SECRET_SCRIPTS.get(secret_type)
        if script is None:
            raise ValidationError(
                f"Unknown secret_type: {secret_type}. Valid types: {', '.join(SECRET_SCRIPTS)}"
            )
        if dry_run:
            return {
                "success": True,
                "secret_type": secret_type,
                "message": (
                    f"DRY RUN: Would rotate {secret_type} secret.\n\n"
                    f"To actually rotate, run:\n./scripts/{script}\n\n"
                    "Or call this tool with dry_run=false (requires shell access)."
                ),
                "requires_restart": secret_type == "jwt",
            }
        return {
            "success": False,
            "secret_type": secret_type,
            "message": (
                f"Secret rotation requires shell access. Run:\n\n./scripts/{script}\n\n"
                "After rotation, restart services:\ndocker compose restart"
            ),
            "requires_restart": True,
        }

    def run_script(self, script_name, args=None):
        available = "\n".join(f"- {name}.sh: {desc}" for name, desc in SCRIPTS.items())
        command = " ".join([f"./scripts/{script_name}.sh", *(args or [])])
        return {
            "success": True,
            "exit_code": 0,
            "stdout": (
                "Script execution requires shell access.\n\n"
                f"To run '{script_name}', execute:\n{command}\n\n"
                f"Available scripts:\n{available}"
            ),
        }
