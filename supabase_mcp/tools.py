"""MCP tool definitions and dispatch.

Tools are grouped by feature (see config.FEATURE_GROUPS); only enabled
groups are listed or callable. Every tool accepts an optional
``project_id``. Write tools are refused when the server runs read-only,
except execute_sql, which is downgraded to a read-only execution.
"""

import json
import logging

from mcp.types import TextContent, Tool, ToolAnnotations

from supabase_mcp.config import FEATURE_GROUPS
from supabase_mcp.errors import ValidationError

logger = logging.getLogger("supabase-mcp.tools")

SUCCESS_RESPONSE = {"success": True}

_PROJECT_ID = {
    "type": "string",
    "description": "Project ID. A self-hosted server manages a single project; defaults to it.",
}


def _tool(name, description, properties=None, required=(), *, title, read_only,
          destructive=False, idempotent=False, open_world=False):
    props = {"project_id": _PROJECT_ID}
    props.update(properties or {})
    return Tool(
        name=name,
        description=description,
        inputSchema={"type": "object", "properties": props, "required": list(required)},
        annotations=ToolAnnotations(
            title=title,
            readOnlyHint=read_only,
            destructiveHint=destructive,
            idempotentHint=idempotent,
            openWorldHint=open_world,
        ),
    )


# ── Parameter coercion ───────────────────────────────────────────────


def _text(result):
    return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]


def _arg(arguments, key):
    value = arguments.get(key)
    if value is None or value == "":
        raise ValidationError(f"Missing required parameter: {key}")
    return value


def _ensure_dict(val, param_name="value"):
    """Coerce a value to a dict; agents sometimes send JSON strings."""
    if val is None or isinstance(val, dict):
        return val
    if isinstance(val, str):
        try:
            parsed = json.loads(val)
        except (json.JSONDecodeError, TypeError):
            parsed = None
        if isinstance(parsed, dict):
            return parsed
        raise ValidationError(f"{param_name} must be a JSON object, got string: {val[:100]}")
    raise ValidationError(f"{param_name} must be a JSON object, got {type(val).__name__}")


def _ensure_list(val, param_name="value"):
    """Coerce a value to a list; agents sometimes send JSON strings."""
    if val is None or isinstance(val, list):
        return val
    if isinstance(val, str):
        try:
            parsed = json.loads(val)
        except (json.JSONDecodeError, TypeError):
            parsed = None
        if isinstance(parsed, list):
            return parsed
        raise ValidationError(f"{param_name} must be a JSON array, got string: {val[:100]}")
    raise ValidationError(f"{param_name} must be a JSON array, got {type(val).__name__}")


# ── Tool definitions ─────────────────────────────────────────────────

DATABASE_TOOLS = [
    _tool(
        "list_tables",
        "Lists all base tables in one or more schemas, with column counts and RLS status.",
        {
            "schemas": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Schemas to include. Defaults to [\"public\"].",
            },
        },
        title="List tables", read_only=True, idempotent=True,
    ),
    _tool(
        "list_extensions",
        "Lists available Postgres extensions and their installed versions.",
        title="List extensions", read_only=True, idempotent=True,
    ),
    _tool(
        "list_migrations",
        "Lists migrations recorded in supabase_migrations.schema_migrations, newest first.",
        title="List migrations", read_only=True, idempotent=True,
    ),
    _tool(
        "apply_migration",
        "Applies a DDL migration and records it in supabase_migrations.schema_migrations "
        "with a millisecond-timestamp version. Use execute_sql for plain queries.",
        {
            "name": {"type": "string", "description": "Migration name in snake_case."},
            "query": {"type": "string", "description": "SQL to apply."},
        },
        ["name", "query"],
        title="Apply migration", read_only=False, destructive=True,
    ),
    _tool(
        "execute_sql",
        "Executes raw SQL against the database and returns the resulting rows. "
        "Runs read-only when the server is in read-only mode.",
        {"query": {"type": "string", "description": "SQL to execute."}},
        ["query"],
        title="Execute SQL", read_only=False, destructive=True,
    ),
]

DEBUGGING_TOOLS = [
    _tool(
        "get_logs",
        "Gets recent logs for a service from the analytics service. When analytics is not "
        "configured, returns the docker command to read the container logs instead.",
        {
            "service": {
                "type": "string",
                "enum": ["api", "postgres", "auth", "storage", "realtime", "functions"],
                "description": "Service to fetch logs for.",
            },
            "iso_timestamp_start": {"type": "string", "description": "Start of the window (ISO 8601)."},
            "iso_timestamp_end": {"type": "string", "description": "End of the window (ISO 8601)."},
        },
        ["service"],
        title="Get logs", read_only=True, idempotent=True,
    ),
    _tool(
        "get_advisors",
        "Runs security (tables without RLS policies) or performance (foreign keys without "
        "an index) checks.",
        {"type": {"type": "string", "enum": ["security", "performance"], "description": "Advisor type."}},
        ["type"],
        title="Get advisors", read_only=True, idempotent=True,
    ),
]

DEVELOPMENT_TOOLS = [
    _tool("get_project_url", "Gets the base URL of the Supabase instance.",
          title="Get project URL", read_only=True, idempotent=True),
    _tool("get_publishable_keys", "Gets the client-safe (anon) API keys.",
          title="Get publishable keys", read_only=True, idempotent=True),
    _tool("generate_typescript_types", "Generates TypeScript types for the public schema's tables.",
          title="Generate TypeScript types", read_only=True, idempotent=True),
]

STORAGE_TOOLS = [
    _tool(
        "create_storage_bucket",
        "Creates a storage bucket by inserting into storage.buckets via SQL, which works on "
        "self-hosted instances where the Storage API rejects bucket creation.",
        {
            "name": {"type": "string", "description": "Unique bucket name (lowercase, no spaces)."},
            "public": {"type": "boolean", "default": False, "description": "Whether the bucket is publicly accessible."},
            "file_size_limit": {"type": "integer", "description": "Maximum file size in bytes."},
            "allowed_mime_types": {"type": "array", "items": {"type": "string"}, "description": "Allowed MIME types."},
        },
        ["name"],
        title="Create storage bucket", read_only=False, open_world=True,
    ),
    _tool("list_storage_buckets", "Lists all storage buckets.",
          title="List storage buckets", read_only=True, idempotent=True),
    _tool("get_storage_config", "Gets the storage configuration.",
          title="Get storage config", read_only=True, idempotent=True),
    _tool(
        "update_storage_config",
        "Updates the storage configuration. Self-hosted storage reads its settings from "
        "environment variables, so this reports what to change instead of applying it.",
        {
            "config": {
                "type": "object",
                "properties": {
                    "fileSizeLimit": {"type": "integer"},
                    "features": {"type": "object"},
                },
                "required": ["fileSizeLimit"],
            },
        },
        ["config"],
        title="Update storage config", read_only=False, destructive=True,
    ),
    _tool(
        "list_files",
        "Lists files in a storage bucket.",
        {
            "bucket": {"type": "string", "description": "Name of the storage bucket."},
            "path": {"type": "string", "description": "Path prefix to filter files."},
        },
        ["bucket"],
        title="List files", read_only=True, idempotent=True,
    ),
    _tool(
        "upload_file",
        "Uploads a file to a storage bucket. Content must be base64 encoded.",
        {
            "bucket": {"type": "string", "description": "Name of the storage bucket."},
            "path": {"type": "string", "description": "Path where the file will be stored."},
            "content": {"type": "string", "description": "Base64 encoded file content."},
            "content_type": {"type": "string", "description": "MIME type of the file."},
        },
        ["bucket", "path", "content"],
        title="Upload file", read_only=False, open_world=True,
    ),
    _tool(
        "download_file",
        "Gets a one-hour signed URL to download a file.",
        {
            "bucket": {"type": "string", "description": "Name of the storage bucket."},
            "path": {"type": "string", "description": "Path to the file."},
        },
        ["bucket", "path"],
        title="Download file", read_only=True, idempotent=True,
    ),
    _tool(
        "delete_file",
        "Deletes one or more files from a storage bucket.",
        {
            "bucket": {"type": "string", "description": "Name of the storage bucket."},
            "paths": {"type": "array", "items": {"type": "string"}, "description": "File paths to delete."},
        },
        ["bucket", "paths"],
        title="Delete file", read_only=False, destructive=True, open_world=True,
    ),
    _tool(
        "create_signed_url",
        "Creates a signed URL for temporary access to a file.",
        {
            "bucket": {"type": "string", "description": "Name of the storage bucket."},
            "path": {"type": "string", "description": "Path to the file."},
            "expires_in": {"type": "integer", "description": "Expiration in seconds (e.g. 3600)."},
        },
        ["bucket", "path", "expires_in"],
        title="Create signed URL", read_only=True,
    ),
]

AUTH_TOOLS = [
    _tool(
        "list_users",
        "Lists auth users.",
        {
            "page": {"type": "integer", "description": "Page number (1-based)."},
            "per_page": {"type": "integer", "description": "Users per page."},
        },
        title="List users", read_only=True, idempotent=True,
    ),
    _tool(
        "get_user",
        "Gets an auth user by ID.",
        {"user_id": {"type": "string", "description": "User UUID."}},
        ["user_id"],
        title="Get user", read_only=True, idempotent=True,
    ),
    _tool(
        "create_user",
        "Creates an auth user. Requires an email or a phone number.",
        {
            "email": {"type": "string"},
            "phone": {"type": "string"},
            "password": {"type": "string"},
            "email_confirm": {"type": "boolean", "description": "Mark the email as confirmed."},
            "phone_confirm": {"type": "boolean", "description": "Mark the phone as confirmed."},
            "user_metadata": {"type": "object"},
            "app_metadata": {"type": "object"},
        },
        title="Create user", read_only=False,
    ),
    _tool(
        "delete_user",
        "Deletes an auth user.",
        {"user_id": {"type": "string", "description": "User UUID."}},
        ["user_id"],
        title="Delete user", read_only=False, destructive=True,
    ),
    _tool(
        "generate_link",
        "Generates an email action link (signup, invite, magic link, recovery, email change).",
        {
            "type": {
                "type": "string",
                "enum": ["signup", "invite", "magiclink", "recovery", "email_change_current", "email_change_new"],
            },
            "email": {"type": "string"},
            "new_email": {"type": "string"},
            "password": {"type": "string"},
            "redirect_to": {"type": "string"},
            "data": {"type": "object"},
        },
        ["type", "email"],
        title="Generate link", read_only=False,
    ),
]

FUNCTION_TOOLS = [
    _tool("list_edge_functions", "Lists Edge Functions. Returns an empty list when the runtime has no listing endpoint.",
          title="List Edge Functions", read_only=True, idempotent=True),
    _tool(
        "get_edge_function",
        "Gets details for an Edge Function.",
        {"function_name": {"type": "string"}},
        ["function_name"],
        title="Get Edge Function", read_only=True, idempotent=True,
    ),
    _tool(
        "invoke_edge_function",
        "Invokes an Edge Function and returns its status, headers and body.",
        {
            "function_name": {"type": "string"},
            "body": {"description": "JSON request body."},
            "headers": {"type": "object", "additionalProperties": {"type": "string"}},
            "method": {"type": "string", "enum": ["GET", "POST", "PUT", "PATCH", "DELETE"], "default": "POST"},
        },
        ["function_name"],
        title="Invoke Edge Function", read_only=False, open_world=True,
    ),
    _tool(
        "deploy_edge_function",
        "Deploys an Edge Function. When the runtime has no deploy endpoint, returns the "
        "steps to deploy it by hand.",
        {
            "name": {"type": "string"},
            "code": {"type": "string", "description": "Function source."},
            "entrypoint": {"type": "string", "default": "index.ts"},
            "import_map": {"type": "string", "description": "import_map.json content."},
            "verify_jwt": {"type": "boolean", "default": True},
        },
        ["name", "code"],
        title="Deploy Edge Function", read_only=False, open_world=True,
    ),
]

_BRANCH_NAME_NOTE = " Characters outside [A-Za-z0-9_] are replaced with '_'."

BRANCHING_TOOLS = [
    _tool(
        "list_branches",
        "Lists branches. A branch is a Postgres schema; 'public' is the default branch.",
        title="List branches", read_only=True, idempotent=True,
    ),
    _tool(
        "create_branch",
        "Creates a branch as a new schema and copies the structure (not the data) of every "
        "table in the parent branch. Reports the outcome for each table." + _BRANCH_NAME_NOTE,
        {
            "name": {"type": "string", "description": "Branch name."},
            "parent_branch": {"type": "string", "default": "public", "description": "Branch to copy tables from."},
        },
        ["name"],
        title="Create branch", read_only=False,
    ),
    _tool(
        "delete_branch",
        "Drops a branch's schema and everything in it. The public branch cannot be deleted."
        + _BRANCH_NAME_NOTE,
        {"branch_name": {"type": "string"}},
        ["branch_name"],
        title="Delete branch", read_only=False, destructive=True,
    ),
    _tool(
        "merge_branch",
        "Compares migration ledgers and lists the source migrations the target has not "
        "recorded. Nothing is applied to the target branch.",
        {
            "source_branch": {"type": "string"},
            "target_branch": {"type": "string", "default": "public"},
        },
        ["source_branch"],
        title="Merge branch", read_only=True, idempotent=True,
    ),
    _tool(
        "reset_branch",
        "With migration_version, deletes ledger rows whose version sorts after it (string "
        "comparison; table structures are untouched). Without it, drops and recreates the "
        "branch's schema empty.",
        {
            "branch_name": {"type": "string"},
            "migration_version": {"type": "string"},
        },
        ["branch_name"],
        title="Reset branch", read_only=False, destructive=True,
    ),
    _tool(
        "rebase_branch",
        "Records in the branch's migration ledger every version the target branch has and "
        "the branch lacks. Only ledger rows are written.",
        {
            "branch_name": {"type": "string"},
            "target_branch": {"type": "string", "default": "public"},
        },
        ["branch_name"],
        title="Rebase branch", read_only=False, idempotent=True,
    ),
]

DOCS_TOOLS = [
    _tool(
        "search_docs",
        "Searches the Supabase documentation.",
        {"query": {"type": "string"}},
        ["query"],
        title="Search docs", read_only=True, idempotent=True, open_world=True,
    ),
]

OPERATIONS_TOOLS = [
    _tool("check_health", "Checks the REST, Auth and Storage endpoints and database connectivity.",
          title="Check health", read_only=True, idempotent=True),
    _tool("get_stats", "Gets database size, active connections and user count.",
          title="Get stats", read_only=True, idempotent=True),
    _tool(
        "backup_now",
        "Returns the commands to back up the database with pg_dumpall.",
        {"output_path": {"type": "string"}},
        title="Backup now", read_only=True,
    ),
    _tool(
        "rotate_secret",
        "Returns the script to rotate a secret. Rotation itself needs shell access.",
        {
            "secret_type": {
                "type": "string",
                "enum": ["jwt", "postgres_password", "vault_key", "anon_key", "service_role_key"],
            },
            "dry_run": {"type": "boolean", "default": True},
        },
        ["secret_type"],
        title="Rotate secret", read_only=True,
    ),
    _tool(
        "run_script",
        "Returns the command to run an operations script.",
        {
            "script_name": {"type": "string"},
            "args": {"type": "array", "items": {"type": "string"}},
        },
        ["script_name"],
        title="Run script", read_only=True,
    ),
]

TOOL_GROUPS = {
    "database": DATABASE_TOOLS,
    "debugging": DEBUGGING_TOOLS,
    "development": DEVELOPMENT_TOOLS,
    "storage": STORAGE_TOOLS,
    "auth": AUTH_TOOLS,
    "functions": FUNCTION_TOOLS,
    "branching": BRANCHING_TOOLS,
    "docs": DOCS_TOOLS,
    "operations": OPERATIONS_TOOLS,
}

_GROUP_OF = {tool.name: group for group, tools in TOOL_GROUPS.items() for tool in tools}

WRITE_TOOLS = frozenset(
    tool.name
    for tools in TOOL_GROUPS.values()
    for tool in tools
    if not tool.annotations.readOnlyHint and tool.name != "execute_sql"
)


def available_tools(settings):
    return [tool for group in FEATURE_GROUPS if settings.feature_enabled(group) for tool in TOOL_GROUPS[group]]


# ── Tool implementations (database) ──────────────────────────────────


def _tool_list_tables(platform, arguments):
    schemas = _ensure_list(arguments.get("schemas"), "schemas")
    return _text(platform.database.list_tables(schemas))


def _tool_list_extensions(platform, arguments):
    return _text(platform.database.list_extensions())


def _tool_list_migrations(platform, arguments):
    return _text(platform.database.list_migrations())


def _tool_apply_migration(platform, arguments):
    return _text(platform.database.apply_migration(_arg(arguments, "name"), _arg(arguments, "query")))


def _tool_execute_sql(platform, arguments):
    rows = platform.database.execute_sql(_arg(arguments, "query"), read_only=platform.settings.read_only)
    return _text(rows)


# ── Tool implementations (debugging) ─────────────────────────────────


def _tool_get_logs(platform, arguments):
    return _text(platform.debugging.get_logs(
        _arg(arguments, "service"),
        arguments.get("iso_timestamp_start"),
        arguments.get("iso_timestamp_end"),
    ))


def _tool_get_advisors(platform, arguments):
    kind = _arg(arguments, "type")
    if kind == "security":
        return _text(platform.debugging.get_security_advisors())
    if kind == "performance":
        return _text(platform.debugging.get_performance_advisors())
    raise ValidationError(f"Unknown advisor type: {kind}. Use security or performance.")


# ── Tool implementations (development) ───────────────────────────────


def _tool_get_project_url(platform, arguments):
    return _text(platform.development.get_project_url())


def _tool_get_publishable_keys(platform, arguments):
    return _text(platform.development.get_publishable_keys())


def _tool_generate_typescript_types(platform, arguments):
    return _text(platform.development.generate_typescript_types())


# ── Tool implementations (storage) ───────────────────────────────────


def _tool_create_storage_bucket(platform, arguments):
    return _text(platform.storage.create_bucket(
        _arg(arguments, "name"),
        public=bool(arguments.get("public", False)),
        file_size_limit=arguments.get("file_size_limit"),
        allowed_mime_types=_ensure_list(arguments.get("allowed_mime_types"), "allowed_mime_types"),
    ))


def _tool_list_storage_buckets(platform, arguments):
    return _text(platform.storage.list_buckets())


def _tool_get_storage_config(platform, arguments):
    return _text(platform.storage.get_storage_config())


def _tool_update_storage_config(platform, arguments):
    config = _ensure_dict(_arg(arguments, "config"), "config")
    return _text(platform.storage.update_storage_config(config))


def _tool_list_files(platform, arguments):
    return _text(platform.storage.list_files(_arg(arguments, "bucket"), arguments.get("path")))


def _tool_upload_file(platform, arguments):
    return _text(platform.storage.upload_file(
        _arg(arguments, "bucket"),
        _arg(arguments, "path"),
        _arg(arguments, "content"),
        arguments.get("content_type"),
    ))


def _tool_download_file(platform, arguments):
    return _text(platform.storage.download_file(_arg(arguments, "bucket"), _arg(arguments, "path")))


def _tool_delete_file(platform, arguments):
    paths = _ensure_list(_arg(arguments, "paths"), "paths")
    platform.storage.delete_files(_arg(arguments, "bucket"), paths)
    return _text(SUCCESS_RESPONSE)


def _tool_create_signed_url(platform, arguments):
    return _text(platform.storage.create_signed_url(
        _arg(arguments, "bucket"), _arg(arguments, "path"), _arg(arguments, "expires_in"),
    ))


# ── Tool implementations (auth) ──────────────────────────────────────


def _tool_list_users(platform, arguments):
    return _text(platform.auth.list_users(arguments.get("page"), arguments.get("per_page")))


def _tool_get_user(platform, arguments):
    return _text(platform.auth.get_user(_arg(arguments, "user_id")))


def _tool_create_user(platform, arguments):
    return _text(platform.auth.create_user(
        email=arguments.get("email"),
        phone=arguments.get("phone"),
        password=arguments.get("password"),
        email_confirm=arguments.get("email_confirm"),
        phone_confirm=arguments.get("phone_confirm"),
        user_metadata=_ensure_dict(arguments.get("user_metadata"), "user_metadata"),
        app_metadata=_ensure_dict(arguments.get("app_metadata"), "app_metadata"),
    ))


def _tool_delete_user(platform, arguments):
    platform.auth.delete_user(_arg(arguments, "user_id"))
    return _text(SUCCESS_RESPONSE)


def _tool_generate_link(platform, arguments):
    return _text(platform.auth.generate_link(
        type=_arg(arguments, "type"),
        email=_arg(arguments, "email"),
        new_email=arguments.get("new_email"),
        password=arguments.get("password"),
        redirect_to=arguments.get("redirect_to"),
        data=_ensure_dict(arguments.get("data"), "data"),
    ))


# ── Tool implementations (functions) ─────────────────────────────────


def _tool_list_edge_functions(platform, arguments):
    return _text(platform.functions.list_functions())


def _tool_get_edge_function(platform, arguments):
    return _text(platform.functions.get_function(_arg(arguments, "function_name")))


def _tool_invoke_edge_function(platform, arguments):
    return _text(platform.functions.invoke_function(
        _arg(arguments, "function_name"),
        body=arguments.get("body"),
        headers=_ensure_dict(arguments.get("headers"), "headers"),
        method=arguments.get("method", "POST"),
    ))


def _tool_deploy_edge_function(platform, arguments):
    return _text(platform.functions.deploy_function(
        _arg(arguments, "name"),
        _arg(arguments, "code"),
        entrypoint=arguments.get("entrypoint") or "index.ts",
        import_map=arguments.get("import_map"),
        verify_jwt=arguments.get("verify_jwt", True),
    ))


# ── Tool implementations (branching) ─────────────────────────────────


def _tool_list_branches(platform, arguments):
    return _text([b.to_dict() for b in platform.branches.list()])


def _tool_create_branch(platform, arguments):
    branch = platform.branches.create(
        _arg(arguments, "name"), arguments.get("parent_branch") or "public"
    )
    return _text(branch.to_dict())


def _tool_delete_branch(platform, arguments):
    platform.branches.delete(_arg(arguments, "branch_name"))
    return _text(SUCCESS_RESPONSE)


def _tool_merge_branch(platform, arguments):
    result = platform.reconciler.merge(
        _arg(arguments, "source_branch"), arguments.get("target_branch") or "public"
    )
    return _text(result.to_dict())


def _tool_reset_branch(platform, arguments):
    platform.reconciler.reset(_arg(arguments, "branch_name"), arguments.get("migration_version"))
    return _text(SUCCESS_RESPONSE)


def _tool_rebase_branch(platform, arguments):
    result = platform.reconciler.rebase(
        _arg(arguments, "branch_name"), arguments.get("target_branch") or "public"
    )
    return _text(result.to_dict())


# ── Tool implementations (docs, operations) ──────────────────────────


def _tool_search_docs(platform, arguments):
    return _text(platform.docs.search_docs(_arg(arguments, "query")))


def _tool_check_health(platform, arguments):
    return _text(platform.operations.check_health())


def _tool_get_stats(platform, arguments):
    return _text(platform.operations.get_stats())


def _tool_backup_now(platform, arguments):
    return _text(platform.operations.backup_now(arguments.get("output_path")))


def _tool_rotate_secret(platform, arguments):
    return _text(platform.operations.rotate_secret(
        _arg(arguments, "secret_type"), dry_run=arguments.get("dry_run", True)
    ))


def _tool_run_script(platform, arguments):
    args = _ensure_list(arguments.get("args"), "args")
    return _text(platform.operations.run_script(_arg(arguments, "script_name"), args))


HANDLERS = {
    name[len("_tool_"):]: fn
    for name, fn in list(globals().items())
    if name.startswith("_tool_") and callable(fn)
}


# ── Dispatch ─────────────────────────────────────────────────────────


def call_tool(platform, name, arguments):
    """Validate scope and mode, then run the tool. Errors propagate to the caller."""
    settings = platform.settings
    arguments = arguments or {}

    group = _GROUP_OF.get(name)
    if group is None or not settings.feature_enabled(group):
        raise ValidationError(f"Unknown tool: {name}")

    project_id = arguments.get("project_id")
    if project_id and project_id != settings.project_id:
        raise ValidationError(
            f"Unknown project '{project_id}'. This server manages project '{settings.project_id}'."
        )

    if settings.read_only and name in WRITE_TOOLS:
        raise ValidationError(f"Cannot run {name} in read-only mode.")

    return HANDLERS[name](platform, arguments)
