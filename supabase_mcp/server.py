"""Self-hosted Supabase MCP Server.

Exposes database, debugging, development, storage, auth, Edge Function,
branching, docs and operations tools for a single self-hosted Supabase
instance. SQL runs through pg-meta (``/pg/query``) unless a direct Postgres
URL is configured.

Transports:
  - stdio (default): for desktop MCP clients.
  - http: StreamableHTTP at /mcp plus GET /health, served by uvicorn.

Configuration comes from CLI flags, falling back to environment variables
(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_ANON_KEY, SUPABASE_DB_URL,
SUPABASE_PROJECT_ID, SUPABASE_READ_ONLY, SUPABASE_MCP_FEATURES,
MCP_TRANSPORT, HOST, PORT, SUPABASE_HTTP_TIMEOUT).
"""

import argparse
import asyncio
import contextlib
import logging
import sys

import uvicorn
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse
from starlette.routing import Mount, Route

from supabase_mcp import __version__
from supabase_mcp.config import FEATURE_GROUPS, ConfigError, load_settings
from supabase_mcp.errors import SupabaseMcpError
from supabase_mcp.platform import Platform
from supabase_mcp.tools import available_tools, call_tool

logger = logging.getLogger("supabase-mcp")

SERVER_NAME = "supabase-mcp-selfhosted"


# ── MCP Server ───────────────────────────────────────────────────────


def dispatch(platform, name, arguments):
    """Run a tool, logging failures before they reach the MCP layer."""
    try:
        return call_tool(platform, name, arguments)
    except SupabaseMcpError as e:
        logger.warning("Tool %s failed: %s", name, e)
        raise
    except Exception:
        logger.exception("Tool %s failed", name)
        raise


def create_mcp_server(platform):
    mcp_server = Server(SERVER_NAME, version=__version__)

    @mcp_server.list_tools()
    async def handle_list_tools():
        return available_tools(platform.settings)

    @mcp_server.call_tool()
    async def handle_call_tool(name: str, arguments: dict):
        return dispatch(platform, name, arguments)

    return mcp_server


# ── Starlette app ────────────────────────────────────────────────────


def create_app(platform):
    session_manager = StreamableHTTPSessionManager(
        app=create_mcp_server(platform),
        stateless=True,
    )

    async def health(request: Request):
        """Health check endpoint."""
        db_ok = False
        try:
            platform.gateway.execute("SELECT 1", read_only=True)
            db_ok = True
        except SupabaseMcpError as e:
            logger.debug("Health probe failed: %s", e)
        return JSONResponse({"status": "ok" if db_ok else "degraded", "database": db_ok})

    async def handle_mcp(scope, receive, send):
        await session_manager.handle_request(scope, receive, send)

    async def mcp_redirect(request: Request):
        """Redirect /mcp to /mcp/ to avoid Starlette's localhost redirect."""
        return RedirectResponse(url="/mcp/", status_code=307)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting %s %s (http)", SERVER_NAME, __version__)
        platform.check_connection()
        try:
            async with session_manager.run():
                yield
        finally:
            platform.close()

    app = Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            Route("/mcp", mcp_redirect, methods=["GET", "POST", "DELETE"]),
            Mount("/mcp", app=handle_mcp),
        ],
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )
    return app


# ── stdio ────────────────────────────────────────────────────────────


async def run_stdio(platform):
    mcp_server = create_mcp_server(platform)
    logger.info("Starting %s %s (stdio)", SERVER_NAME, __version__)
    platform.check_connection()
    try:
        async with stdio_server() as (read_stream, write_stream):
            await mcp_server.run(read_stream, write_stream, mcp_server.create_initialization_options())
    finally:
        platform.close()


# ── Entry point ──────────────────────────────────────────────────────


def build_parser():
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="MCP server for self-hosted Supabase",
    )
    parser.add_argument("--supabase-url", help="Self-hosted Supabase URL (e.g. http://localhost:8000)")
    parser.add_argument("--service-role-key", help="Service role key for authentication")
    parser.add_argument("--anon-key", help="Optional anon key for client-safe operations")
    parser.add_argument("--postgres-url", help="Optional direct Postgres URL; bypasses pg-meta")
    parser.add_argument("--project-id", help="Project ID reported to clients (default: 'default')")
    parser.add_argument("--read-only", action="store_true", help="Refuse write operations")
    parser.add_argument(
        "--features",
        help=f"Comma-separated feature groups to enable ({','.join(FEATURE_GROUPS)})",
    )
    parser.add_argument("--transport", choices=["stdio", "http"], help="Transport (default: stdio)")
    parser.add_argument("--host", help="Bind address for the http transport")
    parser.add_argument("--port", type=int, help="Port for the http transport")
    parser.add_argument("--version", action="store_true", help="Show version number")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    # stdout carries the stdio protocol; everything human-readable goes to stderr
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    if args.version:
        print(f"{__version__} (self-hosted)", file=sys.stderr)
        return 0

    try:
        settings = load_settings(args)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 1

    platform = Platform(settings)
    logger.info("Connecting to: %s", settings.base_url)
    logger.info(
        "Features: %s%s",
        ", ".join(g for g in FEATURE_GROUPS if settings.feature_enabled(g)),
        " (read-only)" if settings.read_only else "",
    )

    if settings.transport == "http":
        uvicorn.run(create_app(platform), host=settings.host, port=settings.port)
    else:
        asyncio.run(run_stdio(platform))
    return 0
