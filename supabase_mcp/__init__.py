"""MCP server for self-hosted Supabase."""

__version__ = "0.4.0"
