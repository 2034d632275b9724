"""Documentation search with an embedded fallback."""

import logging

import requests

logger = logging.getLogger("supabase-mcp.docs")

DOCS_SEARCH_URL = "https://supabase.com/docs/api/search"
MAX_RESULTS = 10

# (keywords, title, url, content, section)
_EMBEDDED = [
    (
        ("auth", "login", "signup"),
        "Authentication",
        "https://supabase.com/docs/guides/auth",
        "Supabase Auth provides user authentication with email/password, magic links, "
        "OAuth providers (Google, GitHub, etc.), and phone auth.",
        "Auth",
    ),
    (
        ("storage", "file", "upload"),
        "Storage",
        "https://supabase.com/docs/guides/storage",
        "Supabase Storage allows you to store and serve files. Create buckets, upload files, "
        "and generate signed URLs for secure access.",
        "Storage",
    ),
    (
        ("database", "sql", "postgres"),
        "Database",
        "https://supabase.com/docs/guides/database",
        "Supabase uses PostgreSQL with extensions like pgvector for AI embeddings. "
        "Use Row Level Security (RLS) for data protection.",
        "Database",
    ),
    (
        ("edge", "function", "serverless"),
        "Edge Functions",
        "https://supabase.com/docs/guides/functions",
        "Edge Functions are server-side TypeScript functions that run on Deno. "
        "Use them for custom APIs, webhooks, and background tasks.",
        "Functions",
    ),
    (
        ("realtime", "subscription", "websocket"),
        "Realtime",
        "https://supabase.com/docs/guides/realtime",
        "Supabase Realtime enables live database changes via WebSocket. "
        "Subscribe to INSERT, UPDATE, DELETE events on tables.",
        "Realtime",
    ),
    (
        ("rls", "security", "policy"),
        "Row Level Security",
        "https://supabase.com/docs/guides/auth/row-level-security",
        "RLS policies control which rows users can access. Enable RLS on tables and create "
        "policies using auth.uid() for user-based access.",
        "Security",
    ),
]


def embedded_docs(query):
    q = query.lower()
    results = [
        {"title": title, "url": url, "content": content, "section": section}
        for keywords, title, url, content, section in _EMBEDDED
        if any(k in q for k in keywords)
    ]
    if not results:
        results.append({
            "title": "Supabase Documentation",
            "url": "https://supabase.com/docs",
            "content": f'Search for "{query}" in the Supabase documentation for detailed guides and API references.',
            "section": "General",
        })
    return results


class DocsOperations:
    def __init__(self, session=None, timeout=None):
        self.session = session or requests.Session()
        self.timeout = timeout

    def search_docs(self, query):
        try:
            response = self.session.get(
                DOCS_SEARCH_URL,
                params={"q": query},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            if response.ok:
                data = response.json()
                return [
                    {
                        "title": r.get("title"),
                        "url": r.get("url"),
                        "content": r.get("content"),
                        "section": r.get("section"),
                    }
                    for r in (data.get("results") or [])[:MAX_RESULTS]
                ]
        except (requests.RequestException, ValueError) as e:
            logger.debug("Docs search API failed, using embedded docs: %s", e)
        return embedded_docs(query)
