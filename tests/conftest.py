"""Shared fixtures: scripted SQL gateways and a fake requests session."""

import json
import re

import pytest

from supabase_mcp.config import Settings
from supabase_mcp.docs import DocsOperations
from supabase_mcp.errors import BackendRejectedError
from supabase_mcp.http import ServiceClient
from supabase_mcp.platform import Platform

BASE_URL = "http://localhost:8000"
SERVICE_KEY = "service-role-key"
ANON_KEY = "anon-key"


# ── SQL fakes ────────────────────────────────────────────────────────


class FakeGateway:
    """Records every statement and answers from regex rules, first match wins.

    A rule's result may be a list of rows, an exception instance (raised),
    or a callable taking the query.
    """

    def __init__(self):
        self.queries = []
        self.rules = []
        self.closed = False

    def on(self, pattern, result):
        self.rules.append((re.compile(pattern, re.S), result))
        return self

    def execute(self, query, read_only=False):
        self.queries.append((query, read_only))
        for pattern, result in self.rules:
            if pattern.search(query):
                if isinstance(result, Exception):
                    raise result
                if callable(result):
                    return result(query)
                return result
        return []

    @property
    def statements(self):
        return [q for q, _ in self.queries]

    def close(self):
        self.closed = True


_IDENT = r'"((?:[^"]|"")*)"'
_LIT = r"'((?:[^']|'')*)'"
_LEDGER = r'"schema_migrations"'


def _ident(raw):
    return raw.replace('""', '"')


def _lit(raw):
    return raw.replace("''", "'")


class InMemoryCatalog:
    """Just enough of Postgres to run the branching statements.

    ``schemas`` maps a schema to its set of base tables. A schema whose
    ``schema_migrations`` table exists has an entry in ``ledgers`` mapping
    version to name.
    """

    def __init__(self):
        self.schemas = {
            "public": set(),
            "pg_catalog": set(),
            "information_schema": set(),
            "pg_toast": set(),
            "pg_temp_1": set(),
            "pg_toast_temp_1": set(),
            "pg_temp_3": set(),
        }
        self.ledgers = {}
        self.failing_tables = set()
        self.queries = []

    def add_table(self, schema, table):
        self.schemas.setdefault(schema, set()).add(table)

    def add_ledger(self, schema, versions=()):
        self.add_table(schema, "schema_migrations")
        self.ledgers[schema] = {v: None for v in versions}

    def versions(self, schema):
        return sorted(self.ledgers[schema])

    def _ledger(self, schema):
        if schema not in self.ledgers:
            raise BackendRejectedError(
                f'SQL execution failed: relation "{schema}.schema_migrations" does not exist',
                status=400,
            )
        return self.ledgers[schema]

    def execute(self, query, read_only=False):
        q = " ".join(query.split())
        self.queries.append((q, read_only))

        m = re.fullmatch(rf"CREATE SCHEMA IF NOT EXISTS {_IDENT}", q)
        if m:
            self.schemas.setdefault(_ident(m.group(1)), set())
            return []

        m = re.fullmatch(rf"CREATE SCHEMA {_IDENT}", q)
        if m:
            name = _ident(m.group(1))
            if name in self.schemas:
                raise BackendRejectedError(f'schema "{name}" already exists', status=400)
            self.schemas[name] = set()
            return []

        m = re.fullmatch(rf"DROP SCHEMA IF EXISTS {_IDENT} CASCADE", q)
        if m:
            name = _ident(m.group(1))
            self.schemas.pop(name, None)
            self.ledgers.pop(name, None)
            return []

        if "FROM pg_namespace" in q:
            # Returns reserved schemas too, so client-side filtering is exercised
            return [{"schema_name": s} for s in sorted(self.schemas)]

        m = re.search(rf"FROM information_schema\.tables WHERE table_schema = {_LIT}", q)
        if m:
            return [{"table_name": t} for t in sorted(self.schemas.get(_lit(m.group(1)), ()))]

        m = re.fullmatch(
            rf"CREATE TABLE {_IDENT}\.{_IDENT} \(LIKE {_IDENT}\.{_IDENT} INCLUDING ALL\)", q
        )
        if m:
            schema, table = _ident(m.group(1)), _ident(m.group(2))
            if table in self.failing_tables:
                raise BackendRejectedError(f'permission denied for table "{table}"', status=400)
            if table in self.schemas[schema]:
                raise BackendRejectedError(f'relation "{table}" already exists', status=400)
            self.schemas[schema].add(table)
            if table == "schema_migrations":
                self.ledgers[schema] = {}
            return []

        m = re.fullmatch(
            rf"SELECT version, name FROM {_IDENT}\.{_LEDGER} WHERE version NOT IN "
            rf"\( ?SELECT version FROM {_IDENT}\.{_LEDGER} ?\) ORDER BY version",
            q,
        )
        if m:
            source = self._ledger(_ident(m.group(1)))
            target = self._ledger(_ident(m.group(2)))
            return [{"version": v, "name": source[v]} for v in sorted(source) if v not in target]

        m = re.fullmatch(rf"DELETE FROM {_IDENT}\.{_LEDGER} WHERE version > {_LIT}", q)
        if m:
            ledger = self._ledger(_ident(m.group(1)))
            cutoff = _lit(m.group(2))
            for v in [v for v in ledger if v > cutoff]:
                del ledger[v]
            return []

        m = re.fullmatch(
            rf"INSERT INTO {_IDENT}\.{_LEDGER} \(version\) VALUES \({_LIT}\) "
            rf"ON CONFLICT DO NOTHING RETURNING version",
            q,
        )
        if m:
            ledger = self._ledger(_ident(m.group(1)))
            version = _lit(m.group(2))
            if version in ledger:
                return []
            ledger[version] = None
            return [{"version": version}]

        raise AssertionError(f"unexpected SQL: {q}")

    def close(self):
        pass


# ── HTTP fakes ───────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None, headers=None):
        self.status_code = status_code
        self._json = json_data
        self.headers = dict(headers or {})
        if json_data is not None:
            self.headers.setdefault("content-type", "application/json")
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("response body is not JSON")
        return self._json


class FakeSession:
    """Stands in for requests.Session. Routes match on method and URL substring."""

    def __init__(self):
        self.calls = []
        self.routes = []
        self.closed = False

    def route(self, method, path, response):
        self.routes.append((method.upper(), path, response))
        return self

    def request(self, method, url, **kwargs):
        method = method.upper()
        self.calls.append({"method": method, "url": url, **kwargs})
        for route_method, path, response in self.routes:
            if route_method == method and path in url:
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(404, text="no route")

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def close(self):
        self.closed = True


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def settings():
    return Settings(supabase_url=BASE_URL, service_role_key=SERVICE_KEY, anon_key=ANON_KEY)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(settings, session):
    return ServiceClient(settings, session=session)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def catalog():
    return InMemoryCatalog()


@pytest.fixture
def make_platform(client, session):
    def _make(settings, gateway):
        return Platform(settings, client=client, gateway=gateway, docs=DocsOperations(session=session))
    return _make


@pytest.fixture
def platform(settings, gateway, make_platform):
    return make_platform(settings, gateway)
