"""Authenticated HTTP access to the self-hosted services behind Kong."""

import logging

import requests

from supabase_mcp.errors import BackendRejectedError, BackendUnavailableError

logger = logging.getLogger("supabase-mcp.http")


class ServiceClient:
    """Thin wrapper over a requests.Session that adds the service-role headers.

    Every request goes to ``{base_url}{path}``. Transport failures become
    BackendUnavailableError; status handling is left to the caller via
    ``expect_ok`` because some callers degrade instead of failing.
    """

    def __init__(self, settings, session=None):
        self.base_url = settings.base_url
        self.timeout = settings.http_timeout
        self._key = settings.service_role_key
        self.session = session or requests.Session()

    @property
    def auth_headers(self):
        return {
            "Authorization": f"Bearer {self._key}",
            "apikey": self._key,
            "Content-Type": "application/json",
        }

    def url(self, path):
        return f"{self.base_url}{path}"

    def request(self, method, path, *, json=None, data=None, params=None, headers=None):
        merged = dict(self.auth_headers)
        if headers:
            merged.update(headers)
        try:
            return self.session.request(
                method,
                self.url(path),
                json=json,
                data=data,
                params=params,
                headers=merged,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise BackendUnavailableError(f"Could not reach {self.url(path)}: {e}") from e

    def probe(self, path):
        """GET with only the apikey header, as the health endpoints expect."""
        try:
            return self.session.get(
                self.url(path), headers={"apikey": self._key}, timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise BackendUnavailableError(f"Could not reach {self.url(path)}: {e}") from e


def expect_ok(response, action):
    """Raise BackendRejectedError carrying the raw body unless the status is 2xx."""
    if response.ok:
        return response
    body = response.text
    raise BackendRejectedError(f"Failed to {action}: {body}", status=response.status_code, body=body)


def is_json(response):
    return "application/json" in (response.headers.get("content-type") or "")
