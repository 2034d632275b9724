"""GoTrue admin endpoints under /auth/v1/admin."""

from urllib.parse import quote

from supabase_mcp.errors import ValidationError
from supabase_mcp.http import expect_ok

LINK_TYPES = ("signup", "invite", "magiclink", "recovery", "email_change_current", "email_change_new")


def _user_path(user_id):
    if not user_id:
        raise ValidationError("user_id is required.")
    return f"/auth/v1/admin/users/{quote(str(user_id), safe='')}"


class AuthOperations:
    def __init__(self, client):
        self.client = client

    def list_users(self, page=None, per_page=None):
        params = {}
        if page:
            params["page"] = int(page)
        if per_page:
            params["per_page"] = int(per_page)
        response = self.client.request("GET", "/auth/v1/admin/users", params=params or None)
        data = expect_ok(response, "list users").json()
        return data.get("users") or []

    def get_user(self, user_id):
        response = self.client.request("GET", _user_path(user_id))
        return expect_ok(response, "get user").json()

    def create_user(self, **options):
        payload = {k: v for k, v in options.items() if v is not None}
        if not payload.get("email") and not payload.get("phone"):
            raise ValidationError("Either email or phone is required to create a user.")
        response = self.client.request("POST", "/auth/v1/admin/users", json=payload)
        return expect_ok(response, "create user").json()

    def delete_user(self, user_id):
        response = self.client.request("DELETE", _user_path(user_id))
        expect_ok(response, "delete user")

    def generate_link(self, **options):
        payload = {k: v for k, v in options.items() if v is not None}
        if payload.get("type") not in LINK_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(LINK_TYPES)}")
        if not payload.get("email"):
            raise ValidationError("email is required.")
        response = self.client.request("POST", "/auth/v1/admin/generate_link", json=payload)
        return expect_ok(response, "generate link").json()
