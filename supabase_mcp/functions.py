"""Edge Functions served by the edge-runtime container behind /functions/v1."""

import logging
from urllib.parse import quote

from supabase_mcp.errors import SupabaseMcpError, ValidationError
from supabase_mcp.http import expect_ok, is_json

logger = logging.getLogger("supabase-mcp.functions")

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def _function_path(function_name):
    if not function_name:
        raise ValidationError("function_name is required.")
    return f"/functions/v1/{quote(function_name, safe='')}"


class EdgeFunctionOperations:
    def __init__(self, client):
        self.client = client

    def list_functions(self):
        # The self-hosted runtime has no listing endpoint on most setups
        try:
            response = self.client.request("GET", "/functions/v1/")
        except SupabaseMcpError as e:
            logger.debug("Edge function listing unavailable: %s", e)
            return []
        if not response.ok or not is_json(response):
            return []
        return response.json()

    def get_function(self, function_name):
        response = self.client.request("GET", _function_path(function_name))
        return expect_ok(response, "get Edge Function").json()

    def invoke_function(self, function_name, body=None, headers=None, method="POST"):
        method = (method or "POST").upper()
        if method not in HTTP_METHODS:
            raise ValidationError(f"method must be one of: {', '.join(HTTP_METHODS)}")
        response = self.client.request(
            method,
            _function_path(function_name),
            json=body,
            headers=headers,
        )
        return {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": response.json() if is_json(response) else response.text,
        }

    def deploy_function(self, name, code, entrypoint="index.ts", import_map=None, verify_jwt=True):
        """Try the deploy endpoint; without one, return manual deployment steps."""
        if not name or not code:
            raise ValidationError("name and code are required.")
        files = [{"name": entrypoint, "content": code}]
        if import_map:
            files.append({"name": "import_map.json", "content": import_map})
        payload = {
            "name": name,
            "slug": name,
            "entrypoint_path": entrypoint,
            "verify_jwt": verify_jwt,
            "files": files,
        }
        if import_map:
            payload["import_map_path"] = "import_map.json"

        try:
            response = self.client.request("POST", "/functions/v1/deploy", json=payload)
            if response.ok:
                return {
                    "name": name,
                    "status": "deployed",
                    "message": f"Edge Function '{name}' deployed successfully.",
                    "deployment_path": f"/functions/v1/{name}",
                }
        except SupabaseMcpError as e:
            logger.debug("Deploy endpoint unavailable: %s", e)

        return {
            "name": name,
            "status": "manual_required",
            "message": (
                "To deploy in self-hosted:\n"
                f"1. Create: ./volumes/functions/{name}/{entrypoint}\n"
                "2. Save the code below\n"
                "3. Run: docker compose restart functions\n\n"
                f"```typescript\n{code}\n```\n\n"
                f"Available at: {self.client.url(f'/functions/v1/{name}')}"
            ),
            "deployment_path": f"/volumes/functions/{name}",
        }
