"""Storage buckets and objects (storage-api behind /storage/v1)."""

import base64
import binascii
import logging
from urllib.parse import quote

from supabase_mcp.errors import SupabaseMcpError, ValidationError
from supabase_mcp.http import expect_ok
from supabase_mcp.sql import quote_literal, text_array

logger = logging.getLogger("supabase-mcp.storage")

DEFAULT_FILE_SIZE_LIMIT = 52428800  # 50 MiB
DOWNLOAD_URL_TTL = 3600


def _object_path(bucket, path):
    if not bucket:
        raise ValidationError("bucket is required.")
    return f"{quote(bucket, safe='')}/{quote(path.lstrip('/'), safe='/')}"


class StorageOperations:
    def __init__(self, client, gateway=None):
        self.client = client
        self.gateway = gateway

    # ── Config ──

    def get_storage_config(self):
        # Self-hosted storage is configured through environment variables
        return {
            "fileSizeLimit": DEFAULT_FILE_SIZE_LIMIT,
            "features": {
                "imageTransformation": {"enabled": True},
                "s3Protocol": {"enabled": False},
            },
        }

    def update_storage_config(self, config):
        logger.warning(
            "Storage configuration in self-hosted mode is managed via environment variables. "
            "Update FILE_SIZE_LIMIT and other settings in your .env file."
        )
        return {
            "success": True,
            "applied": False,
            "message": (
                "Self-hosted storage settings are read from environment variables. "
                "Set FILE_SIZE_LIMIT (and related settings) in .env and restart the storage service."
            ),
            "requested": config,
        }

    # ── Buckets ──

    def create_bucket(self, name, public=False, file_size_limit=None, allowed_mime_types=None):
        """Insert the bucket row directly; the Storage API is unreliable on some self-hosted setups."""
        if self.gateway is None:
            raise ValidationError("Database operations not available. Cannot create bucket via SQL.")
        if not name or not name.strip():
            raise ValidationError("Bucket name is required.")

        mime_types = text_array(allowed_mime_types) if allowed_mime_types else "NULL"
        size_limit = int(file_size_limit) if file_size_limit is not None else "NULL"
        name_lit = quote_literal(name)
        query = f"""
            INSERT INTO storage.buckets (id, name, public, file_size_limit, allowed_mime_types, created_at, updated_at)
            VALUES ({name_lit}, {name_lit}, {quote_literal(bool(public))}, {size_limit}, {mime_types}, NOW(), NOW())
            ON CONFLICT (id) DO NOTHING
            RETURNING id, name, public, file_size_limit, allowed_mime_types, created_at
        """
        rows = self.gateway.execute(query)
        if rows:
            return {"success": True, "bucket": rows[0], "message": f"Bucket '{name}' created successfully."}

        existing = self.gateway.execute(
            f"SELECT id, name, public FROM storage.buckets WHERE id = {name_lit}", read_only=True
        )
        if existing:
            return {"success": True, "bucket": existing[0], "message": f"Bucket '{name}' already exists."}
        return {"success": True, "message": f"Bucket '{name}' created (or already existed)."}

    def list_buckets(self):
        if self.gateway is not None:
            try:
                return self.gateway.execute(
                    "SELECT id, name, public, file_size_limit, allowed_mime_types, created_at, updated_at "
                    "FROM storage.buckets ORDER BY created_at",
                    read_only=True,
                )
            except SupabaseMcpError as e:
                logger.debug("Bucket listing via SQL failed, falling back to API: %s", e)
        response = self.client.request("GET", "/storage/v1/bucket")
        return expect_ok(response, "list storage buckets").json()

    # ── Objects ──

    def list_files(self, bucket, path=None):
        response = self.client.request(
            "POST",
            f"/storage/v1/object/list/{quote(bucket, safe='')}",
            json={"prefix": path or ""},
        )
        return expect_ok(response, "list files").json()

    def upload_file(self, bucket, path, content, content_type=None):
        try:
            payload = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"content must be base64 encoded: {e}") from e
        response = self.client.request(
            "POST",
            f"/storage/v1/object/{_object_path(bucket, path)}",
            data=payload,
            headers={"Content-Type": content_type or "application/octet-stream"},
        )
        expect_ok(response, "upload file")
        return {"path": f"{bucket}/{path}"}

    def create_signed_url(self, bucket, path, expires_in):
        if int(expires_in) <= 0:
            raise ValidationError("expires_in must be a positive number of seconds.")
        response = self.client.request(
            "POST",
            f"/storage/v1/object/sign/{_object_path(bucket, path)}",
            json={"expiresIn": int(expires_in)},
        )
        data = expect_ok(response, "create signed URL").json()
        return {"signedUrl": self.client.url(f"/storage/v1{data['signedURL']}")}

    def download_file(self, bucket, path):
        return self.create_signed_url(bucket, path, DOWNLOAD_URL_TTL)

    def delete_files(self, bucket, paths):
        if not paths:
            raise ValidationError("paths must contain at least one file path.")
        response = self.client.request(
            "DELETE",
            f"/storage/v1/object/{quote(bucket, safe='')}",
            json={"prefixes": list(paths)},
        )
        expect_ok(response, "delete files")
