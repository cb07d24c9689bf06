"""
Object storage for order images: local directory or Supabase Storage.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

from supabase import Client, create_client
from werkzeug.utils import secure_filename

from protelab.config import (
    STORAGE_BACKEND, STORAGE_BUCKET, STORAGE_DIR, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL,
)
from protelab.database import dump_json, insert_row, new_id, order_images, utcnow_iso
from protelab.errors import PermissionDenied, ValidationError
from protelab.models import AccessContext
from protelab.permissions import is_super_admin
from protelab.rbac import build_policy
from protelab.scoped_queries import ensure_order_visible

logger = logging.getLogger(__name__)


class LocalObjectStorage:
    """Files under a base directory; the reference is the key itself."""

    def __init__(self, base_dir: str = STORAGE_DIR):
        self.base_dir = Path(base_dir)

    def upload(self, key: str, content: bytes, content_type: Optional[str] = None) -> str:
        target = self.base_dir / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return key

    def read(self, key: str) -> bytes:
        return (self.base_dir / key).read_bytes()

    def delete(self, key: str) -> bool:
        target = self.base_dir / key
        if not target.exists():
            return False
        target.unlink()
        return True


class SupabaseObjectStorage:
    """Single-bucket wrapper over Supabase Storage."""

    def __init__(self, url: str = SUPABASE_URL, key: str = SUPABASE_SERVICE_ROLE_KEY,
                 bucket: str = STORAGE_BUCKET, client: Optional[Client] = None):
        if client is None:
            if not url or not key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set.")
            client = create_client(url, key)
        self.client = client
        self.url = url
        self.bucket = bucket

    def upload(self, key: str, content: bytes, content_type: Optional[str] = None) -> str:
        options: Dict[str, Any] = {"upsert": "true"}
        if content_type:
            options["content-type"] = content_type
        self.client.storage.from_(self.bucket).upload(key, content, options)
        return key

    def delete(self, key: str) -> bool:
        response = self.client.storage.from_(self.bucket).remove([key])
        if hasattr(response, "data"):
            return bool(response.data)
        return True

    def public_url(self, key: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(key, safe='/')}"


def get_storage(backend: str = STORAGE_BACKEND):
    backend = (backend or "local").lower()
    if backend == "supabase":
        return SupabaseObjectStorage()
    if backend == "local":
        return LocalObjectStorage()
    raise ValueError(f"Unknown STORAGE_BACKEND '{backend}'")


def object_key(order_id: str, filename: str) -> str:
    safe = secure_filename(filename or "") or "upload.bin"
    return f"orders/{order_id}/{new_id()}-{safe}"


def upload_order_image(engine, ctx: AccessContext, order_id: str, filename: str, content: bytes,
                       storage, annotations: Optional[Any] = None,
                       content_type: Optional[str] = None) -> Dict[str, Any]:
    """Store an image for an order and record its reference."""
    if not content:
        raise ValidationError("Uploaded file is empty.", "file")
    policy = build_policy(ctx)
    with engine.connect() as conn:
        order = ensure_order_visible(conn, policy, order_id)
    if order["user_id"] != ctx.user_id and not is_super_admin(ctx.role):
        raise PermissionDenied("Only the ordering dentist or admin_master may attach images.")

    key = object_key(order_id, filename)
    reference = storage.upload(key, content, content_type)
    row = {
        "id": new_id(),
        "order_id": order_id,
        "image_url": reference,
        "annotations": dump_json(annotations),
        "created_at": utcnow_iso(),
    }
    with engine.begin() as conn:
        insert_row(conn, order_images, row)
    logger.info("Image %s stored for order %s (%d bytes)", key, order_id, len(content))
    return row
