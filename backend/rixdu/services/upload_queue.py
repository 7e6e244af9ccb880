from __future__ import annotations

import base64
import binascii
import json
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from flask import current_app

from rixdu.extensions import db
from rixdu.integrations.common import integration_settings
from rixdu.integrations.storage.base import StorageError
from rixdu.integrations.storage.factory import build_storage_provider
from rixdu.models import Category, Listing
from rixdu.models.listing import UPLOAD_STATUS_COMPLETED, UPLOAD_STATUS_FAILED, UPLOAD_STATUS_PENDING
from rixdu.services.listing_values import parse_fields


UPLOAD_BATCH_SIZE = 3
QUEUE_NAME = "imageUpload"


@dataclass(frozen=True)
class JobHandle:
    job_id: str

    def to_dict(self) -> dict:
        return {"job_id": self.job_id}


@dataclass(frozen=True)
class QueuedImage:
    data: bytes
    original_name: str = ""
    mime_type: str = "application/octet-stream"


def upload_delay_seconds() -> float:
    raw = current_app.config.get("IMAGE_UPLOAD_DELAY_SECONDS")
    if raw is None:
        raw = os.getenv("IMAGE_UPLOAD_DELAY_SECONDS") or "2"
    try:
        value = float(str(raw).strip())
    except Exception:
        value = 2.0
    return max(0.0, min(value, 300.0))


def encode_image(data: bytes, original_name: str = "", mime_type: str = "") -> dict:
    """Serialize raw bytes into the JSON-safe shape the worker consumes."""
    return {
        "base64": base64.b64encode(data or b"").decode("ascii"),
        "original_name": original_name or "",
        "mime_type": mime_type or "application/octet-stream",
    }


def decode_image(item: dict) -> QueuedImage:
    raw = item.get("base64") or item.get("buffer") or ""
    if isinstance(raw, str) and raw.startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise StorageError(f"image payload is not valid base64: {exc}")
    if not data:
        raise StorageError("image payload is empty")
    return QueuedImage(
        data=data,
        original_name=str(item.get("original_name") or item.get("originalname") or ""),
        mime_type=str(item.get("mime_type") or item.get("mimetype") or "application/octet-stream"),
    )


def normalize_field_mapping(mapping) -> dict[int, str]:
    out: dict[int, str] = {}
    if isinstance(mapping, str):
        try:
            mapping = json.loads(mapping)
        except (TypeError, ValueError):
            return out
    if isinstance(mapping, list):
        mapping = {idx: name for idx, name in enumerate(mapping)}
    if not isinstance(mapping, dict):
        return out
    for key, value in mapping.items():
        try:
            idx = int(key)
        except (TypeError, ValueError):
            continue
        name = str(value or "").strip()
        if name:
            out[idx] = name
    return out


def queue_image_upload(listing_id: int, images: list[dict], file_field_mapping, category_id: int | None) -> JobHandle:
    from rixdu.tasks.upload_tasks import process_listing_images

    job_id = uuid.uuid4().hex
    listing = db.session.get(Listing, int(listing_id))
    if listing is not None:
        listing.upload_status = UPLOAD_STATUS_PENDING
        listing.upload_job_id = job_id
        listing.upload_error = None
        db.session.commit()
    # pending must be committed before the worker can see the job.
    process_listing_images.apply_async(
        kwargs={
            "listing_id": int(listing_id),
            "images": list(images or []),
            "file_field_mapping": {str(k): v for k, v in normalize_field_mapping(file_field_mapping).items()},
            "category_id": int(category_id) if category_id is not None else None,
        },
        countdown=upload_delay_seconds(),
        queue=QUEUE_NAME,
        task_id=job_id,
    )
    return JobHandle(job_id=job_id)


def _progress_after(processed: int, total: int) -> int:
    if total <= 0:
        return 90
    return round(processed / total * 80) + 10


def _multiple_fields(category_id: int | None) -> set[str]:
    if category_id is None:
        return set()
    category = db.session.get(Category, int(category_id))
    if category is None:
        return set()
    return {f.name for f in parse_fields(category.field_list()) if f.multiple}


def group_by_field(descriptors: list[dict], mapping: dict[int, str], multiple_fields: set[str]) -> dict:
    grouped: dict[str, list[dict]] = {}
    for idx, desc in enumerate(descriptors):
        name = mapping.get(idx) or f"image_{idx}"
        grouped.setdefault(name, []).append(desc)
    patch = {}
    for name, items in grouped.items():
        if len(items) > 1 or name in multiple_fields:
            patch[name] = items
        else:
            patch[name] = items[0]
    return patch


def upload_images(images: list[dict], category_id: int | None, progress: Callable[[int], None] | None = None) -> list[dict]:
    """Upload encoded images in concurrent batches; returns descriptors in input order."""
    decoded = [decode_image(item) for item in images or []]
    provider = build_storage_provider(integration_settings())
    folder = f"listings/{int(category_id) if category_id is not None else 'misc'}"

    def _upload(image: QueuedImage) -> dict:
        stored = provider.upload(image.data, folder=folder, original_name=image.original_name, mime_type=image.mime_type)
        return stored.to_descriptor()

    descriptors: list[dict] = []
    total = len(decoded)
    with ThreadPoolExecutor(max_workers=UPLOAD_BATCH_SIZE) as pool:
        for start in range(0, total, UPLOAD_BATCH_SIZE):
            batch = decoded[start:start + UPLOAD_BATCH_SIZE]
            descriptors.extend(pool.map(_upload, batch))
            if progress is not None:
                progress(_progress_after(len(descriptors), total))
    return descriptors


def upload_inline(images: list[dict], file_field_mapping, category_id: int | None) -> dict:
    """Upload within the request and return the ``values`` patch."""
    descriptors = upload_images(images, category_id)
    return group_by_field(descriptors, normalize_field_mapping(file_field_mapping), _multiple_fields(category_id))


def file_public_ids(values: dict | None) -> list[str]:
    found: list[str] = []
    for raw in (values or {}).values():
        items = raw if isinstance(raw, list) else [raw]
        for item in items:
            if isinstance(item, dict) and item.get("public_id"):
                found.append(str(item["public_id"]))
    return found


def discard_files(public_ids: list[str], context: str = "") -> None:
    """Delete stored files; failures are logged and skipped."""
    if not public_ids:
        return
    try:
        provider = build_storage_provider(integration_settings())
    except Exception:
        current_app.logger.warning("asset_cleanup_skipped %s", context)
        return
    for public_id in public_ids:
        try:
            provider.delete(public_id)
        except Exception:
            current_app.logger.exception("asset_delete_failed %s public_id=%s", context, public_id)


def process_upload_job(
    listing_id: int,
    images: list[dict],
    file_field_mapping=None,
    category_id: int | None = None,
    progress: Callable[[int], None] | None = None,
) -> dict:
    """Upload queued images and merge their descriptors into the listing.

    Any failure aborts the whole job; nothing is written to the listing
    unless every image uploaded.
    """
    report = progress or (lambda _value: None)
    report(10)
    descriptors = upload_images(images, category_id, progress=report)
    report(95)
    patch = group_by_field(descriptors, normalize_field_mapping(file_field_mapping), _multiple_fields(category_id))
    listing = Listing.query.filter_by(id=int(listing_id)).with_for_update().first()
    if listing is None:
        db.session.rollback()
        raise LookupError(f"listing {listing_id} no longer exists")
    values = dict(listing.values or {})
    values.update(patch)
    listing.values = values
    listing.upload_status = UPLOAD_STATUS_COMPLETED
    listing.upload_error = None
    listing.updated_at = datetime.utcnow()
    db.session.commit()
    report(100)
    return {"listing_id": int(listing_id), "uploaded": len(descriptors), "fields": sorted(patch.keys())}


def mark_upload_failed(listing_id: int, error: str) -> None:
    listing = Listing.query.filter_by(id=int(listing_id)).with_for_update().first()
    if listing is None:
        db.session.rollback()
        return
    listing.upload_status = UPLOAD_STATUS_FAILED
    listing.upload_error = str(error or "")[:1000]
    db.session.commit()


def job_state(job_id: str) -> dict:
    from rixdu.tasks.upload_tasks import process_listing_images

    result = process_listing_images.AsyncResult(str(job_id))
    state = str(result.state or "PENDING")
    info = result.info if isinstance(result.info, dict) else {}
    progress = int(info.get("progress") or 0)
    if state == "SUCCESS":
        progress = 100
    payload = {"job_id": str(job_id), "state": state, "progress": progress}
    if state == "FAILURE":
        payload["error"] = str(result.info or "")
    return payload
