from __future__ import annotations

import mimetypes
import os
import uuid
from pathlib import Path

from rixdu.integrations.storage.base import StorageError, StorageProvider, StoredFile


def _safe_folder(folder: str) -> str:
    parts = [p for p in (folder or "misc").replace("\\", "/").split("/") if p and p not in (".", "..")]
    return "/".join(parts) or "misc"


class LocalStorageProvider(StorageProvider):
    name = "local"

    def __init__(self, root: str, public_base_url: str = "/uploads"):
        self.root = Path(root)
        self.public_base_url = (public_base_url or "/uploads").rstrip("/")

    def upload(self, data: bytes, *, folder: str, original_name: str = "", mime_type: str = "") -> StoredFile:
        if not data:
            raise StorageError("empty upload")
        ext = Path(original_name or "").suffix.lower()
        if not ext and mime_type:
            ext = mimetypes.guess_extension(mime_type) or ""
        public_id = f"{_safe_folder(folder)}/{uuid.uuid4().hex}{ext}"
        target = self.root / public_id
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"write failed: {exc}") from exc
        return StoredFile(
            url=f"{self.public_base_url}/{public_id}",
            public_id=public_id,
            original_name=original_name or "",
            mime_type=mime_type or "",
            size=len(data),
        )

    def delete(self, public_id: str) -> bool:
        target = self.root / _safe_folder(public_id)
        try:
            os.remove(target)
            return True
        except FileNotFoundError:
            return False
