from __future__ import annotations

import os
import uuid

from rixdu.integrations.storage.base import StorageError, StorageProvider, StoredFile


class MockStorageProvider(StorageProvider):
    name = "mock"

    def __init__(self):
        self.files: dict[str, bytes] = {}

    def _force_failure(self, original_name: str) -> bool:
        return "[fail]" in (original_name or "").lower() or (os.getenv("MOCK_STORAGE_FORCE_FAIL") or "").strip() == "1"

    def upload(self, data: bytes, *, folder: str, original_name: str = "", mime_type: str = "") -> StoredFile:
        if self._force_failure(original_name):
            raise StorageError("mock forced failure")
        public_id = f"{folder or 'misc'}/{uuid.uuid4().hex}"
        self.files[public_id] = bytes(data or b"")
        return StoredFile(
            url=f"https://assets.mock.local/{public_id}",
            public_id=public_id,
            original_name=original_name or "",
            mime_type=mime_type or "",
            size=len(data or b""),
        )

    def delete(self, public_id: str) -> bool:
        return self.files.pop(public_id, None) is not None
