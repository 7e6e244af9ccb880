from __future__ import annotations

from dataclasses import dataclass


@dataclass
class StoredFile:
    url: str
    public_id: str
    original_name: str = ""
    mime_type: str = ""
    size: int = 0

    def to_descriptor(self) -> dict:
        return {
            "url": self.url,
            "public_id": self.public_id,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
        }


class StorageError(RuntimeError):
    pass


class StorageProvider:
    name = "unknown"

    def upload(self, data: bytes, *, folder: str, original_name: str = "", mime_type: str = "") -> StoredFile:
        raise NotImplementedError

    def delete(self, public_id: str) -> bool:
        raise NotImplementedError
