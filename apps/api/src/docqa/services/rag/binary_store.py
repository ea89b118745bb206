from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol
import uuid


class BinaryStoreError(RuntimeError):
    pass


class BinaryStore(Protocol):
    def fetch(self, location_ref: str) -> bytes: ...


class LocalBinaryStore:
    """Filesystem-backed document storage rooted at ``root_dir``.

    Location refs are relative POSIX paths such as ``uploads/<uuid>/report.pdf``.
    """

    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir

    def _resolve(self, location_ref: str) -> Path:
        relative = PurePosixPath(location_ref)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise BinaryStoreError(f"Invalid storage location: {location_ref!r}")
        return self._root_dir.joinpath(*relative.parts)

    def fetch(self, location_ref: str) -> bytes:
        path = self._resolve(location_ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise BinaryStoreError(f"Stored document not found: {location_ref}") from exc
        except OSError as exc:
            raise BinaryStoreError(f"Could not read stored document {location_ref}: {exc}") from exc

    def save(self, filename: str, content: bytes) -> str:
        safe_name = PurePosixPath(filename.replace("\\", "/")).name or "file"
        location_ref = f"uploads/{uuid.uuid4().hex}/{safe_name}"
        path = self._resolve(location_ref)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            raise BinaryStoreError(f"Could not store document {filename}: {exc}") from exc
        return location_ref
