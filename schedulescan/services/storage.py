"""Filesystem-backed object storage for uploaded schedule documents."""

from __future__ import annotations

import logging
import re
import secrets
import time
from pathlib import Path, PurePosixPath

from ..config import Settings
from ..utils.errors import StorageError, StorageObjectNotFound

LOGGER = logging.getLogger(__name__)

_OBJECT_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def secure_extension(filename: str, default: str = "pdf") -> str:
    """Return a filesystem-safe, lower-case extension for ``filename``."""

    suffix = Path(filename or "").suffix.lstrip(".").lower()
    cleaned = re.sub(r"[^a-z0-9]", "", suffix)
    return cleaned or default


class ObjectStorage:
    """Store opaque objects inside one bucket directory.

    Object paths are flat names relative to the bucket; anything that would
    escape the bucket directory is rejected.
    """

    def __init__(
        self,
        root: Path,
        bucket: str = "pdfs",
        *,
        public_base_url: str | None = None,
    ) -> None:
        self.root = Path(root)
        self.bucket = bucket
        self.public_base_url = (public_base_url or "").rstrip("/") or None
        self.bucket_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        base_url = settings.storage_public_base_url
        if not base_url:
            host = "127.0.0.1" if settings.host in {"0.0.0.0", "::"} else settings.host
            base_url = f"http://{host}:{settings.port}"
        return cls(
            settings.storage_dir,
            settings.storage_bucket,
            public_base_url=base_url,
        )

    @property
    def bucket_dir(self) -> Path:
        return self.root / self.bucket

    def resolve(self, path: str) -> Path:
        """Return the filesystem location of ``path`` inside the bucket."""

        name = PurePosixPath(path or "").name
        if name != path or not _OBJECT_NAME_RE.match(name):
            raise StorageError(f"Invalid storage path: {path!r}", path=path)
        return self.bucket_dir / name

    def put(self, data: bytes, *, filename: str) -> str:
        """Write ``data`` under a fresh object path and return that path."""

        object_path = (
            f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"
            f".{secure_extension(filename)}"
        )
        target = self.resolve(object_path)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        try:
            tmp_path.write_bytes(data)
            tmp_path.replace(target)
        except OSError as exc:
            if tmp_path.exists():
                tmp_path.unlink()
            raise StorageError(f"Failed to store {filename}: {exc}", path=object_path) from exc

        LOGGER.info("Stored %s as %s (%d bytes)", filename, object_path, len(data))
        return object_path

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def read(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise StorageObjectNotFound(
                f"Stored file not found: {path}", path=path
            ) from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}", path=path) from exc

    def delete(self, path: str) -> bool:
        """Remove ``path``; returns ``False`` when it was already gone."""

        target = self.resolve(path)
        if not target.exists():
            return False
        target.unlink()
        return True

    def public_url(self, path: str) -> str:
        """Return an address from which ``path`` can be fetched over HTTP."""

        self.resolve(path)
        base = self.public_base_url or ""
        return f"{base}/api/storage/{path}"


__all__ = ["ObjectStorage", "secure_extension"]
