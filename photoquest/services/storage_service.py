"""
photoquest.services.storage_service — Write-Once Artifact Store
================================================================

Submitted photos are stored by path under a configurable root directory
(a Docker volume in deployment) and served by a static-file route.
Artifacts are write-once: uploading to an existing path fails.

Blocking file I/O runs in a worker thread; OS errors surface as
:class:`~photoquest.errors.StorageFailureError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from photoquest.errors import StorageFailureError
from photoquest.services.retry import with_retry

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 20 * 1024 * 1024  # 20 MB
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}
ALLOWED_MIME_TYPES = {"image/png", "image/jpeg", "image/webp"}

SUBMISSION_PREFIX = "quest-submissions"


@dataclass(frozen=True, slots=True)
class StoredArtifact:
    path: str
    url: str
    size_bytes: int


def validate_photo(filename: str, content: bytes, content_type: str | None = None) -> str:
    """Check size, extension and MIME type; return the normalised extension.

    Raises
    ------
    ValueError
        If validation fails (wrong type, too large, empty).
    """
    if not content:
        raise ValueError("Photo is empty")
    if len(content) > MAX_FILE_SIZE:
        raise ValueError(
            f"File too large: {len(content)} bytes (max {MAX_FILE_SIZE // 1024 // 1024}MB)"
        )

    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValueError(
            f"File type not allowed: {ext!r}. "
            f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )

    if content_type and content_type not in ALLOWED_MIME_TYPES:
        raise ValueError(
            f"MIME type not allowed: {content_type!r}. "
            f"Allowed: {', '.join(sorted(ALLOWED_MIME_TYPES))}"
        )
    return ".jpg" if ext == ".jpeg" else ext


def submission_path(user_id: str, quest_id: str, epoch_ms: int, ext: str) -> str:
    return f"{SUBMISSION_PREFIX}/{user_id}/{quest_id}_{epoch_ms}{ext}"


class LocalObjectStore:
    """Object store backed by a local directory.

    Usage::

        store = LocalObjectStore("data/artifacts", base_url="/api/artifacts")
        artifact = await store.upload("quest-submissions/u1/q1_1700000000000.jpg", data)
        await store.delete(artifact.path)
    """

    def __init__(self, root: str | Path, base_url: str = "/api/artifacts", timeout: float = 10.0) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise ValueError(f"Invalid artifact path: {path!r}")
        return self.root.joinpath(*rel.parts)

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    # -------------------------------------------------------------------
    # Sync I/O (runs in a worker thread)
    # -------------------------------------------------------------------
    def _write_once(self, dest: Path, content: bytes) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        # "xb" fails if the file exists
        with open(dest, "xb") as fh:
            fh.write(content)

    def _unlink(self, dest: Path) -> bool:
        try:
            dest.unlink()
        except FileNotFoundError:
            return False
        return True

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def upload(self, path: str, content: bytes) -> StoredArtifact:
        dest = self._resolve(path)
        try:
            await with_retry(
                lambda: asyncio.to_thread(self._write_once, dest, content),
                timeout=self.timeout,
                transient=(TimeoutError,),
                label=f"upload {path}",
            )
        except FileExistsError as exc:
            raise StorageFailureError(f"Artifact already exists: {path}", path=path) from exc
        except (OSError, TimeoutError) as exc:
            logger.error("Upload of %s failed: %s", path, exc)
            # A timed-out write may still land; remove any partial file.
            await self._cleanup_partial(dest)
            raise StorageFailureError(f"Could not store artifact: {path}", path=path) from exc

        logger.info("Stored artifact %s (%d bytes)", path, len(content))
        return StoredArtifact(path=path, url=self.url_for(path), size_bytes=len(content))

    async def delete(self, path: str) -> bool:
        """Remove an artifact.  Returns False if it was already gone."""
        dest = self._resolve(path)
        try:
            removed = await with_retry(
                lambda: asyncio.to_thread(self._unlink, dest),
                timeout=self.timeout,
                transient=(TimeoutError, PermissionError),
                label=f"delete {path}",
            )
        except (OSError, TimeoutError) as exc:
            logger.error("Delete of %s failed: %s", path, exc)
            raise StorageFailureError(f"Could not delete artifact: {path}", path=path) from exc
        if removed:
            logger.info("Deleted artifact %s", path)
        return removed

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).is_file)

    async def _cleanup_partial(self, dest: Path) -> None:
        try:
            await asyncio.to_thread(self._unlink, dest)
        except OSError as exc:
            logger.warning("Could not remove partial artifact %s: %s", dest, exc)
