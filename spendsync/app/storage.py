"""
storage.py: receipt file storage.

Expense receipts are written to an object store under
`expenses/<project_id>/<epoch_millis>_<filename>`. Two backends:

  LocalReceiptStorage       files under RECEIPT_STORAGE_DIR, served by
                            routes/receipts.py at RECEIPT_BASE_URL
  CloudinaryReceiptStorage  Cloudinary uploads (production)

Storage calls are not part of the database transaction. A failed upload
raises AppError(STORAGE_FAILURE, 502). Deleting files is never done inside a
unit of work: services queue the paths on the session with
delete_after_commit(), and the route removes them with
run_pending_deletes() once the commit has succeeded. A rollback drops the
queue, so rows that survive always point at files that still exist. Those
post-commit deletes are best effort: failures are logged and the file is
left orphaned. Files uploaded during the request are registered with
delete_on_rollback(); the error handlers remove them through
discard_pending_deletes() when the transaction is rolled back.

The active backend is built once by the app factory and kept in
app.extensions["receipt_storage"]; routes pass it to the services.
"""

from __future__ import annotations

import abc
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from tenacity import retry, stop_after_attempt, wait_exponential
from werkzeug.utils import secure_filename

from spendsync.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredReceipt:
    url: str
    path: str


def storage_failure(message: str) -> AppError:
    return AppError(ErrorCode.STORAGE_FAILURE, message, 502)


def receipt_key(project_id: str, filename: str, now_ms: int | None = None) -> str:
    """Storage key for an uploaded receipt: expenses/<project>/<millis>_<name>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    safe_name = secure_filename(filename) or "receipt"
    return f"expenses/{project_id}/{now_ms}_{safe_name}"


_PENDING_DELETES = "spendsync.pending_receipt_deletes"
_UNCOMMITTED_UPLOADS = "spendsync.uncommitted_receipt_uploads"


def delete_quietly(paths: Iterable[str], storage: "ReceiptStorage") -> list[str]:
    """Deletes each path, logging failures instead of raising. Returns the failed paths."""
    failed: list[str] = []
    for path in paths:
        try:
            storage.delete(path)
        except AppError as exc:
            logger.warning("Could not remove receipt %s: %s", path, exc.message)
            failed.append(path)
    return failed


def delete_after_commit(session, paths: Iterable[str]) -> None:
    """Queues stored files for removal once the session's transaction commits."""
    session.info.setdefault(_PENDING_DELETES, []).extend(paths)


def delete_on_rollback(session, paths: Iterable[str]) -> None:
    """Marks files uploaded in this transaction; they are removed if it rolls back."""
    session.info.setdefault(_UNCOMMITTED_UPLOADS, []).extend(paths)


def run_pending_deletes(session, storage: "ReceiptStorage") -> list[str]:
    """Removes the files queued on `session`. Call only after a successful commit."""
    session.info.pop(_UNCOMMITTED_UPLOADS, None)
    return delete_quietly(session.info.pop(_PENDING_DELETES, []), storage)


def discard_pending_deletes(session, storage: "ReceiptStorage") -> list[str]:
    """
    Called after a rollback: forgets the queued deletes and removes the files
    uploaded by the rolled-back transaction. Returns the paths it could not remove.
    """
    session.info.pop(_PENDING_DELETES, None)
    return delete_quietly(session.info.pop(_UNCOMMITTED_UPLOADS, []), storage)


class ReceiptStorage(abc.ABC):

    @abc.abstractmethod
    def upload(self, key: str, stream: BinaryIO, content_type: str) -> StoredReceipt:
        """Stores `stream` under `key`. Raises AppError(STORAGE_FAILURE)."""

    @abc.abstractmethod
    def delete(self, path: str) -> None:
        """Removes a stored file. A file that is already gone is not an error."""


# ── Local filesystem ───────────────────────────────────────────────────────

class LocalReceiptStorage(ReceiptStorage):

    def __init__(self, root_dir: str, base_url: str = "/receipts") -> None:
        self.root_dir = Path(root_dir).resolve()
        self.base_url = base_url.rstrip("/")

    def resolve(self, path: str) -> Path:
        """Absolute location of `path`; rejects anything outside root_dir."""
        target = (self.root_dir / path).resolve()
        if target != self.root_dir and self.root_dir not in target.parents:
            raise storage_failure(f"Receipt path '{path}' is outside the storage root.")
        return target

    def upload(self, key: str, stream: BinaryIO, content_type: str) -> StoredReceipt:
        target = self.resolve(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as fh:
                while True:
                    chunk = stream.read(64 * 1024)
                    if not chunk:
                        break
                    fh.write(chunk)
        except OSError as exc:
            logger.error("Receipt upload to %s failed: %s", target, exc)
            raise storage_failure("The receipt could not be stored.") from exc

        logger.debug("Stored receipt %s (%s)", key, content_type)
        return StoredReceipt(url=f"{self.base_url}/{key}", path=key)

    def delete(self, path: str) -> None:
        target = self.resolve(path)
        try:
            os.remove(target)
        except FileNotFoundError:
            logger.info("Receipt %s already removed", path)
        except OSError as exc:
            logger.error("Receipt delete of %s failed: %s", target, exc)
            raise storage_failure("The receipt could not be deleted.") from exc


# ── Cloudinary ─────────────────────────────────────────────────────────────

class CloudinaryReceiptStorage(ReceiptStorage):
    """
    Uploads receipts as Cloudinary assets.

    Uploads use resource_type="auto", so a PDF lands as "raw" while a photo
    lands as "image", and destroy() only finds an asset under its own type.
    The stored path therefore carries both: "<resource_type>:<public_id>".
    A path without the prefix is treated as an image.
    """

    RESOURCE_TYPES = ("image", "raw", "video")

    def __init__(
            self,
            cloud_name: str,
            api_key: str,
            api_secret: str,
            folder: str = "spendsync",
    ) -> None:
        self.folder = folder.strip("/")
        self._credentials = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }
        self._configured = False

    def _configure(self) -> None:
        if not self._configured:
            cloudinary.config(secure=True, **self._credentials)
            self._configured = True

    def _public_id(self, key: str) -> str:
        stem, _ = os.path.splitext(key)
        return f"{self.folder}/{stem}" if self.folder else stem

    @classmethod
    def split_path(cls, path: str) -> tuple[str, str]:
        """Returns (resource_type, public_id) for a stored path."""
        resource_type, sep, public_id = path.partition(":")
        if sep and resource_type in cls.RESOURCE_TYPES:
            return resource_type, public_id
        return "image", path

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _upload(self, stream: BinaryIO, public_id: str) -> dict:
        stream.seek(0)
        return cloudinary.uploader.upload(
            stream,
            public_id=public_id,
            resource_type="auto",
            overwrite=False,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _destroy(self, public_id: str, resource_type: str) -> dict:
        return cloudinary.uploader.destroy(
            public_id,
            resource_type=resource_type,
            invalidate=True,
        )

    def upload(self, key: str, stream: BinaryIO, content_type: str) -> StoredReceipt:
        self._configure()
        try:
            result = self._upload(stream, self._public_id(key))
        except cloudinary.exceptions.Error as exc:
            logger.error("Cloudinary upload of %s failed: %s", key, exc)
            raise storage_failure(f"The receipt could not be uploaded: {exc}") from exc

        url = result.get("secure_url") or result.get("url")
        if not url:
            raise storage_failure("Cloudinary returned no URL for the receipt.")
        public_id = result.get("public_id", self._public_id(key))
        resource_type = result.get("resource_type") or "image"
        return StoredReceipt(url=url, path=f"{resource_type}:{public_id}")

    def delete(self, path: str) -> None:
        self._configure()
        resource_type, public_id = self.split_path(path)
        try:
            result = self._destroy(public_id, resource_type)
        except cloudinary.exceptions.Error as exc:
            logger.error("Cloudinary delete of %s failed: %s", path, exc)
            raise storage_failure(f"The receipt could not be deleted: {exc}") from exc

        if result.get("result") not in ("ok", "not found"):
            raise storage_failure(f"Cloudinary refused to delete receipt '{path}'.")


def build_receipt_storage(config) -> ReceiptStorage:
    """Builds the backend named by RECEIPT_STORAGE_BACKEND."""
    backend = config.get("RECEIPT_STORAGE_BACKEND", "local")
    if backend == "cloudinary":
        return CloudinaryReceiptStorage(
            cloud_name=config["CLOUDINARY_CLOUD_NAME"],
            api_key=config["CLOUDINARY_API_KEY"],
            api_secret=config["CLOUDINARY_API_SECRET"],
            folder=config.get("CLOUDINARY_FOLDER", "spendsync"),
        )
    if backend == "local":
        return LocalReceiptStorage(
            root_dir=config["RECEIPT_STORAGE_DIR"],
            base_url=config.get("RECEIPT_BASE_URL", "/receipts"),
        )
    raise ValueError(f"Unknown RECEIPT_STORAGE_BACKEND '{backend}'.")
