"""
Collaborator interfaces consumed by the study workflow core.

The core never talks to storage, the imaging server, or the identity system
directly. It depends on the contracts below so each deployment can plug in its
own backend (S3-compatible storage, Orthanc, the auth service, ...).

Interfaces:
    BlobStore       put / get / delete report bodies and artifacts
    ImagingSource   study metadata by external study identifier (ingestion only)
    ActorDirectory  resolves actor / doctor tokens for audit entries

Default implementations:
    DjangoStorageBlobStore  Django file-storage API (``default_storage``)
    TimeBoundBlobStore      wraps any BlobStore with a per-call timeout
    OpaqueActorDirectory    accepts every token as-is
    UserActorDirectory      ``django.contrib.auth`` users looked up by username
"""

import logging
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Callable, TypeVar

from django.core.files.base import ContentFile
from django.core.files.storage import Storage, default_storage

from common.config import ServiceConfig
from common.exceptions import StorageError, StorageTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BlobRef:
    """Reference to a stored blob. Immutable once created."""

    key: str
    content_type: str
    size: int
    filename: str | None = None
    clinical: bool = True
    meta: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BlobRef":
        return cls(
            key=data["key"],
            content_type=data.get("content_type", "application/octet-stream"),
            size=int(data.get("size", 0)),
            filename=data.get("filename"),
            clinical=bool(data.get("clinical", True)),
            meta=dict(data.get("meta") or {}),
        )


@dataclass(frozen=True)
class StudyDescription:
    """Imaging-source view of a study, read once at ingestion time."""

    modalities: list[str]
    study_date: date | None = None
    study_time: str | None = None
    series_count: int = 0
    image_count: int = 0


class BlobStore(ABC):
    """Binary storage for report bodies and report artifacts."""

    @abstractmethod
    def put(self, data: bytes, content_type: str, meta: dict[str, Any] | None = None) -> BlobRef:
        """Store ``data`` and return a reference to it."""

    @abstractmethod
    def get(self, ref: BlobRef) -> bytes:
        """Return the bytes stored under ``ref``."""

    @abstractmethod
    def delete(self, ref: BlobRef) -> None:
        """Remove the blob. Deleting a missing blob is not an error."""


class ImagingSource(ABC):
    """Read-only access to the imaging server (PACS) by external study id."""

    @abstractmethod
    def describe_study(self, external_study_id: str) -> StudyDescription:
        """Return modalities, study date/time and series/image counts."""


class ActorDirectory(ABC):
    """Resolves opaque actor and doctor tokens."""

    @abstractmethod
    def exists(self, identity: str) -> bool:
        """Whether ``identity`` refers to a known actor."""

    def display_name(self, identity: str) -> str:
        return identity


class DjangoStorageBlobStore(BlobStore):
    """
    BlobStore backed by a Django ``Storage`` (``default_storage`` by default).

    Keys are generated as ``<prefix>/<uuid4 hex>``; the configured storage
    backend decides where the bytes actually live.
    """

    def __init__(self, storage: Storage | None = None, prefix: str = "study-blobs"):
        self.storage = storage or default_storage
        self.prefix = prefix.strip("/")

    def put(self, data: bytes, content_type: str, meta: dict[str, Any] | None = None) -> BlobRef:
        meta = dict(meta or {})
        filename = meta.pop("filename", None)
        clinical = bool(meta.pop("clinical", True))
        name = f"{self.prefix}/{uuid.uuid4().hex}"
        key = self.storage.save(name, ContentFile(data))
        logger.debug(f"Stored blob {key} ({len(data)} bytes, {content_type})")
        return BlobRef(
            key=key,
            content_type=content_type,
            size=len(data),
            filename=filename,
            clinical=clinical,
            meta=meta,
        )

    def get(self, ref: BlobRef) -> bytes:
        with self.storage.open(ref.key, "rb") as handle:
            return handle.read()

    def delete(self, ref: BlobRef) -> None:
        self.storage.delete(ref.key)


class TimeBoundBlobStore(BlobStore):
    """
    Bounds every call on an inner BlobStore with a timeout.

    Calls run on a shared thread pool; the caller waits at most ``timeout``
    seconds and then receives StorageTimeoutError. Any other failure of the
    inner store is wrapped in StorageError so driver exceptions never reach
    callers of the core.
    """

    _executor: ThreadPoolExecutor | None = None

    def __init__(self, inner: BlobStore, timeout: float | None = None):
        self.inner = inner
        self.timeout = timeout if timeout is not None else ServiceConfig.get("BLOB_STORE_TIMEOUT_SECONDS")

    @classmethod
    def executor(cls) -> ThreadPoolExecutor:
        if cls._executor is None:
            cls._executor = ThreadPoolExecutor(
                max_workers=ServiceConfig.get("BLOB_STORE_MAX_WORKERS"),
                thread_name_prefix="blobstore",
            )
        return cls._executor

    def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        future = self.executor().submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.error(f"Blob storage {operation} timed out after {self.timeout}s")
            if operation == "put":
                # The caller never sees this ref, so a late write is an orphan.
                future.add_done_callback(self._discard_late_put)
            raise StorageTimeoutError(operation, self.timeout) from None
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Blob storage {operation} failed: {e}")
            raise StorageError(operation, e) from e

    def _discard_late_put(self, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        ref = future.result()
        logger.warning(f"Blob {ref.key} was written after its put timed out; deleting it")
        try:
            self.inner.delete(ref)
        except Exception as e:
            logger.error(f"Could not delete late blob {ref.key}: {e}")

    def put(self, data: bytes, content_type: str, meta: dict[str, Any] | None = None) -> BlobRef:
        return self._call("put", self.inner.put, data, content_type, meta)

    def get(self, ref: BlobRef) -> bytes:
        return self._call("get", self.inner.get, ref)

    def delete(self, ref: BlobRef) -> None:
        self._call("delete", self.inner.delete, ref)


class OpaqueActorDirectory(ActorDirectory):
    """Treats every non-empty token as a valid identity."""

    def exists(self, identity: str) -> bool:
        return bool(identity)


class UserActorDirectory(ActorDirectory):
    """Resolves identities against ``django.contrib.auth`` users by username."""

    def __init__(self, require_active: bool = True):
        self.require_active = require_active

    def _users(self):
        from django.contrib.auth import get_user_model

        users = get_user_model().objects.all()
        if self.require_active:
            users = users.filter(is_active=True)
        return users

    def exists(self, identity: str) -> bool:
        if not identity:
            return False
        return self._users().filter(username=identity).exists()

    def display_name(self, identity: str) -> str:
        user = self._users().filter(username=identity).first()
        if user is None:
            return identity
        return user.get_full_name() or user.get_username()


def default_blob_store() -> BlobStore:
    """Time-bounded BlobStore over Django's configured default storage."""
    return TimeBoundBlobStore(DjangoStorageBlobStore())
