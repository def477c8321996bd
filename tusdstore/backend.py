"""Access to the S3 objects that make up an upload."""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from typing import IO, Any, Protocol

from .errors import S3Error
from .layout import calc_optimal_part_size, prefixed_key, split_ids
from .parts import TEMP_FILE_PREFIX, clean_up_temp_file

_KIB = 1024
_MIB = 1024 * _KIB
_GIB = 1024 * _MIB
_TIB = 1024 * _GIB

# Error codes that mean "there is no incomplete part object".
_MISSING_PART_CODES = frozenset({"NoSuchKey", "NotFound", "AccessDenied"})


class S3Service(Protocol):
    """The part of the S3 API that the store relies on.

    Requests are passed as keyword arguments named like the S3 API fields
    (``Bucket``, ``Key``, ``UploadId`` ...) and responses come back as
    dictionaries keyed the same way. Failures are raised as ``S3Error``.
    """

    def put_object(self, **kwargs: Any) -> dict[str, Any]: ...

    def list_parts(self, **kwargs: Any) -> dict[str, Any]: ...

    def upload_part(self, **kwargs: Any) -> dict[str, Any]: ...

    def get_object(self, **kwargs: Any) -> dict[str, Any]: ...

    def create_multipart_upload(self, **kwargs: Any) -> dict[str, Any]: ...

    def abort_multipart_upload(self, **kwargs: Any) -> dict[str, Any]: ...

    def delete_object(self, **kwargs: Any) -> dict[str, Any]: ...

    def delete_objects(self, **kwargs: Any) -> dict[str, Any]: ...

    def complete_multipart_upload(self, **kwargs: Any) -> dict[str, Any]: ...

    def upload_part_copy(self, **kwargs: Any) -> dict[str, Any]: ...


@dataclass
class S3Backend:
    """Configuration of an S3 bucket used for uploads, with the object helpers."""

    bucket: str
    service: S3Service
    object_prefix: str = ""
    metadata_object_prefix: str = ""
    max_part_size: int = 5 * _GIB
    min_part_size: int = 5 * _MIB
    preferred_part_size: int = 50 * _MIB
    max_multipart_parts: int = 10000
    max_object_size: int = 5 * _TIB
    max_buffered_parts: int = 20
    temporary_directory: str = ""
    disable_content_hashes: bool = False

    def key_with_prefix(self, key: str) -> str:
        """Key of a content object."""
        return prefixed_key(self.object_prefix, key)

    def metadata_key_with_prefix(self, key: str) -> str:
        """Key of an .info or .part object."""
        return prefixed_key(self.metadata_object_prefix or self.object_prefix, key)

    def calc_optimal_part_size(self, size: int) -> int:
        """Part size for an upload of *size* bytes; ValueError if none fits."""
        return calc_optimal_part_size(
            size, self.preferred_part_size, self.max_multipart_parts, self.max_part_size
        )

    def list_all_parts(self, upload_id: str) -> list[dict[str, Any]]:
        """Every part of the multipart upload behind *upload_id*, following pagination."""
        object_id, multipart_id = split_ids(upload_id)
        parts: list[dict[str, Any]] = []
        marker = 0
        while True:
            result = self.service.list_parts(
                Bucket=self.bucket,
                Key=self.key_with_prefix(object_id),
                UploadId=multipart_id,
                PartNumberMarker=marker,
            )
            parts.extend(result.get("Parts") or [])
            if not result.get("IsTruncated"):
                return parts
            marker = result["NextPartNumberMarker"]

    def get_incomplete_part(self, upload_id: str) -> dict[str, Any] | None:
        """The stored incomplete part of object *upload_id*, or None if there is none."""
        try:
            return self.service.get_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
            )
        except S3Error as exc:
            if exc.code in _MISSING_PART_CODES:
                return None
            raise

    def download_incomplete_part(self, upload_id: str) -> tuple[IO[bytes] | None, int]:
        """Copy the incomplete part into a temporary file, rewound to its start.

        Returns the file and its size, or ``(None, 0)`` if there is no such part.
        """
        obj = self.get_incomplete_part(upload_id)
        if obj is None:
            return None, 0
        body = obj["Body"]
        try:
            file = tempfile.NamedTemporaryFile(
                mode="w+b",
                prefix=TEMP_FILE_PREFIX,
                dir=self.temporary_directory or None,
                delete=False,
            )
            try:
                shutil.copyfileobj(body, file)
                file.flush()
                size = file.tell()
                expected = obj.get("ContentLength")
                if expected is not None and size < expected:
                    raise OSError("short read of incomplete upload")
                file.seek(0)
            except BaseException:
                clean_up_temp_file(file)
                raise
        finally:
            close = getattr(body, "close", None)
            if close is not None:
                close()
        return file, size

    def put_incomplete_part(self, upload_id: str, file: IO[bytes]) -> None:
        """Store *file* as the incomplete part; the file is deleted afterwards."""
        try:
            self.service.put_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
                Body=file,
            )
        finally:
            clean_up_temp_file(file)

    def delete_incomplete_part(self, upload_id: str) -> None:
        """Remove the incomplete part object."""
        self.service.delete_object(
            Bucket=self.bucket,
            Key=self.metadata_key_with_prefix(upload_id + ".part"),
        )