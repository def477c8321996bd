"""The upload store: creates uploads and hands out existing ones."""

from __future__ import annotations

import copy
import secrets
from typing import Any

from .backend import S3Backend
from .info import FileInfo
from .layout import sanitize_metadata_value
from .upload import S3Upload

_STORAGE_TYPE = "s3store"


def _new_object_id() -> str:
    return secrets.token_hex(16)


class S3Store(S3Backend):
    """Stores uploads in an S3 bucket as multipart uploads plus .info objects."""

    def new_upload(self, info: FileInfo) -> S3Upload:
        """Start a multipart upload for *info* and store its info object."""
        if info.size > self.max_object_size:
            raise ValueError(
                f"s3store: upload size of {info.size} bytes exceeds "
                f"MaxObjectSize of {self.max_object_size} bytes"
            )

        info = copy.deepcopy(info)
        object_id = info.id or _new_object_id()
        key = self.key_with_prefix(object_id)
        metadata = {
            name: sanitize_metadata_value(value)
            for name, value in (info.metadata or {}).items()
        }

        try:
            result = self.service.create_multipart_upload(
                Bucket=self.bucket, Key=key, Metadata=metadata
            )
        except Exception as exc:
            raise RuntimeError(f"s3store: unable to create multipart upload:\n{exc}") from exc

        info.id = f"{object_id}+{result['UploadId']}"
        info.storage = {"Type": _STORAGE_TYPE, "Bucket": self.bucket, "Key": key}

        upload = S3Upload(info.id, self)
        try:
            upload.write_info(info)
        except Exception as exc:
            raise RuntimeError(f"s3store: unable to create info file:\n{exc}") from exc
        return upload

    def get_upload(self, upload_id: str) -> S3Upload:
        """The upload with *upload_id*; nothing is fetched until it is used."""
        return S3Upload(upload_id, self)

    @staticmethod
    def _own_upload(upload: Any) -> S3Upload:
        if not isinstance(upload, S3Upload):
            raise TypeError("upload does not belong to an S3 store")
        return upload

    def as_terminatable_upload(self, upload: Any) -> S3Upload:
        """*upload*, which supports termination."""
        return self._own_upload(upload)

    def as_length_declarable_upload(self, upload: Any) -> S3Upload:
        """*upload*, which supports declaring a deferred length."""
        return self._own_upload(upload)

    def as_concatable_upload(self, upload: Any) -> S3Upload:
        """*upload*, which supports concatenation of partial uploads."""
        return self._own_upload(upload)