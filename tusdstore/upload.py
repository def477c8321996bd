"""Operations on a single upload stored as an S3 multipart upload."""

from __future__ import annotations

import contextlib
import copy
import io
import os
import shutil
import tempfile
import threading
import urllib.error
import urllib.request
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import IO, Any

from .backend import S3Backend
from .errors import HTTPError, MultiError, NotFoundError, S3Error
from .info import FileInfo
from .layout import split_ids
from .parts import PartProducer, clean_up_temp_file

_CONCAT_TEMP_PREFIX = "tusd-s3-concat-tmp-"
_PRESIGN_EXPIRY_SECONDS = 15 * 60


class _ObjectDeletionError(S3Error):
    """A single object that S3 failed to delete in a batch deletion."""

    def __init__(self, code: str, key: str, message: str) -> None:
        super().__init__(code, message)
        self.key = key

    def __str__(self) -> str:
        return f"AWS S3 Error ({self.code}) for object {self.key}: {self.message}"


class _ChainedReader:
    """Reads several binary streams one after another."""

    def __init__(self, *readers: IO[bytes]) -> None:
        self._readers = deque(readers)

    def read(self, size: int = -1) -> bytes:
        while self._readers:
            chunk = self._readers[0].read(size)
            if chunk:
                return chunk
            self._readers.popleft()
        return b""


def _close_body(body: Any) -> None:
    close = getattr(body, "close", None)
    if close is not None:
        with contextlib.suppress(Exception):
            close()


class S3Upload:
    """One upload, identified by "<object id>+<multipart id>"."""

    def __init__(self, upload_id: str, store: S3Backend, info: FileInfo | None = None) -> None:
        self.id = upload_id
        self.store = store
        # Cached info; filled by get_info and write_info.
        self.info = info

    def write_info(self, info: FileInfo) -> None:
        """Store *info* in the upload's .info object and cache it."""
        store = self.store
        object_id, _ = split_ids(self.id)
        self.info = copy.deepcopy(info)
        data = info.to_json()
        store.service.put_object(
            Bucket=store.bucket,
            Key=store.metadata_key_with_prefix(object_id + ".info"),
            Body=io.BytesIO(data),
            ContentLength=len(data),
        )

    def write_chunk(self, offset: int, src: IO[bytes]) -> int:
        """Append the data read from *src* at *offset*; return the number of bytes taken."""
        store = self.store
        object_id, _ = split_ids(self.id)

        info = self.get_info()
        part_size = store.calc_optimal_part_size(info.size)
        parts = store.list_all_parts(self.id)
        next_part_number = len(parts) + 1

        incomplete_file, incomplete_size = store.download_incomplete_part(object_id)
        try:
            reader: Any = src
            if incomplete_file is not None:
                store.delete_incomplete_part(object_id)
                reader = _ChainedReader(incomplete_file, src)

            producer = PartProducer(reader, store.temporary_directory, store.max_buffered_parts)
            producer.start(part_size)
            try:
                return self._upload_parts(
                    producer, info, offset, incomplete_size, next_part_number
                )
            finally:
                producer.close()
        finally:
            if incomplete_file is not None:
                clean_up_temp_file(incomplete_file)

    def _upload_parts(
        self,
        producer: PartProducer,
        info: FileInfo,
        offset: int,
        incomplete_size: int,
        part_number: int,
    ) -> int:
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        uploaded = 0

        for file in producer:
            try:
                size = os.fstat(file.fileno()).st_size
            except OSError:
                clean_up_temp_file(file)
                raise
            is_final = not info.size_is_deferred and info.size == offset - incomplete_size + size
            if size >= store.min_part_size or is_final:
                request = {
                    "Bucket": store.bucket,
                    "Key": store.key_with_prefix(object_id),
                    "UploadId": multipart_id,
                    "PartNumber": part_number,
                }
                self._put_part(request, file, size)
            else:
                store.put_incomplete_part(object_id, file)
                return uploaded + size - incomplete_size

            offset += size
            uploaded += size
            part_number += 1

        if producer.error is not None:
            raise producer.error
        return uploaded - incomplete_size

    def _put_part(self, request: dict[str, Any], file: IO[bytes], size: int) -> None:
        try:
            if not self.store.disable_content_hashes:
                self.store.service.upload_part(Body=file, **request)
            else:
                self._put_part_presigned(request, file, size)
        finally:
            clean_up_temp_file(file)

    def _put_part_presigned(self, request: dict[str, Any], file: IO[bytes], size: int) -> None:
        # The body is sent outside the SDK so that no content hash is computed for it.
        presign = getattr(self.store.service, "presign_upload_part", None)
        if presign is None:
            raise TypeError("s3store: failed to cast S3 service for presigning")
        url = presign(expires_in=_PRESIGN_EXPIRY_SECONDS, **request)
        http_request = urllib.request.Request(
            url, data=file, method="PUT", headers={"Content-Length": str(size)}
        )
        try:
            with urllib.request.urlopen(http_request) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as exc:
            status = exc.code
            body = exc.read()
        if status != 200:
            text = body.decode("utf-8", "replace")
            raise RuntimeError(
                f"s3store: unexpected response code {status} for presigned upload: {text}"
            )

    def get_info(self) -> FileInfo:
        """The upload's info, fetched from S3 on first use; a copy is returned."""
        if self.info is None:
            self.info = self._fetch_info()
        return copy.deepcopy(self.info)

    def _fetch_info(self) -> FileInfo:
        store = self.store
        object_id, _ = split_ids(self.id)

        try:
            result = store.service.get_object(
                Bucket=store.bucket,
                Key=store.metadata_key_with_prefix(object_id + ".info"),
            )
        except S3Error as exc:
            if exc.code == "NoSuchKey":
                raise NotFoundError() from exc
            raise

        body = result["Body"]
        try:
            info = FileInfo.from_json(body.read())
        finally:
            _close_body(body)

        try:
            parts = store.list_all_parts(self.id)
        except S3Error as exc:
            # The info object exists but the multipart upload is gone: it was completed.
            if exc.code == "NoSuchUpload":
                info.offset = info.size
                return info
            raise

        offset = sum(part.get("Size") or 0 for part in parts)

        incomplete = store.get_incomplete_part(object_id)
        if incomplete is not None:
            _close_body(incomplete.get("Body"))
            offset += incomplete.get("ContentLength") or 0

        info.offset = offset
        return info

    def get_reader(self) -> Any:
        """A readable body with the content of the finished upload."""
        store = self.store
        object_id, multipart_id = split_ids(self.id)

        try:
            result = store.service.get_object(
                Bucket=store.bucket, Key=store.key_with_prefix(object_id)
            )
            return result["Body"]
        except S3Error as exc:
            if exc.code != "NoSuchKey":
                raise

        try:
            store.service.list_parts(
                Bucket=store.bucket,
                Key=store.key_with_prefix(object_id),
                UploadId=multipart_id,
                MaxParts=0,
            )
        except S3Error as exc:
            if exc.code == "NoSuchUpload":
                raise NotFoundError() from exc
            raise
        raise HTTPError("cannot stream non-finished upload", 400)

    def terminate(self) -> None:
        """Abort the multipart upload and delete the content, .part and .info objects."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            aborting = pool.submit(self._abort_for_termination)
            deleting = pool.submit(self._delete_for_termination)
            errors = aborting.result() + deleting.result()
        if errors:
            raise MultiError(errors)

    def _abort_for_termination(self) -> list[Exception]:
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        try:
            store.service.abort_multipart_upload(
                Bucket=store.bucket,
                Key=store.key_with_prefix(object_id),
                UploadId=multipart_id,
            )
        except S3Error as exc:
            if exc.code != "NoSuchUpload":
                return [exc]
        except Exception as exc:
            return [exc]
        return []

    def _delete_for_termination(self) -> list[Exception]:
        store = self.store
        object_id, _ = split_ids(self.id)
        try:
            result = store.service.delete_objects(
                Bucket=store.bucket,
                Delete={
                    "Objects": [
                        {"Key": store.key_with_prefix(object_id)},
                        {"Key": store.metadata_key_with_prefix(object_id + ".part")},
                        {"Key": store.metadata_key_with_prefix(object_id + ".info")},
                    ],
                    "Quiet": True,
                },
            )
        except Exception as exc:
            return [exc]
        return [
            _ObjectDeletionError(error.get("Code", ""), error.get("Key", ""), error.get("Message", ""))
            for error in (result or {}).get("Errors") or []
            if error.get("Code") != "NoSuchKey"
        ]

    def finish_upload(self) -> None:
        """Complete the multipart upload so the object becomes available."""
        store = self.store
        object_id, multipart_id = split_ids(self.id)

        parts = store.list_all_parts(self.id)
        if not parts:
            # S3 needs at least one part, so an empty upload gets an empty part.
            result = store.service.upload_part(
                Bucket=store.bucket,
                Key=store.key_with_prefix(object_id),
                UploadId=multipart_id,
                PartNumber=1,
                Body=io.BytesIO(b""),
            )
            parts = [{"ETag": (result or {}).get("ETag"), "PartNumber": 1}]

        completed = [{"ETag": part.get("ETag"), "PartNumber": part.get("PartNumber")} for part in parts]
        store.service.complete_multipart_upload(
            Bucket=store.bucket,
            Key=store.key_with_prefix(object_id),
            UploadId=multipart_id,
            MultipartUpload={"Parts": completed},
        )

    def concat_uploads(self, partial_uploads: list[S3Upload]) -> None:
        """Fill this upload with the contents of *partial_uploads*, in order."""
        has_small_part = any(
            partial.get_info().size < self.store.min_part_size for partial in partial_uploads
        )
        # Parts below the minimum size cannot be copied into a multipart upload.
        if has_small_part:
            self._concat_using_download(partial_uploads)
        else:
            self._concat_using_multipart(partial_uploads)

    @staticmethod
    def _partial_object_id(partial: Any) -> str:
        if not isinstance(partial, S3Upload):
            raise TypeError("partial uploads must belong to an S3 store")
        return split_ids(partial.id)[0]

    def _concat_using_download(self, partial_uploads: list[S3Upload]) -> None:
        store = self.store
        object_id, multipart_id = split_ids(self.id)

        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=_CONCAT_TEMP_PREFIX,
            dir=store.temporary_directory or None,
            delete=False,
        )
        try:
            for partial in partial_uploads:
                partial_id = self._partial_object_id(partial)
                result = store.service.get_object(
                    Bucket=store.bucket, Key=store.key_with_prefix(partial_id)
                )
                body = result["Body"]
                try:
                    shutil.copyfileobj(body, file)
                finally:
                    _close_body(body)

            file.flush()
            file.seek(0)
            store.service.put_object(
                Bucket=store.bucket, Key=store.key_with_prefix(object_id), Body=file
            )
        finally:
            clean_up_temp_file(file)

        # The multipart upload is no longer needed; its outcome does not matter.
        def abort() -> None:
            with contextlib.suppress(Exception):
                store.service.abort_multipart_upload(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(object_id),
                    UploadId=multipart_id,
                )

        threading.Thread(target=abort, daemon=True).start()

    def _concat_using_multipart(self, partial_uploads: list[S3Upload]) -> None:
        store = self.store
        object_id, multipart_id = split_ids(self.id)
        partial_ids = [self._partial_object_id(partial) for partial in partial_uploads]

        def copy_part(part_number: int, partial_id: str) -> Exception | None:
            try:
                store.service.upload_part_copy(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(object_id),
                    UploadId=multipart_id,
                    PartNumber=part_number,
                    CopySource=f"{store.bucket}/{partial_id}",
                )
            except Exception as exc:
                return exc
            return None

        errors: list[Exception] = []
        if partial_ids:
            with ThreadPoolExecutor(max_workers=len(partial_ids)) as pool:
                futures = [
                    pool.submit(copy_part, number, partial_id)
                    for number, partial_id in enumerate(partial_ids, start=1)
                ]
                errors = [error for future in futures if (error := future.result()) is not None]
        if errors:
            raise MultiError(errors)

        self.finish_upload()

    def declare_length(self, length: int) -> None:
        """Set the final size of an upload whose length was deferred."""
        info = self.get_info()
        info.size = length
        info.size_is_deferred = False
        self.write_info(info)