# tusdstore

A storage backend for resumable uploads following the tus protocol, keeping
data in S3 or any S3-compatible service.

Each upload is backed by an S3 multipart upload and identified by
`"<object id>+<multipart id>"`. Alongside the multipart upload, the store keeps:

- `<object id>.info` — a JSON description of the upload (size, metadata,
  storage location), written from a `FileInfo`.
- `<object id>.part` — a pending chunk smaller than the minimum part size, held
  until more data arrives and then prepended to the next chunk.

When the upload is finished, the multipart upload is completed and the whole
file lands in the bucket under `<object id>`. The info object is kept.

## Installation

```
pip install tusdstore
```

The package has no runtime dependencies.

## The S3 service

The store does not talk to S3 itself. You pass it an object that satisfies the
`tusdstore.backend.S3Service` protocol: methods `put_object`, `list_parts`,
`upload_part`, `get_object`, `create_multipart_upload`,
`abort_multipart_upload`, `delete_object`, `delete_objects`,
`complete_multipart_upload` and `upload_part_copy`. Each receives keyword
arguments named like the S3 API fields (`Bucket`, `Key`, `UploadId`,
`PartNumber`, `Body` …) and returns a dictionary keyed the same way. Service
failures must be raised as `tusdstore.errors.S3Error` with the S3 error code
(`NoSuchKey`, `NoSuchUpload`, …), since the store reacts to those codes.

## Usage

```python
from tusdstore.store import S3Store
from tusdstore.info import FileInfo

store = S3Store("my-bucket", service)          # service implements S3Service
store.object_prefix = "uploads"                # optional key prefix

upload = store.new_upload(FileInfo(size=1024, metadata={"filename": "a.txt"}))
info = upload.get_info()

with open("a.txt", "rb") as src:
    written = upload.write_chunk(info.offset, src)

upload.finish_upload()
```

If `FileInfo.id` is empty, `new_upload` picks a random object id. Uploads
larger than `max_object_size` are refused with `ValueError`.

Later, fetch an existing upload by its id and work with it:

```python
upload = store.get_upload(info.id)
reader = upload.get_reader()                   # only once finished
store.as_terminatable_upload(upload).terminate()
```

`get_reader()` returns the object body of a finished upload; it raises
`HTTPError` (status 400) while the multipart upload is still open, and
`NotFoundError` if neither exists.

Supported extensions:

- **Termination** — `terminate()` aborts the multipart upload and deletes the
  content, `.part` and `.info` objects. Missing objects are not errors.
- **Concatenation** — `concat_uploads(partials)` fills an upload from other
  uploads of the same store, in order. If every partial upload is at least
  `min_part_size` bytes, parts are copied server-side and the multipart upload
  is completed; otherwise the contents are downloaded into a temporary file,
  stored as one object, and the multipart upload is aborted in the background.
- **Deferred length** — `declare_length(length)` sets the size of an upload
  that was created with `size_is_deferred=True` and rewrites its info object.

## Configuration

`S3Store` is a dataclass; besides `bucket` and `service` it has:

| Field | Default | Meaning |
|---|---|---|
| `object_prefix` | `""` | Prefix for content object keys |
| `metadata_object_prefix` | `""` | Prefix for `.info`/`.part` keys; falls back to `object_prefix` |
| `min_part_size` | 5 MiB | Smallest part sent to S3 (except the last) |
| `preferred_part_size` | 50 MiB | Part size used whenever it fits |
| `max_part_size` | 5 GiB | Largest allowed part |
| `max_multipart_parts` | 10000 | Maximum number of parts |
| `max_object_size` | 5 TiB | Largest allowed upload |
| `max_buffered_parts` | 20 | Parts buffered on disk while one is being sent |
| `temporary_directory` | `""` | Directory for temporary files; empty means the system default |
| `disable_content_hashes` | `False` | Send parts through a presigned URL instead of `upload_part` |

With `disable_content_hashes`, the service must also offer
`presign_upload_part(expires_in=..., **request)` returning a URL; the part is
then sent with an HTTP `PUT` using the standard library, and any status other
than 200 raises `RuntimeError`.

## Part sizing

Incoming data is cut by `tusdstore.parts.PartProducer` into temporary files of
the optimal part size, computed by `tusdstore.layout.calc_optimal_part_size`:
the preferred part size if the upload fits into `max_multipart_parts` parts of
that size, otherwise the size divided by the part limit, rounded up. A
`ValueError` is raised if that exceeds `max_part_size`. Temporary files are
removed as soon as they are sent, also when an error occurs.

Metadata attached to the S3 object itself is restricted to ASCII: other
characters, carriage returns and line feeds become `?`
(`tusdstore.layout.sanitize_metadata_value`). The info object keeps the
original values.

## Errors

Failures are raised as exceptions from `tusdstore.errors`: `S3Error` for
service errors carrying an S3 code, `NotFoundError` (an `HTTPError` with status
404) for unknown uploads, `HTTPError` for requests that cannot be served in the
upload's current state, and `MultiError` when several operations fail together
during termination or concatenation.

## What this package does not do

- It is storage only: there is no HTTP server or tus protocol handler that
  parses requests and calls the store.
- It contains no S3 client; the `S3Service` object is yours to provide.
- It does not lock uploads. S3 gives no protection against two writers on the
  same upload, so callers must serialise access to each upload themselves.