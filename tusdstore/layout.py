"""Naming of S3 objects and sizing of multipart upload parts."""

from __future__ import annotations

import re

# Anything outside ASCII, plus CR and LF, which are not allowed in HTTP header values.
_UNSAFE_HEADER_CHARS = re.compile(r"[^\x00-\x7F]|[\r\n]")


def split_ids(upload_id: str) -> tuple[str, str]:
    """Split "<object id>+<multipart id>"; both parts are empty without a "+"."""
    object_id, sep, multipart_id = upload_id.partition("+")
    if not sep:
        return "", ""
    return object_id, multipart_id


def sanitize_metadata_value(value: str) -> str:
    """Replace characters unfit for S3 object metadata with "?"."""
    return _UNSAFE_HEADER_CHARS.sub("?", value)


def prefixed_key(prefix: str, key: str) -> str:
    """Join a pseudo-directory prefix and a key with exactly one slash."""
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix + key


def calc_optimal_part_size(
    size: int, preferred_part_size: int, max_multipart_parts: int, max_part_size: int
) -> int:
    """Choose a part size that fits an upload of *size* bytes into the part limit."""
    if size <= preferred_part_size * max_multipart_parts:
        optimal = preferred_part_size
    else:
        quotient, remainder = divmod(size, max_multipart_parts)
        optimal = quotient if remainder == 0 else quotient + 1

    if optimal > max_part_size:
        raise ValueError(
            f"calcOptimalPartSize: to upload {size} bytes optimalPartSize {optimal} "
            f"must exceed MaxPartSize {max_part_size}"
        )
    return optimal