import re

import pytest

from tusdstore.layout import calc_optimal_part_size, prefixed_key, sanitize_metadata_value, split_ids


@pytest.mark.parametrize(
    ("upload_id", "expected"),
    [
        ("uploadId+multipartId", ("uploadId", "multipartId")),
        ("aaa+AAA", ("aaa", "AAA")),
        ("a+b+c", ("a", "b+c")),
        ("noseparator", ("", "")),
    ],
)
def test_split_ids(upload_id, expected):
    assert split_ids(upload_id) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("hello", "hello"),
        ("menü\r\nhi", "men???hi"),
        ("menü", "men?"),
        ("", ""),
    ],
)
def test_sanitize_metadata_value(value, expected):
    assert sanitize_metadata_value(value) == expected


@pytest.mark.parametrize(
    ("prefix", "key", "expected"),
    [
        ("", "uploadId", "uploadId"),
        ("my/uploaded/files", "uploadId", "my/uploaded/files/uploadId"),
        ("my/metadata/", "uploadId.info", "my/metadata/uploadId.info"),
    ],
)
def test_prefixed_key(prefix, key, expected):
    assert prefixed_key(prefix, key) == expected


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, 4),
        (3, 4),
        (40, 4),
        (50, 5),
        (51, 6),
        (80, 8),
    ],
)
def test_calc_optimal_part_size(size, expected):
    assert calc_optimal_part_size(size, 4, 10, 8) == expected


def test_calc_optimal_part_size_with_default_limits():
    preferred = 50 * 1024 * 1024
    max_part = 5 * 1024 * 1024 * 1024
    assert calc_optimal_part_size(500, preferred, 10000, max_part) == preferred


def test_calc_optimal_part_size_rejects_exceeding_max_part_size():
    message = "calcOptimalPartSize: to upload 81 bytes optimalPartSize 9 must exceed MaxPartSize 8"
    with pytest.raises(ValueError, match=re.escape(message)):
        calc_optimal_part_size(81, 4, 10, 8)