"""Description of an upload as kept in its info object."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Escapes applied on top of plain JSON so the encoding is safe inside HTML.
_EXTRA_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)

_MISSING = object()


def _lookup(doc: dict[str, Any], name: str) -> Any:
    if name in doc:
        return doc[name]
    lowered = name.lower()
    for key, value in doc.items():
        if key.lower() == lowered:
            return value
    return _MISSING


def _int_field(doc: dict[str, Any], name: str) -> int:
    value = _lookup(doc, name)
    if value is _MISSING or value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"upload info field {name} must be an integer")
    return value


def _bool_field(doc: dict[str, Any], name: str) -> bool:
    value = _lookup(doc, name)
    if value is _MISSING or value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"upload info field {name} must be a boolean")
    return value


def _str_field(doc: dict[str, Any], name: str) -> str:
    value = _lookup(doc, name)
    if value is _MISSING or value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"upload info field {name} must be a string")
    return value


def _map_field(doc: dict[str, Any], name: str) -> dict[str, str] | None:
    value = _lookup(doc, name)
    if value is _MISSING or value is None:
        return None
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        raise ValueError(f"upload info field {name} must map strings to strings")
    return dict(value)


def _list_field(doc: dict[str, Any], name: str) -> list[str] | None:
    value = _lookup(doc, name)
    if value is _MISSING or value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"upload info field {name} must be a list of strings")
    return list(value)


def _sorted_map(mapping: dict[str, str] | None) -> dict[str, str] | None:
    return None if mapping is None else dict(sorted(mapping.items()))


@dataclass
class FileInfo:
    """State and meta data of one upload."""

    id: str = ""
    size: int = 0
    size_is_deferred: bool = False
    offset: int = 0
    metadata: dict[str, str] | None = None
    is_partial: bool = False
    is_final: bool = False
    partial_uploads: list[str] | None = None
    storage: dict[str, str] | None = None

    def to_json(self) -> bytes:
        """Encode as the compact JSON document stored in the info object."""
        doc = {
            "ID": self.id,
            "Size": self.size,
            "SizeIsDeferred": self.size_is_deferred,
            "Offset": self.offset,
            "MetaData": _sorted_map(self.metadata),
            "IsPartial": self.is_partial,
            "IsFinal": self.is_final,
            "PartialUploads": None if self.partial_uploads is None else list(self.partial_uploads),
            "Storage": _sorted_map(self.storage),
        }
        text = json.dumps(doc, ensure_ascii=False, separators=(",", ":"))
        for char, escape in _EXTRA_ESCAPES:
            text = text.replace(char, escape)
        return text.encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> FileInfo:
        """Decode an info document; raises ValueError if it is malformed."""
        doc = json.loads(data)
        if not isinstance(doc, dict):
            raise ValueError("upload info must be a JSON object")
        return cls(
            id=_str_field(doc, "ID"),
            size=_int_field(doc, "Size"),
            size_is_deferred=_bool_field(doc, "SizeIsDeferred"),
            offset=_int_field(doc, "Offset"),
            metadata=_map_field(doc, "MetaData"),
            is_partial=_bool_field(doc, "IsPartial"),
            is_final=_bool_field(doc, "IsFinal"),
            partial_uploads=_list_field(doc, "PartialUploads"),
            storage=_map_field(doc, "Storage"),
        )