"""Change events consumed by the dispatcher and typed rows it produces."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from changestream.errors import ChangeEventError
from changestream.extjson import decode, parse_document
from changestream.values import DocumentValue, DynamicValue, TimestampValue, from_python

__all__ = [
    "OperationType",
    "RowKind",
    "ChangeEvent",
    "Row",
]


class OperationType(str, Enum):
    """Operation kinds reported by the change stream."""

    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    INVALIDATE = "invalidate"
    DROP = "drop"
    DROP_DATABASE = "dropDatabase"
    RENAME = "rename"
    OTHER = "other"

    @classmethod
    def choices(cls) -> List[str]:
        return [operation.value for operation in cls]

    @classmethod
    def from_string(cls, value: Optional[str]) -> "OperationType":
        """Map a raw ``operationType`` string; unknown values become ``OTHER``."""
        for operation in cls:
            if operation.value == value:
                return operation
        return cls.OTHER

    @property
    def is_data_change(self) -> bool:
        return self in (OperationType.INSERT, OperationType.UPDATE, OperationType.REPLACE, OperationType.DELETE)


class RowKind(str, Enum):
    """Change kind attached to an emitted row."""

    INSERT = "insert"
    UPDATE_BEFORE = "update_before"
    UPDATE_AFTER = "update_after"
    DELETE = "delete"

    @property
    def short_string(self) -> str:
        return _SHORT_STRINGS[self]

    @classmethod
    def from_short_string(cls, value: str) -> "RowKind":
        for kind, short in _SHORT_STRINGS.items():
            if short == value:
                return kind
        raise ValueError(
            f"Invalid row kind '{value}'. Valid options: {', '.join(_SHORT_STRINGS.values())}"
        )


_SHORT_STRINGS = {
    RowKind.INSERT: "+I",
    RowKind.UPDATE_BEFORE: "-U",
    RowKind.UPDATE_AFTER: "+U",
    RowKind.DELETE: "-D",
}


@dataclass(frozen=True)
class Row:
    """Fixed-arity typed row in declared field order, tagged with a change kind.

    Fields are readable by position or by name:

        row[0], row["_id"], row.as_dict()
    """

    values: Tuple[Any, ...]
    names: Tuple[str, ...]
    kind: RowKind = RowKind.INSERT

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))
        object.__setattr__(self, "names", tuple(self.names))
        if len(self.values) != len(self.names):
            raise ValueError(
                f"Row arity mismatch: {len(self.values)} values for {len(self.names)} fields"
            )

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def __getitem__(self, key: Union[int, str]) -> Any:
        if isinstance(key, str):
            try:
                return self.values[self.names.index(key)]
            except ValueError:
                raise KeyError(key) from None
        return self.values[key]

    def get(self, name: str, default: Any = None) -> Any:
        if name in self.names:
            return self[name]
        return default

    def as_dict(self) -> Dict[str, Any]:
        """Field name to value; nested rows become nested dicts."""
        return {
            name: value.as_dict() if isinstance(value, Row) else value
            for name, value in zip(self.names, self.values)
        }

    def with_kind(self, kind: RowKind) -> "Row":
        return dataclasses.replace(self, kind=kind)


def _as_document(raw: Any, field_name: str) -> Optional[DocumentValue]:
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        return parse_document(raw)
    if isinstance(raw, DocumentValue):
        return raw
    if isinstance(raw, Mapping):
        value = decode(raw)
        if isinstance(value, DocumentValue):
            return value
    raise ChangeEventError(
        f"Field '{field_name}' must be a document",
        details={"type": type(raw).__name__},
    )


def _namespace(raw: Any) -> Optional[str]:
    if raw is None or isinstance(raw, str):
        return raw
    if isinstance(raw, Mapping):
        parts = [raw.get("db"), raw.get("coll")]
        return ".".join(str(part) for part in parts if part)
    raise ChangeEventError("Field 'ns' must be a string or a {db, coll} document")


@dataclass(frozen=True)
class ChangeEvent:
    """One change-stream notification.

    ``position`` is the opaque resume token / offset; it is passed through
    untouched.
    """

    operation: OperationType
    full_document: Optional[DocumentValue] = None
    document_key: Optional[DocumentValue] = None
    position: Any = None
    namespace: Optional[str] = None
    cluster_time: Optional[TimestampValue] = None

    @classmethod
    def insert(cls, document: Mapping[str, Any], **kwargs: Any) -> "ChangeEvent":
        return cls(OperationType.INSERT, full_document=_from_mapping(document), **kwargs)

    @classmethod
    def update(
        cls,
        document: Optional[Mapping[str, Any]],
        key: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> "ChangeEvent":
        return cls(
            OperationType.UPDATE,
            full_document=_from_mapping(document),
            document_key=_from_mapping(key),
            **kwargs,
        )

    @classmethod
    def replace(cls, document: Mapping[str, Any], **kwargs: Any) -> "ChangeEvent":
        return cls(OperationType.REPLACE, full_document=_from_mapping(document), **kwargs)

    @classmethod
    def delete(cls, key: Optional[Mapping[str, Any]], **kwargs: Any) -> "ChangeEvent":
        return cls(OperationType.DELETE, document_key=_from_mapping(key), **kwargs)

    @classmethod
    def from_change_document(cls, change: Union[Mapping[str, Any], str, bytes]) -> "ChangeEvent":
        """Build an event from a raw change-stream document.

        ``fullDocument`` and ``documentKey`` may be nested objects or
        Extended-JSON strings.

        Raises:
            ChangeEventError: If the document is malformed or lacks ``operationType``
        """
        if isinstance(change, (str, bytes)):
            try:
                change = json.loads(change)
            except ValueError as exc:
                raise ChangeEventError(f"Malformed change document: {exc}") from exc
        if not isinstance(change, Mapping):
            raise ChangeEventError(
                "Change document must be a JSON object",
                details={"type": type(change).__name__},
            )
        if "operationType" not in change:
            raise ChangeEventError(
                "Change document has no 'operationType'",
                suggestion="Feed raw change-stream documents, not bare collection documents.",
            )

        cluster_time = change.get("clusterTime")
        if cluster_time is not None:
            cluster_time = decode(cluster_time)
            if not isinstance(cluster_time, TimestampValue):
                raise ChangeEventError("Field 'clusterTime' must be a timestamp")

        return cls(
            operation=OperationType.from_string(change.get("operationType")),
            full_document=_as_document(change.get("fullDocument"), "fullDocument"),
            document_key=_as_document(change.get("documentKey"), "documentKey"),
            position=change.get("_id"),
            namespace=_namespace(change.get("ns")),
            cluster_time=cluster_time,
        )


def _from_mapping(document: Optional[Union[Mapping[str, Any], DynamicValue]]) -> Optional[DocumentValue]:
    if document is None:
        return None
    value = from_python(document)
    if not isinstance(value, DocumentValue):
        raise ChangeEventError(
            "Event documents must be mappings",
            details={"type": type(document).__name__},
        )
    return value

