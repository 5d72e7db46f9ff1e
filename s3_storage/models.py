from __future__ import annotations
"""Data models representing stored objects and their versions."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

VERSION = "version"
DELETE_MARKER = "delete-marker"


@dataclass(frozen=True)
class StorageObject:
    """A single object as seen from a folder."""

    name: str
    last_modified: Optional[datetime]
    size: int
    additional_info: Optional[str] = None


@dataclass(frozen=True)
class VersionRecord:
    """One version or delete marker collected during a versioned listing."""

    relative_path: str
    last_modified: Optional[datetime]
    size: int
    version_id: str
    is_latest: bool
    kind: str = VERSION

    @property
    def is_delete_marker(self) -> bool:
        return self.kind == DELETE_MARKER

    def tag(self) -> str:
        parts = [self.version_id]
        if self.is_latest:
            parts.append("LATEST")
        if self.is_delete_marker:
            parts.append("DELETE")
        return " ".join(parts)

    def to_storage_object(self) -> StorageObject:
        size = 0 if self.is_delete_marker else self.size
        return StorageObject(
            name=self.relative_path,
            last_modified=self.last_modified,
            size=size,
            additional_info=self.tag(),
        )


@dataclass(frozen=True)
class ObjectIdentifier:
    """Key plus optional version id; the unit of deletion."""

    key: str
    version_id: Optional[str] = None

    def to_request(self) -> dict[str, str]:
        entry = {"Key": self.key}
        if self.version_id:
            entry["VersionId"] = self.version_id
        return entry

    def describe(self) -> str:
        if self.version_id is None:
            return f"object {self.key}"
        return f"object {self.key} version {self.version_id}"
