from __future__ import annotations
"""Key, path and batching helpers shared by the storage modules."""
from typing import Sequence, TypeVar

DELIMITER = "/"

T = TypeVar("T")


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into ordered chunks holding at most ``size`` elements.

    A non-positive ``size`` means no limit: everything goes into one chunk.
    Empty input produces no chunks at all.
    """
    if not items:
        return []
    if size <= 0:
        return [list(items)]
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


def add_delimiter(path: str) -> str:
    if path and not path.endswith(DELIMITER):
        return path + DELIMITER
    return path


def join_path(*elements: str) -> str:
    cleaned = [element.strip(DELIMITER) for element in elements if element]
    return DELIMITER.join(element for element in cleaned if element)


def normalize_folder_path(path: str) -> str:
    # S3 keys have no notion of absolute paths.
    return add_delimiter(path.lstrip(DELIMITER))
