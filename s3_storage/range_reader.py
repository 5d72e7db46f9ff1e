from __future__ import annotations
"""Readable stream that resumes interrupted downloads with ranged GETs."""
import io
import logging
from typing import Callable

from botocore.exceptions import BotoCoreError

LOGGER = logging.getLogger(__name__)


class RangeReader(io.RawIOBase):
    """Wraps an object body and reopens it from the current offset on failure.

    ``reopen(offset)`` must return a new body starting at ``offset``. At most
    ``max_retries`` reopenings are attempted over the reader's lifetime.
    """

    def __init__(self, body, reopen: Callable[[int], object], max_retries: int, *, name: str = ""):
        super().__init__()
        self._body = body
        self._reopen = reopen
        self._max_retries = max(max_retries, 0)
        self._retries = 0
        self._offset = 0
        self._name = name

    @property
    def retries(self) -> int:
        return self._retries

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        data = self._read_chunk(len(buffer))
        size = len(data)
        buffer[:size] = data
        return size

    def _read_chunk(self, size: int) -> bytes:
        while True:
            try:
                data = self._body.read(size)
            except (BotoCoreError, OSError) as exc:
                if self._retries >= self._max_retries:
                    raise
                self._retries += 1
                LOGGER.debug(
                    "Read of '%s' failed at offset %d (%s), resuming (attempt %d of %d)",
                    self._name,
                    self._offset,
                    exc,
                    self._retries,
                    self._max_retries,
                )
                self._close_body()
                self._body = self._reopen(self._offset)
                continue
            self._offset += len(data)
            return data

    def close(self) -> None:
        if not self.closed:
            self._close_body()
        super().close()

    def _close_body(self) -> None:
        close = getattr(self._body, "close", None)
        if close is None:
            return
        try:
            close()
        except (BotoCoreError, OSError):
            LOGGER.debug("Failed to close body of '%s'", self._name, exc_info=True)
