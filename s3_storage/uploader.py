from __future__ import annotations
"""Concurrent multipart uploads with storage class, retention and encryption policy."""
from datetime import datetime, timedelta, timezone
import io
import logging
from typing import Any, BinaryIO, Callable, Optional, Union

from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigurationError, TransferCancelledError, TransportError
from .settings import (
    DEFAULT_RETENTION_MODE,
    DEFAULT_UPLOAD_CONCURRENCY,
    DEFAULT_UPLOAD_PART_SIZE,
    SSE_KMS,
    UploaderConfig,
)

LOGGER = logging.getLogger(__name__)

Content = Union[bytes, bytearray, BinaryIO]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_encryption(config: UploaderConfig) -> None:
    """Require a KMS key id exactly when KMS encryption is requested."""
    encryption = config.encryption
    if (encryption.server_side_encryption == SSE_KMS) == (not encryption.sse_kms_key_id):
        raise ConfigurationError(
            f"server-side encryption KMS key ID must be set if '{SSE_KMS}' encryption is used"
        )


class Uploader:
    """Writes objects through boto3's managed transfer.

    Parts are sent concurrently up to the configured concurrency; the call
    returns once the whole object has been committed. No retries happen here.
    """

    def __init__(
        self,
        client,
        config: UploaderConfig,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        check_encryption(config)
        self._client = client
        self._config = config
        self._clock = clock

    @property
    def config(self) -> UploaderConfig:
        return self._config

    def transfer_config(self) -> TransferConfig:
        part_size = self._config.part_size if self._config.part_size > 0 else DEFAULT_UPLOAD_PART_SIZE
        concurrency = self._config.concurrency if self._config.concurrency > 0 else DEFAULT_UPLOAD_CONCURRENCY
        return TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=concurrency,
        )

    def build_extra_args(self) -> dict[str, Any]:
        """Assemble per-upload parameters: storage class, retention, encryption."""
        extra_args: dict[str, Any] = {}
        if self._config.storage_class:
            extra_args["StorageClass"] = self._config.storage_class
        if self._config.retention_period_seconds:
            retain_until = self._clock() + timedelta(seconds=self._config.retention_period_seconds)
            extra_args["ObjectLockMode"] = self._config.retention_mode or DEFAULT_RETENTION_MODE
            extra_args["ObjectLockRetainUntilDate"] = retain_until
        extra_args.update(self._config.encryption.write_params())
        return extra_args

    def upload(
        self,
        bucket: str,
        key: str,
        content: Content,
        *,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Upload ``content`` to ``bucket``/``key``.

        Raises:
            TransportError: when the transfer fails.
            TransferCancelledError: when ``cancel_requested`` returns true.
        """
        if isinstance(content, (bytes, bytearray)):
            content = io.BytesIO(content)
        callback = self._build_transfer_callback(progress_callback, cancel_requested)
        try:
            self._client.upload_fileobj(
                content,
                bucket,
                key,
                ExtraArgs=self.build_extra_args(),
                Callback=callback,
                Config=self.transfer_config(),
            )
        except TransferCancelledError:
            LOGGER.debug("Upload of '%s' to bucket '%s' cancelled", key, bucket)
            raise
        except (BotoCoreError, ClientError, S3UploadFailedError) as exc:
            raise TransportError(f"failed to upload '{key}' to bucket '{bucket}': {exc}") from exc

    def _build_transfer_callback(
        self,
        progress_callback: Optional[Callable[[int], None]],
        cancel_requested: Optional[Callable[[], bool]],
    ):
        if not progress_callback and not cancel_requested:
            return None

        transferred = 0

        def _callback(bytes_amount: int) -> None:
            nonlocal transferred
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by caller")
            transferred += bytes_amount
            if progress_callback:
                progress_callback(transferred)

        return _callback
