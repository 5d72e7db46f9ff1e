from __future__ import annotations
"""Storage settings and the configuration objects derived from them."""
import base64
from dataclasses import dataclass, field
import hashlib
import threading
from typing import Any, Callable, Mapping, Optional

from .errors import ConfigurationError
from .utils import normalize_folder_path

VERSIONING_AUTO = ""
VERSIONING_ENABLED = "enabled"
VERSIONING_DISABLED = "disabled"
VERSIONING_MODES = (VERSIONING_AUTO, VERSIONING_ENABLED, VERSIONING_DISABLED)

SSE_KMS = "aws:kms"

DEFAULT_STORAGE_CLASS = "STANDARD"
DEFAULT_DELETE_BATCH_SIZE = 1000
DEFAULT_RANGE_MAX_RETRIES = 10
DEFAULT_UPLOAD_PART_SIZE = 20 * 1024 * 1024
DEFAULT_UPLOAD_CONCURRENCY = 10
DEFAULT_MAX_POOL_CONNECTIONS = 10
DEFAULT_RETENTION_MODE = "GOVERNANCE"
DEFAULT_SESSION_NAME = "pys3storage"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def sse_customer_key_md5(customer_key: str) -> str:
    digest = hashlib.md5(customer_key.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


@dataclass(frozen=True)
class EncryptionSettings:
    """Server-side encryption policy shared by reads, writes and copies."""

    server_side_encryption: str = ""
    sse_customer_key: str = ""
    sse_kms_key_id: str = ""

    @property
    def uses_customer_key(self) -> bool:
        return bool(self.server_side_encryption and self.sse_customer_key)

    def customer_key_params(self, prefix: str = "") -> dict[str, str]:
        """Return the SSE-C request parameters, optionally with a name prefix.

        The key is sent base64 encoded together with the base64 MD5 of the raw
        key, so botocore leaves both values untouched.
        """
        if not self.uses_customer_key:
            return {}
        encoded_key = base64.b64encode(self.sse_customer_key.encode("utf-8")).decode("ascii")
        return {
            f"{prefix}SSECustomerAlgorithm": self.server_side_encryption,
            f"{prefix}SSECustomerKey": encoded_key,
            f"{prefix}SSECustomerKeyMD5": sse_customer_key_md5(self.sse_customer_key),
        }

    def write_params(self) -> dict[str, str]:
        """Parameters applied to uploads and copy destinations.

        A customer key takes precedence over bucket or KMS managed encryption.
        """
        if not self.server_side_encryption:
            return {}
        if self.sse_customer_key:
            return self.customer_key_params()
        params = {"ServerSideEncryption": self.server_side_encryption}
        if self.sse_kms_key_id:
            params["SSEKMSKeyId"] = self.sse_kms_key_id
        return params


@dataclass
class FolderConfig:
    """Configuration shared by a root folder and every folder derived from it.

    The versioning mode starts from ``enable_versioning`` and is only changed
    through :meth:`resolve_versioning` and :meth:`set_versioning`.
    """

    bucket: str
    root_path: str = ""
    encryption: EncryptionSettings = field(default_factory=EncryptionSettings)
    enable_versioning: str = VERSIONING_AUTO
    delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE
    use_list_objects_v1: bool = False
    range_batch_enabled: bool = False
    range_max_retries: int = DEFAULT_RANGE_MAX_RETRIES

    def __post_init__(self) -> None:
        _check_versioning_mode(self.enable_versioning)
        self.root_path = normalize_folder_path(self.root_path)
        self._versioning = self.enable_versioning
        self._versioning_lock = threading.Lock()

    @property
    def versioning(self) -> str:
        return self._versioning

    def resolve_versioning(self, probe: Callable[[], Optional[bool]]) -> bool:
        """Return whether versioning is on, probing the bucket once in auto mode.

        ``probe`` returns ``None`` when the bucket could not be asked; that
        answer counts as disabled but is not remembered.
        """
        with self._versioning_lock:
            if self._versioning == VERSIONING_ENABLED:
                return True
            if self._versioning == VERSIONING_DISABLED:
                return False
            enabled = probe()
            if enabled is None:
                return False
            self._versioning = VERSIONING_ENABLED if enabled else VERSIONING_DISABLED
            return enabled

    def set_versioning(self, mode: str) -> None:
        _check_versioning_mode(mode)
        with self._versioning_lock:
            self._versioning = mode


@dataclass(frozen=True)
class UploaderConfig:
    part_size: int = DEFAULT_UPLOAD_PART_SIZE
    concurrency: int = DEFAULT_UPLOAD_CONCURRENCY
    storage_class: str = DEFAULT_STORAGE_CLASS
    encryption: EncryptionSettings = field(default_factory=EncryptionSettings)
    retention_mode: str = DEFAULT_RETENTION_MODE
    retention_period_seconds: int = 0


@dataclass
class S3Settings:
    """Every option the storage layer reads from the outside world."""

    bucket: str = ""
    root_path: str = ""
    region: str = ""
    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    role_arn: str = ""
    session_name: str = DEFAULT_SESSION_NAME
    storage_class: str = DEFAULT_STORAGE_CLASS
    server_side_encryption: str = ""
    sse_customer_key: str = ""
    sse_kms_key_id: str = ""
    retention_mode: str = DEFAULT_RETENTION_MODE
    retention_period_seconds: int = 0
    delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE
    use_list_objects_v1: bool = False
    enable_versioning: str = VERSIONING_AUTO
    range_batch_enabled: bool = False
    range_max_retries: int = DEFAULT_RANGE_MAX_RETRIES
    ca_cert_file: str = ""
    disable_100_continue: bool = False
    custom_headers: Any = None
    force_path_style: bool = False
    upload_part_size: int = DEFAULT_UPLOAD_PART_SIZE
    upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY
    max_pool_connections: int = DEFAULT_MAX_POOL_CONNECTIONS

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "S3Settings":
        """Build settings from loosely typed values, falling back to defaults.

        Keys may use either the snake_case field names or their camelCase
        spelling (``rootPath``, ``sseKmsKeyID``...).

        Raises:
            ConfigurationError: when the versioning mode is not recognised.
        """
        values = {_FIELD_ALIASES.get(key, key): value for key, value in data.items()}
        defaults = cls()
        versioning = str(values.get("enable_versioning") or "").strip().lower()
        _check_versioning_mode(versioning)
        return cls(
            bucket=_as_str(values.get("bucket")),
            root_path=_as_str(values.get("root_path")),
            region=_as_str(values.get("region")),
            endpoint=_as_str(values.get("endpoint")),
            access_key=_as_str(values.get("access_key")),
            secret_key=_as_str(values.get("secret_key")),
            session_token=_as_str(values.get("session_token")),
            role_arn=_as_str(values.get("role_arn")),
            session_name=_as_str(values.get("session_name")) or defaults.session_name,
            storage_class=_as_str(values.get("storage_class")) or defaults.storage_class,
            server_side_encryption=_as_str(values.get("server_side_encryption")),
            sse_customer_key=_as_str(values.get("sse_customer_key")),
            sse_kms_key_id=_as_str(values.get("sse_kms_key_id")),
            retention_mode=_as_str(values.get("retention_mode")) or defaults.retention_mode,
            retention_period_seconds=_as_int(values.get("retention_period_seconds"), 0, minimum=0),
            delete_batch_size=_as_int(values.get("delete_batch_size"), defaults.delete_batch_size),
            use_list_objects_v1=_as_bool(values.get("use_list_objects_v1"), False),
            enable_versioning=versioning,
            range_batch_enabled=_as_bool(values.get("range_batch_enabled"), False),
            range_max_retries=_as_int(values.get("range_max_retries"), defaults.range_max_retries, minimum=0),
            ca_cert_file=_as_str(values.get("ca_cert_file")),
            disable_100_continue=_as_bool(values.get("disable_100_continue"), False),
            custom_headers=values.get("custom_headers"),
            force_path_style=_as_bool(values.get("force_path_style"), False),
            upload_part_size=_as_int(values.get("upload_part_size"), defaults.upload_part_size, minimum=1),
            upload_concurrency=_as_int(values.get("upload_concurrency"), defaults.upload_concurrency, minimum=1),
            max_pool_connections=_as_int(
                values.get("max_pool_connections"), defaults.max_pool_connections, minimum=1
            ),
        )

    @property
    def encryption(self) -> EncryptionSettings:
        return EncryptionSettings(
            server_side_encryption=self.server_side_encryption,
            sse_customer_key=self.sse_customer_key,
            sse_kms_key_id=self.sse_kms_key_id,
        )

    def folder_config(self) -> FolderConfig:
        if not self.bucket:
            raise ConfigurationError("bucket must be configured")
        return FolderConfig(
            bucket=self.bucket,
            root_path=self.root_path,
            encryption=self.encryption,
            enable_versioning=self.enable_versioning,
            delete_batch_size=self.delete_batch_size,
            use_list_objects_v1=self.use_list_objects_v1,
            range_batch_enabled=self.range_batch_enabled,
            range_max_retries=self.range_max_retries,
        )

    def uploader_config(self) -> UploaderConfig:
        return UploaderConfig(
            part_size=self.upload_part_size,
            concurrency=self.upload_concurrency,
            storage_class=self.storage_class,
            encryption=self.encryption,
            retention_mode=self.retention_mode,
            retention_period_seconds=self.retention_period_seconds,
        )


_FIELD_ALIASES = {
    "rootPath": "root_path",
    "accessKey": "access_key",
    "secretKey": "secret_key",
    "sessionToken": "session_token",
    "roleARN": "role_arn",
    "sessionName": "session_name",
    "storageClass": "storage_class",
    "serverSideEncryption": "server_side_encryption",
    "sseCustomerKey": "sse_customer_key",
    "sseKmsKeyID": "sse_kms_key_id",
    "retentionMode": "retention_mode",
    "retentionPeriodSeconds": "retention_period_seconds",
    "deleteBatchSize": "delete_batch_size",
    "useListObjectsV1": "use_list_objects_v1",
    "enableVersioning": "enable_versioning",
    "rangeBatchEnabled": "range_batch_enabled",
    "rangeMaxRetries": "range_max_retries",
    "caCertFile": "ca_cert_file",
    "disable100Continue": "disable_100_continue",
    "customHeaders": "custom_headers",
    "forcePathStyle": "force_path_style",
    "uploadPartSize": "upload_part_size",
    "uploadConcurrency": "upload_concurrency",
    "maxPoolConnections": "max_pool_connections",
}


def _check_versioning_mode(mode: str) -> None:
    if mode not in VERSIONING_MODES:
        raise ConfigurationError(
            f"unknown versioning mode '{mode}', expected one of 'enabled', 'disabled' or empty"
        )


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_int(value: Any, default: int, *, minimum: int | None = None) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None and number < minimum:
        return default
    return number


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default
