from __future__ import annotations
"""Folder abstraction over an S3 bucket, including versioned listings."""
from dataclasses import replace
import logging
from typing import Any, BinaryIO, Callable, Iterable, Iterator, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    ConfigurationError,
    CredentialsError,
    ObjectNotFoundError,
    PartialBatchFailureError,
    TransportError,
)
from .models import DELETE_MARKER, VERSION, ObjectIdentifier, StorageObject, VersionRecord
from .range_reader import RangeReader
from .settings import VERSIONING_DISABLED, VERSIONING_ENABLED, FolderConfig
from .uploader import Content, Uploader
from .utils import DELIMITER, add_delimiter, join_path, normalize_folder_path, partition

LOGGER = logging.getLogger(__name__)

NOT_FOUND_ERROR_CODES = frozenset({"NotFound", "NoSuchKey", "404"})
BUCKET_VERSIONING_ENABLED = "Enabled"
# Version id S3 reports for objects written before versioning was turned on.
NULL_VERSION_ID = "null"


def is_not_found_error(exc: Exception) -> bool:
    if not isinstance(exc, ClientError):
        return False
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in NOT_FOUND_ERROR_CODES


def reconcile_versions(
    versions: Iterable[VersionRecord],
    delete_markers: Iterable[VersionRecord],
    show_all_versions: bool = False,
) -> list[StorageObject]:
    """Merge versions and delete markers gathered from every listing page.

    Keys whose latest record is a delete marker are hidden unless
    ``show_all_versions`` is set, in which case the markers themselves are
    listed as well.
    """
    versions = list(versions)
    delete_markers = list(delete_markers)
    latest = _pick_latest(versions + delete_markers)
    deleted_paths = {path for path, record in latest.items() if record.is_delete_marker}

    objects = [
        _settle_latest(record, latest).to_storage_object()
        for record in versions
        if show_all_versions or record.relative_path not in deleted_paths
    ]
    if show_all_versions:
        objects.extend(_settle_latest(marker, latest).to_storage_object() for marker in delete_markers)
    return objects


def _pick_latest(records: Iterable[VersionRecord]) -> dict[str, VersionRecord]:
    latest: dict[str, VersionRecord] = {}
    for record in records:
        if not record.is_latest:
            continue
        current = latest.get(record.relative_path)
        if current is None or _is_newer(record, current):
            latest[record.relative_path] = record
    return latest


def _is_newer(record: VersionRecord, other: VersionRecord) -> bool:
    if record.last_modified is None or other.last_modified is None:
        return False
    return record.last_modified > other.last_modified


def _settle_latest(record: VersionRecord, latest: dict[str, VersionRecord]) -> VersionRecord:
    # Only one record per key may carry the latest flag.
    if record.is_latest and latest.get(record.relative_path) is not record:
        return replace(record, is_latest=False)
    return record


class S3Folder:
    """Path scoped view into a bucket.

    Folders derived from one another share the client, the uploader and the
    :class:`FolderConfig`; only the path and the show-all-versions flag are
    per instance.
    """

    def __init__(
        self,
        client,
        uploader: Uploader | None,
        path: str,
        config: FolderConfig,
        *,
        show_all_versions: bool = False,
    ):
        self._client = client
        self._uploader = uploader
        self._config = config
        self._path = normalize_folder_path(path)
        self._show_all_versions = show_all_versions

    def __repr__(self) -> str:
        return f"S3Folder(bucket={self.bucket!r}, path={self._path!r})"

    @property
    def bucket(self) -> str:
        return self._config.bucket

    @property
    def config(self) -> FolderConfig:
        return self._config

    @property
    def show_all_versions(self) -> bool:
        return self._show_all_versions

    def get_path(self) -> str:
        return self._path

    def set_show_all_versions(self, show: bool) -> None:
        """Include deleted keys and delete markers in versioned listings."""
        self._show_all_versions = show

    def get_sub_folder(self, name: str) -> "S3Folder":
        return self._derive(add_delimiter(join_path(self._path, name)))

    def exists(self, name: str) -> bool:
        """Return whether the object exists.

        Raises:
            TransportError: for any failure other than the object being absent.
        """
        key = self._key(name)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        params.update(self._config.encryption.customer_key_params())
        try:
            self._client.head_object(**params)
        except (BotoCoreError, ClientError) as exc:
            if is_not_found_error(exc):
                return False
            raise TransportError(f"failed to check s3 object '{key}' existence: {exc}") from exc
        return True

    def read_object(self, name: str) -> BinaryIO:
        """Open the object for reading.

        Raises:
            ObjectNotFoundError: when the object does not exist.
            TransportError: for any other failure.
        """
        key = self._key(name)
        body = self._open_body(key)
        if not self._config.range_batch_enabled:
            return body
        return RangeReader(
            body,
            lambda offset: self._open_body(key, offset),
            self._config.range_max_retries,
            name=key,
        )

    def put_object(self, name: str, content: Content) -> None:
        self._require_uploader().upload(self.bucket, self._key(name), content)

    def put_object_with_context(
        self,
        name: str,
        content: Content,
        cancel_requested: Callable[[], bool],
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> None:
        """Upload like :meth:`put_object`, aborting once ``cancel_requested`` returns true."""
        self._require_uploader().upload(
            self.bucket,
            self._key(name),
            content,
            progress_callback=progress_callback,
            cancel_requested=cancel_requested,
        )

    def copy_object(self, src: str, dst: str) -> None:
        """Copy ``src`` to ``dst`` inside this folder, keeping the encryption policy.

        Raises:
            ObjectNotFoundError: when ``src`` does not exist.
        """
        if not self.exists(src):
            raise ObjectNotFoundError(src)
        source_key = join_path(self._path, src)
        destination_key = join_path(self._path, dst)
        encryption = self._config.encryption
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": destination_key,
            "CopySource": {"Bucket": self.bucket, "Key": source_key},
        }
        params.update(encryption.customer_key_params("CopySource"))
        params.update(encryption.write_params())
        try:
            self._client.copy_object(**params)
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(
                f"failed to copy '{source_key}' to '{destination_key}' in bucket '{self.bucket}': {exc}"
            ) from exc

    def list_folder(self) -> tuple[list[StorageObject], list["S3Folder"]]:
        """List objects and sub-folders one level below this folder."""
        if self._is_versioning_enabled():
            return self._list_versions()

        objects: list[StorageObject] = []
        sub_folders: list[S3Folder] = []
        try:
            for page in self._list_objects_pages():
                sub_folders.extend(self._derive(entry["Prefix"]) for entry in page.get("CommonPrefixes", []))
                for entry in page.get("Contents", []):
                    key = entry["Key"]
                    # Some storages list the folder itself as a key; it is not data.
                    if key == self._path:
                        continue
                    objects.append(
                        StorageObject(
                            name=self._relative(key),
                            last_modified=entry.get("LastModified"),
                            size=entry.get("Size", 0),
                        )
                    )
        except (BotoCoreError, ClientError) as exc:
            # Some providers answer NoSuchKey for prefixes that hold no objects yet.
            if not is_not_found_error(exc):
                raise TransportError(f"failed to list s3 folder: '{self._path}': {exc}") from exc
        return objects, sub_folders

    def delete_objects(self, names: Sequence[str]) -> None:
        """Delete the named objects in batches of ``delete_batch_size``.

        With versioning enabled every version and delete marker of each key is
        removed. A failing batch aborts the call; earlier batches stay deleted.

        Raises:
            PartialBatchFailureError: when a delete request fails.
            TransportError: when the versions of a key cannot be listed.
        """
        versioned = self._is_versioning_enabled()
        identifiers = self._to_identifiers(names, versioned)
        batches = partition(identifiers, self._config.delete_batch_size)
        LOGGER.debug(
            "Deleting %d names as %d identifiers in %d batches",
            len(names),
            len(identifiers),
            len(batches),
        )
        for batch in batches:
            self._delete_batch(batch)

    def set_versioning_enabled(self, enable: bool) -> None:
        """Force the versioning mode; enabling only sticks if the bucket supports it."""
        if enable and self._is_versioning_enabled():
            self._config.set_versioning(VERSIONING_ENABLED)
        else:
            self._config.set_versioning(VERSIONING_DISABLED)

    def validate(self) -> None:
        """Probe the folder with a single-key listing.

        Raises:
            CredentialsError: when the store is unreachable or rejects the credentials.
        """
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Prefix": self._path,
            "Delimiter": DELIMITER,
            "MaxKeys": 1,
        }
        try:
            self._client.list_objects(**params)
        except (BotoCoreError, ClientError) as exc:
            raise CredentialsError(f"bad credentials: {exc}") from exc

    def _is_versioning_enabled(self) -> bool:
        return self._config.resolve_versioning(self._probe_versioning)

    def _probe_versioning(self) -> Optional[bool]:
        try:
            response = self._client.get_bucket_versioning(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            LOGGER.debug("Failed to get versioning status of bucket '%s': %s", self.bucket, exc)
            return None
        return response.get("Status") == BUCKET_VERSIONING_ENABLED

    def _derive(self, path: str) -> "S3Folder":
        return S3Folder(
            self._client,
            self._uploader,
            path,
            self._config,
            show_all_versions=self._show_all_versions,
        )

    def _key(self, name: str) -> str:
        return self._path + name

    def _relative(self, key: str) -> str:
        if key.startswith(self._path):
            return key[len(self._path):]
        return key

    def _require_uploader(self) -> Uploader:
        if self._uploader is None:
            raise ConfigurationError(f"folder '{self._path}' was created without an uploader")
        return self._uploader

    def _open_body(self, key: str, offset: int = 0):
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        params.update(self._config.encryption.customer_key_params())
        if offset:
            params["Range"] = f"bytes={offset}-"
        try:
            response = self._client.get_object(**params)
        except (BotoCoreError, ClientError) as exc:
            if is_not_found_error(exc):
                raise ObjectNotFoundError(key) from exc
            raise TransportError(f"failed to read object: '{key}' from S3: {exc}") from exc
        return response["Body"]

    def _list_objects_pages(self) -> Iterator[dict]:
        params: dict[str, Any] = {"Bucket": self.bucket, "Delimiter": DELIMITER}
        if self._path:
            params["Prefix"] = self._path
        if self._config.use_list_objects_v1:
            return self._list_objects_pages_v1(params)
        return self._list_objects_pages_v2(params)

    def _list_objects_pages_v1(self, params: dict[str, Any]) -> Iterator[dict]:
        while True:
            response = self._client.list_objects(**params)
            yield response
            if not response.get("IsTruncated"):
                return
            marker = response.get("NextMarker") or _last_listed_key(response)
            if not marker:
                return
            params = dict(params, Marker=marker)

    def _list_objects_pages_v2(self, params: dict[str, Any]) -> Iterator[dict]:
        while True:
            response = self._client.list_objects_v2(**params)
            yield response
            token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or not token:
                return
            params = dict(params, ContinuationToken=token)

    def _list_object_versions_pages(self, prefix: str, delimiter: str | None = None) -> Iterator[dict]:
        base_params: dict[str, Any] = {"Bucket": self.bucket}
        if prefix:
            base_params["Prefix"] = prefix
        if delimiter:
            base_params["Delimiter"] = delimiter
        params = base_params
        while True:
            response = self._client.list_object_versions(**params)
            yield response
            if not response.get("IsTruncated"):
                return
            key_marker = response.get("NextKeyMarker")
            version_marker = response.get("NextVersionIdMarker")
            if not key_marker and not version_marker:
                return
            # Markers missing from this page must not carry over from the previous one.
            params = dict(base_params)
            if key_marker:
                params["KeyMarker"] = key_marker
            if version_marker:
                params["VersionIdMarker"] = version_marker

    def _list_versions(self) -> tuple[list[StorageObject], list["S3Folder"]]:
        # Every page is drained before filtering: a delete marker and the
        # version it hides may arrive on different pages.
        sub_folders: list[S3Folder] = []
        versions: list[VersionRecord] = []
        delete_markers: list[VersionRecord] = []
        try:
            for page in self._list_object_versions_pages(self._path, DELIMITER):
                sub_folders.extend(self._derive(entry["Prefix"]) for entry in page.get("CommonPrefixes", []))
                delete_markers.extend(self._collect_records(page.get("DeleteMarkers", []), DELETE_MARKER))
                versions.extend(self._collect_records(page.get("Versions", []), VERSION))
        except (BotoCoreError, ClientError) as exc:
            if not is_not_found_error(exc):
                raise TransportError(f"failed to list s3 folder: '{self._path}': {exc}") from exc
        objects = reconcile_versions(versions, delete_markers, self._show_all_versions)
        return objects, sub_folders

    def _collect_records(self, entries: Iterable[dict], kind: str) -> Iterator[VersionRecord]:
        for entry in entries:
            key = entry["Key"]
            if key == self._path:
                continue
            yield VersionRecord(
                relative_path=self._relative(key),
                last_modified=entry.get("LastModified"),
                size=entry.get("Size", 0) if kind == VERSION else 0,
                version_id=entry.get("VersionId") or NULL_VERSION_ID,
                is_latest=bool(entry.get("IsLatest")),
                kind=kind,
            )

    def _to_identifiers(self, names: Sequence[str], versioned: bool) -> list[ObjectIdentifier]:
        identifiers: list[ObjectIdentifier] = []
        for name in names:
            key = self._key(name)
            if versioned:
                identifiers.extend(self._get_object_versions(key))
            else:
                identifiers.append(ObjectIdentifier(key))
        return identifiers

    def _get_object_versions(self, key: str) -> list[ObjectIdentifier]:
        identifiers: list[ObjectIdentifier] = []
        try:
            for page in self._list_object_versions_pages(key):
                entries = list(page.get("Versions", [])) + list(page.get("DeleteMarkers", []))
                # The prefix also matches longer keys; only this exact key is purged.
                identifiers.extend(
                    ObjectIdentifier(entry["Key"], entry.get("VersionId"))
                    for entry in entries
                    if entry["Key"] == key
                )
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"failed to list versions of s3 object '{key}': {exc}") from exc
        return identifiers

    def _delete_batch(self, batch: list[ObjectIdentifier]) -> None:
        request = {"Objects": [identifier.to_request() for identifier in batch], "Quiet": True}
        try:
            response = self._client.delete_objects(Bucket=self.bucket, Delete=request)
        except (BotoCoreError, ClientError) as exc:
            _log_failed_batch(batch)
            raise PartialBatchFailureError(f"failed to delete s3 objects: {exc}", batch) from exc

        errors = response.get("Errors") or []
        if errors:
            _log_failed_batch(batch)
            first = errors[0]
            raise PartialBatchFailureError(
                f"failed to delete s3 objects: {len(errors)} rejected, first '{first.get('Key')}': "
                f"{first.get('Code')} {first.get('Message')}",
                batch,
            )


def _last_listed_key(response: dict) -> str:
    # NextMarker is only sent along with a delimiter, and not by every provider.
    candidates = [entry["Key"] for entry in response.get("Contents", [])]
    candidates.extend(entry["Prefix"] for entry in response.get("CommonPrefixes", []))
    return max(candidates) if candidates else ""


def _log_failed_batch(batch: Iterable[ObjectIdentifier]) -> None:
    for identifier in batch:
        LOGGER.debug("Failed to delete %s", identifier.describe())
