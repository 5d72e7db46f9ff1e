from __future__ import annotations
"""Assembles client, uploader and root folder from settings."""
import logging
from typing import Callable, Mapping, Optional

from .folder import S3Folder
from .keychain import KeychainStore
from .session import create_client
from .settings import FolderConfig, S3Settings
from .uploader import Uploader, check_encryption

LOGGER = logging.getLogger(__name__)


class S3Storage:
    """Owns the objects shared by every folder of one configured bucket."""

    def __init__(self, settings: S3Settings, client, uploader: Uploader, config: FolderConfig):
        self._settings = settings
        self._client = client
        self._uploader = uploader
        self._config = config
        self._root_folder = S3Folder(client, uploader, config.root_path, config)

    @property
    def settings(self) -> S3Settings:
        return self._settings

    @property
    def client(self):
        return self._client

    @property
    def uploader(self) -> Uploader:
        return self._uploader

    @property
    def config(self) -> FolderConfig:
        return self._config

    @property
    def root_folder(self) -> S3Folder:
        return self._root_folder


def configure_storage(
    settings: S3Settings | Mapping[str, object],
    *,
    client=None,
    client_factory: Optional[Callable[..., object]] = None,
    keychain: KeychainStore | None = None,
    environ: Mapping[str, str] | None = None,
) -> S3Storage:
    """Build a ready to use :class:`S3Storage`.

    Configuration errors surface before any client is created; ``client``
    skips the bootstrap entirely when the caller already has one.
    """
    if not isinstance(settings, S3Settings):
        settings = S3Settings.from_mapping(settings)
    config = settings.folder_config()
    uploader_config = settings.uploader_config()
    check_encryption(uploader_config)
    if client is None:
        client = create_client(
            settings,
            client_factory=client_factory,
            keychain=keychain,
            environ=environ,
        )
    uploader = Uploader(client, uploader_config)
    LOGGER.debug("Configured storage for bucket '%s' at '%s'", config.bucket, config.root_path)
    return S3Storage(settings, client, uploader, config)
