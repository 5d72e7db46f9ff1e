from __future__ import annotations
"""OS keychain access for S3 secret keys."""
import logging

import keyring
from keyring.errors import KeyringError

from .settings import DEFAULT_SESSION_NAME

LOGGER = logging.getLogger(__name__)


class KeychainStore:
    """Looks up secret keys stored under their access key id."""

    def __init__(self, service_name: str = DEFAULT_SESSION_NAME):
        self._service_name = service_name

    def get_secret(self, access_key: str) -> str:
        if not access_key:
            return ""
        try:
            return keyring.get_password(self._service_name, access_key) or ""
        except KeyringError:
            LOGGER.debug("Keychain lookup failed for access key '%s'", access_key, exc_info=True)
            return ""
