import unittest
from unittest import mock

from keyring.errors import NoKeyringError

from s3_storage import keychain
from s3_storage.keychain import KeychainStore


class KeychainStoreTests(unittest.TestCase):
    def test_get_secret_reads_password_for_access_key(self):
        with mock.patch.object(keychain.keyring, "get_password", return_value="stored") as get_password:
            secret = KeychainStore(service_name="svc").get_secret("AKIA")

        self.assertEqual("stored", secret)
        get_password.assert_called_once_with("svc", "AKIA")

    def test_get_secret_returns_empty_on_keyring_errors(self):
        with mock.patch.object(keychain.keyring, "get_password", side_effect=NoKeyringError("none")):
            self.assertEqual("", KeychainStore().get_secret("AKIA"))

    def test_get_secret_skips_lookup_without_access_key(self):
        with mock.patch.object(keychain.keyring, "get_password") as get_password:
            self.assertEqual("", KeychainStore().get_secret(""))

        get_password.assert_not_called()


if __name__ == "__main__":
    unittest.main()
