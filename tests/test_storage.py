import unittest
from types import SimpleNamespace

from s3_storage.errors import ConfigurationError
from s3_storage.folder import S3Folder
from s3_storage.settings import S3Settings
from s3_storage.storage import configure_storage


class RecordingFactory:
    def __init__(self):
        self.calls = []

    def __call__(self, service, **kwargs):
        self.calls.append((service, kwargs))
        return SimpleNamespace(meta=SimpleNamespace(events=SimpleNamespace(register=lambda *args: None)))


class ConfigureStorageTests(unittest.TestCase):
    def test_injected_client_skips_bootstrap(self):
        client = object()
        factory = RecordingFactory()

        storage = configure_storage(
            {"bucket": "backups", "rootPath": "/pg/main", "uploadConcurrency": "4"},
            client=client,
            client_factory=factory,
        )

        self.assertEqual([], factory.calls)
        self.assertIs(client, storage.client)
        self.assertIsInstance(storage.root_folder, S3Folder)
        self.assertEqual("pg/main/", storage.root_folder.get_path())
        self.assertIs(storage.config, storage.root_folder.config)
        self.assertEqual(4, storage.uploader.config.concurrency)

    def test_bootstraps_client_from_settings(self):
        factory = RecordingFactory()
        settings = S3Settings(bucket="backups", region="eu-north-1", endpoint="http://minio:9000")

        storage = configure_storage(settings, client_factory=factory, environ={})

        self.assertEqual(1, len(factory.calls))
        self.assertEqual("http://minio:9000", factory.calls[0][1]["endpoint_url"])
        self.assertIs(settings, storage.settings)
        self.assertEqual("backups", storage.root_folder.bucket)

    def test_kms_misconfiguration_fails_before_client_creation(self):
        factory = RecordingFactory()

        with self.assertRaises(ConfigurationError):
            configure_storage(
                {"bucket": "backups", "region": "eu-north-1", "serverSideEncryption": "aws:kms"},
                client_factory=factory,
            )

        self.assertEqual([], factory.calls)

    def test_missing_bucket_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            configure_storage({}, client=object())


if __name__ == "__main__":
    unittest.main()
