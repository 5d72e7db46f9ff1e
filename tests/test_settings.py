import threading
import unittest

from s3_storage.errors import ConfigurationError
from s3_storage.settings import (
    DEFAULT_DELETE_BATCH_SIZE,
    DEFAULT_RANGE_MAX_RETRIES,
    DEFAULT_UPLOAD_CONCURRENCY,
    DEFAULT_UPLOAD_PART_SIZE,
    VERSIONING_AUTO,
    VERSIONING_DISABLED,
    VERSIONING_ENABLED,
    EncryptionSettings,
    FolderConfig,
    S3Settings,
    sse_customer_key_md5,
)


class S3SettingsTests(unittest.TestCase):
    def test_from_mapping_returns_defaults_for_empty_input(self):
        settings = S3Settings.from_mapping({})

        self.assertEqual(S3Settings(), settings)

    def test_from_mapping_accepts_camel_case_names(self):
        settings = S3Settings.from_mapping(
            {
                "bucket": "backups",
                "rootPath": "/pg/main",
                "accessKey": "AKIA",
                "sseKmsKeyID": "kms-1",
                "deleteBatchSize": "2",
                "useListObjectsV1": "true",
                "enableVersioning": "Enabled",
                "disable100Continue": "yes",
            }
        )

        self.assertEqual("backups", settings.bucket)
        self.assertEqual("/pg/main", settings.root_path)
        self.assertEqual("AKIA", settings.access_key)
        self.assertEqual("kms-1", settings.sse_kms_key_id)
        self.assertEqual(2, settings.delete_batch_size)
        self.assertTrue(settings.use_list_objects_v1)
        self.assertEqual(VERSIONING_ENABLED, settings.enable_versioning)
        self.assertTrue(settings.disable_100_continue)

    def test_from_mapping_sanitizes_invalid_values(self):
        settings = S3Settings.from_mapping(
            {
                "delete_batch_size": "nope",
                "range_max_retries": -1,
                "retention_period_seconds": -5,
                "upload_part_size": 0,
                "upload_concurrency": "bad",
                "range_batch_enabled": "maybe",
                "storage_class": None,
            }
        )

        self.assertEqual(DEFAULT_DELETE_BATCH_SIZE, settings.delete_batch_size)
        self.assertEqual(DEFAULT_RANGE_MAX_RETRIES, settings.range_max_retries)
        self.assertEqual(0, settings.retention_period_seconds)
        self.assertEqual(DEFAULT_UPLOAD_PART_SIZE, settings.upload_part_size)
        self.assertEqual(DEFAULT_UPLOAD_CONCURRENCY, settings.upload_concurrency)
        self.assertFalse(settings.range_batch_enabled)
        self.assertEqual("STANDARD", settings.storage_class)

    def test_from_mapping_rejects_unknown_versioning_mode(self):
        with self.assertRaises(ConfigurationError):
            S3Settings.from_mapping({"enable_versioning": "sometimes"})

    def test_folder_config_requires_bucket(self):
        with self.assertRaises(ConfigurationError):
            S3Settings().folder_config()

    def test_folder_config_normalizes_root_path(self):
        config = S3Settings(bucket="backups", root_path="/pg/main").folder_config()

        self.assertEqual("pg/main/", config.root_path)
        self.assertEqual("backups", config.bucket)

    def test_uploader_config_carries_encryption(self):
        settings = S3Settings(server_side_encryption="aws:kms", sse_kms_key_id="kms-1", upload_concurrency=3)

        config = settings.uploader_config()

        self.assertEqual(3, config.concurrency)
        self.assertEqual("aws:kms", config.encryption.server_side_encryption)
        self.assertEqual("kms-1", config.encryption.sse_kms_key_id)


class EncryptionSettingsTests(unittest.TestCase):
    def test_customer_key_params_include_fingerprint(self):
        encryption = EncryptionSettings(server_side_encryption="AES256", sse_customer_key="k" * 32)

        params = encryption.customer_key_params()

        self.assertEqual("AES256", params["SSECustomerAlgorithm"])
        self.assertEqual(
            "a2tra2tra2tra2tra2tra2tra2tra2tra2tra2tra2s=",
            params["SSECustomerKey"],
        )
        self.assertEqual(sse_customer_key_md5("k" * 32), params["SSECustomerKeyMD5"])

    def test_customer_key_params_support_prefix(self):
        encryption = EncryptionSettings(server_side_encryption="AES256", sse_customer_key="secret")

        params = encryption.customer_key_params("CopySource")

        self.assertEqual(
            {"CopySourceSSECustomerAlgorithm", "CopySourceSSECustomerKey", "CopySourceSSECustomerKeyMD5"},
            set(params),
        )

    def test_customer_key_takes_precedence_in_write_params(self):
        encryption = EncryptionSettings(server_side_encryption="AES256", sse_customer_key="secret")

        params = encryption.write_params()

        self.assertNotIn("ServerSideEncryption", params)
        self.assertIn("SSECustomerKey", params)

    def test_kms_write_params(self):
        encryption = EncryptionSettings(server_side_encryption="aws:kms", sse_kms_key_id="kms-1")

        self.assertEqual(
            {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": "kms-1"},
            encryption.write_params(),
        )
        self.assertEqual({}, encryption.customer_key_params())

    def test_no_encryption_means_no_params(self):
        self.assertEqual({}, EncryptionSettings().write_params())


class FolderConfigVersioningTests(unittest.TestCase):
    def test_explicit_mode_never_probes(self):
        for mode, expected in ((VERSIONING_ENABLED, True), (VERSIONING_DISABLED, False)):
            config = FolderConfig(bucket="b", enable_versioning=mode)
            calls = []

            result = config.resolve_versioning(lambda: calls.append(1) or True)

            self.assertEqual(expected, result)
            self.assertEqual([], calls)

    def test_auto_mode_probes_once_and_caches(self):
        config = FolderConfig(bucket="b")
        calls = []

        def probe():
            calls.append(1)
            return True

        self.assertTrue(config.resolve_versioning(probe))
        self.assertTrue(config.resolve_versioning(probe))
        self.assertEqual(1, len(calls))
        self.assertEqual(VERSIONING_ENABLED, config.versioning)

    def test_failed_probe_counts_as_disabled_without_caching(self):
        config = FolderConfig(bucket="b")

        self.assertFalse(config.resolve_versioning(lambda: None))
        self.assertEqual(VERSIONING_AUTO, config.versioning)
        self.assertTrue(config.resolve_versioning(lambda: True))

    def test_set_versioning_resets_to_auto(self):
        config = FolderConfig(bucket="b", enable_versioning=VERSIONING_DISABLED)

        config.set_versioning(VERSIONING_AUTO)

        self.assertTrue(config.resolve_versioning(lambda: True))

    def test_set_versioning_rejects_unknown_mode(self):
        config = FolderConfig(bucket="b")

        with self.assertRaises(ConfigurationError):
            config.set_versioning("on")

    def test_concurrent_resolution_probes_once(self):
        config = FolderConfig(bucket="b")
        calls = []
        start = threading.Event()

        def probe():
            calls.append(1)
            return False

        def worker():
            start.wait()
            config.resolve_versioning(probe)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        start.set()
        for thread in threads:
            thread.join()

        self.assertEqual(1, len(calls))
        self.assertEqual(VERSIONING_DISABLED, config.versioning)


if __name__ == "__main__":
    unittest.main()
