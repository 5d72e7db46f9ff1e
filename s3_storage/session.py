from __future__ import annotations
"""Client bootstrap: credentials, region resolution and transport tweaks."""
from dataclasses import dataclass, replace
import logging
import os
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
import yaml

from .errors import ConfigurationError, CredentialsError
from .keychain import KeychainStore
from .settings import S3Settings

LOGGER = logging.getLogger(__name__)

WEB_IDENTITY_TOKEN_ENV = "AWS_WEB_IDENTITY_TOKEN_FILE"
ROLE_ARN_ENV = "AWS_ROLE_ARN"
DEFAULT_REGION = "us-east-1"
NATIVE_ENDPOINT_SUFFIX = ".amazonaws.com"
# Legacy location constraint still returned for old eu-west-1 buckets.
LEGACY_EU_LOCATION = "EU"

ClientFactory = Callable[..., Any]


@dataclass(frozen=True)
class CredentialContext:
    """Credentials and addressing assembled for one client construction."""

    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    role_arn: str = ""
    session_name: str = ""
    region: str = ""
    endpoint: str = ""

    @classmethod
    def from_settings(
        cls,
        settings: S3Settings,
        keychain: KeychainStore | None = None,
    ) -> "CredentialContext":
        secret_key = settings.secret_key
        if settings.access_key and not secret_key and keychain is not None:
            secret_key = keychain.get_secret(settings.access_key)
        return cls(
            access_key=settings.access_key,
            secret_key=secret_key,
            session_token=settings.session_token,
            role_arn=settings.role_arn,
            session_name=settings.session_name,
            region=settings.region,
            endpoint=settings.endpoint,
        )

    def client_kwargs(self) -> dict[str, str]:
        """Static credential arguments; empty when the default chain should be used."""
        if not (self.access_key and self.secret_key):
            return {}
        kwargs = {
            "aws_access_key_id": self.access_key,
            "aws_secret_access_key": self.secret_key,
        }
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        return kwargs


def create_client(
    settings: S3Settings,
    *,
    client_factory: ClientFactory | None = None,
    keychain: KeychainStore | None = None,
    environ: Mapping[str, str] | None = None,
):
    """Return a configured S3 client.

    Every step is fail-fast: either a fully configured client comes back or
    an error is raised.

    Raises:
        ConfigurationError: for unreadable CA bundles or malformed headers.
        CredentialsError: when role assumption or region detection fails.
    """
    factory = client_factory or boto3.client
    environ = os.environ if environ is None else environ
    keychain = keychain if keychain is not None else KeychainStore()

    headers = decode_headers(settings.custom_headers)
    transport_kwargs: dict[str, Any] = {"config": _build_config(settings)}
    ca_bundle = _load_ca_bundle(settings.ca_cert_file)
    if ca_bundle:
        transport_kwargs["verify"] = ca_bundle

    credentials = CredentialContext.from_settings(settings, keychain)
    credentials = assume_role(credentials, factory, environ=environ, verify=ca_bundle)
    region = resolve_region(settings.bucket, credentials, factory, transport_kwargs)

    client_kwargs = dict(transport_kwargs, region_name=region, **credentials.client_kwargs())
    if credentials.endpoint:
        client_kwargs["endpoint_url"] = credentials.endpoint
    try:
        client = factory("s3", **client_kwargs)
    except (BotoCoreError, ValueError) as exc:
        raise ConfigurationError(f"failed to create s3 client: {exc}") from exc

    LOGGER.debug("disable 100 continue %s", settings.disable_100_continue)
    _register_request_handlers(client, headers, settings.disable_100_continue)
    return client


def assume_role(
    credentials: CredentialContext,
    client_factory: ClientFactory,
    *,
    environ: Mapping[str, str],
    verify: Optional[str] = None,
) -> CredentialContext:
    """Exchange the configured credentials for the role's temporary ones."""
    if not credentials.role_arn:
        return credentials
    if environ.get(WEB_IDENTITY_TOKEN_ENV) and environ.get(ROLE_ARN_ENV):
        LOGGER.info("Running with workload identity, skipping explicit role assumption")
        return credentials

    sts_kwargs: dict[str, Any] = {"region_name": credentials.region or DEFAULT_REGION}
    sts_kwargs.update(credentials.client_kwargs())
    if verify:
        sts_kwargs["verify"] = verify
    try:
        sts_client = client_factory("sts", **sts_kwargs)
        response = sts_client.assume_role(
            RoleArn=credentials.role_arn,
            RoleSessionName=credentials.session_name,
        )
    except (BotoCoreError, ClientError) as exc:
        raise CredentialsError(f"assume role by ARN: {exc}") from exc

    assumed = response["Credentials"]
    return replace(
        credentials,
        access_key=assumed["AccessKeyId"],
        secret_key=assumed["SecretAccessKey"],
        session_token=assumed["SessionToken"],
    )


def is_native_endpoint(endpoint: str) -> bool:
    if not endpoint:
        return True
    target = endpoint if "://" in endpoint else f"//{endpoint}"
    host = urlparse(target).hostname or ""
    return host.endswith(NATIVE_ENDPOINT_SUFFIX)


def resolve_region(
    bucket: str,
    credentials: CredentialContext,
    client_factory: ClientFactory,
    transport_kwargs: Mapping[str, Any],
) -> str:
    """Pick the region: explicit setting, bucket location lookup, or the default.

    S3-compatible stores (MinIO, Ceph...) behind a custom endpoint get the
    default region without any lookup.
    """
    if credentials.region:
        return credentials.region
    if not is_native_endpoint(credentials.endpoint):
        LOGGER.debug("Custom endpoint '%s', using region %s", credentials.endpoint, DEFAULT_REGION)
        return DEFAULT_REGION

    probe_kwargs = dict(transport_kwargs, region_name=DEFAULT_REGION, **credentials.client_kwargs())
    if credentials.endpoint:
        probe_kwargs["endpoint_url"] = credentials.endpoint
    try:
        probe = client_factory("s3", **probe_kwargs)
        response = probe.get_bucket_location(Bucket=bucket)
    except (BotoCoreError, ClientError) as exc:
        raise CredentialsError(f"AWS region isn't configured explicitly: detect region: {exc}") from exc

    location = response.get("LocationConstraint") or ""
    if not location:
        # Buckets in "US Standard" report an empty constraint.
        location = DEFAULT_REGION
    elif location == LEGACY_EU_LOCATION:
        location = "eu-west-1"
    LOGGER.debug("Detected region %s for bucket '%s'", location, bucket)
    return location


def decode_headers(raw: Any) -> dict[str, str]:
    """Normalize custom headers into one mapping.

    Accepts a mapping, a list of single-entry mappings, or a YAML document
    holding either form.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"failed to unmarshal YAML headers: {exc}") from exc
        if raw is None:
            return {}

    if isinstance(raw, Mapping):
        merged = dict(raw)
    elif isinstance(raw, (list, tuple)):
        merged = {}
        for entry in raw:
            if not isinstance(entry, Mapping):
                raise ConfigurationError("headers expected to be a mapping or a list of mappings")
            merged.update(entry)
    else:
        raise ConfigurationError("headers expected to be a mapping or a list of mappings")
    return {str(name): str(value) for name, value in merged.items()}


def _load_ca_bundle(path: str) -> Optional[str]:
    if not path:
        return None
    try:
        with open(path, "rb") as handle:
            handle.read()
    except OSError as exc:
        raise ConfigurationError(f"failed to read CA certificate file '{path}': {exc}") from exc
    return path


def _build_config(settings: S3Settings) -> Config:
    options: dict[str, Any] = {
        "signature_version": "s3v4",
        "max_pool_connections": settings.max_pool_connections,
    }
    if settings.force_path_style:
        options["s3"] = {"addressing_style": "path"}
    return Config(**options)


def _register_request_handlers(client, headers: dict[str, str], disable_100_continue: bool) -> None:
    events = client.meta.events
    events.register("before-send.s3", _log_request)
    events.register("after-call.s3", _log_response)
    if headers:
        events.register("before-sign.s3", _build_header_injector(headers))
    if disable_100_continue:
        events.register("before-sign.s3", _strip_expect_header)


def _build_header_injector(headers: dict[str, str]):
    def _inject(request, **_):
        for name, value in headers.items():
            if name in request.headers:
                del request.headers[name]
            request.headers[name] = value

    return _inject


def _log_request(request, **_):
    LOGGER.debug("S3 request: %s %s", request.method, request.url)


def _log_response(http_response=None, model=None, **_):
    status = getattr(http_response, "status_code", None)
    operation = getattr(model, "name", "")
    LOGGER.debug("S3 response: %s %s", operation, status)


def _strip_expect_header(request, **_):
    if "Expect" in request.headers:
        del request.headers["Expect"]
