"""Etcd connection settings and a prefix-range watcher with resync logic."""

from __future__ import annotations

import base64
import binascii
import enum
import json
import logging
import re
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from cryptography import x509
from cryptography.hazmat.primitives import serialization

ETCD_DIAL_TIMEOUT = 10.0
_RETRY_SECONDS = 3.0

log = logging.getLogger(__name__)

# (attribute, JSON key) in serialisation order
_JSON_FIELDS = (
    ("endpoints", "endpoints"),
    ("username", "userid"),
    ("password", "password"),
    ("root_prefix", "root_prefix"),
    ("certificate", "certificate"),
    ("certificate_file", "certificate_file"),
    ("client_key", "client_key"),
    ("client_key_file", "client_key_file"),
    ("client_certificate", "client_certificate"),
    ("client_certificate_file", "client_certificate_file"),
    ("override_authority", "override_authority"),
)


class EtcdConfigError(ValueError):
    """Raised when etcd connection settings are invalid or incomplete."""


@dataclass
class EtcdConfig:
    """Etcd connection settings as stored in the etcd secret."""

    endpoints: str = ""
    username: str = ""
    password: str = ""
    root_prefix: str = ""
    certificate: str = ""
    certificate_file: str = ""
    client_key: str = ""
    client_key_file: str = ""
    client_certificate: str = ""
    client_certificate_file: str = ""
    override_authority: str = ""

    @classmethod
    def from_json(cls, data: str | bytes) -> EtcdConfig:
        """Parse the secret's JSON document; unknown keys are ignored."""
        try:
            raw = json.loads(data)
        except (ValueError, UnicodeDecodeError) as exc:
            raise EtcdConfigError(f"failed to parse etcd config json: {exc}") from exc
        if not isinstance(raw, dict):
            raise EtcdConfigError("failed to parse etcd config json: expected an object")
        lowered = {str(k).lower(): v for k, v in raw.items()}
        kwargs: dict[str, str] = {}
        for attr, key in _JSON_FIELDS:
            value = lowered.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise EtcdConfigError(
                    f"failed to parse etcd config json: '{key}' must be a string"
                )
            kwargs[attr] = value
        return cls(**kwargs)

    def to_json(self) -> str:
        """Serialise compactly; empty optional fields are omitted."""
        doc: dict[str, str] = {}
        for attr, key in _JSON_FIELDS:
            value = getattr(self, attr)
            if key == "endpoints" or value:
                doc[key] = value
        return json.dumps(doc, separators=(",", ":"))


@dataclass
class EtcdClientConfig:
    """Everything needed to dial etcd.

    When ``tls`` is set, servers are verified against ``root_certificates``,
    or against the system trust store if ``use_system_roots`` is set.
    ``client_certificates`` holds (leaf certificate, private key) pairs.
    """

    endpoints: list[str]
    dial_timeout: float = ETCD_DIAL_TIMEOUT
    username: str = ""
    password: str = ""
    tls: bool = False
    root_certificates: tuple[x509.Certificate, ...] = ()
    use_system_roots: bool = False
    client_certificates: tuple[tuple[x509.Certificate, Any], ...] = ()
    authority: str = ""


class _KeyPairError(ValueError):
    pass


_PEM_BLOCK = re.compile(rb"-----BEGIN ([^\r\n-]*)-----\r?\n(.*?)-----END \1-----", re.DOTALL)


def _pem_blocks(data: bytes) -> Iterable[tuple[str, bytes]]:
    for match in _PEM_BLOCK.finditer(data):
        lines = [
            line.strip() for line in match.group(2).splitlines() if line.strip() and b":" not in line
        ]
        try:
            der = base64.b64decode(b"".join(lines), validate=True)
        except (binascii.Error, ValueError):
            continue
        yield match.group(1).decode("ascii", "replace"), der


def _certificates_from_pem(data: bytes) -> tuple[x509.Certificate, ...]:
    """All parseable CERTIFICATE blocks; others are skipped silently."""
    certs = []
    for block_type, der in _pem_blocks(data):
        if block_type != "CERTIFICATE":
            continue
        try:
            certs.append(x509.load_der_x509_certificate(der))
        except ValueError:
            continue
    return tuple(certs)


def _public_der(public_key: Any) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def _x509_key_pair(cert_pem: bytes, key_pem: bytes) -> tuple[x509.Certificate, Any]:
    cert_ders = []
    skipped = []
    for block_type, der in _pem_blocks(cert_pem):
        if block_type == "CERTIFICATE":
            cert_ders.append(der)
        else:
            skipped.append(block_type)
    if not cert_ders:
        if not skipped:
            raise _KeyPairError("tls: failed to find any PEM data in certificate input")
        if len(skipped) == 1 and skipped[0].endswith("PRIVATE KEY"):
            raise _KeyPairError(
                "tls: failed to find certificate PEM data in certificate input, "
                "but did find a private key; PEM inputs may have been switched"
            )
        raise _KeyPairError(
            'tls: failed to find "CERTIFICATE" PEM block in certificate input after '
            f"skipping PEM blocks of the following types: [{' '.join(skipped)}]"
        )

    skipped = []
    key_der = None
    for block_type, der in _pem_blocks(key_pem):
        if block_type == "PRIVATE KEY" or block_type.endswith(" PRIVATE KEY"):
            key_der = der
            break
        skipped.append(block_type)
    if key_der is None:
        if not skipped:
            raise _KeyPairError("tls: failed to find any PEM data in key input")
        if len(skipped) == 1 and skipped[0] == "CERTIFICATE":
            raise _KeyPairError(
                "tls: found a certificate rather than a key in the PEM for the private key"
            )
        raise _KeyPairError(
            'tls: failed to find PEM block with type ending in "PRIVATE KEY" in key input '
            f"after skipping PEM blocks of the following types: [{' '.join(skipped)}]"
        )

    try:
        leaf = x509.load_der_x509_certificate(cert_ders[0])
    except ValueError as exc:
        raise _KeyPairError(f"x509: {exc}") from exc
    try:
        private_key = serialization.load_der_private_key(key_der, None)
    except (ValueError, TypeError) as exc:
        raise _KeyPairError("tls: failed to parse private key") from exc

    cert_public = leaf.public_key()
    if type(private_key.public_key()).__mro__[1:] and not isinstance(
        private_key.public_key(), type(cert_public).__mro__[0]
    ) and type(private_key.public_key()) is not type(cert_public):
        if _public_der(private_key.public_key()) != _public_der(cert_public):
            raise _KeyPairError("tls: private key type does not match public key type")
    if _public_der(private_key.public_key()) != _public_der(cert_public):
        raise _KeyPairError("tls: private key does not match public key")
    return leaf, private_key


def _secret_material(
    inline: str,
    file_key: str,
    secret_data: Mapping[str, bytes | str],
    what: str,
    label: str,
) -> bytes:
    material = inline.encode()
    if file_key:
        if material:
            log.info("Ignoring JSON-embedded %s in favor of dedicated secret key %s", label, file_key)
        try:
            found = secret_data[file_key]
        except KeyError:
            raise EtcdConfigError(
                f"referenced TLS {what} secret key not found: {file_key}"
            ) from None
        material = found.encode() if isinstance(found, str) else bytes(found)
    return material


def get_etcd_client_config(
    etcd_config: EtcdConfig, secret_data: Mapping[str, bytes | str]
) -> EtcdClientConfig:
    """Resolve settings and secret material into a client configuration."""
    endpoints = etcd_config.endpoints.split(",")
    use_tls = endpoints[0].startswith("https://")
    root_certificates: tuple[x509.Certificate, ...] | None = None

    if etcd_config.certificate or etcd_config.certificate_file:
        certificate = _secret_material(
            etcd_config.certificate,
            etcd_config.certificate_file,
            secret_data,
            "certificate",
            "certificate",
        )
        root_certificates = _certificates_from_pem(certificate)
        use_tls = True

    client_key = b""
    if etcd_config.client_key or etcd_config.client_key_file:
        client_key = _secret_material(
            etcd_config.client_key,
            etcd_config.client_key_file,
            secret_data,
            "key",
            "client key",
        )
    client_cert = b""
    if etcd_config.client_certificate or etcd_config.client_certificate_file:
        client_cert = _secret_material(
            etcd_config.client_certificate,
            etcd_config.client_certificate_file,
            secret_data,
            "client certificate",
            "client cert",
        )

    pairs: tuple[tuple[x509.Certificate, Any], ...] = ()
    if bool(client_key) != bool(client_cert):
        raise EtcdConfigError(
            "need to set both client_key/client_key_file and "
            "client_certificate/client_certificate_file"
        )
    if client_key:
        try:
            pairs = (_x509_key_pair(client_cert, client_key),)
        except _KeyPairError as exc:
            raise EtcdConfigError(f"could not load client key pair: {exc}") from exc
        use_tls = True

    config = EtcdClientConfig(
        endpoints=endpoints,
        username=etcd_config.username,
        password=etcd_config.password,
        authority=etcd_config.override_authority,
    )
    if use_tls:
        config.tls = True
        config.client_certificates = pairs
        if root_certificates is None:
            config.use_system_roots = True
        else:
            config.root_certificates = root_certificates
    return config


class KeyEventType(enum.Enum):
    UPDATE = 0
    DELETE = 1
    INITIALIZED = 2

    def __str__(self) -> str:
        return self.name


@dataclass
class KeyValue:
    """A key-value pair as read from etcd."""

    key: bytes | str
    value: bytes = b""
    mod_revision: int = 0


@dataclass
class WatchEvent:
    """A watch event; ``type`` is ``"PUT"`` or ``"DELETE"``."""

    type: str
    kv: KeyValue


@dataclass
class WatchResponse:
    events: list[WatchEvent] = field(default_factory=list)
    error: Exception | None = None


class CompactedError(Exception):
    """The watched revision has been compacted away; a resync is needed."""

    def __init__(self, message: str = "etcdserver: mvcc: required revision has been compacted"):
        super().__init__(message)


class _Syncer(Protocol):
    def sync_base(self, stop: threading.Event) -> Iterable[KeyValue]:
        """All current key-values under the prefix; raises on failure."""

    def sync_updates(self, stop: threading.Event) -> Iterable[WatchResponse]:
        """Changes after the base revision, until the watch ends."""


Listener = Callable[[KeyEventType, str, "bytes | None"], None]


@dataclass
class _CacheEntry:
    kv: KeyValue
    found: bool


class RangeWatcher:
    """Watches a key prefix, resyncing from a full read whenever the watch breaks.

    ``syncer_factory(prefix)`` returns a fresh syncer for each sync round.
    Listeners see keys with the prefix removed.
    """

    def __init__(self, syncer_factory: Callable[[str], _Syncer], prefix: str):
        self.syncer_factory = syncer_factory
        self.prefix = prefix
        self.retry_delay = _RETRY_SECONDS
        self._prefix_len = len(prefix.encode())

    def _key(self, kv: KeyValue) -> str:
        raw = kv.key.encode() if isinstance(kv.key, str) else bytes(kv.key)
        return raw[self._prefix_len :].decode("utf-8", "replace")

    def run(self, listener: Listener, stop: threading.Event) -> None:
        """Deliver events to ``listener`` until ``stop`` is set."""
        log.info("EtcdRangeWatcher starting for prefix %s", self.prefix)
        init_sent = False
        cache: dict[str, _CacheEntry] = {}
        while True:
            syncer = self.syncer_factory(self.prefix)
            try:
                for kv in syncer.sync_base(stop):
                    key = self._key(kv)
                    current = cache.get(key)
                    if current is None or kv.mod_revision > current.kv.mod_revision:
                        cache[key] = _CacheEntry(kv, True)
                        listener(KeyEventType.UPDATE, key, kv.value)
                    else:
                        current.found = True
            except Exception:
                if stop.is_set():
                    return
                log.exception(
                    "Error refreshing key range %s, retrying after %ss",
                    self.prefix,
                    self.retry_delay,
                )
                if stop.wait(self.retry_delay):
                    return
                continue

            if not init_sent:
                listener(KeyEventType.INITIALIZED, "", None)
                init_sent = True
            else:
                for key, entry in list(cache.items()):
                    if not entry.found:
                        del cache[key]
                        listener(KeyEventType.DELETE, key, entry.kv.value)
                    else:
                        entry.found = False

            for response in syncer.sync_updates(stop):
                for event in response.events:
                    key = self._key(event.kv)
                    if event.type == "PUT":
                        cache[key] = _CacheEntry(event.kv, False)
                        listener(KeyEventType.UPDATE, key, event.kv.value)
                    elif event.type == "DELETE":
                        previous = cache.pop(key, None)
                        listener(
                            KeyEventType.DELETE,
                            key,
                            previous.kv.value if previous is not None else None,
                        )
                if response.error is not None:
                    if isinstance(response.error, CompactedError):
                        log.info("Received compacted error for prefix %s", self.prefix)
                        break
                    log.error("Watch failure for prefix %s: %s", self.prefix, response.error)

            if stop.is_set():
                return