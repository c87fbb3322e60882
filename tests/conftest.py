"""Shared fixtures for the JOSE tests."""

import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import NameOID

from webjose.core import jose_header, remote
from webjose.core.algorithms import Algorithm
from webjose.core.errors import RemoteResourceError
from webjose.core.web_key import WebKey


@pytest.fixture(scope="session")
def rsa_private_key():
    """One 2048-bit RSA key for the whole session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def rsa_key(rsa_private_key):
    """RSA key pair without an algorithm binding."""
    return WebKey.builder().key_id("rsa-1").key_pair(rsa_private_key).build()


@pytest.fixture
def ec_key(ec_private_key):
    return WebKey.builder().key_id("ec-1").key_pair(ec_private_key).build()


@pytest.fixture
def ed25519_key():
    return WebKey.builder().key_id("ed-1").key_pair(ed25519.Ed25519PrivateKey.generate()).build()


@pytest.fixture
def hmac_key():
    return WebKey.ephemeral(Algorithm.HS256, key_id="hmac-1")


@pytest.fixture(scope="session")
def certificate(ec_private_key):
    """Self-signed certificate for the session EC key."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "webjose test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ec_private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(ec_private_key, hashes.SHA256())
    )


class FakeFetch:
    """Serves canned bodies by URI and counts requests."""

    def __init__(self):
        self.bodies: dict[str, bytes] = {}
        self.calls: list[str] = []

    def __call__(self, uri: str) -> bytes:
        self.calls.append(uri)
        if uri not in self.bodies:
            raise RemoteResourceError(f"Not found: {uri}")
        return self.bodies[uri]


@pytest.fixture(autouse=True)
def fake_fetch(monkeypatch):
    """Route remote key set and certificate lookups to an in-memory fetcher."""
    fetch = FakeFetch()
    monkeypatch.setattr(remote, "resolver", remote.RemoteResolver(fetch=fetch, ttl_seconds=60))
    return fetch


@pytest.fixture(autouse=True)
def clean_extensions():
    """Drop extension parameters registered by a test."""
    before = set(jose_header._extensions)
    yield
    for name in set(jose_header._extensions) - before:
        jose_header.unregister_extension(name)
