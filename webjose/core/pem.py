"""PEM block scanning.

Splits concatenated ``-----BEGIN ...-----`` / ``-----END ...-----`` blocks
and classifies each as a public key, private key or certificate.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from webjose.core.codec import b64_decode, b64_encode
from webjose.core.errors import ValidationError

_BLOCK = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----(.*?)-----END \1-----",
    re.DOTALL,
)


class PemKind(str, Enum):
    """Supported PEM block labels."""

    PUBLIC_KEY = "PUBLIC KEY"
    PRIVATE_KEY = "PRIVATE KEY"
    CERTIFICATE = "CERTIFICATE"


@dataclass(frozen=True)
class PemBlock:
    """One decoded PEM block."""

    kind: PemKind
    der: bytes


def iter_pem(text: str) -> Iterator[PemBlock]:
    """Yield the blocks of a PEM document in order.

    Text that carries no ``BEGIN`` marker is read as the bare base64 DER
    encoding of a single certificate.

    Raises:
        ValidationError: On an unsupported label or malformed content
    """
    stripped = text.strip()
    if not stripped.startswith("-----BEGIN "):
        yield PemBlock(PemKind.CERTIFICATE, b64_decode(stripped))
        return

    found = False
    for match in _BLOCK.finditer(stripped):
        label = match.group(1)
        try:
            kind = PemKind(label)
        except ValueError:
            raise ValidationError(f"Unsupported PEM block: {label}") from None
        found = True
        yield PemBlock(kind, b64_decode(match.group(2)))
    if not found:
        raise ValidationError("No complete PEM block found")


def load_certificate(der: bytes) -> x509.Certificate:
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise ValidationError(f"Invalid certificate: {e}") from e


def load_private_key(der: bytes):
    try:
        return serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid private key: {e}") from e


def load_public_key(der: bytes):
    try:
        return serialization.load_der_public_key(der)
    except ValueError as e:
        raise ValidationError(f"Invalid public key: {e}") from e


def parse_certificate_chain(text: str) -> tuple[x509.Certificate, ...]:
    """Parse a PEM certificate chain, leaf first."""
    chain = []
    for block in iter_pem(text):
        if block.kind != PemKind.CERTIFICATE:
            raise ValidationError(f"Expected CERTIFICATE block, found {block.kind.value}")
        chain.append(load_certificate(block.der))
    if not chain:
        raise ValidationError("Empty certificate chain")
    return tuple(chain)


def to_pem(kind: PemKind, der: bytes) -> str:
    """Encode DER bytes as a PEM block with 64-column lines."""
    body = b64_encode(der)
    lines = [body[i : i + 64] for i in range(0, len(body), 64)]
    return "\n".join([f"-----BEGIN {kind.value}-----", *lines, f"-----END {kind.value}-----"]) + "\n"
