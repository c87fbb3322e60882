"""Binary and text codec primitives shared by the JOSE engines.

Covers unpadded base64url (RFC 7515 Section 2), compact serialization
segments, unsigned big-endian integers, digests and the Concat KDF used by
ECDH-ES key agreement (RFC 7518 Section 4.6.2).
"""

import base64
import binascii
import hashlib
import json
import re
import struct
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.concatkdf import ConcatKDFHash

from webjose.core.errors import ValidationError

_B64URL = re.compile(r"^[A-Za-z0-9_-]*$")


def b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Base64url decode an unpadded value.

    Raises:
        ValidationError: If the value carries padding or non-alphabet characters
    """
    if not isinstance(data, str) or not _B64URL.match(data) or len(data) % 4 == 1:
        raise ValidationError(f"Invalid base64url value: {data!r}")
    padding = 4 - len(data) % 4
    if padding != 4:
        data += "=" * padding
    try:
        return base64.urlsafe_b64decode(data)
    except binascii.Error as e:
        raise ValidationError(f"Invalid base64url value: {e}") from e


def b64_encode(data: bytes) -> str:
    """Standard base64 with padding, as used by x5c entries."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(data: str) -> bytes:
    """Decode standard base64, ignoring embedded whitespace."""
    try:
        return base64.b64decode("".join(data.split()), validate=True)
    except (binascii.Error, AttributeError) as e:
        raise ValidationError(f"Invalid base64 value: {e}") from e


def utf8(text: str) -> bytes:
    """Encode text as UTF-8."""
    return text.encode("utf-8")


def split_compact(value: str, count: int) -> list[str]:
    """Split a compact serialization into exactly ``count`` segments."""
    parts = value.strip().split(".")
    if len(parts) != count:
        raise ValidationError(f"Expected {count} compact segments, found {len(parts)}")
    return parts


def int_to_bytes(value: int, length: int | None = None) -> bytes:
    """Unsigned big-endian encoding, minimal unless a fixed width is given."""
    if value < 0:
        raise ValidationError("Negative integers have no unsigned encoding")
    if length is None:
        length = max(1, (value.bit_length() + 7) // 8)
    try:
        return value.to_bytes(length, "big")
    except OverflowError as e:
        raise ValidationError(f"Integer does not fit in {length} bytes") from e


def bytes_to_int(data: bytes) -> int:
    """Decode an unsigned big-endian integer."""
    return int.from_bytes(data, "big")


def sha1(data: bytes) -> bytes:
    return hashlib.sha1(data).digest()


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def concat_kdf(
    shared_secret: bytes,
    key_bits: int,
    algorithm_id: str,
    apu: bytes = b"",
    apv: bytes = b"",
) -> bytes:
    """Derive a key with the single-step Concat KDF over SHA-256.

    Args:
        shared_secret: ECDH shared secret Z
        key_bits: Length of the derived key in bits
        algorithm_id: AlgorithmID, the ``enc`` value for direct agreement or
            the ``alg`` value when the agreed key wraps a CEK
        apu: Agreement PartyUInfo
        apv: Agreement PartyVInfo

    Returns:
        Derived key bytes
    """
    alg_id = algorithm_id.encode("ascii")
    # AlgorithmID || PartyUInfo || PartyVInfo || SuppPubInfo
    other_info = (
        struct.pack(">I", len(alg_id))
        + alg_id
        + struct.pack(">I", len(apu))
        + apu
        + struct.pack(">I", len(apv))
        + apv
        + struct.pack(">I", key_bits)
    )
    ckdf = ConcatKDFHash(
        algorithm=hashes.SHA256(),
        length=key_bits // 8,
        otherinfo=other_info,
    )
    return ckdf.derive(shared_secret)


def json_dumps(value: Any) -> str:
    """Serialize without whitespace, keeping insertion order."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def json_loads(text: str | bytes) -> dict:
    """Parse a JSON object.

    Raises:
        ValidationError: If the text is not a JSON object
    """
    try:
        value = json.loads(text)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ValidationError("Expected a JSON object")
    return value
