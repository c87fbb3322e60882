"""JOSE core: keys, headers, signatures and encryption."""

from webjose.core.algorithms import Algorithm, Encryption, KeyOperation, KeyType, KeyUse
from webjose.core.errors import (
    CryptographicError,
    InvalidJWEError,
    InvalidJWSError,
    JOSEError,
    KeyNotFoundError,
    RemoteResourceError,
    UnsupportedAlgorithmError,
    ValidationError,
)
from webjose.core.jose_header import JoseHeader, JoseHeaderBuilder, register_extension
from webjose.core.jwe import EncryptedMessage, JweBuilder, JweRecipient
from webjose.core.jws import JwsBuilder, JwsSignature, SignedPayload
from webjose.core.web_key import WebKey, WebKeyBuilder, find_jwk, parse_jwks, read_jwks, write_jwks

__all__ = [
    "Algorithm",
    "Encryption",
    "KeyOperation",
    "KeyType",
    "KeyUse",
    "JOSEError",
    "ValidationError",
    "KeyNotFoundError",
    "UnsupportedAlgorithmError",
    "CryptographicError",
    "InvalidJWSError",
    "InvalidJWEError",
    "RemoteResourceError",
    "JoseHeader",
    "JoseHeaderBuilder",
    "register_extension",
    "EncryptedMessage",
    "JweBuilder",
    "JweRecipient",
    "JwsBuilder",
    "JwsSignature",
    "SignedPayload",
    "WebKey",
    "WebKeyBuilder",
    "find_jwk",
    "parse_jwks",
    "read_jwks",
    "write_jwks",
]
