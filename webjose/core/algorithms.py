"""JOSE algorithm registry (RFC 7518).

Supported JWS Algorithms:
- HS256, HS384, HS512 (HMAC)
- RS256, RS384, RS512 (RSASSA-PKCS1-v1_5)
- PS256, PS384, PS512 (RSASSA-PSS)
- ES256, ES384, ES512 (ECDSA P-256/P-384/P-521)
- EdDSA (Ed25519)

Supported JWE Algorithms:
- Key Encryption: RSA1_5, RSA-OAEP, RSA-OAEP-256
- Key Wrapping: A128KW, A192KW, A256KW, A128GCMKW, A192GCMKW, A256GCMKW
- Key Agreement: ECDH-ES, ECDH-ES+A128KW, ECDH-ES+A192KW, ECDH-ES+A256KW
- Password Based: PBES2-HS256+A128KW, PBES2-HS384+A192KW, PBES2-HS512+A256KW
- Direct: dir

Content Encryption:
- A128CBC-HS256, A192CBC-HS384, A256CBC-HS512 (AES-CBC with HMAC)
- A128GCM, A192GCM, A256GCM (AES-GCM)
"""

from dataclasses import dataclass
from enum import Enum

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from webjose.core.errors import UnsupportedAlgorithmError


class KeyUse(str, Enum):
    """Intended use of a public key (``use``)."""

    SIGN = "sig"
    ENCRYPT = "enc"


class KeyOperation(str, Enum):
    """Permitted key operations (``key_ops``)."""

    SIGN = "sign"
    VERIFY = "verify"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    WRAP_KEY = "wrapKey"
    UNWRAP_KEY = "unwrapKey"
    DERIVE_KEY = "deriveKey"
    DERIVE_BITS = "deriveBits"


class KeyType(str, Enum):
    """Key types, distinguishing EC curves and RSA padding families."""

    EC_P256 = "P-256"
    EC_P384 = "P-384"
    EC_P521 = "P-521"
    RSA = "RSA"
    RSASSA_PSS = "RSASSA-PSS"
    RAW = "oct"
    ED25519 = "Ed25519"

    @property
    def kty(self) -> str:
        """JWK ``kty`` value."""
        return _KTY[self]

    @property
    def crv(self) -> str | None:
        """JWK ``crv`` value for curve-based keys."""
        if self.kty in ("EC", "OKP"):
            return self.value
        return None

    @property
    def is_ec(self) -> bool:
        return self in _EC_CURVES

    @property
    def is_rsa(self) -> bool:
        return self in (KeyType.RSA, KeyType.RSASSA_PSS)

    def curve(self) -> ec.EllipticCurve:
        """The cryptography curve instance for an EC key type."""
        if self not in _EC_CURVES:
            raise UnsupportedAlgorithmError(f"{self.value} is not an elliptic curve key type")
        return _EC_CURVES[self]()

    @property
    def coordinate_size(self) -> int:
        """Fixed octet width of EC coordinates and private scalars."""
        return _COORDINATE_SIZES[self]

    @classmethod
    def from_jwk(cls, kty: str, crv: str | None = None) -> "KeyType":
        """Resolve a key type from JWK ``kty``/``crv`` members."""
        if kty in ("EC", "OKP"):
            for key_type in cls:
                if key_type.kty == kty and key_type.value == crv:
                    return key_type
            raise UnsupportedAlgorithmError(f"Unsupported curve: {crv}")
        if kty == "RSA":
            return cls.RSA
        if kty == "oct":
            return cls.RAW
        raise UnsupportedAlgorithmError(f"Unsupported key type: {kty}")

    @classmethod
    def from_curve(cls, curve: ec.EllipticCurve) -> "KeyType":
        for key_type, curve_class in _EC_CURVES.items():
            if isinstance(curve, curve_class):
                return key_type
        raise UnsupportedAlgorithmError(f"Unsupported curve: {curve.name}")


_KTY = {
    KeyType.EC_P256: "EC",
    KeyType.EC_P384: "EC",
    KeyType.EC_P521: "EC",
    KeyType.RSA: "RSA",
    KeyType.RSASSA_PSS: "RSA",
    KeyType.RAW: "oct",
    KeyType.ED25519: "OKP",
}

_EC_CURVES = {
    KeyType.EC_P256: ec.SECP256R1,
    KeyType.EC_P384: ec.SECP384R1,
    KeyType.EC_P521: ec.SECP521R1,
}

_COORDINATE_SIZES = {
    KeyType.EC_P256: 32,
    KeyType.EC_P384: 48,
    KeyType.EC_P521: 66,
    KeyType.ED25519: 32,
}


class AlgorithmFamily(str, Enum):
    """How an algorithm uses its key."""

    HMAC = "hmac"
    RSA_PKCS1 = "rsa-pkcs1"
    RSA_PSS = "rsa-pss"
    ECDSA = "ecdsa"
    EDDSA = "eddsa"
    RSA_ENCRYPTION = "rsa-encryption"
    AES_KEY_WRAP = "aes-kw"
    AES_GCM_KEY_WRAP = "aes-gcmkw"
    DIRECT = "direct"
    ECDH_ES = "ecdh-es"
    ECDH_ES_KEY_WRAP = "ecdh-es-kw"
    PBES2 = "pbes2"


@dataclass(frozen=True)
class _AlgorithmSpec:
    family: AlgorithmFamily
    use: KeyUse
    key_types: tuple[KeyType, ...]
    size: int = 0  # key or digest size in bits
    hash_name: str | None = None
    params: frozenset[str] = frozenset()
    required: frozenset[str] = frozenset()


_EC_TYPES = (KeyType.EC_P256, KeyType.EC_P384, KeyType.EC_P521)
_ENC_PARAMS = frozenset({"enc", "zip"})
_ECDH_PARAMS = _ENC_PARAMS | {"epk", "apu", "apv"}
_GCMKW_PARAMS = _ENC_PARAMS | {"iv", "tag"}
_PBES2_PARAMS = _ENC_PARAMS | {"p2s", "p2c"}


class Algorithm(str, Enum):
    """Supported JWS and JWE ``alg`` values."""

    HS256 = "HS256"
    HS384 = "HS384"
    HS512 = "HS512"
    RS256 = "RS256"
    RS384 = "RS384"
    RS512 = "RS512"
    PS256 = "PS256"
    PS384 = "PS384"
    PS512 = "PS512"
    ES256 = "ES256"
    ES384 = "ES384"
    ES512 = "ES512"
    EDDSA = "EdDSA"
    RSA1_5 = "RSA1_5"
    RSA_OAEP = "RSA-OAEP"  # SHA-1
    RSA_OAEP_256 = "RSA-OAEP-256"
    A128KW = "A128KW"
    A192KW = "A192KW"
    A256KW = "A256KW"
    A128GCMKW = "A128GCMKW"
    A192GCMKW = "A192GCMKW"
    A256GCMKW = "A256GCMKW"
    DIRECT = "dir"
    ECDH_ES = "ECDH-ES"
    ECDH_ES_A128KW = "ECDH-ES+A128KW"
    ECDH_ES_A192KW = "ECDH-ES+A192KW"
    ECDH_ES_A256KW = "ECDH-ES+A256KW"
    PBES2_HS256_A128KW = "PBES2-HS256+A128KW"
    PBES2_HS384_A192KW = "PBES2-HS384+A192KW"
    PBES2_HS512_A256KW = "PBES2-HS512+A256KW"

    @classmethod
    def lookup(cls, value: str) -> "Algorithm":
        """Resolve an ``alg`` value, failing closed on unknown names."""
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedAlgorithmError(f"Unsupported algorithm: {value}") from None

    @property
    def _spec(self) -> _AlgorithmSpec:
        return _ALGORITHMS[self]

    @property
    def family(self) -> AlgorithmFamily:
        return self._spec.family

    @property
    def use(self) -> KeyUse:
        return self._spec.use

    @property
    def key_types(self) -> tuple[KeyType, ...]:
        """Key types this algorithm accepts; the first is the default."""
        return self._spec.key_types

    @property
    def type(self) -> KeyType:
        return self._spec.key_types[0]

    @property
    def size(self) -> int:
        """Key size in bits for key wrapping, digest size for signatures."""
        return self._spec.size

    @property
    def params(self) -> frozenset[str]:
        """Encryption header parameters understood by this algorithm."""
        return self._spec.params

    @property
    def required_params(self) -> frozenset[str]:
        return self._spec.required

    def hash(self) -> hashes.HashAlgorithm:
        """A fresh hash instance for this algorithm's digest."""
        if self._spec.hash_name is None:
            raise UnsupportedAlgorithmError(f"{self.value} has no digest")
        return _HASHES[self._spec.hash_name]()

    def allows(self, key_type: KeyType) -> bool:
        return key_type in self._spec.key_types


_HASHES = {
    "SHA1": hashes.SHA1,
    "SHA256": hashes.SHA256,
    "SHA384": hashes.SHA384,
    "SHA512": hashes.SHA512,
}

_S = _AlgorithmSpec
_F = AlgorithmFamily
_SIG = KeyUse.SIGN
_ENC = KeyUse.ENCRYPT
_RSA_TYPES = (KeyType.RSA,)
_PSS_TYPES = (KeyType.RSASSA_PSS, KeyType.RSA)

_ALGORITHMS: dict[Algorithm, _AlgorithmSpec] = {
    Algorithm.HS256: _S(_F.HMAC, _SIG, (KeyType.RAW,), 256, "SHA256"),
    Algorithm.HS384: _S(_F.HMAC, _SIG, (KeyType.RAW,), 384, "SHA384"),
    Algorithm.HS512: _S(_F.HMAC, _SIG, (KeyType.RAW,), 512, "SHA512"),
    Algorithm.RS256: _S(_F.RSA_PKCS1, _SIG, _RSA_TYPES, 256, "SHA256"),
    Algorithm.RS384: _S(_F.RSA_PKCS1, _SIG, _RSA_TYPES, 384, "SHA384"),
    Algorithm.RS512: _S(_F.RSA_PKCS1, _SIG, _RSA_TYPES, 512, "SHA512"),
    Algorithm.PS256: _S(_F.RSA_PSS, _SIG, _PSS_TYPES, 256, "SHA256"),
    Algorithm.PS384: _S(_F.RSA_PSS, _SIG, _PSS_TYPES, 384, "SHA384"),
    Algorithm.PS512: _S(_F.RSA_PSS, _SIG, _PSS_TYPES, 512, "SHA512"),
    Algorithm.ES256: _S(_F.ECDSA, _SIG, (KeyType.EC_P256,), 256, "SHA256"),
    Algorithm.ES384: _S(_F.ECDSA, _SIG, (KeyType.EC_P384,), 384, "SHA384"),
    Algorithm.ES512: _S(_F.ECDSA, _SIG, (KeyType.EC_P521,), 512, "SHA512"),
    Algorithm.EDDSA: _S(_F.EDDSA, _SIG, (KeyType.ED25519,)),
    Algorithm.RSA1_5: _S(_F.RSA_ENCRYPTION, _ENC, _RSA_TYPES, 2048, None, _ENC_PARAMS),
    Algorithm.RSA_OAEP: _S(_F.RSA_ENCRYPTION, _ENC, _RSA_TYPES, 2048, "SHA1", _ENC_PARAMS),
    Algorithm.RSA_OAEP_256: _S(_F.RSA_ENCRYPTION, _ENC, _RSA_TYPES, 2048, "SHA256", _ENC_PARAMS),
    Algorithm.A128KW: _S(_F.AES_KEY_WRAP, _ENC, (KeyType.RAW,), 128, None, _ENC_PARAMS),
    Algorithm.A192KW: _S(_F.AES_KEY_WRAP, _ENC, (KeyType.RAW,), 192, None, _ENC_PARAMS),
    Algorithm.A256KW: _S(_F.AES_KEY_WRAP, _ENC, (KeyType.RAW,), 256, None, _ENC_PARAMS),
    Algorithm.A128GCMKW: _S(
        _F.AES_GCM_KEY_WRAP, _ENC, (KeyType.RAW,), 128, None, _GCMKW_PARAMS, frozenset({"iv", "tag"})
    ),
    Algorithm.A192GCMKW: _S(
        _F.AES_GCM_KEY_WRAP, _ENC, (KeyType.RAW,), 192, None, _GCMKW_PARAMS, frozenset({"iv", "tag"})
    ),
    Algorithm.A256GCMKW: _S(
        _F.AES_GCM_KEY_WRAP, _ENC, (KeyType.RAW,), 256, None, _GCMKW_PARAMS, frozenset({"iv", "tag"})
    ),
    Algorithm.DIRECT: _S(_F.DIRECT, _ENC, (KeyType.RAW,), 256, None, _ENC_PARAMS),
    Algorithm.ECDH_ES: _S(_F.ECDH_ES, _ENC, _EC_TYPES, 0, None, _ECDH_PARAMS, frozenset({"epk"})),
    Algorithm.ECDH_ES_A128KW: _S(
        _F.ECDH_ES_KEY_WRAP, _ENC, _EC_TYPES, 128, None, _ECDH_PARAMS, frozenset({"epk"})
    ),
    Algorithm.ECDH_ES_A192KW: _S(
        _F.ECDH_ES_KEY_WRAP, _ENC, _EC_TYPES, 192, None, _ECDH_PARAMS, frozenset({"epk"})
    ),
    Algorithm.ECDH_ES_A256KW: _S(
        _F.ECDH_ES_KEY_WRAP, _ENC, _EC_TYPES, 256, None, _ECDH_PARAMS, frozenset({"epk"})
    ),
    Algorithm.PBES2_HS256_A128KW: _S(
        _F.PBES2, _ENC, (KeyType.RAW,), 128, "SHA256", _PBES2_PARAMS, frozenset({"p2s", "p2c"})
    ),
    Algorithm.PBES2_HS384_A192KW: _S(
        _F.PBES2, _ENC, (KeyType.RAW,), 192, "SHA384", _PBES2_PARAMS, frozenset({"p2s", "p2c"})
    ),
    Algorithm.PBES2_HS512_A256KW: _S(
        _F.PBES2, _ENC, (KeyType.RAW,), 256, "SHA512", _PBES2_PARAMS, frozenset({"p2s", "p2c"})
    ),
}


class Encryption(str, Enum):
    """Supported JWE content encryption (``enc``) values."""

    A128CBC_HS256 = "A128CBC-HS256"  # AES-128-CBC + HMAC-SHA-256
    A192CBC_HS384 = "A192CBC-HS384"  # AES-192-CBC + HMAC-SHA-384
    A256CBC_HS512 = "A256CBC-HS512"  # AES-256-CBC + HMAC-SHA-512
    A128GCM = "A128GCM"  # AES-128-GCM
    A192GCM = "A192GCM"  # AES-192-GCM
    A256GCM = "A256GCM"  # AES-256-GCM

    @classmethod
    def lookup(cls, value: str) -> "Encryption":
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedAlgorithmError(f"Unsupported encryption: {value}") from None

    @property
    def size(self) -> int:
        """CEK size in bits; CBC-HMAC keys carry the MAC half as well."""
        return _CEK_BITS[self]

    @property
    def key_bytes(self) -> int:
        return self.size // 8

    @property
    def is_gcm(self) -> bool:
        return self in (Encryption.A128GCM, Encryption.A192GCM, Encryption.A256GCM)

    @property
    def iv_size(self) -> int:
        """IV length in bytes."""
        return 12 if self.is_gcm else 16

    def mac_hash(self) -> hashes.HashAlgorithm:
        if self.is_gcm:
            raise UnsupportedAlgorithmError(f"{self.value} has no separate MAC")
        return _MAC_HASHES[self]()


_CEK_BITS = {
    Encryption.A128CBC_HS256: 256,
    Encryption.A192CBC_HS384: 384,
    Encryption.A256CBC_HS512: 512,
    Encryption.A128GCM: 128,
    Encryption.A192GCM: 192,
    Encryption.A256GCM: 256,
}

_MAC_HASHES = {
    Encryption.A128CBC_HS256: hashes.SHA256,
    Encryption.A192CBC_HS384: hashes.SHA384,
    Encryption.A256CBC_HS512: hashes.SHA512,
}
