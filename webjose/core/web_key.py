"""JSON Web Key model (RFC 7517).

A ``WebKey`` is immutable. Keys are assembled with ``WebKeyBuilder`` from
raw symmetric bytes, cryptography key objects, X.509 certificate chains or
PEM text, or parsed from JWK / JWKS JSON. ``well_known()`` projects a key
onto its public material for publishing in headers and key sets.
"""

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from typing import IO, Any, Iterable

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from webjose.core import remote
from webjose.core.algorithms import (
    Algorithm,
    AlgorithmFamily,
    Encryption,
    KeyOperation,
    KeyType,
    KeyUse,
)
from webjose.core.codec import (
    b64_decode,
    b64_encode,
    b64url_decode,
    b64url_encode,
    bytes_to_int,
    int_to_bytes,
    json_dumps,
    json_loads,
    sha1,
    sha256,
)
from webjose.core.errors import (
    KeyNotFoundError,
    UnsupportedAlgorithmError,
    ValidationError,
)
from webjose.core.pem import (
    PemKind,
    iter_pem,
    load_certificate,
    load_private_key,
    load_public_key,
    parse_certificate_chain,
    to_pem,
)

logger = logging.getLogger(__name__)

PublicKey = rsa.RSAPublicKey | ec.EllipticCurvePublicKey | ed25519.Ed25519PublicKey
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey

_RSA_PRIVATE_FIELDS = ("d", "p", "q", "dp", "dq", "qi")


def _public_der(key: Any) -> bytes:
    """SubjectPublicKeyInfo DER of a public or private key object."""
    if hasattr(key, "private_bytes"):
        key = key.public_key()
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def same_value(current: Any, value: Any) -> bool:
    """Equality that compares key objects by their encoded form."""
    if current is value:
        return True
    if isinstance(current, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey)):
        return _private_der(current) == _private_der(value)
    if isinstance(current, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey)):
        try:
            return _public_der(current) == _public_der(value)
        except AttributeError:
            return False
    return current == value


def _private_der(key: Any) -> bytes:
    try:
        return key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except AttributeError:
        return b""


def _key_type_of(key: Any) -> KeyType:
    """Infer the key type of a cryptography key object."""
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return KeyType.RSA
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        return KeyType.from_curve(key.curve)
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed25519.Ed25519PublicKey)):
        return KeyType.ED25519
    raise UnsupportedAlgorithmError(f"Unsupported key object: {type(key).__name__}")


def certificate_der(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.DER)


@dataclass(frozen=True, eq=False)
class WebKey:
    """JSON Web Key."""

    type: KeyType
    id: str | None = None
    use: KeyUse | None = None
    algorithm: Algorithm | None = None
    ops: frozenset[KeyOperation] | None = None
    raw_key: bytes | None = None
    public_key: PublicKey | None = None
    private_key: PrivateKey | None = None
    certificate_uri: str | None = None
    certificate_chain: tuple[x509.Certificate, ...] | None = None
    certificate_thumbprint: bytes | None = None
    certificate_sha256_thumbprint: bytes | None = None

    @staticmethod
    def builder(key_type: KeyType | None = None) -> "WebKeyBuilder":
        return WebKeyBuilder(key_type)

    @classmethod
    def parse(cls, text: str | bytes) -> "WebKey":
        """Parse a JWK JSON document."""
        return cls.from_dict(json_loads(text))

    @classmethod
    def from_dict(cls, data: dict) -> "WebKey":
        """Create a key from JWK members.

        Raises:
            ValidationError: If members are missing or inconsistent
            UnsupportedAlgorithmError: If ``kty``, ``crv`` or ``alg`` is unknown
        """
        return WebKeyBuilder().jwk(data).build()

    @classmethod
    def ephemeral(cls, spec: Algorithm | Encryption, key_id: str | None = None) -> "WebKey":
        """Generate a fresh key suitable for an algorithm or content encryption.

        Args:
            spec: ``alg`` the key will be used with, or an ``enc`` for a CEK
            key_id: Optional key ID

        Returns:
            Newly generated key
        """
        builder = WebKeyBuilder()
        if key_id is not None:
            builder.key_id(key_id)

        if isinstance(spec, Encryption):
            return builder.use(KeyUse.ENCRYPT).raw_key(os.urandom(spec.key_bytes)).build()

        builder.algorithm(spec)
        family = spec.family
        if family in (AlgorithmFamily.RSA_PKCS1, AlgorithmFamily.RSA_PSS, AlgorithmFamily.RSA_ENCRYPTION):
            builder.key_type(spec.type)
            builder.key_pair(rsa.generate_private_key(public_exponent=65537, key_size=2048))
        elif spec.type.is_ec:
            builder.key_pair(ec.generate_private_key(spec.type.curve()))
        elif family == AlgorithmFamily.EDDSA:
            builder.key_pair(ed25519.Ed25519PrivateKey.generate())
        elif family == AlgorithmFamily.PBES2:
            builder.raw_key(os.urandom(32))
        else:
            builder.raw_key(os.urandom(spec.size // 8))
        return builder.build()

    # ==================== Projections ====================

    def well_known(self) -> "WebKey":
        """Public-only view of this key, safe to publish."""
        if self.raw_key is None and self.private_key is None:
            return self
        return dataclasses.replace(self, raw_key=None, private_key=None)

    @property
    def is_well_known(self) -> bool:
        return self.raw_key is None and self.private_key is None

    def same_public_key(self, other: "WebKey") -> bool:
        """True when both keys carry the same public key."""
        if self.public_key is None or other.public_key is None:
            return False
        return _public_der(self.public_key) == _public_der(other.public_key)

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        """JWK members of this key, including any private material it holds."""
        data: dict[str, Any] = {"kty": self.type.kty}
        if self.id is not None:
            data["kid"] = self.id
        if self.use is not None:
            data["use"] = self.use.value
        if self.algorithm is not None:
            data["alg"] = self.algorithm.value
        if self.ops:
            data["key_ops"] = sorted(op.value for op in self.ops)

        if self.type == KeyType.RAW:
            if self.raw_key is not None:
                data["k"] = b64url_encode(self.raw_key)
        elif self.type.is_rsa:
            self._rsa_members(data)
        elif self.type.is_ec:
            self._ec_members(data)
        elif self.type == KeyType.ED25519:
            self._okp_members(data)

        if self.certificate_uri is not None:
            data["x5u"] = self.certificate_uri
        if self.certificate_chain:
            data["x5c"] = [b64_encode(certificate_der(c)) for c in self.certificate_chain]
        if self.certificate_thumbprint is not None:
            data["x5t"] = b64url_encode(self.certificate_thumbprint)
        if self.certificate_sha256_thumbprint is not None:
            data["x5t#S256"] = b64url_encode(self.certificate_sha256_thumbprint)
        return data

    def _rsa_members(self, data: dict) -> None:
        numbers = self.public_key.public_numbers()
        data["n"] = b64url_encode(int_to_bytes(numbers.n))
        data["e"] = b64url_encode(int_to_bytes(numbers.e))
        if self.private_key is not None:
            private = self.private_key.private_numbers()
            values = (private.d, private.p, private.q, private.dmp1, private.dmq1, private.iqmp)
            for name, value in zip(_RSA_PRIVATE_FIELDS, values):
                data[name] = b64url_encode(int_to_bytes(value))

    def _ec_members(self, data: dict) -> None:
        size = self.type.coordinate_size
        numbers = self.public_key.public_numbers()
        data["crv"] = self.type.crv
        data["x"] = b64url_encode(int_to_bytes(numbers.x, size))
        data["y"] = b64url_encode(int_to_bytes(numbers.y, size))
        if self.private_key is not None:
            d = self.private_key.private_numbers().private_value
            data["d"] = b64url_encode(int_to_bytes(d, size))

    def _okp_members(self, data: dict) -> None:
        data["crv"] = self.type.crv
        data["x"] = b64url_encode(
            self.public_key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
        )
        if self.private_key is not None:
            data["d"] = b64url_encode(
                self.private_key.private_bytes(
                    encoding=serialization.Encoding.Raw,
                    format=serialization.PrivateFormat.Raw,
                    encryption_algorithm=serialization.NoEncryption(),
                )
            )

    def to_json(self) -> str:
        return json_dumps(self.to_dict())

    def to_pem(self) -> str:
        """PEM encoding: private key (PKCS#8) or public key, then the chain."""
        if self.type == KeyType.RAW:
            raise ValidationError("Symmetric keys have no PEM encoding")
        parts = []
        if self.private_key is not None:
            parts.append(
                self.private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption(),
                ).decode("ascii")
            )
        elif self.public_key is not None:
            parts.append(to_pem(PemKind.PUBLIC_KEY, _public_der(self.public_key)))
        for certificate in self.certificate_chain or ():
            parts.append(to_pem(PemKind.CERTIFICATE, certificate_der(certificate)))
        return "".join(parts)

    def thumbprint(self) -> str:
        """RFC 7638 SHA-256 thumbprint, base64url encoded."""
        members = self.to_dict()
        kty = self.type.kty
        if kty == "EC":
            required = ("crv", "kty", "x", "y")
        elif kty == "OKP":
            required = ("crv", "kty", "x")
        elif kty == "RSA":
            required = ("e", "kty", "n")
        else:
            required = ("k", "kty")
        if any(name not in members for name in required):
            raise ValidationError("Key lacks the members required for a thumbprint")
        canonical = json.dumps({name: members[name] for name in required}, separators=(",", ":"), sort_keys=True)
        return b64url_encode(sha256(canonical.encode("utf-8")))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WebKey):
            return NotImplemented
        return self.type == other.type and self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(self.to_json())

    def __repr__(self) -> str:
        return f"WebKey(type={self.type.value}, id={self.id!r}, algorithm={self.algorithm and self.algorithm.value})"


class WebKeyBuilder:
    """Set-once builder for ``WebKey``.

    Every setter raises ``ValidationError`` when the field already holds a
    different value. Cross-field checks run in ``build()``.
    """

    def __init__(self, key_type: KeyType | None = None):
        self._fields: dict[str, Any] = {}
        if key_type is not None:
            self.key_type(key_type)

    def _set(self, name: str, value: Any) -> "WebKeyBuilder":
        if value is None:
            return self
        current = self._fields.get(name)
        if current is not None and not same_value(current, value):
            raise ValidationError(f"Key {name} already set to a different value")
        self._fields[name] = value
        return self

    def key_type(self, key_type: KeyType) -> "WebKeyBuilder":
        return self._set("type", key_type)

    def key_id(self, key_id: str) -> "WebKeyBuilder":
        return self._set("id", key_id)

    def use(self, use: KeyUse) -> "WebKeyBuilder":
        return self._set("use", use)

    def algorithm(self, algorithm: Algorithm) -> "WebKeyBuilder":
        return self._set("algorithm", algorithm)

    def ops(self, *ops: KeyOperation) -> "WebKeyBuilder":
        return self._set("ops", frozenset(ops))

    def raw_key(self, key: bytes) -> "WebKeyBuilder":
        if not isinstance(key, (bytes, bytearray)) or not key:
            raise ValidationError("Raw key must be non-empty bytes")
        return self._set("raw_key", bytes(key))

    def public_key(self, key: PublicKey) -> "WebKeyBuilder":
        if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey)):
            raise UnsupportedAlgorithmError(f"Unsupported public key: {type(key).__name__}")
        return self._set("public_key", key)

    def key_pair(self, private_key: PrivateKey, public_key: PublicKey | None = None) -> "WebKeyBuilder":
        """Attach a private key and, optionally, its public half."""
        if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey)):
            raise UnsupportedAlgorithmError(f"Unsupported private key: {type(private_key).__name__}")
        self._set("private_key", private_key)
        if public_key is not None:
            self.public_key(public_key)
        return self

    def certificate_uri(self, uri: str) -> "WebKeyBuilder":
        return self._set("certificate_uri", uri)

    def certificate_chain(self, *chain: x509.Certificate) -> "WebKeyBuilder":
        """Attach an X.509 chain, leaf first."""
        if not chain:
            raise ValidationError("Certificate chain must not be empty")
        return self._set("certificate_chain", tuple(chain))

    def certificate_thumbprint(self, thumbprint: bytes) -> "WebKeyBuilder":
        return self._set("certificate_thumbprint", thumbprint)

    def certificate_sha256_thumbprint(self, thumbprint: bytes) -> "WebKeyBuilder":
        return self._set("certificate_sha256_thumbprint", thumbprint)

    def pem(self, source: str | bytes | IO) -> "WebKeyBuilder":
        """Read keys and certificates from PEM text or a readable stream."""
        if hasattr(source, "read"):
            source = source.read()
        if isinstance(source, bytes):
            source = source.decode("ascii")
        chain = []
        for block in iter_pem(source):
            if block.kind == PemKind.PRIVATE_KEY:
                self.key_pair(load_private_key(block.der))
            elif block.kind == PemKind.PUBLIC_KEY:
                self.public_key(load_public_key(block.der))
            else:
                chain.append(load_certificate(block.der))
        if chain:
            self.certificate_chain(*chain)
        return self

    def jwk(self, data: dict) -> "WebKeyBuilder":
        """Load the members of a parsed JWK object."""
        if not isinstance(data, dict) or "kty" not in data:
            raise ValidationError("JWK requires a 'kty' member")

        alg = data.get("alg")
        if alg is not None:
            self.algorithm(Algorithm.lookup(alg))
        key_type = KeyType.from_jwk(data["kty"], data.get("crv"))
        if key_type == KeyType.RSA and alg is not None and Algorithm(alg).type == KeyType.RSASSA_PSS:
            key_type = KeyType.RSASSA_PSS
        self.key_type(key_type)

        if "kid" in data:
            self.key_id(data["kid"])
        if "use" in data:
            try:
                self.use(KeyUse(data["use"]))
            except ValueError:
                raise ValidationError(f"Unknown key use: {data['use']}") from None
        if "key_ops" in data:
            try:
                self.ops(*(KeyOperation(op) for op in data["key_ops"]))
            except (ValueError, TypeError):
                raise ValidationError(f"Invalid key_ops: {data['key_ops']}") from None

        if key_type == KeyType.RAW:
            self.raw_key(b64url_decode(_member(data, "k")))
        elif key_type.is_rsa:
            self._rsa_jwk(data)
        elif key_type.is_ec:
            self._ec_jwk(data, key_type)
        else:
            self._okp_jwk(data)

        if "x5u" in data:
            self.certificate_uri(data["x5u"])
        if "x5c" in data:
            self.certificate_chain(*(load_certificate(b64_decode(c)) for c in data["x5c"]))
        if "x5t" in data:
            self.certificate_thumbprint(b64url_decode(data["x5t"]))
        if "x5t#S256" in data:
            self.certificate_sha256_thumbprint(b64url_decode(data["x5t#S256"]))
        return self

    def _rsa_jwk(self, data: dict) -> None:
        n = bytes_to_int(b64url_decode(_member(data, "n")))
        e = bytes_to_int(b64url_decode(_member(data, "e")))
        public_numbers = rsa.RSAPublicNumbers(e, n)
        if "d" not in data:
            self.public_key(_load_numbers(public_numbers.public_key))
            return
        d = bytes_to_int(b64url_decode(data["d"]))
        if all(name in data for name in _RSA_PRIVATE_FIELDS):
            p, q, dp, dq, qi = (bytes_to_int(b64url_decode(data[name])) for name in _RSA_PRIVATE_FIELDS[1:])
        else:
            p, q = rsa.rsa_recover_prime_factors(n, e, d)
            dp, dq, qi = rsa.rsa_crt_dmp1(d, p), rsa.rsa_crt_dmq1(d, q), rsa.rsa_crt_iqmp(p, q)
        private_numbers = rsa.RSAPrivateNumbers(p, q, d, dp, dq, qi, public_numbers)
        self.key_pair(_load_numbers(private_numbers.private_key))

    def _ec_jwk(self, data: dict, key_type: KeyType) -> None:
        size = key_type.coordinate_size
        x_bytes = b64url_decode(_member(data, "x"))
        y_bytes = b64url_decode(_member(data, "y"))
        if len(x_bytes) != size or len(y_bytes) != size:
            raise ValidationError(f"EC coordinates must be {size} bytes for {key_type.value}")
        public_numbers = ec.EllipticCurvePublicNumbers(
            bytes_to_int(x_bytes), bytes_to_int(y_bytes), key_type.curve()
        )
        if "d" in data:
            d = bytes_to_int(b64url_decode(data["d"]))
            private_numbers = ec.EllipticCurvePrivateNumbers(d, public_numbers)
            self.key_pair(_load_numbers(private_numbers.private_key))
        else:
            self.public_key(_load_numbers(public_numbers.public_key))

    def _okp_jwk(self, data: dict) -> None:
        x = b64url_decode(_member(data, "x"))
        try:
            public_key = ed25519.Ed25519PublicKey.from_public_bytes(x)
            if "d" in data:
                private_key = ed25519.Ed25519PrivateKey.from_private_bytes(b64url_decode(data["d"]))
                self.key_pair(private_key, public_key)
            else:
                self.public_key(public_key)
        except ValueError as e:
            raise ValidationError(f"Invalid Ed25519 key: {e}") from e

    def ephemeral(self, spec: Algorithm | Encryption) -> "WebKeyBuilder":
        """Populate this builder with freshly generated key material."""
        key = WebKey.ephemeral(spec)
        if key.raw_key is not None:
            self.raw_key(key.raw_key)
        else:
            self.key_pair(key.private_key, key.public_key)
        if key.algorithm is not None:
            self.algorithm(key.algorithm)
        return self

    # ==================== Validation ====================

    def build(self) -> WebKey:
        """Validate the collected fields and create the key.

        Raises:
            ValidationError: On inconsistent fields or missing key material
        """
        f = dict(self._fields)
        private_key = f.get("private_key")
        public_key = f.get("public_key")
        chain = f.get("certificate_chain")
        algorithm = f.get("algorithm")

        if private_key is not None:
            derived = private_key.public_key()
            if public_key is None:
                public_key = derived
            else:
                _check_pair(derived, public_key)

        if chain:
            leaf_key = chain[0].public_key()
            if public_key is None:
                public_key = leaf_key
            elif _public_der(leaf_key) != _public_der(public_key):
                raise ValidationError("Certificate chain does not match the public key")
            leaf_der = certificate_der(chain[0])
            thumbprint = f.get("certificate_thumbprint")
            if thumbprint is not None and thumbprint != sha1(leaf_der):
                raise ValidationError("Certificate thumbprint mismatch")
            thumbprint256 = f.get("certificate_sha256_thumbprint")
            if thumbprint256 is not None and thumbprint256 != sha256(leaf_der):
                raise ValidationError("Certificate SHA-256 thumbprint mismatch")

        key_type = self._resolve_type(f.get("type"), algorithm, public_key, f.get("raw_key"))

        if key_type == KeyType.RAW:
            if public_key is not None:
                raise ValidationError("Symmetric keys cannot carry asymmetric key material")
        elif f.get("raw_key") is not None:
            raise ValidationError(f"{key_type.value} keys cannot carry raw key bytes")

        use = f.get("use")
        if algorithm is not None:
            if not algorithm.allows(key_type):
                raise ValidationError(f"Algorithm {algorithm.value} does not accept {key_type.value} keys")
            if use is None:
                use = algorithm.use
            elif use != algorithm.use:
                raise ValidationError(f"Algorithm {algorithm.value} is not for use '{use.value}'")

        return WebKey(
            type=key_type,
            id=f.get("id"),
            use=use,
            algorithm=algorithm,
            ops=f.get("ops"),
            raw_key=f.get("raw_key"),
            public_key=public_key,
            private_key=private_key,
            certificate_uri=f.get("certificate_uri"),
            certificate_chain=chain,
            certificate_thumbprint=f.get("certificate_thumbprint"),
            certificate_sha256_thumbprint=f.get("certificate_sha256_thumbprint"),
        )

    @staticmethod
    def _resolve_type(
        explicit: KeyType | None,
        algorithm: Algorithm | None,
        public_key: PublicKey | None,
        raw_key: bytes | None,
    ) -> KeyType:
        inferred = None
        if public_key is not None:
            inferred = _key_type_of(public_key)
        elif raw_key is not None:
            inferred = KeyType.RAW

        key_type = explicit
        if key_type is None and algorithm is not None:
            if inferred is not None and algorithm.allows(inferred):
                key_type = inferred
            else:
                key_type = algorithm.type
        if key_type is None:
            key_type = inferred
        if key_type is None:
            raise ValidationError("Key has no key material and no type")

        if inferred is not None and inferred != key_type:
            if not (inferred == KeyType.RSA and key_type == KeyType.RSASSA_PSS):
                raise ValidationError(f"Key material is {inferred.value}, not {key_type.value}")
        if inferred is None and key_type != KeyType.RAW:
            raise ValidationError(f"{key_type.value} key requires a public key, key pair or certificate")
        if inferred is None:
            raise ValidationError("Symmetric key requires raw key bytes")
        return key_type


def _member(data: dict, name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str):
        raise ValidationError(f"JWK member '{name}' is required")
    return value


def _load_numbers(loader) -> Any:
    try:
        return loader()
    except ValueError as e:
        raise ValidationError(f"Invalid key parameters: {e}") from e


def _check_pair(derived: PublicKey, public_key: PublicKey) -> None:
    """Private and public halves must share curve or modulus."""
    if isinstance(derived, ec.EllipticCurvePublicKey):
        if not isinstance(public_key, ec.EllipticCurvePublicKey) or derived.curve.name != public_key.curve.name:
            raise ValidationError("EC key pair curves differ")
    elif isinstance(derived, rsa.RSAPublicKey):
        if not isinstance(public_key, rsa.RSAPublicKey) or derived.public_numbers().n != public_key.public_numbers().n:
            raise ValidationError("RSA key pair moduli differ")
    if _public_der(derived) != _public_der(public_key):
        raise ValidationError("Public key does not belong to the private key")


# ==================== Key Sets ====================


def parse_jwks(text: str | bytes) -> tuple[WebKey, ...]:
    """Parse a JWKS document."""
    data = json_loads(text)
    keys = data.get("keys")
    if not isinstance(keys, list):
        raise ValidationError("JWKS requires a 'keys' array")
    return tuple(WebKey.from_dict(key) for key in keys)


def write_jwks(keys: Iterable[WebKey], well_known: bool = True) -> str:
    """Serialize keys as a JWKS document, public members only by default."""
    members = [(key.well_known() if well_known else key).to_dict() for key in keys]
    return json_dumps({"keys": members})


def read_jwks(uri: str) -> tuple[WebKey, ...]:
    """Fetch a remote key set, cached by URI."""
    return remote.resolver.load("jwks", uri, parse_jwks)


def find_jwk(uri: str, key_id: str) -> WebKey:
    """Find a key by id in a remote key set.

    Raises:
        KeyNotFoundError: If the set holds no key with that id
    """
    keys = read_jwks(uri)
    for key in keys:
        if key.id == key_id:
            return key
    logger.debug("Key %r not among %d keys from %s", key_id, len(keys), uri)
    raise KeyNotFoundError(f"Key {key_id!r} not found in {uri}")


def read_certificate_chain(uri: str) -> tuple[x509.Certificate, ...]:
    """Fetch a remote PEM certificate chain, cached by URI."""
    return remote.resolver.load(
        "x5u", uri, lambda body: parse_certificate_chain(body.decode("ascii"))
    )
