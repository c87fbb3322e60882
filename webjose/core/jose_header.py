"""JOSE header model shared by JWS and JWE (RFC 7515 Section 4, RFC 7516 Section 4).

A ``JoseHeader`` is the merged view of the protected, shared unprotected
and per-recipient/per-signature header objects. ``to_json(predicate)``
serializes the whole header or a filtered subset, which is how the engines
split one logical header across serialization fragments.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from cryptography import x509

from webjose.core.algorithms import Algorithm, Encryption, KeyUse
from webjose.core.codec import b64_decode, b64_encode, b64url_decode, b64url_encode, sha1, sha256
from webjose.core.errors import UnsupportedAlgorithmError, ValidationError
from webjose.core.pem import load_certificate
from webjose.core.web_key import (
    WebKey,
    certificate_der,
    find_jwk,
    read_certificate_chain,
    same_value,
)

logger = logging.getLogger(__name__)

# Parameters registered for both JWS and JWE
STANDARD_PARAMS = frozenset(
    {"alg", "jku", "jwk", "kid", "x5u", "x5c", "x5t", "x5t#S256", "typ", "cty", "crit"}
)

# Parameters registered for JWE only; legal when the algorithm declares them
ENCRYPTION_PARAMS = frozenset({"enc", "zip", "epk", "apu", "apv", "iv", "tag", "p2s", "p2c"})

REGISTERED_PARAMS = STANDARD_PARAMS | ENCRYPTION_PARAMS

DEFLATE = "DEF"

# Registered extension names and their optional verification hooks
_extensions: dict[str, Callable[[Any, "JoseHeader"], None] | None] = {}


def register_extension(name: str, verify: Callable[[Any, "JoseHeader"], None] | None = None) -> None:
    """Mark a header parameter as understood so it may appear in ``crit``.

    Args:
        name: Parameter name
        verify: Optional hook called with the value and header on parse; it
            raises to reject the header

    Raises:
        ValidationError: If the name is a registered JOSE parameter
    """
    if name in REGISTERED_PARAMS:
        raise ValidationError(f"{name} is a registered header parameter")
    _extensions[name] = verify


def unregister_extension(name: str) -> None:
    """Forget an extension added with :func:`register_extension`."""
    _extensions.pop(name, None)


def is_understood(name: str) -> bool:
    return name in REGISTERED_PARAMS or name in _extensions


@dataclass(frozen=True, eq=False)
class JoseHeader:
    """Merged JOSE header."""

    algorithm: Algorithm
    encryption: Encryption | None = None
    deflate: bool = False
    key_id: str | None = None
    key: WebKey | None = None
    key_set_uri: str | None = None
    type: str | None = None
    content_type: str | None = None
    certificate_uri: str | None = None
    certificate_chain: tuple[x509.Certificate, ...] | None = None
    certificate_thumbprint: bytes | None = None
    certificate_sha256_thumbprint: bytes | None = None
    critical_params: frozenset[str] = frozenset()
    extended_params: Mapping[str, Any] = field(default_factory=dict)

    # ==================== Parsing ====================

    @classmethod
    def from_json(cls, data: Mapping[str, Any], check_required: bool = True) -> "JoseHeader":
        """Create a header from a parsed JSON object.

        Args:
            data: Header parameters
            check_required: Require the parameters the algorithm mandates
                (``epk``, ``iv``/``tag``, ``p2s``/``p2c``)

        Returns:
            Validated header

        Raises:
            ValidationError: On malformed or inconsistent parameters
            UnsupportedAlgorithmError: On an unknown algorithm, encryption,
                compression or critical parameter
        """
        if "alg" not in data:
            raise ValidationError("Header requires 'alg'")
        algorithm = Algorithm.lookup(_string(data, "alg"))

        encryption = None
        deflate = False
        if algorithm.use == KeyUse.ENCRYPT:
            if "enc" not in data:
                raise ValidationError(f"{algorithm.value} header requires 'enc'")
            encryption = Encryption.lookup(_string(data, "enc"))
            if "zip" in data:
                if data["zip"] != DEFLATE:
                    raise UnsupportedAlgorithmError(f"Unsupported compression: {data['zip']}")
                deflate = True
        else:
            misplaced = ENCRYPTION_PARAMS & data.keys()
            if misplaced:
                raise ValidationError(f"{sorted(misplaced)} only valid for encryption headers")

        foreign = (ENCRYPTION_PARAMS - algorithm.params) & data.keys()
        if foreign:
            raise ValidationError(f"{sorted(foreign)} not understood by {algorithm.value}")
        missing = algorithm.required_params - data.keys()
        if check_required and missing:
            raise ValidationError(f"{algorithm.value} header requires {sorted(missing)}")

        key = None
        if "jwk" in data:
            if not isinstance(data["jwk"], dict):
                raise ValidationError("'jwk' must be a JSON object")
            key = WebKey.from_dict(data["jwk"])
            if not key.is_well_known:
                raise ValidationError("'jwk' must not contain private key material")

        chain = None
        if "x5c" in data:
            if not isinstance(data["x5c"], list) or not data["x5c"]:
                raise ValidationError("'x5c' must be a non-empty array")
            chain = tuple(load_certificate(b64_decode(c)) for c in data["x5c"])

        critical = frozenset()
        if "crit" in data:
            crit = data["crit"]
            if not isinstance(crit, list) or not crit or not all(isinstance(n, str) and n for n in crit):
                raise ValidationError("'crit' must be a non-empty array of names")
            critical = frozenset(crit)

        extended = {name: value for name, value in data.items() if name not in STANDARD_PARAMS | {"enc", "zip"}}

        header = cls(
            algorithm=algorithm,
            encryption=encryption,
            deflate=deflate,
            key_id=_optional_string(data, "kid"),
            key=key,
            key_set_uri=_optional_string(data, "jku"),
            type=_optional_string(data, "typ"),
            content_type=_optional_string(data, "cty"),
            certificate_uri=_optional_string(data, "x5u"),
            certificate_chain=chain,
            certificate_thumbprint=b64url_decode(data["x5t"]) if "x5t" in data else None,
            certificate_sha256_thumbprint=b64url_decode(data["x5t#S256"]) if "x5t#S256" in data else None,
            critical_params=critical,
            extended_params=extended,
        )
        header._validate()
        return header

    @classmethod
    def merge(
        cls,
        protected: Mapping[str, Any] | None,
        shared: Mapping[str, Any] | None = None,
        per_recipient: Mapping[str, Any] | None = None,
    ) -> "JoseHeader":
        """Merge header fragments; a name may appear in only one of them.

        Raises:
            ValidationError: If a parameter is duplicated across fragments
        """
        merged: dict[str, Any] = {}
        for fragment in (protected, shared, per_recipient):
            if not fragment:
                continue
            duplicates = merged.keys() & fragment.keys()
            if duplicates:
                raise ValidationError(f"Duplicate header parameters: {', '.join(sorted(duplicates))}")
            merged.update(fragment)
        return cls.from_json(merged)

    def _validate(self) -> None:
        if self.key is not None and self.key_id is not None and self.key.id is not None:
            if self.key.id != self.key_id:
                raise ValidationError("'kid' does not match the attached 'jwk'")

        if self.certificate_chain:
            leaf_der = certificate_der(self.certificate_chain[0])
            if self.certificate_thumbprint is not None and self.certificate_thumbprint != sha1(leaf_der):
                raise ValidationError("'x5t' does not match the certificate chain")
            if self.certificate_sha256_thumbprint is not None and self.certificate_sha256_thumbprint != sha256(
                leaf_der
            ):
                raise ValidationError("'x5t#S256' does not match the certificate chain")
            if self.key is not None and self.key.public_key is not None:
                leaf_key = WebKey.builder().certificate_chain(self.certificate_chain[0]).build()
                if not leaf_key.same_public_key(self.key):
                    raise ValidationError("'jwk' does not match the certificate chain")

        for name in self.critical_params:
            if name in REGISTERED_PARAMS:
                raise ValidationError(f"Registered parameter '{name}' must not be listed in 'crit'")
            if name not in _extensions:
                raise UnsupportedAlgorithmError(f"Critical parameter not understood: {name}")
            if name not in self.extended_params:
                raise ValidationError(f"Critical parameter '{name}' is missing")

        for name, verify in _extensions.items():
            if verify is not None and name in self.extended_params:
                verify(self.extended_params[name], self)

    # ==================== Accessors ====================

    def param(self, name: str, default: Any = None) -> Any:
        """Raw JSON value of any parameter."""
        data = self.to_json()
        return data.get(name, default) if data else default

    def bytes_param(self, name: str) -> bytes | None:
        """Decode a base64url parameter such as ``iv``, ``tag``, ``apu`` or ``p2s``."""
        value = self.extended_params.get(name)
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError(f"'{name}' must be a base64url string")
        return b64url_decode(value)

    @property
    def ephemeral_key(self) -> WebKey | None:
        """The ``epk`` public key of an ECDH-ES header."""
        value = self.extended_params.get("epk")
        if value is None:
            return None
        if not isinstance(value, dict):
            raise ValidationError("'epk' must be a JSON object")
        key = WebKey.from_dict(value)
        if not key.is_well_known:
            raise ValidationError("'epk' must not contain private key material")
        return key

    @property
    def iteration_count(self) -> int | None:
        """The ``p2c`` PBES2 iteration count."""
        value = self.extended_params.get("p2c")
        if value is None:
            return None
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValidationError("'p2c' must be a positive integer")
        return value

    # ==================== Serialization ====================

    def to_json(self, predicate: Callable[[str], bool] | None = None) -> dict | None:
        """Serialize the header, optionally keeping only matching names.

        Args:
            predicate: Called with each parameter name; ``None`` keeps all

        Returns:
            Ordered parameter dict, or ``None`` when nothing is selected
        """
        data: dict[str, Any] = {"alg": self.algorithm.value}
        if self.encryption is not None:
            data["enc"] = self.encryption.value
        if self.deflate:
            data["zip"] = DEFLATE
        if self.key_id is not None:
            data["kid"] = self.key_id
        if self.key_set_uri is not None:
            data["jku"] = self.key_set_uri
        if self.key is not None:
            data["jwk"] = self.key.well_known().to_dict()
        if self.certificate_uri is not None:
            data["x5u"] = self.certificate_uri
        if self.certificate_chain:
            data["x5c"] = [b64_encode(certificate_der(c)) for c in self.certificate_chain]
        if self.certificate_thumbprint is not None:
            data["x5t"] = b64url_encode(self.certificate_thumbprint)
        if self.certificate_sha256_thumbprint is not None:
            data["x5t#S256"] = b64url_encode(self.certificate_sha256_thumbprint)
        if self.type is not None:
            data["typ"] = self.type
        if self.content_type is not None:
            data["cty"] = self.content_type
        if self.critical_params:
            data["crit"] = sorted(self.critical_params)
        data.update(self.extended_params)

        if predicate is not None:
            data = {name: value for name, value in data.items() if predicate(name)}
        return data or None

    # ==================== Key Resolution ====================

    def resolve_key(self) -> WebKey | None:
        """Find the key this header refers to.

        Order: the attached ``jwk``; ``kid`` looked up in the ``jku`` key
        set; the leaf of the attached or ``x5u`` certificate chain.

        Returns:
            The key, or ``None`` when the header carries no key reference
        """
        if self.key is not None:
            return self.key

        if self.key_id is not None and self.key_set_uri is not None:
            key = find_jwk(self.key_set_uri, self.key_id)
            logger.debug("Resolved key %s from %s", self.key_id, self.key_set_uri)
            return key

        chain = self.certificate_chain
        if not chain and self.certificate_uri is not None:
            chain = read_certificate_chain(self.certificate_uri)
        if chain:
            builder = WebKey.builder().certificate_chain(*chain).algorithm(self.algorithm)
            if self.key_id is not None:
                builder.key_id(self.key_id)
            if self.certificate_thumbprint is not None:
                builder.certificate_thumbprint(self.certificate_thumbprint)
            if self.certificate_sha256_thumbprint is not None:
                builder.certificate_sha256_thumbprint(self.certificate_sha256_thumbprint)
            return builder.build()
        return None


def _string(data: Mapping[str, Any], name: str) -> str:
    value = data[name]
    if not isinstance(value, str):
        raise ValidationError(f"'{name}' must be a string")
    return value


def _optional_string(data: Mapping[str, Any], name: str) -> str | None:
    return _string(data, name) if name in data else None


class JoseHeaderBuilder:
    """Set-once builder for ``JoseHeader``.

    ``key()`` attaches the key used for the operation and publishes only its
    id; ``well_known()`` additionally embeds its public JWK as ``jwk``.
    """

    def __init__(self, algorithm: Algorithm):
        self.algorithm = algorithm
        self.operation_key: WebKey | None = None
        self._params: dict[str, Any] = {"alg": algorithm.value}
        self._critical: set[str] = set()

    def _set(self, name: str, value: Any) -> "JoseHeaderBuilder":
        current = self._params.get(name)
        if current is not None and not same_value(current, value):
            raise ValidationError(f"Header parameter '{name}' already set to a different value")
        self._params[name] = value
        return self

    def key_id(self, key_id: str) -> "JoseHeaderBuilder":
        return self._set("kid", key_id)

    def key(self, key: WebKey) -> "JoseHeaderBuilder":
        """Use ``key`` for the operation without embedding it."""
        if key.algorithm is not None and key.algorithm != self.algorithm:
            raise ValidationError(f"Key is for {key.algorithm.value}, not {self.algorithm.value}")
        if not self.algorithm.allows(key.type):
            raise ValidationError(f"{self.algorithm.value} does not accept {key.type.value} keys")
        if key.use is not None and key.use != self.algorithm.use:
            raise ValidationError(f"Key use '{key.use.value}' does not fit {self.algorithm.value}")
        if self.operation_key is not None and self.operation_key != key:
            raise ValidationError("A different key is already attached")
        self.operation_key = key
        if key.id is not None:
            self.key_id(key.id)
        return self

    def well_known(self, key: WebKey) -> "JoseHeaderBuilder":
        """Use ``key`` for the operation and embed its public JWK."""
        self.key(key)
        return self._set("jwk", key.well_known().to_dict())

    def key_set_uri(self, uri: str) -> "JoseHeaderBuilder":
        return self._set("jku", uri)

    def certificate_uri(self, uri: str) -> "JoseHeaderBuilder":
        return self._set("x5u", uri)

    def certificate_chain(self, *chain: x509.Certificate) -> "JoseHeaderBuilder":
        return self._set("x5c", [b64_encode(certificate_der(c)) for c in chain])

    def certificate_thumbprint(self, thumbprint: bytes) -> "JoseHeaderBuilder":
        return self._set("x5t", b64url_encode(thumbprint))

    def certificate_sha256_thumbprint(self, thumbprint: bytes) -> "JoseHeaderBuilder":
        return self._set("x5t#S256", b64url_encode(thumbprint))

    def type(self, value: str) -> "JoseHeaderBuilder":
        return self._set("typ", value)

    def content_type(self, value: str) -> "JoseHeaderBuilder":
        return self._set("cty", value)

    def encryption(self, encryption: Encryption) -> "JoseHeaderBuilder":
        if self.algorithm.use != KeyUse.ENCRYPT:
            raise ValidationError(f"{self.algorithm.value} does not take 'enc'")
        return self._set("enc", encryption.value)

    def deflate(self) -> "JoseHeaderBuilder":
        if self.algorithm.use != KeyUse.ENCRYPT:
            raise ValidationError(f"{self.algorithm.value} does not take 'zip'")
        return self._set("zip", DEFLATE)

    def crit(self, *names: str) -> "JoseHeaderBuilder":
        """Mark extension parameters as critical."""
        for name in names:
            if not is_understood(name) or name in REGISTERED_PARAMS:
                raise UnsupportedAlgorithmError(f"Critical parameter not understood: {name}")
        self._critical.update(names)
        return self

    def param(self, name: str, value: Any) -> "JoseHeaderBuilder":
        """Set an algorithm-specific or extension parameter.

        Bytes values are base64url encoded.
        """
        if name in STANDARD_PARAMS or name in ("enc", "zip"):
            raise ValidationError(f"Use the dedicated setter for '{name}'")
        if name in ENCRYPTION_PARAMS and name not in self.algorithm.params:
            raise ValidationError(f"'{name}' is not understood by {self.algorithm.value}")
        if isinstance(value, (bytes, bytearray)):
            value = b64url_encode(bytes(value))
        return self._set(name, value)

    def has_param(self, name: str) -> bool:
        return name in self._params

    @property
    def critical_params(self) -> frozenset[str]:
        return frozenset(self._critical)

    def to_json(self) -> dict:
        data = dict(self._params)
        if self._critical:
            data["crit"] = sorted(self._critical)
        return data

    def build(self, check_required: bool = True) -> JoseHeader:
        """Validate and create the header.

        Raises:
            ValidationError: On inconsistent parameters
        """
        return JoseHeader.from_json(self.to_json(), check_required=check_required)
