"""JSON Web Signature (RFC 7515).

``JwsBuilder`` accumulates one pending signature per algorithm, each with
its own header and key, and signs a payload into an immutable
``SignedPayload``. Compact serialization carries exactly one signature;
JSON serialization carries any number (flattened when there is one).
"""

import logging
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from webjose.core.algorithms import Algorithm, AlgorithmFamily, KeyUse
from webjose.core.codec import (
    b64url_decode,
    b64url_encode,
    json_dumps,
    json_loads,
    split_compact,
    utf8,
)
from webjose.core.errors import (
    InvalidJWSError,
    JOSEError,
    UnsupportedAlgorithmError,
    ValidationError,
)
from webjose.core.jose_header import STANDARD_PARAMS, JoseHeader, JoseHeaderBuilder
from webjose.core.web_key import WebKey

logger = logging.getLogger(__name__)


def _check_key(algorithm: Algorithm, key: WebKey) -> None:
    if algorithm.use != KeyUse.SIGN:
        raise UnsupportedAlgorithmError(f"{algorithm.value} is not a signature algorithm")
    if not algorithm.allows(key.type):
        raise ValidationError(f"{algorithm.value} does not accept {key.type.value} keys")
    if key.algorithm is not None and key.algorithm != algorithm:
        raise ValidationError(f"Key is for {key.algorithm.value}, not {algorithm.value}")


def create_signature(algorithm: Algorithm, key: WebKey, data: bytes) -> bytes:
    """Sign ``data`` with a private or shared key.

    Raises:
        ValidationError: If the key cannot sign with this algorithm
    """
    _check_key(algorithm, key)
    family = algorithm.family

    if family == AlgorithmFamily.HMAC:
        if key.raw_key is None:
            raise ValidationError("HMAC requires a symmetric key")
        h = crypto_hmac.HMAC(key.raw_key, algorithm.hash())
        h.update(data)
        return h.finalize()

    if key.private_key is None:
        raise ValidationError(f"{algorithm.value} signing requires a private key")

    if family == AlgorithmFamily.RSA_PKCS1:
        return key.private_key.sign(data, padding.PKCS1v15(), algorithm.hash())

    if family == AlgorithmFamily.RSA_PSS:
        hash_alg = algorithm.hash()
        pss = padding.PSS(mgf=padding.MGF1(hash_alg), salt_length=hash_alg.digest_size)
        return key.private_key.sign(data, pss, hash_alg)

    if family == AlgorithmFamily.ECDSA:
        der_sig = key.private_key.sign(data, ec.ECDSA(algorithm.hash()))
        # Convert DER to raw R||S format
        r, s = decode_dss_signature(der_sig)
        size = key.type.coordinate_size
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    if family == AlgorithmFamily.EDDSA:
        return key.private_key.sign(data)

    raise UnsupportedAlgorithmError(f"Unsupported JWS algorithm: {algorithm.value}")


def verify_signature(algorithm: Algorithm, key: WebKey, data: bytes, signature: bytes) -> None:
    """Check a signature.

    Raises:
        InvalidJWSError: If the signature does not verify
    """
    _check_key(algorithm, key)
    family = algorithm.family
    try:
        if family == AlgorithmFamily.HMAC:
            if key.raw_key is None:
                raise ValidationError("HMAC requires a symmetric key")
            h = crypto_hmac.HMAC(key.raw_key, algorithm.hash())
            h.update(data)
            h.verify(signature)
            return

        if key.public_key is None:
            raise ValidationError(f"{algorithm.value} verification requires a public key")

        if family == AlgorithmFamily.RSA_PKCS1:
            key.public_key.verify(signature, data, padding.PKCS1v15(), algorithm.hash())
        elif family == AlgorithmFamily.RSA_PSS:
            hash_alg = algorithm.hash()
            pss = padding.PSS(mgf=padding.MGF1(hash_alg), salt_length=hash_alg.digest_size)
            key.public_key.verify(signature, data, pss, hash_alg)
        elif family == AlgorithmFamily.ECDSA:
            # Convert raw R||S to DER
            size = key.type.coordinate_size
            if len(signature) != 2 * size:
                raise InvalidJWSError("ECDSA signature has the wrong length")
            r = int.from_bytes(signature[:size], "big")
            s = int.from_bytes(signature[size:], "big")
            key.public_key.verify(encode_dss_signature(r, s), data, ec.ECDSA(algorithm.hash()))
        elif family == AlgorithmFamily.EDDSA:
            key.public_key.verify(signature, data)
        else:
            raise UnsupportedAlgorithmError(f"Unsupported JWS algorithm: {algorithm.value}")
    except InvalidSignature as e:
        raise InvalidJWSError("Signature verification failed") from e


@dataclass(frozen=True, eq=False)
class JwsSignature:
    """One signature over a payload with its headers."""

    header: JoseHeader
    signature: bytes
    protected: str | None = None  # encoded protected header, kept verbatim
    unprotected: dict | None = None

    @classmethod
    def create(cls, protected: str | None, unprotected: dict | None, signature: bytes) -> "JwsSignature":
        """Build from wire fragments, merging and cross-checking the headers.

        Raises:
            ValidationError: If the fragments are malformed or inconsistent
            InvalidJWSError: If a protected value disagrees with the header
        """
        protected_json = json_loads(b64url_decode(protected)) if protected else None
        if unprotected is not None and not isinstance(unprotected, dict):
            raise ValidationError("JWS 'header' must be a JSON object")
        if not protected_json and not unprotected:
            raise ValidationError("JWS signature has no header")
        header = JoseHeader.merge(protected_json, unprotected)
        if header.algorithm.use != KeyUse.SIGN:
            raise UnsupportedAlgorithmError(f"{header.algorithm.value} is not a signature algorithm")
        if protected_json:
            _check_protected(protected_json, header)
        return cls(header=header, signature=signature, protected=protected, unprotected=unprotected)

    @property
    def protected_json(self) -> dict | None:
        return json_loads(b64url_decode(self.protected)) if self.protected else None

    def signing_input(self, payload: bytes) -> bytes:
        return f"{self.protected or ''}.{b64url_encode(payload)}".encode("ascii")

    def verify(self, payload: bytes, key: WebKey) -> None:
        """Verify this signature over ``payload`` with a trusted key.

        A ``jwk`` or ``x5c`` leaf carried in the header is only a hint; when
        present it must name the same public key as ``key``.

        Args:
            payload: Signed payload
            key: Verification key supplied by the caller

        Raises:
            InvalidJWSError: If verification fails or the header names another key
        """
        try:
            embedded = self.header.key
            if embedded is not None and not embedded.same_public_key(key):
                raise InvalidJWSError("Header 'jwk' is not the verification key")
            chain = self.header.certificate_chain
            if chain and not WebKey.builder().certificate_chain(*chain).build().same_public_key(key):
                raise InvalidJWSError("Header 'x5c' leaf is not the verification key")
            verify_signature(self.header.algorithm, key, self.signing_input(payload), self.signature)
        except InvalidJWSError:
            raise
        except JOSEError as e:
            raise InvalidJWSError(f"JWS verification failed: {e}") from e

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        if self.protected:
            data["protected"] = self.protected
        if self.unprotected:
            data["header"] = self.unprotected
        data["signature"] = b64url_encode(self.signature)
        return data


def _check_protected(protected_json: dict, header: JoseHeader) -> None:
    """Every extension value in the protected segment must match the merged header."""
    merged = header.to_json() or {}
    for name, value in protected_json.items():
        if name in STANDARD_PARAMS:
            continue
        if name not in merged or merged[name] != value:
            raise InvalidJWSError(f"Protected header parameter '{name}' does not match")


@dataclass(frozen=True, eq=False)
class SignedPayload:
    """A payload with one or more signatures."""

    payload: bytes
    signatures: tuple[JwsSignature, ...]

    @property
    def payload_text(self) -> str:
        return self.payload.decode("utf-8")

    def payload_json(self) -> dict:
        return json_loads(self.payload)

    @classmethod
    def parse(cls, text: str) -> "SignedPayload":
        """Parse compact, general JSON or flattened JSON serialization.

        Raises:
            ValidationError: If the input is malformed
        """
        text = text.strip()
        if not text.startswith("{"):
            protected, payload, signature = split_compact(text, 3)
            if not protected:
                raise ValidationError("Compact JWS requires a protected header")
            return cls(
                payload=b64url_decode(payload),
                signatures=(JwsSignature.create(protected, None, b64url_decode(signature)),),
            )

        data = json_loads(text)
        if not isinstance(data.get("payload"), str):
            raise ValidationError("JWS requires a 'payload' member")
        if "signatures" in data:
            if "signature" in data or not isinstance(data["signatures"], list) or not data["signatures"]:
                raise ValidationError("JWS 'signatures' must be a non-empty array")
            entries = data["signatures"]
        else:
            entries = [data]

        signatures = []
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("signature"), str):
                raise ValidationError("JWS signature entry requires 'signature'")
            signatures.append(
                JwsSignature.create(entry.get("protected"), entry.get("header"), b64url_decode(entry["signature"]))
            )
        return cls(payload=b64url_decode(data["payload"]), signatures=tuple(signatures))

    def verify(self, key: WebKey) -> JwsSignature:
        """Verify the payload against the first matching signature.

        Signatures whose ``kid`` names a different key are skipped. Keys
        named by the header (``jwk``, ``jku``, ``x5c``, ``x5u``) are never
        trusted on their own; look them up with ``JoseHeader.resolve_key``
        and pass the key only once it is known to be trusted.

        Args:
            key: Trusted verification key

        Returns:
            The signature that verified

        Raises:
            InvalidJWSError: If no signature verifies
        """
        errors = []
        for signature in self.signatures:
            if key.id and signature.header.key_id not in (None, key.id):
                continue
            try:
                signature.verify(self.payload, key)
                return signature
            except InvalidJWSError as e:
                logger.debug("Signature %s rejected: %s", signature.header.algorithm.value, e)
                errors.append(str(e))
        raise InvalidJWSError("No signature verified" + (f": {'; '.join(errors)}" if errors else ""))

    def compact(self) -> str:
        """Compact serialization.

        Raises:
            ValidationError: Unless there is exactly one fully protected signature
        """
        if len(self.signatures) != 1:
            raise ValidationError("Compact serialization requires exactly one signature")
        signature = self.signatures[0]
        if signature.unprotected or not signature.protected:
            raise ValidationError("Compact serialization requires a protected-only header")
        return ".".join([signature.protected, b64url_encode(self.payload), b64url_encode(signature.signature)])

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"payload": b64url_encode(self.payload)}
        if len(self.signatures) == 1:
            data.update(self.signatures[0].to_dict())
        else:
            data["signatures"] = [s.to_dict() for s in self.signatures]
        return data

    def to_json(self) -> str:
        return json_dumps(self.to_dict())

    def __str__(self) -> str:
        return self.to_json()


class JwsBuilder:
    """Collects pending signatures and signs a payload.

    Header setters apply to the most recently opened signature.
    """

    def __init__(self, algorithm: Algorithm):
        self._pending: list[JoseHeaderBuilder] = []
        self._protected: set[str] = {"alg", "crit"}
        self._compact = False
        self._signed = False
        self.next(algorithm)

    @property
    def current(self) -> JoseHeaderBuilder:
        return self._pending[-1]

    def next(self, algorithm: Algorithm) -> "JwsBuilder":
        """Open another signature."""
        if self._signed:
            raise ValidationError("Payload already signed")
        if algorithm.use != KeyUse.SIGN:
            raise UnsupportedAlgorithmError(f"{algorithm.value} is not a signature algorithm")
        if any(p.algorithm == algorithm for p in self._pending):
            raise ValidationError(f"A {algorithm.value} signature is already pending")
        self._pending.append(JoseHeaderBuilder(algorithm))
        return self

    def compact(self) -> "JwsBuilder":
        """Protect every parameter; allows only one signature."""
        self._compact = True
        return self

    def protect(self, *names: str) -> "JwsBuilder":
        self._protected.update(names)
        return self

    def key(self, key: WebKey) -> "JwsBuilder":
        self.current.key(key)
        return self

    def well_known(self, key: WebKey) -> "JwsBuilder":
        self.current.well_known(key)
        return self

    def key_id(self, key_id: str) -> "JwsBuilder":
        self.current.key_id(key_id)
        return self

    def key_set_uri(self, uri: str) -> "JwsBuilder":
        self.current.key_set_uri(uri)
        return self

    def certificate_uri(self, uri: str) -> "JwsBuilder":
        self.current.certificate_uri(uri)
        return self

    def certificate_chain(self, *chain) -> "JwsBuilder":
        self.current.certificate_chain(*chain)
        return self

    def certificate_thumbprint(self, thumbprint: bytes) -> "JwsBuilder":
        self.current.certificate_thumbprint(thumbprint)
        return self

    def certificate_sha256_thumbprint(self, thumbprint: bytes) -> "JwsBuilder":
        self.current.certificate_sha256_thumbprint(thumbprint)
        return self

    def type(self, value: str) -> "JwsBuilder":
        self.current.type(value)
        return self

    def content_type(self, value: str) -> "JwsBuilder":
        self.current.content_type(value)
        return self

    def crit(self, *names: str) -> "JwsBuilder":
        self.current.crit(*names)
        self._protected.update(names)
        return self

    def param(self, name: str, value: Any) -> "JwsBuilder":
        self.current.param(name, value)
        return self

    def sign(self, payload: bytes | str) -> SignedPayload:
        """Sign ``payload`` once per pending signature.

        Returns:
            Immutable signed payload

        Raises:
            ValidationError: If a signature has no usable key, or compact
                mode has more than one signature
        """
        if self._signed:
            raise ValidationError("Payload already signed")
        if self._compact and len(self._pending) != 1:
            raise ValidationError("Compact serialization requires exactly one signature")
        if isinstance(payload, str):
            payload = utf8(payload)

        signatures = []
        for pending in self._pending:
            key = pending.operation_key
            if key is None:
                raise ValidationError(f"No signing key for {pending.algorithm.value}")
            header = pending.build()
            if self._compact:
                protected_json, unprotected = header.to_json(), None
            else:
                protected_json = header.to_json(lambda name: name in self._protected)
                unprotected = header.to_json(lambda name: name not in self._protected)
            protected = b64url_encode(utf8(json_dumps(protected_json)))
            signing_input = f"{protected}.{b64url_encode(payload)}".encode("ascii")
            signature = create_signature(header.algorithm, key, signing_input)
            signatures.append(
                JwsSignature(header=header, signature=signature, protected=protected, unprotected=unprotected)
            )

        self._signed = True
        return SignedPayload(payload=payload, signatures=tuple(signatures))
