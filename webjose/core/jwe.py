"""JSON Web Encryption (RFC 7516).

``JweBuilder`` collects recipients, resolves one content encryption key for
all of them, protects it per recipient and encrypts the payload exactly
once into an immutable ``EncryptedMessage``::

    builder = JweBuilder(Encryption.A256GCM)
    builder.add_recipient(Algorithm.RSA_OAEP_256).key(rsa_key)
    builder.add_recipient(Algorithm.A256KW).key(shared_key)
    message = builder.encrypt(b"payload")
    plaintext = EncryptedMessage.parse(message.to_json()).decrypt(shared_key)
"""

import logging
from dataclasses import dataclass
from typing import Any

from webjose.core.algorithms import Algorithm, AlgorithmFamily, Encryption, KeyUse
from webjose.core.codec import (
    b64url_decode,
    b64url_encode,
    json_dumps,
    json_loads,
    split_compact,
    utf8,
)
from webjose.core.content_encryption import ContentEncryptionKey, deflate, inflate
from webjose.core.errors import (
    CryptographicError,
    InvalidJWEError,
    UnsupportedAlgorithmError,
    ValidationError,
)
from webjose.core.jose_header import DEFLATE, JoseHeader, JoseHeaderBuilder
from webjose.core.key_management import decrypt_key, encrypt_key, fixed_cek, fixes_cek
from webjose.core.web_key import WebKey

logger = logging.getLogger(__name__)


def additional_data(protected: str | None, aad: bytes | None) -> bytes:
    """AAD: ASCII(BASE64URL(protected)) [ '.' BASE64URL(aad) ]."""
    value = protected or ""
    if aad is not None:
        value += "." + b64url_encode(aad)
    return value.encode("ascii")


@dataclass(frozen=True, eq=False)
class JweRecipient:
    """One recipient: merged header and encrypted key."""

    header: JoseHeader
    encrypted_key: bytes = b""
    unprotected: dict | None = None  # per-recipient 'header' member

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        if self.unprotected:
            data["header"] = self.unprotected
        if self.encrypted_key:
            data["encrypted_key"] = b64url_encode(self.encrypted_key)
        return data


@dataclass(frozen=True, eq=False)
class EncryptedMessage:
    """An authenticated encrypted message with one or more recipients."""

    recipients: tuple[JweRecipient, ...]
    iv: bytes
    ciphertext: bytes
    tag: bytes
    protected: str | None = None  # encoded protected header, kept verbatim
    unprotected: dict | None = None
    aad: bytes | None = None

    @property
    def encryption(self) -> Encryption:
        return self.recipients[0].header.encryption

    @property
    def deflate(self) -> bool:
        return self.recipients[0].header.deflate

    @property
    def protected_json(self) -> dict | None:
        return json_loads(b64url_decode(self.protected)) if self.protected else None

    def additional_data(self) -> bytes:
        return additional_data(self.protected, self.aad)

    # ==================== Decryption ====================

    def decrypt(self, key: WebKey) -> bytes:
        """Decrypt the message for the recipient matching ``key``.

        Recipients are tried in order; the first whose encrypted key the
        supplied key recovers provides the CEK. Recipients naming a
        different ``kid`` are skipped.

        Args:
            key: Recipient private or shared key

        Returns:
            Plaintext

        Raises:
            InvalidJWEError: If no recipient can be decrypted, or the
                authentication tag does not verify
        """
        cek = None
        for index, recipient in enumerate(self.recipients):
            header = recipient.header
            if key.id is not None and header.key_id is not None and header.key_id != key.id:
                logger.debug("Skipping recipient %d: kid %s", index, header.key_id)
                continue
            try:
                cek = ContentEncryptionKey(
                    header.encryption, decrypt_key(header, key, recipient.encrypted_key)
                )
                break
            except (CryptographicError, ValidationError, UnsupportedAlgorithmError) as e:
                logger.debug("Recipient %d not decrypted: %s", index, e)

        if cek is None:
            raise InvalidJWEError("No recipient could be decrypted with the supplied key")

        plaintext = cek.decrypt(self.iv, self.ciphertext, self.tag, self.additional_data())
        if self.deflate:
            plaintext = inflate(plaintext)
        return plaintext

    def decrypt_text(self, key: WebKey) -> str:
        return self.decrypt(key).decode("utf-8")

    # ==================== Serialization ====================

    def compact(self) -> str:
        """Compact serialization.

        Raises:
            ValidationError: Unless there is exactly one recipient, every
                parameter is protected and there is no AAD
        """
        if len(self.recipients) != 1:
            raise ValidationError("Compact serialization requires exactly one recipient")
        recipient = self.recipients[0]
        if self.unprotected or recipient.unprotected or self.aad is not None or not self.protected:
            raise ValidationError("Compact serialization requires a protected-only header and no AAD")
        return ".".join(
            [
                self.protected,
                b64url_encode(recipient.encrypted_key),
                b64url_encode(self.iv),
                b64url_encode(self.ciphertext),
                b64url_encode(self.tag),
            ]
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        if self.protected:
            data["protected"] = self.protected
        if self.unprotected:
            data["unprotected"] = self.unprotected
        if len(self.recipients) == 1:
            data.update(self.recipients[0].to_dict())
        else:
            data["recipients"] = [r.to_dict() for r in self.recipients]
        if self.aad is not None:
            data["aad"] = b64url_encode(self.aad)
        data["iv"] = b64url_encode(self.iv)
        data["ciphertext"] = b64url_encode(self.ciphertext)
        data["tag"] = b64url_encode(self.tag)
        return data

    def to_json(self) -> str:
        return json_dumps(self.to_dict())

    def __str__(self) -> str:
        return self.to_json()

    @classmethod
    def parse(cls, text: str) -> "EncryptedMessage":
        """Parse compact, general JSON or flattened JSON serialization.

        Raises:
            ValidationError: If the input is malformed or the recipients
                disagree on encryption, compression or critical parameters
        """
        text = text.strip()
        if not text.startswith("{"):
            protected, encrypted_key, iv, ciphertext, tag = split_compact(text, 5)
            if not protected:
                raise ValidationError("Compact JWE requires a protected header")
            header = _encryption_header(json_loads(b64url_decode(protected)), None, None)
            return cls(
                recipients=(JweRecipient(header, b64url_decode(encrypted_key)),),
                iv=b64url_decode(iv),
                ciphertext=b64url_decode(ciphertext),
                tag=b64url_decode(tag),
                protected=protected,
            )

        data = json_loads(text)
        if not isinstance(data.get("ciphertext"), str):
            raise ValidationError("JWE requires a 'ciphertext' member")
        protected = data.get("protected")
        if protected is not None and not isinstance(protected, str):
            raise ValidationError("JWE 'protected' must be a string")
        protected_json = json_loads(b64url_decode(protected)) if protected else None
        unprotected = data.get("unprotected")
        if unprotected is not None and not isinstance(unprotected, dict):
            raise ValidationError("JWE 'unprotected' must be a JSON object")

        if "recipients" in data:
            if "header" in data or "encrypted_key" in data:
                raise ValidationError("JWE mixes 'recipients' with flattened members")
            entries = data["recipients"]
            if not isinstance(entries, list) or not entries:
                raise ValidationError("JWE 'recipients' must be a non-empty array")
        else:
            entries = [{name: data[name] for name in ("header", "encrypted_key") if name in data}]

        recipients = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValidationError("JWE recipient must be a JSON object")
            per_recipient = entry.get("header")
            if per_recipient is not None and not isinstance(per_recipient, dict):
                raise ValidationError("JWE recipient 'header' must be a JSON object")
            header = _encryption_header(protected_json, unprotected, per_recipient)
            encrypted_key = b64url_decode(entry["encrypted_key"]) if "encrypted_key" in entry else b""
            recipients.append(JweRecipient(header, encrypted_key, per_recipient))
        _check_consistent([r.header for r in recipients])

        return cls(
            recipients=tuple(recipients),
            iv=b64url_decode(data.get("iv", "")),
            ciphertext=b64url_decode(data["ciphertext"]),
            tag=b64url_decode(data.get("tag", "")),
            protected=protected,
            unprotected=unprotected,
            aad=b64url_decode(data["aad"]) if "aad" in data else None,
        )


def _encryption_header(protected: dict | None, shared: dict | None, per_recipient: dict | None) -> JoseHeader:
    header = JoseHeader.merge(protected, shared, per_recipient)
    if header.algorithm.use != KeyUse.ENCRYPT:
        raise UnsupportedAlgorithmError(f"{header.algorithm.value} is not a key management algorithm")
    return header


def _check_consistent(headers: list[JoseHeader]) -> None:
    first = headers[0]
    for header in headers[1:]:
        if header.encryption != first.encryption:
            raise ValidationError("Recipients disagree on 'enc'")
        if header.deflate != first.deflate:
            raise ValidationError("Recipients disagree on 'zip'")
        if header.critical_params != first.critical_params:
            raise ValidationError("Recipients disagree on 'crit'")


class JweRecipientBuilder(JoseHeaderBuilder):
    """Header and key for one recipient of a ``JweBuilder``."""

    def __init__(self, parent: "JweBuilder", algorithm: Algorithm):
        if algorithm.use != KeyUse.ENCRYPT:
            raise UnsupportedAlgorithmError(f"{algorithm.value} is not a key management algorithm")
        super().__init__(algorithm)
        self._parent = parent

    def encryption(self, encryption: Encryption) -> "JweRecipientBuilder":
        super().encryption(encryption)
        self._parent._check_recipient(self)
        return self

    def deflate(self) -> "JweRecipientBuilder":
        super().deflate()
        self._parent._check_recipient(self)
        return self

    def crit(self, *names: str) -> "JweRecipientBuilder":
        super().crit(*names)
        self._parent._check_recipient(self)
        return self

    def then(self) -> "JweBuilder":
        """Return to the message builder."""
        return self._parent


class JweBuilder:
    """Builds an ``EncryptedMessage`` for one or more recipients."""

    def __init__(self, encryption: Encryption):
        self.encryption = encryption
        self._recipients: list[JweRecipientBuilder] = []
        self._protected: set[str] = {"enc", "zip", "crit"}
        self._deflate = False
        self._compact = False
        self._aad: bytes | None = None
        self._encrypted = False

    def deflate(self) -> "JweBuilder":
        """Compress the payload with raw DEFLATE before encryption."""
        self._deflate = True
        for recipient in self._recipients:
            self._check_recipient(recipient)
        return self

    def compact(self) -> "JweBuilder":
        """Protect every parameter; allows one recipient and no AAD."""
        self._compact = True
        return self

    def protect(self, *names: str) -> "JweBuilder":
        self._protected.update(names)
        return self

    def aad(self, data: bytes | str) -> "JweBuilder":
        if self._aad is not None:
            raise ValidationError("AAD already set")
        self._aad = utf8(data) if isinstance(data, str) else data
        return self

    def add_recipient(self, algorithm: Algorithm) -> JweRecipientBuilder:
        """Open a recipient using ``algorithm`` for key management.

        Raises:
            ValidationError: After ``encrypt()``, or in compact mode when a
                recipient already exists
        """
        if self._encrypted:
            raise ValidationError("Message already encrypted")
        if self._compact and self._recipients:
            raise ValidationError("Compact serialization allows only one recipient")
        for recipient in self._recipients:
            self._check_recipient(recipient)
        recipient = JweRecipientBuilder(self, algorithm)
        self._recipients.append(recipient)
        return recipient

    def _state(self, recipient: JweRecipientBuilder) -> tuple[str, bool, frozenset[str]]:
        params = recipient.to_json()
        return (
            params.get("enc", self.encryption.value),
            params.get("zip") == DEFLATE or self._deflate,
            recipient.critical_params,
        )

    def _check_recipient(self, recipient: JweRecipientBuilder) -> None:
        """Recipients must agree with the message and with the first recipient."""
        enc, compressed, crit = self._state(recipient)
        if enc != self.encryption.value:
            raise ValidationError(f"Recipient 'enc' {enc} differs from message {self.encryption.value}")
        first = self._recipients[0] if self._recipients else None
        if first is None or first is recipient:
            return
        _, first_compressed, first_crit = self._state(first)
        if compressed != first_compressed:
            raise ValidationError("Recipient 'zip' differs from the first recipient")
        if crit != first_crit:
            raise ValidationError("Recipient 'crit' differs from the first recipient")

    # ==================== Encryption ====================

    def encrypt(self, payload: bytes | str) -> EncryptedMessage:
        """Encrypt ``payload`` for every recipient.

        Returns:
            Immutable encrypted message

        Raises:
            ValidationError: On missing keys, inconsistent recipients or
                recipients that determine conflicting CEKs
        """
        if self._encrypted:
            raise ValidationError("Message already encrypted")
        if not self._recipients:
            raise ValidationError("JWE requires at least one recipient")
        if self._compact and (len(self._recipients) != 1 or self._aad is not None):
            raise ValidationError("Compact serialization requires exactly one recipient and no AAD")
        if isinstance(payload, str):
            payload = utf8(payload)

        compress = self._deflate or self._recipients[0].has_param("zip")
        for recipient in self._recipients:
            self._check_recipient(recipient)
            if not recipient.has_param("enc"):
                JoseHeaderBuilder.encryption(recipient, self.encryption)
            if compress and not recipient.has_param("zip"):
                JoseHeaderBuilder.deflate(recipient)
            if recipient.operation_key is None:
                raise ValidationError(f"No key for {recipient.algorithm.value} recipient")

        cek = self._content_key()
        encrypted_keys = []
        for recipient in self._recipients:
            if fixes_cek(recipient.algorithm):
                encrypted_keys.append(b"")
                continue
            params = recipient.to_json()
            encrypted_keys.append(
                encrypt_key(recipient.algorithm, self.encryption, recipient.operation_key, cek.key, params)
            )
            _apply(recipient, params)

        headers = [recipient.build() for recipient in self._recipients]
        protected_json, shared, per_recipient = self._split(headers)
        protected = b64url_encode(utf8(json_dumps(protected_json))) if protected_json else None

        recipients = tuple(
            JweRecipient(header, encrypted_key, fragment)
            for header, encrypted_key, fragment in zip(headers, encrypted_keys, per_recipient)
        )
        plaintext = deflate(payload) if compress else payload
        iv, ciphertext, tag = cek.encrypt(plaintext, additional_data(protected, self._aad))
        self._encrypted = True
        return EncryptedMessage(
            recipients=recipients,
            iv=iv,
            ciphertext=ciphertext,
            tag=tag,
            protected=protected,
            unprotected=shared,
            aad=self._aad,
        )

    def _content_key(self) -> ContentEncryptionKey:
        """Resolve the single CEK shared by every recipient."""
        cek = None
        for recipient in self._recipients:
            if not fixes_cek(recipient.algorithm):
                continue
            params = recipient.to_json()
            value = fixed_cek(recipient.algorithm, self.encryption, recipient.operation_key, params)
            _apply(recipient, params)
            if cek is None:
                if recipient.algorithm.family == AlgorithmFamily.DIRECT:
                    cek = ContentEncryptionKey.shared(self.encryption, value)
                else:
                    cek = ContentEncryptionKey(self.encryption, value)
            elif cek.key != value:
                raise ValidationError("Recipients determine different content encryption keys")
        return cek or ContentEncryptionKey.generate(self.encryption)

    def _split(self, headers: list[JoseHeader]) -> tuple[dict | None, dict | None, list[dict | None]]:
        """Split headers into protected, shared and per-recipient fragments."""
        if self._compact:
            return headers[0].to_json(), None, [None]

        protected_names = set(self._protected) | headers[0].critical_params
        full = [header.to_json() for header in headers]
        for name in protected_names:
            values = [params.get(name) for params in full]
            if any(value != values[0] for value in values[1:]):
                raise ValidationError(f"Protected parameter '{name}' differs between recipients")

        shared_names = {
            name
            for name in full[0]
            if name not in protected_names and all(name in p and p[name] == full[0][name] for p in full[1:])
        }
        protected = headers[0].to_json(lambda name: name in protected_names)
        shared = headers[0].to_json(lambda name: name in shared_names)
        per_recipient = [
            header.to_json(lambda name: name not in protected_names and name not in shared_names)
            for header in headers
        ]
        return protected, shared, per_recipient


def _apply(recipient: JweRecipientBuilder, params: dict) -> None:
    """Copy parameters added by key management back onto the recipient."""
    for name, value in params.items():
        if not recipient.has_param(name) and name != "crit":
            recipient.param(name, value)
