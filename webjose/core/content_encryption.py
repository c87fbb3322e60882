"""JWE content encryption (RFC 7518 Section 5).

``ContentEncryptionKey`` owns one CEK and the GCM IV sequence bound to it.
GCM IVs follow the deterministic construction of NIST SP 800-38D Section
8.2.1: a random 32-bit fixed field chosen once per key followed by a 64-bit
invocation field driven by a counter that may run at most 2^32 times.
"""

import hmac
import os
import struct
import threading
import zlib

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from webjose.config import get_settings
from webjose.core.algorithms import Encryption
from webjose.core.codec import sha256
from webjose.core.errors import CryptographicError, InvalidJWEError, ValidationError

GCM_TAG_SIZE = 16
MAX_INVOCATIONS = 2**32


class IvSequence:
    """Deterministic 96-bit GCM IVs for one key."""

    def __init__(self, fixed: bytes | None = None):
        self.fixed = fixed if fixed is not None else os.urandom(4)
        self._counter = 0
        self._lock = threading.Lock()

    def next(self) -> bytes:
        """Return the next IV.

        Raises:
            CryptographicError: When the key has reached its invocation limit
        """
        with self._lock:
            if self._counter >= MAX_INVOCATIONS:
                raise CryptographicError("GCM invocation limit reached for this key")
            invocation = self._counter
            self._counter += 1
        return self.fixed + struct.pack(">Q", invocation)

    @property
    def invocations(self) -> int:
        return self._counter


# Sequences for long-lived shared keys (dir and GCMKW), keyed by key digest.
# Entries are never evicted: a dropped sequence would restart its counter
# under a new fixed field only by chance, so a key reused after eviction
# could repeat an IV. One small entry per distinct key for the process
# lifetime is the bound.
_shared_sequences: dict[bytes, IvSequence] = {}
_shared_lock = threading.Lock()


def shared_iv_sequence(key: bytes) -> IvSequence:
    """The process-wide IV sequence for a long-lived key."""
    digest = sha256(key)
    with _shared_lock:
        sequence = _shared_sequences.get(digest)
        if sequence is None:
            sequence = _shared_sequences[digest] = IvSequence()
        return sequence


class ContentEncryptionKey:
    """A CEK bound to one content encryption algorithm."""

    def __init__(self, encryption: Encryption, key: bytes, iv_sequence: IvSequence | None = None):
        if len(key) != encryption.key_bytes:
            raise ValidationError(f"{encryption.value} requires a {encryption.key_bytes}-byte key, got {len(key)}")
        self.encryption = encryption
        self.key = key
        self.iv_sequence = iv_sequence or IvSequence()

    @classmethod
    def generate(cls, encryption: Encryption) -> "ContentEncryptionKey":
        """Fresh random CEK."""
        return cls(encryption, os.urandom(encryption.key_bytes))

    @classmethod
    def shared(cls, encryption: Encryption, key: bytes) -> "ContentEncryptionKey":
        """CEK that is a long-lived shared key; its IV sequence is process-wide."""
        return cls(encryption, key, shared_iv_sequence(key))

    def next_iv(self) -> bytes:
        if self.encryption.is_gcm:
            return self.iv_sequence.next()
        return os.urandom(self.encryption.iv_size)

    def encrypt(self, plaintext: bytes, aad: bytes) -> tuple[bytes, bytes, bytes]:
        """Encrypt content.

        Args:
            plaintext: Content to encrypt
            aad: Additional authenticated data

        Returns:
            Tuple of (iv, ciphertext, tag)
        """
        iv = self.next_iv()
        if self.encryption.is_gcm:
            ciphertext_and_tag = AESGCM(self.key).encrypt(iv, plaintext, aad)
            # Tag is the last 16 bytes
            return iv, ciphertext_and_tag[:-GCM_TAG_SIZE], ciphertext_and_tag[-GCM_TAG_SIZE:]

        mac_key, enc_key = self._split()
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return iv, ciphertext, self._cbc_tag(mac_key, aad, iv, ciphertext)

    def decrypt(self, iv: bytes, ciphertext: bytes, tag: bytes, aad: bytes) -> bytes:
        """Verify the tag and decrypt content.

        Raises:
            InvalidJWEError: On tag mismatch or malformed input
        """
        if len(iv) != self.encryption.iv_size:
            raise InvalidJWEError(f"{self.encryption.value} requires a {self.encryption.iv_size}-byte IV")

        if self.encryption.is_gcm:
            if len(tag) != GCM_TAG_SIZE:
                raise InvalidJWEError("Authentication tag has the wrong length")
            try:
                return AESGCM(self.key).decrypt(iv, ciphertext + tag, aad)
            except InvalidTag as e:
                raise InvalidJWEError("Decryption failed: authentication tag mismatch") from e

        mac_key, enc_key = self._split()
        expected_tag = self._cbc_tag(mac_key, aad, iv, ciphertext)
        if not hmac.compare_digest(tag, expected_tag):
            raise InvalidJWEError("Decryption failed: authentication tag mismatch")
        try:
            decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise InvalidJWEError(f"Decryption failed: {e}") from e

    def _split(self) -> tuple[bytes, bytes]:
        """MAC key is the first half, encryption key the second."""
        half = len(self.key) // 2
        return self.key[:half], self.key[half:]

    def _cbc_tag(self, mac_key: bytes, aad: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        al = struct.pack(">Q", len(aad) * 8)  # AAD length in bits
        h = crypto_hmac.HMAC(mac_key, self.encryption.mac_hash())
        h.update(aad + iv + ciphertext + al)
        mac = h.finalize()
        # Tag is first half of MAC
        return mac[: len(mac) // 2]


def deflate(data: bytes) -> bytes:
    """Raw DEFLATE (RFC 1951) compression."""
    compressor = zlib.compressobj(get_settings().deflate_level, zlib.DEFLATED, -15)
    return compressor.compress(data) + compressor.flush()


def inflate(data: bytes) -> bytes:
    try:
        return zlib.decompress(data, -15)
    except zlib.error as e:
        raise InvalidJWEError(f"Invalid compressed content: {e}") from e
