"""JWE key management (RFC 7518 Section 4).

Per-recipient encryption, wrapping and agreement of the content encryption
key. Direct (``dir``) and direct agreement (``ECDH-ES``) fix the CEK
themselves; every other algorithm protects a random CEK shared by all
recipients of a message.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.keywrap import InvalidUnwrap, aes_key_unwrap, aes_key_wrap

from webjose.config import get_settings
from webjose.core.algorithms import Algorithm, AlgorithmFamily, Encryption, KeyUse
from webjose.core.codec import b64url_decode, b64url_encode, concat_kdf
from webjose.core.content_encryption import GCM_TAG_SIZE, shared_iv_sequence
from webjose.core.errors import CryptographicError, UnsupportedAlgorithmError, ValidationError
from webjose.core.jose_header import JoseHeader
from webjose.core.web_key import WebKey

PBES2_SALT_SIZE = 16

_FIXED_CEK = (AlgorithmFamily.DIRECT, AlgorithmFamily.ECDH_ES)


def fixes_cek(algorithm: Algorithm) -> bool:
    """True when the algorithm determines the CEK instead of protecting one."""
    return algorithm.family in _FIXED_CEK


def _check_key(algorithm: Algorithm, key: WebKey) -> None:
    if algorithm.use != KeyUse.ENCRYPT:
        raise UnsupportedAlgorithmError(f"{algorithm.value} is not a key management algorithm")
    if not algorithm.allows(key.type):
        raise ValidationError(f"{algorithm.value} does not accept {key.type.value} keys")
    if key.algorithm is not None and key.algorithm != algorithm:
        raise ValidationError(f"Key is for {key.algorithm.value}, not {algorithm.value}")


def _symmetric(algorithm: Algorithm, key: WebKey, size: int | None = None) -> bytes:
    if key.raw_key is None:
        raise ValidationError(f"{algorithm.value} requires a symmetric key")
    if size is not None and len(key.raw_key) != size:
        raise ValidationError(f"{algorithm.value} requires a {size}-byte key, got {len(key.raw_key)}")
    return key.raw_key


def _rsa_padding(algorithm: Algorithm) -> padding.AsymmetricPadding:
    if algorithm == Algorithm.RSA1_5:
        return padding.PKCS1v15()
    hash_alg = algorithm.hash()
    return padding.OAEP(mgf=padding.MGF1(algorithm=hash_alg), algorithm=hash_alg, label=None)


def _agreement_info(params: dict) -> tuple[bytes, bytes]:
    apu = params.get("apu")
    apv = params.get("apv")
    return (b64url_decode(apu) if apu else b""), (b64url_decode(apv) if apv else b"")


def _agreed_key(algorithm: Algorithm, encryption: Encryption, shared_secret: bytes, params: dict) -> bytes:
    apu, apv = _agreement_info(params)
    if algorithm.family == AlgorithmFamily.ECDH_ES:
        return concat_kdf(shared_secret, encryption.size, encryption.value, apu, apv)
    return concat_kdf(shared_secret, algorithm.size, algorithm.value, apu, apv)


def _ephemeral_agreement(algorithm: Algorithm, encryption: Encryption, key: WebKey, params: dict) -> bytes:
    """Run ECDH against the recipient key with a fresh ephemeral key; sets ``epk``."""
    if not isinstance(key.public_key, ec.EllipticCurvePublicKey):
        raise ValidationError("ECDH requires an EC public key")
    ephemeral = ec.generate_private_key(key.public_key.curve)
    shared_secret = ephemeral.exchange(ec.ECDH(), key.public_key)
    params["epk"] = WebKey.builder().public_key(ephemeral.public_key()).build().to_dict()
    return _agreed_key(algorithm, encryption, shared_secret, params)


def _pbes2_kek(algorithm: Algorithm, password: bytes, salt_input: bytes, iterations: int) -> bytes:
    # Salt = UTF8(alg) || 0x00 || p2s
    salt = algorithm.value.encode("utf-8") + b"\x00" + salt_input
    kdf = PBKDF2HMAC(
        algorithm=algorithm.hash(),
        length=algorithm.size // 8,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password)


def _gcm_wrap(kek: bytes, cek: bytes, params: dict) -> bytes:
    iv = shared_iv_sequence(kek).next()
    wrapped = AESGCM(kek).encrypt(iv, cek, None)
    params["iv"] = b64url_encode(iv)
    params["tag"] = b64url_encode(wrapped[-GCM_TAG_SIZE:])
    return wrapped[:-GCM_TAG_SIZE]


def fixed_cek(algorithm: Algorithm, encryption: Encryption, key: WebKey, params: dict) -> bytes:
    """The CEK for ``dir`` or ``ECDH-ES``.

    Args:
        algorithm: Key management algorithm
        encryption: Content encryption
        key: Recipient key
        params: Recipient header parameters; receives ``epk`` for ECDH-ES

    Returns:
        CEK bytes
    """
    _check_key(algorithm, key)
    if algorithm.family == AlgorithmFamily.DIRECT:
        return _symmetric(algorithm, key, encryption.key_bytes)
    if algorithm.family == AlgorithmFamily.ECDH_ES:
        return _ephemeral_agreement(algorithm, encryption, key, params)
    raise ValidationError(f"{algorithm.value} does not determine the CEK")


def encrypt_key(algorithm: Algorithm, encryption: Encryption, key: WebKey, cek: bytes, params: dict) -> bytes:
    """Protect ``cek`` for one recipient.

    Args:
        algorithm: Key management algorithm
        encryption: Content encryption
        key: Recipient key (public for RSA and ECDH, shared otherwise)
        cek: Content encryption key
        params: Recipient header parameters; receives ``epk``, ``iv``/``tag``
            or ``p2s``/``p2c`` as the algorithm requires

    Returns:
        The JWE Encrypted Key, empty for ``dir`` and ``ECDH-ES``

    Raises:
        ValidationError: If the key does not fit the algorithm
        CryptographicError: If the underlying primitive fails
    """
    _check_key(algorithm, key)
    family = algorithm.family
    try:
        if family in _FIXED_CEK:
            return b""

        if family == AlgorithmFamily.RSA_ENCRYPTION:
            if key.public_key is None:
                raise ValidationError(f"{algorithm.value} requires an RSA public key")
            return key.public_key.encrypt(cek, _rsa_padding(algorithm))

        if family == AlgorithmFamily.AES_KEY_WRAP:
            return aes_key_wrap(_symmetric(algorithm, key, algorithm.size // 8), cek)

        if family == AlgorithmFamily.AES_GCM_KEY_WRAP:
            return _gcm_wrap(_symmetric(algorithm, key, algorithm.size // 8), cek, params)

        if family == AlgorithmFamily.ECDH_ES_KEY_WRAP:
            kek = _ephemeral_agreement(algorithm, encryption, key, params)
            return aes_key_wrap(kek, cek)

        if family == AlgorithmFamily.PBES2:
            if "p2s" not in params:
                params["p2s"] = b64url_encode(os.urandom(PBES2_SALT_SIZE))
            if "p2c" not in params:
                params["p2c"] = get_settings().pbes2_iterations
            kek = _pbes2_kek(algorithm, _symmetric(algorithm, key), b64url_decode(params["p2s"]), params["p2c"])
            return aes_key_wrap(kek, cek)
    except (ValueError, TypeError) as e:
        if isinstance(e, ValidationError):
            raise
        raise CryptographicError(f"Key encryption failed: {e}") from e

    raise UnsupportedAlgorithmError(f"Unsupported key management algorithm: {algorithm.value}")


def decrypt_key(header: JoseHeader, key: WebKey, encrypted_key: bytes) -> bytes:
    """Recover the CEK for one recipient.

    Args:
        header: Merged recipient header
        key: Recipient private or shared key
        encrypted_key: JWE Encrypted Key

    Returns:
        CEK bytes

    Raises:
        ValidationError: If the key does not fit the header
        CryptographicError: If the CEK cannot be recovered
    """
    algorithm = header.algorithm
    encryption = header.encryption
    _check_key(algorithm, key)
    family = algorithm.family

    if family in _FIXED_CEK and encrypted_key:
        raise ValidationError(f"{algorithm.value} must not carry an encrypted key")

    try:
        if family == AlgorithmFamily.DIRECT:
            return _symmetric(algorithm, key, encryption.key_bytes)

        if family in (AlgorithmFamily.ECDH_ES, AlgorithmFamily.ECDH_ES_KEY_WRAP):
            if not isinstance(key.private_key, ec.EllipticCurvePrivateKey):
                raise ValidationError("ECDH requires an EC private key")
            epk = header.ephemeral_key
            if epk is None or not isinstance(epk.public_key, ec.EllipticCurvePublicKey):
                raise ValidationError("ECDH requires an EC 'epk'")
            if epk.public_key.curve.name != key.private_key.curve.name:
                raise ValidationError("'epk' curve does not match the recipient key")
            shared_secret = key.private_key.exchange(ec.ECDH(), epk.public_key)
            agreed = _agreed_key(algorithm, encryption, shared_secret, dict(header.extended_params))
            if family == AlgorithmFamily.ECDH_ES:
                return agreed
            return aes_key_unwrap(agreed, encrypted_key)

        if family == AlgorithmFamily.RSA_ENCRYPTION:
            if key.private_key is None:
                raise ValidationError(f"{algorithm.value} requires an RSA private key")
            return key.private_key.decrypt(encrypted_key, _rsa_padding(algorithm))

        if family == AlgorithmFamily.AES_KEY_WRAP:
            return aes_key_unwrap(_symmetric(algorithm, key, algorithm.size // 8), encrypted_key)

        if family == AlgorithmFamily.AES_GCM_KEY_WRAP:
            kek = _symmetric(algorithm, key, algorithm.size // 8)
            iv = header.bytes_param("iv")
            tag = header.bytes_param("tag")
            if iv is None or len(iv) != 12 or tag is None or len(tag) != GCM_TAG_SIZE:
                raise ValidationError("GCM key wrap requires a 96-bit 'iv' and 128-bit 'tag'")
            return AESGCM(kek).decrypt(iv, encrypted_key + tag, None)

        if family == AlgorithmFamily.PBES2:
            salt_input = header.bytes_param("p2s")
            iterations = header.iteration_count
            if salt_input is None or iterations is None:
                raise ValidationError("PBES2 requires 'p2s' and 'p2c'")
            if iterations > get_settings().pbes2_max_iterations:
                raise ValidationError(f"'p2c' of {iterations} exceeds the configured maximum")
            kek = _pbes2_kek(algorithm, _symmetric(algorithm, key), salt_input, iterations)
            return aes_key_unwrap(kek, encrypted_key)
    except (InvalidUnwrap, InvalidTag) as e:
        raise CryptographicError("Key unwrap failed") from e
    except ValueError as e:
        if isinstance(e, ValidationError):
            raise
        raise CryptographicError(f"Key decryption failed: {e}") from e

    raise UnsupportedAlgorithmError(f"Unsupported key management algorithm: {algorithm.value}")
