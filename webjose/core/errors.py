"""JOSE exception hierarchy."""


class JOSEError(Exception):
    """Base JOSE exception."""

    pass


class ValidationError(JOSEError, ValueError):
    """A key, header or message violates a structural or semantic rule."""

    pass


class KeyNotFoundError(ValidationError, LookupError):
    """No key with the requested id exists in a key set."""

    pass


class UnsupportedAlgorithmError(JOSEError):
    """Algorithm or critical parameter not supported."""

    pass


class CryptographicError(JOSEError):
    """An underlying cipher, signature or MAC operation failed."""

    pass


class InvalidJWSError(CryptographicError):
    """JWS is invalid or verification failed."""

    pass


class InvalidJWEError(CryptographicError):
    """JWE is invalid or decryption failed."""

    pass


class RemoteResourceError(JOSEError):
    """A remote key set or certificate chain could not be retrieved."""

    pass
