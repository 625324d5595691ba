"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    status_code = 500


class ValidationError(DomainException):
    """Malformed amount, range or request field"""

    status_code = 400


class OverlapError(DomainException):
    """Slab range conflicts with an active slab of the same merchant"""

    status_code = 409


class NotFoundError(DomainException):
    """Merchant, user, slab or transaction does not exist"""

    status_code = 404


class ConflictError(DomainException):
    """Operation not allowed on an active record"""

    status_code = 409


class DecryptionError(DomainException):
    """Ciphertext is malformed or cannot be decrypted"""

    status_code = 400


class CodecConfigurationError(DomainException):
    """Codec key material is missing or has the wrong length"""

    pass


class IntegrityError(DomainException):
    """HMAC verification failed on an authenticated payload"""

    status_code = 401


class GatewayError(DomainException):
    """Payment gateway returned an error or is unavailable"""

    status_code = 502
