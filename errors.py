"""
Typed failures raised by the medical-file cryptosystem.

Callers outside this code map them to user-facing responses; nothing here
catches and ignores them, and nothing retries after one of them.
"""


class HealthCryptoError(Exception):
    """Base class for every failure raised by this package."""


class ConfigurationError(HealthCryptoError):
    """A required setting is missing or malformed."""


class DomainParameterError(HealthCryptoError):
    """The ElGamal modulus/generator pair is unusable."""


class KeyFormatError(HealthCryptoError):
    """A serialized key could not be parsed, or belongs to another group."""


class BlockTooLargeError(HealthCryptoError):
    """A plaintext does not fit in a single ElGamal block."""


class IntegrityError(HealthCryptoError):
    """Authenticated decryption failed (tampered data, wrong key or wrong IV)."""


class AccessDeniedError(HealthCryptoError):
    """The delegation grant for a patient/doctor pair is not usable."""

    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"

    def __init__(self, reason: str, patient_id=None, doctor_id=None):
        self.reason = reason
        self.patient_id = patient_id
        self.doctor_id = doctor_id
        super().__init__(f"access denied ({reason})")


class NotFoundError(HealthCryptoError):
    """The requested record does not exist."""


class AuditLogImmutableError(HealthCryptoError):
    """An audit row was about to be updated or deleted."""
