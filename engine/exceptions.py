"""Custom exception classes for the backup engine."""


class VaultError(Exception):
    """
    Base exception class for all backup engine errors.
    """
    pass


class BackendError(VaultError):
    """
    Raised when the storage backend fails with a transport or I/O error.

    These are retryable by the caller and never swallowed by the engine.
    """
    pass


class ObjectNotFoundError(VaultError):
    """
    Raised when a requested chunk or snapshot does not exist on the backend.
    """
    pass


class IntegrityError(VaultError):
    """
    Raised when an encrypted object fails authentication.

    Covers AEAD tag failures, truncated or malformed ciphertext and
    associated data that does not match what the caller expects.
    Never retried with the same ciphertext.
    """
    pass


class UnsupportedVersionError(IntegrityError):
    """
    Raised when an object was written with a format version newer than ours.
    """
    pass


class InvalidRetentionPolicyError(VaultError, ValueError):
    """
    Raised when attempting to store a retention policy where all values are 0.
    """
    pass


class KeyUnavailableError(VaultError):
    """
    Raised when the key manager holds no main key.
    """
    pass
