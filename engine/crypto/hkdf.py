"""HKDF-expand key derivation (RFC 5869 step 2) with HMAC-SHA256."""

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from common.constants import KEY_SIZE_BYTES

HMAC_SIZE_BYTES = 32
MAX_ITERATIONS = 255


def derive_key(main_key: bytes, info: bytes, out_length: int = KEY_SIZE_BYTES) -> bytes:
    """
    Derive a purpose-specific sub-key from the main key.

    The main key is used directly as the pseudo-random key, so the result is
    a deterministic function of (main_key, info).

    Args:
        main_key: Root secret
        info: ASCII label naming the purpose of the derived key
        out_length: Length of the derived key in bytes

    Returns:
        Derived key bytes

    Raises:
        ValueError: If out_length needs more than 255 HMAC iterations
    """
    iterations = -(-out_length // HMAC_SIZE_BYTES)
    if out_length < 1 or iterations > MAX_ITERATIONS:
        raise ValueError(f"Cannot derive {out_length} bytes with HKDF-SHA256")
    hkdf = HKDFExpand(algorithm=hashes.SHA256(), length=out_length, info=info)
    return hkdf.derive(main_key)
