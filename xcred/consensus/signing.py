"""Ed25519 verification of authority-signed validation tasks."""

import base64
from collections.abc import Callable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

# (payload, base64 signature, base64 raw public key) -> valid
SignatureVerifier = Callable[[bytes, str, str], bool]


def verify_ed25519(data: bytes, signature: str, public_key: str) -> bool:
    """
    Check a base64 Ed25519 signature against a base64 raw 32-byte key.

    Returns:
        False for bad signatures and for undecodable keys or signatures
    """
    try:
        key = Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key))
        key.verify(base64.b64decode(signature), data)
    except (InvalidSignature, ValueError):
        return False
    return True
