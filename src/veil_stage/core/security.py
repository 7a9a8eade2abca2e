"""Signature utilities built on Ed25519 primitives."""
from __future__ import annotations

import binascii

from nacl.signing import VerifyKey


def verify_signature(pubkey_hex: str, message: bytes, signature_hex: str) -> bool:
    """Verify an Ed25519 signature.

    Args:
        pubkey_hex: Hex-encoded 32-byte public key.
        message: Exact bytes that were signed by the sender.
        signature_hex: Hex-encoded 64-byte signature.

    Returns:
        True if the signature is valid for `message` under `pubkey_hex`; False otherwise.
    """
    try:
        pubkey = VerifyKey(binascii.unhexlify(pubkey_hex))
        signature = binascii.unhexlify(signature_hex)
        pubkey.verify(message, signature)
        return True
    except Exception:
        return False


def verify_interaction(
    raw_body: bytes | str,
    signature_hex: str,
    timestamp: str,
    public_key_hex: str,
) -> bool:
    """Verify a platform-signed interaction request.

    The signed message is the timestamp header followed by the raw request body,
    exactly as received. Never pass a re-serialized body here.

    Args:
        raw_body: Unparsed request body.
        signature_hex: Value of the ``X-Signature-Ed25519`` header.
        timestamp: Value of the ``X-Signature-Timestamp`` header.
        public_key_hex: The application's hex-encoded public key.

    Returns:
        True only when the signature is valid; malformed input yields False.
    """
    try:
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else bytes(raw_body)
        message = timestamp.encode("utf-8") + body
    except Exception:
        return False
    return verify_signature(public_key_hex, message, signature_hex)
