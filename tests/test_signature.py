from typing import Any

from nacl.signing import SigningKey

from veil_stage.core.security import verify_interaction, verify_signature


def test_verify_signature_rejects_bad_inputs() -> None:
    """Ensure verify_signature returns False when given invalid hex inputs."""
    assert verify_signature("zz", b"msg", "aa") is False


def test_verify_signature_accepts_valid_signature(signing_key: SigningKey) -> None:
    signature = signing_key.sign(b"payload").signature.hex()
    assert verify_signature(signing_key.verify_key.encode().hex(), b"payload", signature) is True


def test_verify_interaction_covers_timestamp_and_raw_body(signing_key: SigningKey) -> None:
    """The signed message is the timestamp followed by the exact body bytes."""
    pubkey = signing_key.verify_key.encode().hex()
    body = b'{"type":1}'
    signature = signing_key.sign(b"1700000000" + body).signature.hex()

    assert verify_interaction(body, signature, "1700000000", pubkey) is True
    assert verify_interaction(body.decode(), signature, "1700000000", pubkey) is True
    assert verify_interaction(body, signature, "1700000001", pubkey) is False
    assert verify_interaction(b'{"type": 1}', signature, "1700000000", pubkey) is False


def test_verify_interaction_rejects_malformed_input(signing_key: SigningKey) -> None:
    pubkey = signing_key.verify_key.encode().hex()
    weird: Any = None
    assert verify_interaction(b"{}", "not-hex", "1", pubkey) is False
    assert verify_interaction(b"{}", "aa" * 64, "1", "short") is False
    assert verify_interaction(weird, "aa" * 64, "1", pubkey) is False
