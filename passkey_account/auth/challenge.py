"""
auth/challenge.py — base64url (no padding) encoding of the authentication payload

Browsers put the WebAuthn challenge into clientDataJSON as base64url without `=` padding.
The verifier re-derives that string from the 32-byte payload the host supplied and
compares it byte for byte with what the authenticator signed.

For a 32-byte payload the encoding is always exactly 43 characters from the alphabet
[A-Za-z0-9-_].
"""

from __future__ import annotations

import base64

PAYLOAD_LEN = 32
ENCODED_PAYLOAD_LEN = 43


def b64url_encode(data: bytes) -> str:
    """Standard base64 with `+`->`-`, `/`->`_` and trailing `=` stripped."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def expected_challenge(payload: bytes) -> bytes:
    """
    Encode a 32-byte signature payload as the challenge bytes clientDataJSON must carry.

    Raises:
      ValueError if `payload` is not exactly 32 bytes.
    """
    if len(payload) != PAYLOAD_LEN:
        raise ValueError(f"signature payload must be {PAYLOAD_LEN} bytes, got {len(payload)}")
    return b64url_encode(payload).encode("ascii")
