"""
host/crypto.py — Host cryptographic primitives (SHA-256, secp256r1 verify)

Security & Ops
- Purpose: The account never talks to a crypto library directly. It calls the `Crypto`
  port handed to it by the host, so tests and alternative hosts can swap the backend.
- `secp256r1_verify` follows the ledger host contract:
  1) Public key must be a valid uncompressed SEC1 point on P-256 (65 bytes).
  2) Signature is raw r || s (64 bytes); r and s must be in [1, n-1] and s must be in
     low-S form (s <= n/2). High-S signatures are malleable and are rejected.
  3) The message passed in is already a 32-byte digest; it is verified as a prehashed
     SHA-256 value, not hashed again.
- Any failure raises a `HostAbort` subclass. There is no boolean return: a failed
  verification ends the invocation.

Production Considerations
- WebAuthn authenticators emit DER signatures with arbitrary S. Clients must convert to
  raw r || s and normalize S before submitting (see `auth/soft_authenticator.py`).
"""

from __future__ import annotations

import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature

from ..auth.errors import (
    Secp256r1PublicKeyParse,
    Secp256r1SignatureParse,
    Secp256r1VerifyFailed,
)

# Order of the P-256 base point.
SECP256R1_N = int(
    "0xffffffff00000000ffffffffffffffffbce6faada7179e84f3b9cac2fc632551", 16
)
SECP256R1_HALF_N = SECP256R1_N // 2


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def load_public_key(public_key: bytes) -> ec.EllipticCurvePublicKey:
    """Decode a 65-byte uncompressed point, aborting on anything else."""
    if len(public_key) != 65 or public_key[0] != 0x04:
        raise Secp256r1PublicKeyParse("public key is not an uncompressed SEC1 point")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), public_key)
    except ValueError as e:
        raise Secp256r1PublicKeyParse("point is not on secp256r1") from e


def split_signature(signature: bytes) -> tuple[int, int]:
    """Parse raw r || s and enforce range and low-S rules."""
    if len(signature) != 64:
        raise Secp256r1SignatureParse("signature must be 64 bytes")
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    if not (0 < r < SECP256R1_N and 0 < s < SECP256R1_N):
        raise Secp256r1SignatureParse("r or s out of range")
    if s > SECP256R1_HALF_N:
        raise Secp256r1SignatureParse("signature s is not normalized (high-S)")
    return r, s


def secp256r1_verify(public_key: bytes, digest: bytes, signature: bytes) -> None:
    """
    Verify `signature` over the 32-byte `digest` with `public_key`.

    Raises:
      Secp256r1PublicKeyParse / Secp256r1SignatureParse on malformed input,
      Secp256r1VerifyFailed when the signature does not match.
    """
    if len(digest) != 32:
        raise Secp256r1VerifyFailed("digest must be 32 bytes")
    pub = load_public_key(public_key)
    r, s = split_signature(signature)
    try:
        pub.verify(encode_dss_signature(r, s), digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    except InvalidSignature as e:
        raise Secp256r1VerifyFailed("secp256r1 signature verification failed") from e


class Crypto:
    """Crypto port. Subclass or replace in tests to count or fault calls."""

    def sha256(self, data: bytes) -> bytes:
        return sha256(data)

    def secp256r1_verify(self, public_key: bytes, digest: bytes, signature: bytes) -> None:
        secp256r1_verify(public_key, digest, signature)
