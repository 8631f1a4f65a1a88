"""
auth/soft_authenticator.py — Software P-256 passkey that produces WebAuthn assertions

Purpose
-------
A file-backed stand-in for a platform/roaming authenticator. It builds the same three
assertion fields a browser returns from `navigator.credentials.get()` and converts the
ECDSA signature into the form the account expects:

  authenticatorData = SHA256(rp_id) || flags || signCount (big-endian u32)
  clientDataJSON    = {"type":"webauthn.get","challenge":<b64url payload>,"origin":...}
  signature         = raw r || s (64 bytes) with s normalized to low-S

Security & Ops
- Intended for development, CI and the operator CLI. Keys are PEM files on disk,
  unencrypted; protect the directory or use a real authenticator.
- Signer ids are random 32-byte handles, not derived from the key.

Tunable / Config
- PASSKEY_KEY_DIR : where `keygen` stores `<signer id hex>.pem` (default: .passkeys)
- WEBAUTHN_RP_ID  : RP ID hashed into authenticatorData (default: localhost)
- WEBAUTHN_ORIGIN : origin written into clientDataJSON (default: http://localhost:8080)
"""

from __future__ import annotations

import json
import os
import secrets
from dataclasses import dataclass, field
from typing import Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature

from ..host.crypto import SECP256R1_HALF_N, SECP256R1_N, sha256
from .challenge import b64url_encode
from .types import SignatureEnvelope, check_signer_id

KEY_DIR = os.getenv("PASSKEY_KEY_DIR", ".passkeys")

FLAG_UP = 0x01  # user present
FLAG_UV = 0x04  # user verified


def raw_signature(der: bytes) -> bytes:
    """DER ECDSA signature -> 64-byte r || s with low-S normalization."""
    r, s = decode_dss_signature(der)
    if s > SECP256R1_HALF_N:
        s = SECP256R1_N - s
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


@dataclass
class SoftAuthenticator:
    """
    One passkey credential.

    Fields:
      signer_id   : 32-byte registry handle
      private_key : P-256 private key
      rp_id       : relying party id hashed into authenticatorData
      origin      : origin written into clientDataJSON
      sign_count  : incremented per assertion
    """
    signer_id: bytes
    private_key: ec.EllipticCurvePrivateKey
    rp_id: str = field(default_factory=lambda: os.getenv("WEBAUTHN_RP_ID", "localhost"))
    origin: str = field(default_factory=lambda: os.getenv("WEBAUTHN_ORIGIN", "http://localhost:8080"))
    sign_count: int = 0

    def __post_init__(self):
        check_signer_id(self.signer_id)

    # --- Key material ---------------------------------------------------------------------------

    @classmethod
    def generate(cls, signer_id: Optional[bytes] = None, **kwargs) -> "SoftAuthenticator":
        return cls(
            signer_id=signer_id or secrets.token_bytes(32),
            private_key=ec.generate_private_key(ec.SECP256R1()),
            **kwargs,
        )

    @property
    def public_key(self) -> bytes:
        """65-byte uncompressed SEC1 point, as stored by `add_sig`."""
        return self.private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )

    def save(self, key_dir: str = KEY_DIR) -> str:
        os.makedirs(key_dir, exist_ok=True)
        path = os.path.join(key_dir, f"{self.signer_id.hex()}.pem")
        pem = self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        with open(path, "wb") as f:
            f.write(pem)
        os.chmod(path, 0o600)
        return path

    @classmethod
    def load(cls, signer_id_hex: str, key_dir: str = KEY_DIR, **kwargs) -> "SoftAuthenticator":
        path = os.path.join(key_dir, f"{signer_id_hex}.pem")
        with open(path, "rb") as f:
            key = serialization.load_pem_private_key(f.read(), password=None)
        if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
            raise ValueError(f"{path} is not a P-256 private key")
        return cls(signer_id=bytes.fromhex(signer_id_hex), private_key=key, **kwargs)

    # --- Assertions -----------------------------------------------------------------------------

    def authenticator_data(self) -> bytes:
        self.sign_count += 1
        return (
            sha256(self.rp_id.encode("utf-8"))
            + bytes([FLAG_UP | FLAG_UV])
            + self.sign_count.to_bytes(4, "big")
        )

    def client_data_json(self, challenge: str) -> bytes:
        doc = {
            "type": "webauthn.get",
            "challenge": challenge,
            "origin": self.origin,
            "crossOrigin": False,
        }
        return json.dumps(doc, separators=(",", ":")).encode("utf-8")

    def sign_raw(self, authenticator_data: bytes, client_data_json: bytes) -> SignatureEnvelope:
        """Sign arbitrary assertion fields (the WebAuthn signature base is built here)."""
        digest = sha256(authenticator_data + sha256(client_data_json))
        der = self.private_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        return SignatureEnvelope(
            id=self.signer_id,
            authenticator_data=authenticator_data,
            client_data_json=client_data_json,
            signature=raw_signature(der),
        )

    def sign(self, payload: bytes, *, challenge: Optional[str] = None) -> SignatureEnvelope:
        """
        Produce an assertion over a 32-byte host payload.

        `challenge` overrides the clientDataJSON challenge string (negative testing).
        """
        if challenge is None:
            challenge = b64url_encode(payload)
        return self.sign_raw(self.authenticator_data(), self.client_data_json(challenge))
