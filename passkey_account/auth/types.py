"""
auth/types.py — Signature envelope and authorization contexts

A `SignatureEnvelope` is what a passkey produces for one invocation: the signer id it
claims to be, plus the three WebAuthn assertion fields. Contexts describe what the
invocation asks the account to authorize.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Tuple, Union

SIGNER_ID_LEN = 32
PUBLIC_KEY_LEN = 65
SIGNATURE_LEN = 64


def check_signer_id(signer_id: bytes) -> bytes:
    if not isinstance(signer_id, (bytes, bytearray)) or len(signer_id) != SIGNER_ID_LEN:
        raise ValueError(f"signer id must be {SIGNER_ID_LEN} bytes")
    return bytes(signer_id)


def check_public_key(public_key: bytes) -> bytes:
    # Uncompressed SEC1 point: 0x04 || X || Y
    if not isinstance(public_key, (bytes, bytearray)) or len(public_key) != PUBLIC_KEY_LEN:
        raise ValueError(f"public key must be {PUBLIC_KEY_LEN} bytes")
    return bytes(public_key)


@dataclass(frozen=True)
class SignatureEnvelope:
    """
    WebAuthn assertion bound to a registered signer.

    Fields:
      id                 : 32-byte signer id (registry key, chosen at registration)
      authenticator_data : raw authenticatorData from the assertion
      client_data_json   : raw clientDataJSON bytes (UTF-8 JSON)
      signature          : 64-byte raw ECDSA signature r || s (not DER)
    """
    id: bytes
    authenticator_data: bytes
    client_data_json: bytes
    signature: bytes

    def __post_init__(self):
        check_signer_id(self.id)
        if len(self.signature) != SIGNATURE_LEN:
            raise ValueError(f"signature must be {SIGNATURE_LEN} bytes")


@dataclass(frozen=True)
class ContractContext:
    """A call to `fn_name` on `contract`, which the account is asked to authorize."""
    contract: str
    fn_name: str
    args: Tuple[Any, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CreateContractContext:
    """Opaque contract-creation request. Always rejected by the passkey account."""
    wasm_hash: bytes = b""
    salt: bytes = b""


Context = Union[ContractContext, CreateContractContext]
