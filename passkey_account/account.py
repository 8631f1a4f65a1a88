"""
account.py — Passkey account: public entry points + host auth hook

Entry points (via `Host.invoke`):
  add_sig(id, public_key)   register a signer; the first one becomes sudo
  rm_sig(id)                remove a non-sudo signer (sudo only)
  resudo(id)                move sudo to another registered signer (sudo only)
  list_sigs()               sorted signer ids
  extend_ttl()              push the account instance to the maximum TTL (no auth)

Host hook:
  check_auth(payload, signature, contexts)  see auth/account_auth.py
"""

from __future__ import annotations

from typing import List, Sequence

from .auth import account_auth
from .auth.types import Context, SignatureEnvelope
from .registry.signers import SignerRegistry


class PasskeyAccount:
    """Account bound to one `Env` (address + storage + crypto + auth gate)."""

    def __init__(self, env):
        self.env = env
        self.registry = SignerRegistry(env)

    @property
    def address(self) -> str:
        return self.env.address

    def add_sig(self, id: bytes, pk: bytes) -> None:
        self.registry.add(id, pk)

    def rm_sig(self, id: bytes) -> None:
        self.registry.remove(id)

    def resudo(self, id: bytes) -> None:
        self.registry.promote(id)

    def list_sigs(self) -> List[bytes]:
        return self.registry.list()

    def extend_ttl(self) -> None:
        self.registry.extend_ttl()

    def check_auth(
        self,
        signature_payload: bytes,
        signature: SignatureEnvelope,
        auth_contexts: Sequence[Context],
    ) -> None:
        account_auth.check_auth(self.env, signature_payload, signature, auth_contexts)
