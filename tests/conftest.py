"""
tests/conftest.py — Shared fixtures: in-memory host, registered account, software passkeys

All tests run against `MemoryLedger` (or a temp-dir `JsonFileLedger`) and real P-256
keys from `cryptography`; nothing is mocked below the host crypto port.
"""

from __future__ import annotations

import itertools
from typing import Any, Sequence

import pytest

from passkey_account.account import PasskeyAccount
from passkey_account.auth.soft_authenticator import SoftAuthenticator
from passkey_account.host.env import Host
from passkey_account.host.ledger import MemoryLedger

ADDR = "CACCOUNTTEST"


class Caller:
    """Signs and submits invocations with fresh nonces and a short expiration window."""

    window = 100

    def __init__(self, host: Host, address: str = ADDR):
        self.host = host
        self.address = address
        self._nonces = itertools.count(1)

    def expiration(self) -> int:
        return self.host.ledger.sequence + self.window

    def payload(self, fn_name: str, args: Sequence[Any], nonce: int, expiration_ledger: int) -> bytes:
        return self.host.signature_payload(self.address, fn_name, args, nonce, expiration_ledger)

    def __call__(self, fn_name: str, args: Sequence[Any] = (), signer: SoftAuthenticator | None = None, **kw) -> Any:
        nonce = kw.pop("nonce", None)
        if nonce is None:
            nonce = next(self._nonces)
        expiration = kw.pop("expiration_ledger", None)
        if expiration is None:
            expiration = self.expiration()
        signature = None
        if signer is not None:
            signature = signer.sign(self.payload(fn_name, args, nonce, expiration), **kw)
        return self.host.invoke(
            self.address, fn_name, args,
            signature=signature, nonce=nonce, expiration_ledger=expiration,
        )


@pytest.fixture
def ledger() -> MemoryLedger:
    return MemoryLedger()


@pytest.fixture
def host(ledger: MemoryLedger) -> Host:
    h = Host(ledger=ledger)
    h.register(ADDR, PasskeyAccount)
    return h


@pytest.fixture
def account(host: Host) -> PasskeyAccount:
    return host.account(ADDR)


@pytest.fixture
def call(host: Host) -> Caller:
    return Caller(host)


@pytest.fixture
def sudo(call: Caller) -> SoftAuthenticator:
    """First signer; installed as sudo by the bootstrap add_sig (no auth needed)."""
    auth = SoftAuthenticator.generate(bytes([0x80]) + bytes(31))
    call("add_sig", [auth.signer_id, auth.public_key])
    return auth


@pytest.fixture
def member(call: Caller, sudo: SoftAuthenticator) -> SoftAuthenticator:
    """Second, non-sudo signer added by the sudo signer."""
    auth = SoftAuthenticator.generate(bytes([0x40]) + bytes(31))
    call("add_sig", [auth.signer_id, auth.public_key], signer=sudo)
    return auth
