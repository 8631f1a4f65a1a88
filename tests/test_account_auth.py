"""
tests/test_account_auth.py — Authentication verifier (check_auth)

Covers the full assertion path with real P-256 keys:
  • success binds the challenge and pushes signer + instance TTL to max
  • challenge mutation (re-signed) → ClientDataJsonChallengeIncorrect
  • sudo-only contexts, creation contexts, unknown signers
  • crypto aborts (bad signature, high-S, bad key) are HostAbort, never AccountError
  • clientDataJSON parse failures → JsonParseError
"""

from __future__ import annotations

import hashlib

import pytest

from passkey_account.auth.challenge import b64url_encode
from passkey_account.auth.errors import (
    AccountError,
    ClientDataJsonChallengeIncorrect,
    HostAbort,
    InvalidContext,
    JsonParseError,
    NotFound,
    NotPermitted,
    Secp256r1PublicKeyParse,
    Secp256r1SignatureParse,
    Secp256r1VerifyFailed,
)
from passkey_account.auth.soft_authenticator import SoftAuthenticator
from passkey_account.auth.types import ContractContext, CreateContractContext, SignatureEnvelope
from passkey_account.auth.webauthn_verify import signature_base
from passkey_account.host.crypto import SECP256R1_N, Crypto
from passkey_account.host.ledger import MAX_TTL

from conftest import ADDR

PAYLOAD = hashlib.sha256(b"transfer 10 to CBOB").digest()
TRANSFER = ContractContext("CTOKEN", "transfer", (ADDR, "CBOB", 10))


def _mutate(challenge: str) -> str:
    first = "B" if challenge[0] == "A" else "A"
    return first + challenge[1:]


def test_valid_assertion_succeeds_and_extends_ttl(host, account, ledger, sudo):
    ledger.advance(1000)
    persistent = account.env.persistent()
    assert persistent.ttl(sudo.signer_id) == MAX_TTL - 1000
    assert account.env.instance().ttl() == MAX_TTL - 1000

    host.authorize(ADDR, PAYLOAD, sudo.sign(PAYLOAD), [TRANSFER])

    assert persistent.ttl(sudo.signer_id) == MAX_TTL
    assert account.env.instance().ttl() == MAX_TTL


def test_non_sudo_signer_may_authorize_ordinary_calls(host, member):
    host.authorize(ADDR, PAYLOAD, member.sign(PAYLOAD), [TRANSFER])
    own_call = ContractContext(ADDR, "extend_ttl", ())
    host.authorize(ADDR, PAYLOAD, member.sign(PAYLOAD), [own_call])


def test_challenge_mutation_fails(host, account, ledger, sudo):
    ledger.advance(1000)
    mutated = _mutate(b64url_encode(PAYLOAD))
    assert len(mutated) == 43 and mutated != b64url_encode(PAYLOAD)

    with pytest.raises(ClientDataJsonChallengeIncorrect):
        host.authorize(ADDR, PAYLOAD, sudo.sign(PAYLOAD, challenge=mutated), [TRANSFER])
    # no TTL side effect on failure
    assert account.env.persistent().ttl(sudo.signer_id) == MAX_TTL - 1000


def test_signature_for_other_payload_is_rejected(host, sudo):
    other = hashlib.sha256(b"another request").digest()
    with pytest.raises(ClientDataJsonChallengeIncorrect):
        host.authorize(ADDR, PAYLOAD, sudo.sign(other), [TRANSFER])


@pytest.mark.parametrize("fn_name", ["add_sig", "rm_sig", "resudo"])
def test_mutating_context_requires_sudo(host, member, fn_name):
    ctx = ContractContext(ADDR, fn_name, (b"\x01" * 32,))
    with pytest.raises(NotPermitted):
        host.authorize(ADDR, PAYLOAD, member.sign(PAYLOAD), [ctx])


def test_mutating_name_on_other_contract_is_not_scoped(host, member):
    ctx = ContractContext("COTHER", "add_sig", ())
    host.authorize(ADDR, PAYLOAD, member.sign(PAYLOAD), [ctx])


def test_mutating_context_without_sudo_is_not_found(host):
    stranger = SoftAuthenticator.generate()
    ctx = ContractContext(ADDR, "resudo", (stranger.signer_id,))
    with pytest.raises(NotFound):
        host.authorize(ADDR, PAYLOAD, stranger.sign(PAYLOAD), [ctx])


def test_creation_context_always_invalid(host, sudo):
    class CountingCrypto(Crypto):
        calls = 0

        def secp256r1_verify(self, public_key, digest, signature):
            CountingCrypto.calls += 1
            super().secp256r1_verify(public_key, digest, signature)

    host.crypto = CountingCrypto()
    create = CreateContractContext(wasm_hash=b"\x00" * 32, salt=b"\x01" * 32)

    with pytest.raises(InvalidContext):
        host.authorize(ADDR, PAYLOAD, sudo.sign(PAYLOAD), [create])
    garbage = SignatureEnvelope(sudo.signer_id, b"", b"{}", b"\x01" * 64)
    with pytest.raises(InvalidContext):
        host.authorize(ADDR, PAYLOAD, garbage, [TRANSFER, create])
    assert CountingCrypto.calls == 0


def test_unknown_signer_is_not_found(host, sudo):
    stranger = SoftAuthenticator.generate()
    with pytest.raises(NotFound):
        host.authorize(ADDR, PAYLOAD, stranger.sign(PAYLOAD), [TRANSFER])


def test_wrong_key_aborts(host, account, ledger, sudo):
    ledger.advance(1000)
    impostor = SoftAuthenticator.generate(sudo.signer_id)
    with pytest.raises(Secp256r1VerifyFailed) as ei:
        host.authorize(ADDR, PAYLOAD, impostor.sign(PAYLOAD), [TRANSFER])
    assert isinstance(ei.value, HostAbort)
    assert not isinstance(ei.value, AccountError)
    assert account.env.persistent().ttl(sudo.signer_id) == MAX_TTL - 1000


def test_tampered_authenticator_data_aborts(host, sudo):
    good = sudo.sign(PAYLOAD)
    tampered = SignatureEnvelope(
        id=good.id,
        authenticator_data=good.authenticator_data[:-1] + b"\xff",
        client_data_json=good.client_data_json,
        signature=good.signature,
    )
    with pytest.raises(Secp256r1VerifyFailed):
        host.authorize(ADDR, PAYLOAD, tampered, [TRANSFER])


def test_high_s_signature_is_a_parse_abort(host, sudo):
    good = sudo.sign(PAYLOAD)
    r = good.signature[:32]
    s = int.from_bytes(good.signature[32:], "big")
    high = SignatureEnvelope(
        id=good.id,
        authenticator_data=good.authenticator_data,
        client_data_json=good.client_data_json,
        signature=r + (SECP256R1_N - s).to_bytes(32, "big"),
    )
    with pytest.raises(Secp256r1SignatureParse):
        host.authorize(ADDR, PAYLOAD, high, [TRANSFER])

    zero = SignatureEnvelope(good.id, good.authenticator_data, good.client_data_json, bytes(64))
    with pytest.raises(Secp256r1SignatureParse):
        host.authorize(ADDR, PAYLOAD, zero, [TRANSFER])


def test_off_curve_public_key_is_a_parse_abort(call, host):
    signer = SoftAuthenticator.generate()
    call("add_sig", [signer.signer_id, b"\x04" + b"\x01" * 64])
    with pytest.raises(Secp256r1PublicKeyParse):
        host.authorize(ADDR, PAYLOAD, signer.sign(PAYLOAD), [TRANSFER])


@pytest.mark.parametrize(
    "client_data",
    [
        b"not json",
        b"\xff\xfe",
        b"[1, 2, 3]",
        b'{"type":"webauthn.get","origin":"http://localhost:8080"}',
        b'{"type":"webauthn.get","challenge":5}',
        b'{"challenge":"' + b"A" * 1100 + b'"}',
    ],
)
def test_unparseable_client_data_is_json_parse_error(host, sudo, client_data):
    sig = sudo.sign_raw(sudo.authenticator_data(), client_data)
    with pytest.raises(JsonParseError):
        host.authorize(ADDR, PAYLOAD, sig, [TRANSFER])


def test_extra_client_data_members_are_ignored(host, sudo):
    doc = (
        b'{"type":"webauthn.get","challenge":"' + b64url_encode(PAYLOAD).encode()
        + b'","origin":"https://wallet.example","crossOrigin":false,"other_keys_can_be_added_here":"x"}'
    )
    host.authorize(ADDR, PAYLOAD, sudo.sign_raw(sudo.authenticator_data(), doc), [TRANSFER])


def test_signature_base_matches_webauthn_definition(sudo):
    crypto = Crypto()
    auth_data = sudo.authenticator_data()
    client = b'{"challenge":"x"}'
    expected = hashlib.sha256(auth_data + hashlib.sha256(client).digest()).digest()
    assert signature_base(crypto, auth_data, client) == expected
