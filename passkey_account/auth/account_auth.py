"""
auth/account_auth.py — Authentication verifier for the passkey account

Security & Ops
- Purpose: Decide whether a `SignatureEnvelope` may authorize the given contexts on
  behalf of the account. Called by the host from `env.require_auth()`.

- What a successful return guarantees:
  • No context asks the account to create a contract.
  • Every registry-mutating context on this account (`add_sig`, `rm_sig`, `resudo`) is
    signed by the current sudo signer.
  • The signer is registered and its key produced a valid assertion over exactly this
    invocation's payload.
  • The signer's key record and the account instance were pushed to the maximum TTL.

- Failure tiers:
  • NotFound / NotPermitted / InvalidContext / JsonParseError /
    ClientDataJsonChallengeIncorrect are raised as `AccountError`.
  • Bad key/signature material or a failed verification raises `HostAbort`.
  Either way the host rolls back the invocation.

- Privilege scoping runs before any crypto so that a creation request or an unprivileged
  registry mutation is refused regardless of signature validity.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..registry.signers import SUDO_SIGNER, short_id
from .errors import InvalidContext, NotFound, NotPermitted
from .types import Context, ContractContext, CreateContractContext, SignatureEnvelope
from .webauthn_verify import assert_verify

logger = logging.getLogger(__name__)

# Entry points that mutate the signer registry. Only the sudo signer may authorize them.
SUDO_ENTRY_POINTS = frozenset({"add_sig", "rm_sig", "resudo"})


def check_contexts(env, signature: SignatureEnvelope, contexts: Sequence[Context]) -> None:
    """
    Step 1 — privilege scoping.

    Raises:
      InvalidContext for any contract-creation context.
      NotFound if a sudo-only context is present and the account has no sudo signer.
      NotPermitted if a sudo-only context is signed by someone else.
    """
    for ctx in contexts:
        if isinstance(ctx, CreateContractContext):
            raise InvalidContext("contract creation is never authorized by this account")
        if not isinstance(ctx, ContractContext):
            raise InvalidContext(f"unsupported context {type(ctx).__name__}")
        if ctx.contract == env.address and ctx.fn_name in SUDO_ENTRY_POINTS:
            sudo = env.instance().get(SUDO_SIGNER)
            if sudo is None:
                raise NotFound("account has no sudo signer")
            if signature.id != sudo:
                raise NotPermitted(f"{ctx.fn_name} requires the sudo signer")


def check_auth(
    env,
    signature_payload: bytes,
    signature: SignatureEnvelope,
    contexts: Sequence[Context],
) -> None:
    """
    Authenticate `signature` for `contexts` against `signature_payload`.

    Args:
      env               : account Env (address, storage, crypto)
      signature_payload : 32 bytes derived by the host for this invocation
      signature         : presented SignatureEnvelope
      contexts          : operations being authorized, in order

    Raises:
      AccountError or HostAbort subclasses; returns None on success.
    """
    try:
        check_contexts(env, signature, contexts)

        persistent = env.persistent()
        public_key = persistent.get(signature.id)
        if public_key is None:
            raise NotFound(f"signer {short_id(signature.id)} not registered")

        assert_verify(env.crypto, public_key, signature_payload, signature)
    except Exception as e:
        logger.warning(
            "auth denied for %s signer %s: %s",
            env.address, short_id(signature.id), type(e).__name__,
        )
        raise

    max_ttl = env.max_ttl()
    persistent.extend_ttl(signature.id, max_ttl, max_ttl)
    env.instance().extend_ttl(max_ttl, max_ttl)
    logger.info("auth ok for %s signer %s", env.address, short_id(signature.id))
