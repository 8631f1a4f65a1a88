"""
server/webauthn_api.py — Challenge issuance and WebAuthn-signed invocation routes

Overview
--------
Two-step flow, one signature per invocation:

  POST /invoke/prepare {fn_name, args}
      → {nonce, challenge, expiration_ledger}
        `challenge` is base64url(no padding) of the 32-byte payload the host derives from
        (account address, fn_name, args, nonce, expiration_ledger). Pass it as the
        WebAuthn `challenge`.
  POST /invoke {nonce, signature?}
      → {ok, result}
        `signature` carries the assertion fields (base64url) and the signer id (hex).
        Omit it only for calls that need no auth (first add_sig, list_sigs, extend_ttl).

Security & Ops
--------------
- Prepared invocations are single use: the pending entry is dropped before the host
  runs, so a failed attempt needs a fresh `prepare` (fresh nonce and challenge).
- The host also records the nonce once `check_auth` succeeds and keeps it until the
  signature expires, so a captured assertion cannot be replayed after a server restart.
- The signature is only accepted up to `expiration_ledger` (SIGNATURE_TTL_LEDGERS after
  prepare, default 720).
- Byte arguments are hex strings (ids: 32 bytes, public keys: 65 bytes uncompressed).

Production Considerations
-------------------------
- Pending invocations live in process memory; put them in a shared store with a TTL when
  running more than one worker.
"""

from __future__ import annotations

import os
import secrets
from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fido2.utils import websafe_decode
from pydantic import BaseModel, Field

from ..auth.challenge import b64url_encode
from ..auth.types import SignatureEnvelope
from ..host.env import ENTRY_POINT_ARITY, Host
from .api import account_address, get_host

router = APIRouter(prefix="/invoke", tags=["invoke"])

# Ledgers a prepared signature stays valid for.
SIGNATURE_TTL_LEDGERS = int(os.getenv("SIGNATURE_TTL_LEDGERS", "720"))

# nonce -> (fn_name, args, expiration_ledger)
PENDING: Dict[int, Tuple[str, Tuple[bytes, ...], int]] = {}


# ----------------------------- Request models ----------------------------------------------------

class PrepareReq(BaseModel):
    fn_name: str = Field(..., description="add_sig | rm_sig | resudo | list_sigs | extend_ttl")
    args: List[str] = Field(default_factory=list, description="hex-encoded byte arguments")


class AssertionSig(BaseModel):
    id: str = Field(..., description="signer id, hex")
    authenticatorData: str
    clientDataJSON: str
    signature: str = Field(..., description="raw r||s, base64url")


class InvokeReq(BaseModel):
    nonce: int
    signature: AssertionSig | None = None


def _decode_envelope(sig: AssertionSig) -> SignatureEnvelope:
    try:
        return SignatureEnvelope(
            id=bytes.fromhex(sig.id),
            authenticator_data=websafe_decode(sig.authenticatorData),
            client_data_json=websafe_decode(sig.clientDataJSON),
            signature=websafe_decode(sig.signature),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"malformed signature: {e}")


def _render(result: Any) -> Any:
    if isinstance(result, list):
        return [r.hex() if isinstance(r, bytes) else r for r in result]
    return result


# ----------------------------- Routes ------------------------------------------------------------

@router.post("/prepare")
def prepare(req: PrepareReq, host: Host = Depends(get_host)):
    """Derive the signature payload for one invocation and hand back its challenge."""
    if req.fn_name not in ENTRY_POINT_ARITY:
        raise HTTPException(status_code=400, detail="unknown entry point")
    if len(req.args) != ENTRY_POINT_ARITY[req.fn_name]:
        raise HTTPException(
            status_code=400,
            detail=f"{req.fn_name} takes {ENTRY_POINT_ARITY[req.fn_name]} arguments",
        )
    try:
        args = tuple(bytes.fromhex(a) for a in req.args)
    except ValueError:
        raise HTTPException(status_code=400, detail="args must be hex")

    nonce = secrets.randbelow(2**63)
    expiration = host.ledger.sequence + SIGNATURE_TTL_LEDGERS
    payload = host.signature_payload(account_address(), req.fn_name, args, nonce, expiration)
    PENDING[nonce] = (req.fn_name, args, expiration)
    return {"nonce": nonce, "challenge": b64url_encode(payload), "expiration_ledger": expiration}


@router.post("")
def invoke(req: InvokeReq, host: Host = Depends(get_host)):
    """Run a prepared invocation, authorizing it with the attached assertion if any."""
    pending = PENDING.pop(req.nonce, None)
    if pending is None:
        raise HTTPException(status_code=400, detail="unknown or already used nonce")
    fn_name, args, expiration = pending

    signature = _decode_envelope(req.signature) if req.signature else None
    try:
        result = host.invoke(
            account_address(), fn_name, args,
            signature=signature, nonce=req.nonce, expiration_ledger=expiration,
        )
    except ValueError as e:
        # argument shape errors (ids/keys of the wrong length)
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "result": _render(result)}
