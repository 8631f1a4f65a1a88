"""
server/api.py — FastAPI surface for one passkey account

Overview
--------
Exposes the account's entry points over HTTP so a browser (WebAuthn `get()`) or the
operator CLI can drive it:

  GET  /health
  GET  /signers          sorted signer ids + current sudo signer (hex)
  POST /extend_ttl       push the account instance to the maximum TTL
  POST /invoke/prepare   (webauthn_api) derive the challenge for one invocation
  POST /invoke           (webauthn_api) run the prepared invocation with an assertion

Security & Ops
--------------
- All authorization decisions are made by the account's `check_auth`; this layer only
  decodes transport encodings and maps errors to status codes.
- Checked account errors are returned as `{"error": <name>, "code": <n>}`:
    NotFound → 404, NotPermitted / InvalidContext → 403,
    JsonParseError / ClientDataJsonChallengeIncorrect → 401.
- Aborts (bad key/signature material, failed verification, missing auth, nonce reuse)
  are returned as 401 `{"error": "aborted"}` without detail.

Tunable / Config (env)
----------------------
- ACCOUNT_ADDRESS    : address the account is registered under (default CPASSKEYACCOUNT)
- ACCOUNT_STORE      : JSON ledger file (default ./account_ledger.json)
- NETWORK_PASSPHRASE : payload domain separator
- LOG_LEVEL          : logging level (default INFO)
- ACCOUNT_API_HOST / ACCOUNT_API_PORT : bind address for `main()` (default 127.0.0.1:8080)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ..account import PasskeyAccount
from ..auth.errors import (
    AccountError,
    ClientDataJsonChallengeIncorrect,
    HostAbort,
    InvalidContext,
    JsonParseError,
    NotFound,
    NotPermitted,
)
from ..host.env import Host
from ..host.file_store import STORE_PATH, JsonFileLedger

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (NotFound, 404),
    (NotPermitted, 403),
    (InvalidContext, 403),
    (JsonParseError, 401),
    (ClientDataJsonChallengeIncorrect, 401),
)

_HOST: Optional[Host] = None


def account_address() -> str:
    return os.getenv("ACCOUNT_ADDRESS", "CPASSKEYACCOUNT")


def get_host() -> Host:
    """Process-wide host over the JSON ledger, created on first use."""
    global _HOST
    if _HOST is None:
        ledger = JsonFileLedger(os.getenv("ACCOUNT_STORE", STORE_PATH))
        _HOST = Host(ledger=ledger)
        _HOST.register(account_address(), PasskeyAccount)
        logger.info("account %s served from %s", account_address(), ledger.path)
    return _HOST


app = FastAPI(title="Passkey Account")

# WebAuthn-bound invocation routes live in a dedicated router.
from .webauthn_api import router as webauthn_router  # noqa: E402
app.include_router(webauthn_router)


@app.exception_handler(AccountError)
async def account_error(request: Request, exc: AccountError):
    status = next((code for cls, code in STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    return JSONResponse(
        status_code=status,
        content={"error": exc.name, "code": int(exc.code), "detail": exc.detail},
    )


@app.exception_handler(HostAbort)
async def host_abort(request: Request, exc: HostAbort):
    logger.warning("invocation aborted: %s", type(exc).__name__)
    return JSONResponse(status_code=401, content={"error": "aborted"})


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/signers")
def signers(host: Host = Depends(get_host)):
    account = host.account(account_address())
    sudo = account.registry.sudo()
    return {
        "address": account.address,
        "signers": [s.hex() for s in account.list_sigs()],
        "sudo": sudo.hex() if sudo else None,
    }


@app.post("/extend_ttl")
def extend_ttl(host: Host = Depends(get_host)):
    host.invoke(account_address(), "extend_ttl")
    return {"ok": True, "ttl": host.ledger.instance(account_address()).ttl()}


def main() -> None:
    """Serve the account API (ACCOUNT_API_HOST / ACCOUNT_API_PORT, default 127.0.0.1:8080)."""
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("ACCOUNT_API_HOST", "127.0.0.1"),
        port=int(os.getenv("ACCOUNT_API_PORT", "8080")),
        log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
    )
