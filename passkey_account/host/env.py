"""
host/env.py — Invocation host: environment, auth gate, atomic commit

Overview
--------
The passkey account is written against a narrow host surface (`Env`): its own address,
two storage tiers, a crypto port, the TTL ceiling and a self-authorization gate. `Host`
provides that surface and plays the ledger runtime:

  1) `invoke(address, fn_name, args, signature, nonce, expiration_ledger)` runs one public
     entry point as a single atomic invocation. The context list is
     `[ContractContext(address, fn_name, args)]` and the 32-byte signature payload is
        SHA256(network_id || canonical JSON {contract, fn_name, args, nonce, expiration}).
  2) When the entry point calls `env.require_auth()`, the host calls the account's
     `check_auth(payload, signature, contexts)` and consumes the nonce.
  3) Any exception restores the storage snapshot taken before the call; success commits.

Security & Ops
- One signature authorizes one invocation: the payload covers the nonce and the
  expiration ledger. Past that ledger the signature is refused (`SignatureExpired`);
  until then the used nonce is kept in temporary storage (`NonceReused` on replay).
- The expiration ledger must lie less than `max_ttl` ledgers ahead.
- `require_auth()` without a signature, nonce or expiration aborts (`AuthorizationMissing`).
- Invocations are serialized by a re-entrant lock; there is no concurrency inside one.

Tunable / Config
- NETWORK_PASSPHRASE : domain separator mixed into every payload.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..auth.errors import AuthorizationMissing, NonceReused, SignatureExpired
from ..auth.types import Context, ContractContext, SignatureEnvelope
from .crypto import Crypto
from .ledger import InstanceStorage, MemoryLedger, PersistentStorage

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_PASSPHRASE = os.getenv(
    "NETWORK_PASSPHRASE", "Standalone Network ; February 2017"
)

# Entry points callable through `Host.invoke` and their argument counts. `check_auth` is
# host-only.
ENTRY_POINT_ARITY = {"add_sig": 2, "rm_sig": 1, "resudo": 1, "list_sigs": 0, "extend_ttl": 0}
PUBLIC_ENTRY_POINTS = frozenset(ENTRY_POINT_ARITY)


def _canonical_arg(arg: Any) -> Any:
    if isinstance(arg, (bytes, bytearray)):
        return bytes(arg).hex()
    return arg


def canonical_invocation(
    address: str,
    fn_name: str,
    args: Sequence[Any],
    nonce: Optional[int],
    expiration_ledger: Optional[int] = None,
) -> bytes:
    doc = {
        "contract": address,
        "expiration": expiration_ledger,
        "fn_name": fn_name,
        "args": [_canonical_arg(a) for a in args],
        "nonce": nonce,
    }
    return json.dumps(doc, separators=(",", ":"), sort_keys=True).encode("utf-8")


@dataclass
class _Frame:
    address: str
    payload: bytes
    contexts: List[Context]
    signature: Optional[SignatureEnvelope]
    nonce: Optional[int]
    expiration_ledger: Optional[int] = None
    authorized: bool = False


@dataclass
class Env:
    """What an account entry point may touch."""
    host: "Host"
    address: str

    def persistent(self) -> PersistentStorage:
        return self.host.ledger.persistent(self.address)

    def instance(self) -> InstanceStorage:
        return self.host.ledger.instance(self.address)

    @property
    def crypto(self) -> Crypto:
        return self.host.crypto

    def max_ttl(self) -> int:
        return self.host.ledger.max_ttl

    def require_auth(self) -> None:
        """Self-authorization gate: the account must approve the current invocation."""
        self.host._require_auth(self.address)


class Host:
    """
    In-process ledger runtime for passkey accounts.

    Usage:
      host = Host()
      account = host.register("CACCOUNT", PasskeyAccount)
      exp = host.ledger.sequence + 100
      payload = host.signature_payload("CACCOUNT", "add_sig", [sid, pk], 1, exp)
      host.invoke("CACCOUNT", "add_sig", [sid, pk], signature=assertion, nonce=1,
                  expiration_ledger=exp)
    """

    def __init__(
        self,
        ledger: Optional[MemoryLedger] = None,
        crypto: Optional[Crypto] = None,
        network_passphrase: str = DEFAULT_NETWORK_PASSPHRASE,
    ):
        self.ledger = ledger if ledger is not None else MemoryLedger()
        self.crypto = crypto if crypto is not None else Crypto()
        self.network_id = self.crypto.sha256(network_passphrase.encode("utf-8"))
        self._accounts: Dict[str, Any] = {}
        self._frame: Optional[_Frame] = None
        self._lock = threading.RLock()

    # --- Accounts -------------------------------------------------------------------------------

    def register(self, address: str, account_cls: Callable[[Env], Any]) -> Any:
        """Attach an account implementation to `address` (storage may already exist)."""
        account = account_cls(Env(self, address))
        self._accounts[address] = account
        return account

    def account(self, address: str) -> Any:
        try:
            return self._accounts[address]
        except KeyError:
            raise KeyError(f"no account registered at {address}") from None

    # --- Payload derivation ---------------------------------------------------------------------

    def signature_payload(
        self,
        address: str,
        fn_name: str,
        args: Sequence[Any],
        nonce: Optional[int],
        expiration_ledger: Optional[int] = None,
    ) -> bytes:
        """The exact 32 bytes a passkey must sign for this invocation."""
        return self.crypto.sha256(
            self.network_id
            + canonical_invocation(address, fn_name, args, nonce, expiration_ledger)
        )

    # --- Invocation -----------------------------------------------------------------------------

    def invoke(
        self,
        address: str,
        fn_name: str,
        args: Sequence[Any] = (),
        signature: Optional[SignatureEnvelope] = None,
        nonce: Optional[int] = None,
        expiration_ledger: Optional[int] = None,
    ) -> Any:
        """
        Run one public entry point atomically.

        Raises:
          ValueError for unknown entry points or a wrong number of arguments.
          AccountError subclasses for checked failures (storage rolled back).
          HostAbort subclasses for aborts (storage rolled back).
        """
        if fn_name not in PUBLIC_ENTRY_POINTS:
            raise ValueError(f"unknown entry point {fn_name!r}")
        args = tuple(args)
        if len(args) != ENTRY_POINT_ARITY[fn_name]:
            raise ValueError(f"{fn_name} takes {ENTRY_POINT_ARITY[fn_name]} arguments, got {len(args)}")
        with self._lock:
            account = self.account(address)
            frame = _Frame(
                address=address,
                payload=self.signature_payload(address, fn_name, args, nonce, expiration_ledger),
                contexts=[ContractContext(address, fn_name, args)],
                signature=signature,
                nonce=nonce,
                expiration_ledger=expiration_ledger,
            )
            return self._run(frame, lambda: getattr(account, fn_name)(*args))

    def authorize(
        self,
        address: str,
        payload: bytes,
        signature: SignatureEnvelope,
        contexts: Sequence[Context],
    ) -> None:
        """
        Ask the account to authorize externally described contexts (cross-contract calls,
        creation requests). Same atomicity as `invoke`.
        """
        with self._lock:
            account = self.account(address)
            frame = _Frame(address, payload, list(contexts), signature, None, authorized=True)
            self._run(frame, lambda: account.check_auth(payload, signature, list(contexts)))

    def _run(self, frame: _Frame, call: Callable[[], Any]) -> Any:
        snap = self.ledger.snapshot()
        outer, self._frame = self._frame, frame
        try:
            result = call()
        except Exception as e:
            self.ledger.restore(snap)
            logger.warning("invocation on %s rolled back: %s", frame.address, type(e).__name__)
            raise
        finally:
            self._frame = outer
        self.ledger.commit()
        return result

    def _require_auth(self, address: str) -> None:
        frame = self._frame
        if frame is None or frame.address != address:
            raise AuthorizationMissing("require_auth outside of an invocation for this account")
        if frame.authorized:
            return
        if frame.signature is None or frame.nonce is None or frame.expiration_ledger is None:
            raise AuthorizationMissing("invocation requires a signature, a nonce and an expiration ledger")

        sequence = self.ledger.sequence
        if frame.expiration_ledger < sequence:
            raise SignatureExpired(f"signature expired at ledger {frame.expiration_ledger}")
        remaining = frame.expiration_ledger - sequence
        if remaining >= self.ledger.max_ttl:
            raise SignatureExpired("signature expiration is beyond the maximum entry TTL")

        nonces = self.ledger.temporary(address)
        nonce_key = f"nonce:{frame.nonce}"
        if nonces.has(nonce_key):
            raise NonceReused(f"nonce {frame.nonce} already used")

        self._accounts[address].check_auth(frame.payload, frame.signature, frame.contexts)

        # The nonce record outlives the signature, so a replay always hits one or the other.
        nonces.set(nonce_key, True)
        nonces.extend_ttl(nonce_key, remaining, remaining)
        frame.authorized = True
