"""
auth/errors.py — Account error codes and the two failure tiers

Security & Ops
- Checked failures (`AccountError` subclasses) are reported to the caller with a stable
  numeric `code` so higher layers (HTTP API, CLI) can tell NotFound from NotPermitted.
- Unchecked failures (`HostAbort` subclasses) end the whole invocation. The host rolls
  back every write made during that invocation; nothing is retried.
- A failed secp256r1 verification is always a `HostAbort`, never an `AccountError`.
  Callers must not treat it as "try another signer".

Codes
- The numeric values are part of the external contract (HTTP bodies, CLI exit output)
  and must not be renumbered.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    NOT_FOUND = 1
    NOT_PERMITTED = 2
    CLIENT_DATA_JSON_CHALLENGE_INCORRECT = 3
    SECP256R1_PUBLIC_KEY_PARSE = 4
    SECP256R1_SIGNATURE_PARSE = 5
    SECP256R1_VERIFY_FAILED = 6
    JSON_PARSE_ERROR = 7
    INVALID_CONTEXT = 8


# --- Checked ------------------------------------------------------------------------------------

class AccountError(Exception):
    """Typed, reportable failure of an account entry point or of `check_auth`."""
    code: ErrorCode

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail

    @property
    def name(self) -> str:
        return self.__class__.__name__


class NotFound(AccountError):
    """Referenced signer id, registry or sudo reference is absent."""
    code = ErrorCode.NOT_FOUND


class NotPermitted(AccountError):
    """Signer lacks privilege for the operation, or the operation is forbidden outright."""
    code = ErrorCode.NOT_PERMITTED


class DuplicateSigner(NotPermitted):
    """`add_sig` for an id that is already registered."""


class ClientDataJsonChallengeIncorrect(AccountError):
    code = ErrorCode.CLIENT_DATA_JSON_CHALLENGE_INCORRECT


class JsonParseError(AccountError):
    code = ErrorCode.JSON_PARSE_ERROR


class InvalidContext(AccountError):
    """The account never authorizes contract creation."""
    code = ErrorCode.INVALID_CONTEXT


# --- Unchecked (abort) --------------------------------------------------------------------------

class HostAbort(Exception):
    """
    Unrecoverable failure of the whole invocation.

    Raised by host primitives (crypto, auth gate). The host restores its storage
    snapshot before re-raising, so no partial effect survives.
    """
    code: Optional[ErrorCode] = None


class Secp256r1PublicKeyParse(HostAbort):
    code = ErrorCode.SECP256R1_PUBLIC_KEY_PARSE


class Secp256r1SignatureParse(HostAbort):
    code = ErrorCode.SECP256R1_SIGNATURE_PARSE


class Secp256r1VerifyFailed(HostAbort):
    code = ErrorCode.SECP256R1_VERIFY_FAILED


class AuthorizationMissing(HostAbort):
    """`require_auth()` was reached but the invocation carries no signature."""


class NonceReused(HostAbort):
    """A prepared invocation nonce was presented twice."""


class SignatureExpired(HostAbort):
    """The ledger has passed the signature's expiration ledger, or it is set too far out."""


class EntryArchived(HostAbort):
    """A persistent or instance entry outlived its TTL and must be restored before use."""
