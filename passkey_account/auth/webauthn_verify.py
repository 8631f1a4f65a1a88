"""
auth/webauthn_verify.py — WebAuthn assertion verification against a stored P-256 key

Security & Ops
- What this module verifies for one assertion:
  1) **Signature base**: digest = SHA256(authenticatorData || SHA256(clientDataJSON)).
     The ECDSA signature must cover this digest (WebAuthn §7.2 steps 19-20).
  2) **Signature**: secp256r1 verify through the host crypto port. A failure raises a
     `HostAbort` and ends the whole invocation; it is not reported as a typed error.
  3) **Challenge binding**: clientDataJSON.challenge must equal base64url-no-padding of
     the 32-byte payload the host derived for this invocation. This ties the signature
     to one request and prevents replay against a different one.

- Order matters: the signature is checked before clientDataJSON is parsed, so a forged
  clientDataJSON can never reach the JSON parser as trusted input.

- Not verified here:
  • rpIdHash / origin / type fields of clientDataJSON. Any relying party may produce
    assertions for the account; binding is by challenge only.
  • signCount. The account is stateless across calls apart from the registry.

Tunable / Config
- MAX_CLIENT_DATA_JSON_LEN : upper bound on clientDataJSON (1024 bytes).
"""

from __future__ import annotations

import hmac
import json
from typing import Any, Dict

from .challenge import expected_challenge
from .errors import ClientDataJsonChallengeIncorrect, JsonParseError

MAX_CLIENT_DATA_JSON_LEN = 1024


def signature_base(crypto, authenticator_data: bytes, client_data_json: bytes) -> bytes:
    """Return SHA256(authenticatorData || SHA256(clientDataJSON))."""
    client_hash = crypto.sha256(client_data_json)
    return crypto.sha256(authenticator_data + client_hash)


def _parse_client_data(client_data_json: bytes) -> Dict[str, Any]:
    """Parse clientDataJSON as a UTF-8 JSON object."""
    if len(client_data_json) > MAX_CLIENT_DATA_JSON_LEN:
        raise JsonParseError("clientDataJSON too large")
    try:
        doc = json.loads(client_data_json.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise JsonParseError("clientDataJSON is not valid UTF-8 JSON") from e
    if not isinstance(doc, dict):
        raise JsonParseError("clientDataJSON is not a JSON object")
    return doc


def client_data_challenge(client_data_json: bytes) -> str:
    """
    Extract the `challenge` string from clientDataJSON.

    Raises:
      JsonParseError if the document is not JSON, not an object, or has no string
      `challenge` member.
    """
    challenge = _parse_client_data(client_data_json).get("challenge")
    if not isinstance(challenge, str):
        raise JsonParseError("clientDataJSON has no challenge string")
    return challenge


def check_challenge(client_data_json: bytes, payload: bytes) -> None:
    """
    Compare the signed challenge with base64url(payload).

    Raises:
      JsonParseError, ClientDataJsonChallengeIncorrect.
    """
    presented = client_data_challenge(client_data_json).encode("utf-8")
    if not hmac.compare_digest(presented, expected_challenge(payload)):
        raise ClientDataJsonChallengeIncorrect("clientDataJSON challenge does not match payload")


def assert_verify(crypto, public_key: bytes, payload: bytes, signature) -> None:
    """
    Verify one `SignatureEnvelope` against `public_key` and the expected `payload`.

    Args:
      crypto     : host crypto port (sha256, secp256r1_verify)
      public_key : stored 65-byte key of the signer named in `signature.id`
      payload    : 32-byte value the host says must be attested
      signature  : SignatureEnvelope

    Raises:
      HostAbort subclasses on malformed key/signature or failed verification;
      JsonParseError / ClientDataJsonChallengeIncorrect on challenge binding failures.
    """
    digest = signature_base(crypto, signature.authenticator_data, signature.client_data_json)
    crypto.secp256r1_verify(public_key, digest, signature.signature)
    check_challenge(signature.client_data_json, payload)
