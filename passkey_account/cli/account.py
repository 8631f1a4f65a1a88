"""
cli/account.py — Operator CLI for a passkey account (software authenticator)

Security & Ops
- Purpose: Manage the signer registry of a running account API from a terminal:
  generate a software passkey, list signers, add/remove signers and move sudo.
- Every mutating command runs the two-step flow: `/invoke/prepare` returns the
  challenge, the local software authenticator signs it, `/invoke` submits the assertion.
- Risk: keys created by `keygen` are unencrypted PEM files. Use them for development,
  CI and recovery drills; use hardware passkeys through the browser flow otherwise.

Tunable / Config
- Environment (.env supported via python-dotenv, developer convenience only):
  • ACCOUNT_API_URL : account API base URL (fallback: http://127.0.0.1:8080)
  • PASSKEY_KEY_DIR : directory of `<signer id hex>.pem` files (fallback: .passkeys)
  • WEBAUTHN_RP_ID / WEBAUTHN_ORIGIN : values baked into assertions

Exit codes
- 0 success, 1 server refused (error body printed), 2 network error, 3 non-JSON reply.
"""

from __future__ import annotations

import json
import os
from typing import List, Optional

import click
import requests
from dotenv import load_dotenv
from fido2.utils import websafe_decode, websafe_encode

from ..auth.soft_authenticator import SoftAuthenticator

# Load developer overrides; avoid in production.
load_dotenv()

DEFAULT_URL = os.getenv("ACCOUNT_API_URL", "http://127.0.0.1:8080")
DEFAULT_KEY_DIR = os.getenv("PASSKEY_KEY_DIR", ".passkeys")


def _call(method: str, url: str, body: Optional[dict] = None) -> dict:
    try:
        r = requests.request(method, url, json=body, timeout=10)
    except requests.RequestException as e:
        click.echo(f"Network error calling {url}: {e}")
        raise SystemExit(2)

    try:
        out = r.json()
    except ValueError:
        click.echo("Non-JSON response from server")
        click.echo(r.text)
        raise SystemExit(3)

    if r.status_code != 200:
        click.echo(f"Error: {r.status_code} {json.dumps(out)}")
        raise SystemExit(1)
    return out


def _invoke(url: str, fn_name: str, args: List[str], signer: Optional[str], key_dir: str) -> dict:
    """Prepare, sign (when a signer is given) and submit one invocation."""
    prep = _call("POST", f"{url}/invoke/prepare", {"fn_name": fn_name, "args": args})
    body: dict = {"nonce": prep["nonce"]}
    if signer:
        try:
            auth = SoftAuthenticator.load(signer, key_dir)
        except (OSError, ValueError) as e:
            raise click.ClickException(f"cannot load signer key {signer}: {e}")
        assertion = auth.sign(websafe_decode(prep["challenge"]))
        body["signature"] = {
            "id": assertion.id.hex(),
            "authenticatorData": websafe_encode(assertion.authenticator_data),
            "clientDataJSON": websafe_encode(assertion.client_data_json),
            "signature": websafe_encode(assertion.signature),
        }
    return _call("POST", f"{url}/invoke", body)


def _check_hex(value: str, size: int, what: str) -> str:
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise click.BadParameter(f"{what} must be hex")
    if len(raw) != size:
        raise click.BadParameter(f"{what} must be {size} bytes")
    return value.lower()


@click.group()
@click.option("--url", default=DEFAULT_URL, show_default=True, help="Account API base URL")
@click.option("--key-dir", default=DEFAULT_KEY_DIR, show_default=True, help="Software passkey directory")
@click.pass_context
def cli(ctx: click.Context, url: str, key_dir: str) -> None:
    """Manage the signers of a passkey account."""
    ctx.obj = {"url": url.rstrip("/"), "key_dir": key_dir}


@cli.command()
@click.option("--id", "signer_id", default=None, help="32-byte signer id (hex); random if omitted")
@click.pass_obj
def keygen(obj: dict, signer_id: Optional[str]) -> None:
    """Create a software passkey and print its signer id and public key."""
    sid = bytes.fromhex(_check_hex(signer_id, 32, "signer id")) if signer_id else None
    auth = SoftAuthenticator.generate(sid)
    path = auth.save(obj["key_dir"])
    click.echo(json.dumps(
        {"id": auth.signer_id.hex(), "public_key": auth.public_key.hex(), "path": path},
        indent=2,
    ))


@cli.command()
@click.pass_obj
def signers(obj: dict) -> None:
    """List registered signers and the sudo signer."""
    click.echo(json.dumps(_call("GET", f"{obj['url']}/signers"), indent=2))


@cli.command()
@click.option("--id", "signer_id", required=True, help="Signer id to register (hex)")
@click.option("--public-key", required=True, help="65-byte uncompressed P-256 key (hex)")
@click.option("--signer", default=None, help="Sudo signer id authorizing the call (not needed for the first signer)")
@click.pass_obj
def add(obj: dict, signer_id: str, public_key: str, signer: Optional[str]) -> None:
    """Register a signer (the first one becomes sudo)."""
    args = [_check_hex(signer_id, 32, "signer id"), _check_hex(public_key, 65, "public key")]
    click.echo(json.dumps(_invoke(obj["url"], "add_sig", args, signer, obj["key_dir"]), indent=2))


@cli.command()
@click.argument("signer_id")
@click.option("--signer", required=True, help="Sudo signer id authorizing the call")
@click.pass_obj
def rm(obj: dict, signer_id: str, signer: str) -> None:
    """Remove a non-sudo signer."""
    args = [_check_hex(signer_id, 32, "signer id")]
    click.echo(json.dumps(_invoke(obj["url"], "rm_sig", args, signer, obj["key_dir"]), indent=2))


@cli.command()
@click.argument("signer_id")
@click.option("--signer", required=True, help="Current sudo signer id authorizing the call")
@click.pass_obj
def resudo(obj: dict, signer_id: str, signer: str) -> None:
    """Hand the sudo role to another registered signer."""
    args = [_check_hex(signer_id, 32, "signer id")]
    click.echo(json.dumps(_invoke(obj["url"], "resudo", args, signer, obj["key_dir"]), indent=2))


@cli.command("extend-ttl")
@click.pass_obj
def extend_ttl(obj: dict) -> None:
    """Push the account's storage lifetime to the maximum."""
    click.echo(json.dumps(_call("POST", f"{obj['url']}/extend_ttl"), indent=2))


if __name__ == "__main__":
    cli()
