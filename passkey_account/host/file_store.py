"""
host/file_store.py — JSON file-backed ledger for the dev server

Security & Ops
- Purpose: Persist account storage (signer index, sudo reference, public keys, used
  nonces and their TTLs) across server restarts without a database.
- Writes happen once per committed invocation (`commit()`), through a temp file + rename
  so a crash never leaves a half-written store.
- A process-wide lock serializes commits; the host serializes invocations on top of it.

Tunable / Config
- ACCOUNT_STORE : path of the JSON file (default: ./account_ledger.json).

Production Considerations
- The file holds only public material, but it is the account's source of truth.
  Protect it with filesystem permissions and back it up.
"""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, Hashable

from .ledger import Entry, InstanceState, MemoryLedger

STORE_PATH = os.getenv("ACCOUNT_STORE", "./account_ledger.json")

_LOCK = threading.Lock()


def _enc_key(key: Hashable) -> str:
    if isinstance(key, (bytes, bytearray)):
        return "b:" + bytes(key).hex()
    if isinstance(key, str):
        return "s:" + key
    raise TypeError(f"unsupported storage key type {type(key).__name__}")


def _dec_key(raw: str) -> Hashable:
    tag, _, body = raw.partition(":")
    if tag == "b":
        return bytes.fromhex(body)
    if tag == "s":
        return body
    raise ValueError(f"bad storage key {raw!r}")


def _enc_val(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"b": bytes(value).hex()}
    if isinstance(value, (list, tuple)):
        return [_enc_val(v) for v in value]
    if value is None or isinstance(value, (str, int, bool)):
        return value
    raise TypeError(f"unsupported storage value type {type(value).__name__}")


def _dec_val(raw: Any) -> Any:
    if isinstance(raw, dict) and set(raw) == {"b"}:
        return bytes.fromhex(raw["b"])
    if isinstance(raw, list):
        return [_dec_val(v) for v in raw]
    return raw


def _load_entries(raw: Dict[str, Any]) -> Dict[str, Dict[Hashable, Entry]]:
    return {
        addr: {
            _dec_key(k): Entry(_dec_val(e["value"]), int(e["live_until"]))
            for k, e in entries.items()
        }
        for addr, entries in raw.items()
    }


def _dump_entries(tier: Dict[str, Dict[Hashable, Entry]]) -> Dict[str, Any]:
    return {
        addr: {
            _enc_key(k): {"value": _enc_val(e.value), "live_until": e.live_until}
            for k, e in entries.items()
        }
        for addr, entries in tier.items()
    }


class JsonFileLedger(MemoryLedger):
    """`MemoryLedger` that loads from and commits to a JSON file."""

    def __init__(self, path: str = STORE_PATH, **kwargs):
        super().__init__(**kwargs)
        self.path = path
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        self.sequence = int(doc.get("sequence", self.sequence))
        self._persistent = _load_entries(doc.get("persistent", {}))
        self._temporary = _load_entries(doc.get("temporary", {}))
        self._instance = {
            addr: InstanceState(
                data={_dec_key(k): _dec_val(v) for k, v in st["data"].items()},
                live_until=int(st["live_until"]),
            )
            for addr, st in doc.get("instance", {}).items()
        }

    def _dump(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "persistent": _dump_entries(self._persistent),
            "temporary": _dump_entries(self._temporary),
            "instance": {
                addr: {
                    "data": {_enc_key(k): _enc_val(v) for k, v in st.data.items()},
                    "live_until": st.live_until,
                }
                for addr, st in self._instance.items()
            },
        }

    def commit(self) -> None:
        doc = self._dump()
        tmp = self.path + ".tmp"
        with _LOCK:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
