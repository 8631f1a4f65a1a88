"""
host/ledger.py — Durable key-value storage with time-to-live (in-memory ledger)

Purpose
-------
Stand-in for the ledger's contract storage. Each account address gets three tiers:

  • persistent : one entry per key, each with its own TTL (signer public keys live here)
  • instance   : a small key-value map stored with the account itself; the whole map
                 shares a single TTL (signer index and sudo reference live here)
  • temporary  : per-key TTL entries that are simply gone once expired (used nonces)

TTL model
---------
- The ledger has a monotonically increasing `sequence`. An entry is live while
  `sequence <= live_until`.
- An expired persistent entry or instance map is *archived*, not deleted: any access
  raises `EntryArchived` until it is restored with `restore()`. Expiry never looks like
  absence, so an account whose instance lapsed cannot be re-initialized by a stranger.
- An expired temporary entry reads as absent.
- New entries live `min_*_ttl` ledgers. Updating an existing entry keeps its TTL.
- `extend_ttl(threshold, extend_to)` only acts when the remaining TTL is below
  `threshold`; it then sets `live_until = sequence + extend_to`. TTLs never shrink, and
  `extend_to` is clamped to `max_ttl`.

Atomicity
---------
`snapshot()` / `restore()` let the host roll back every write made by an invocation that
raised. `commit()` is the durability hook (no-op here, file write in `JsonFileLedger`).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Optional

from ..auth.errors import EntryArchived

MIN_PERSISTENT_TTL = 4096
MIN_INSTANCE_TTL = 4096
MIN_TEMPORARY_TTL = 16
MAX_TTL = 3_110_400


@dataclass
class Entry:
    value: Any
    live_until: int


@dataclass
class InstanceState:
    data: Dict[Hashable, Any] = field(default_factory=dict)
    live_until: int = 0


def _extended(live_until: int, sequence: int, threshold: int, extend_to: int, max_ttl: int) -> int:
    if threshold < 0 or extend_to < 0:
        raise ValueError("ttl values must be non-negative")
    if threshold > extend_to:
        raise ValueError("threshold must not exceed extend_to")
    extend_to = min(extend_to, max_ttl)
    if live_until - sequence >= threshold:
        return live_until
    return max(live_until, sequence + extend_to)


class PersistentStorage:
    """Per-key storage view for one account address. Expired entries are archived."""

    _tier = "_persistent"
    _archives = True

    def __init__(self, ledger: "MemoryLedger", address: str):
        self._ledger = ledger
        self._address = address

    @property
    def _entries(self) -> Dict[Hashable, Entry]:
        return getattr(self._ledger, self._tier).setdefault(self._address, {})

    def _min_ttl(self) -> int:
        return self._ledger.min_persistent_ttl

    def _live(self, key: Hashable) -> Optional[Entry]:
        e = self._entries.get(key)
        if e is None:
            return None
        if e.live_until < self._ledger.sequence:
            if self._archives:
                raise EntryArchived(f"entry {key!r} of {self._address} is archived")
            del self._entries[key]
            return None
        return e

    def has(self, key: Hashable) -> bool:
        return self._live(key) is not None

    def get(self, key: Hashable, default: Any = None) -> Any:
        e = self._live(key)
        return default if e is None else e.value

    def set(self, key: Hashable, value: Any) -> None:
        e = self._live(key)
        if e is None:
            self._entries[key] = Entry(value, self._ledger.sequence + self._min_ttl())
        else:
            e.value = value

    def remove(self, key: Hashable) -> None:
        # Drops the value and its TTL state together.
        if self._live(key) is not None:
            del self._entries[key]

    def ttl(self, key: Hashable) -> Optional[int]:
        """Remaining ledgers before `key` expires, or None if absent."""
        e = self._live(key)
        return None if e is None else e.live_until - self._ledger.sequence

    def extend_ttl(self, key: Hashable, threshold: int, extend_to: int) -> None:
        e = self._live(key)
        if e is None:
            raise KeyError(f"cannot extend ttl of missing key {key!r}")
        e.live_until = _extended(
            e.live_until, self._ledger.sequence, threshold, extend_to, self._ledger.max_ttl
        )

    def restore(self, key: Hashable) -> None:
        """Bring an archived entry back with the minimum TTL (no-op if live)."""
        e = self._entries.get(key)
        if e is None:
            raise KeyError(f"nothing to restore for key {key!r}")
        if e.live_until < self._ledger.sequence:
            e.live_until = self._ledger.sequence + self._min_ttl()


class TemporaryStorage(PersistentStorage):
    """Per-key storage whose expired entries are dropped instead of archived."""

    _tier = "_temporary"
    _archives = False

    def _min_ttl(self) -> int:
        return self._ledger.min_temporary_ttl

    def restore(self, key: Hashable) -> None:
        raise TypeError("temporary entries cannot be restored")


class InstanceStorage:
    """Account-level storage: small map with one shared TTL."""

    def __init__(self, ledger: "MemoryLedger", address: str):
        self._ledger = ledger
        self._address = address

    def _state(self, create: bool = False) -> Optional[InstanceState]:
        st = self._ledger._instance.get(self._address)
        if st is not None and st.live_until < self._ledger.sequence:
            raise EntryArchived(f"instance of {self._address} is archived")
        if st is None and create:
            st = InstanceState(live_until=self._ledger.sequence + self._ledger.min_instance_ttl)
            self._ledger._instance[self._address] = st
        return st

    def has(self, key: Hashable) -> bool:
        st = self._state()
        return st is not None and key in st.data

    def get(self, key: Hashable, default: Any = None) -> Any:
        st = self._state()
        if st is None:
            return default
        return st.data.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        self._state(create=True).data[key] = value

    def remove(self, key: Hashable) -> None:
        st = self._state()
        if st is not None:
            st.data.pop(key, None)

    def ttl(self) -> Optional[int]:
        st = self._state()
        return None if st is None else st.live_until - self._ledger.sequence

    def extend_ttl(self, threshold: int, extend_to: int) -> None:
        st = self._state(create=True)
        st.live_until = _extended(
            st.live_until, self._ledger.sequence, threshold, extend_to, self._ledger.max_ttl
        )

    def restore(self) -> None:
        """Bring an archived instance map back with the minimum TTL (no-op if live)."""
        st = self._ledger._instance.get(self._address)
        if st is None:
            raise KeyError(f"no instance to restore for {self._address}")
        if st.live_until < self._ledger.sequence:
            st.live_until = self._ledger.sequence + self._ledger.min_instance_ttl


class MemoryLedger:
    """
    In-memory ledger storage shared by every account the host runs.

    Args:
      sequence           : starting ledger sequence number
      min_persistent_ttl : TTL given to new persistent entries
      min_instance_ttl   : TTL given to a new instance map
      min_temporary_ttl  : TTL given to new temporary entries
      max_ttl            : upper bound for any extension
    """

    def __init__(
        self,
        sequence: int = 1,
        min_persistent_ttl: int = MIN_PERSISTENT_TTL,
        min_instance_ttl: int = MIN_INSTANCE_TTL,
        min_temporary_ttl: int = MIN_TEMPORARY_TTL,
        max_ttl: int = MAX_TTL,
    ):
        self.sequence = sequence
        self.min_persistent_ttl = min_persistent_ttl
        self.min_instance_ttl = min_instance_ttl
        self.min_temporary_ttl = min_temporary_ttl
        self.max_ttl = max_ttl
        self._persistent: Dict[str, Dict[Hashable, Entry]] = {}
        self._temporary: Dict[str, Dict[Hashable, Entry]] = {}
        self._instance: Dict[str, InstanceState] = {}

    def persistent(self, address: str) -> PersistentStorage:
        return PersistentStorage(self, address)

    def temporary(self, address: str) -> TemporaryStorage:
        return TemporaryStorage(self, address)

    def instance(self, address: str) -> InstanceStorage:
        return InstanceStorage(self, address)

    def advance(self, ledgers: int = 1) -> None:
        """Move the ledger sequence forward (ages every TTL)."""
        if ledgers < 0:
            raise ValueError("ledger sequence cannot move backwards")
        self.sequence += ledgers

    # --- Atomicity --------------------------------------------------------------------------

    def snapshot(self) -> Any:
        return copy.deepcopy((self._persistent, self._temporary, self._instance))

    def restore(self, snap: Any) -> None:
        self._persistent, self._temporary, self._instance = copy.deepcopy(snap)

    def commit(self) -> None:
        pass
