"""
registry/signers.py — Signer registry: sorted signer index, public keys, sudo reference

Storage layout
--------------
  instance["sigs"]      : sorted, duplicate-free list of 32-byte signer ids
  instance["sudo_sig"]  : signer id allowed to mutate the registry (absent until first add)
  persistent[<id>]      : 65-byte uncompressed secp256r1 public key for that signer

Rules
-----
- First `add` on an empty account installs the new signer as sudo without any auth.
- Every later `add`, every `remove` and every `promote` goes through
  `env.require_auth()`; the account's `check_auth` then insists on the sudo signer.
- The sudo signer cannot be removed; hand sudo to another signer with `promote` first.
- Index and key record change together in one invocation. The host rolls both back if
  anything after the first write fails.
- Invariants are re-checked before every write of the index.
"""

from __future__ import annotations

import logging
from bisect import bisect_left
from typing import List, Optional

from ..auth.errors import DuplicateSigner, NotFound, NotPermitted
from ..auth.types import check_public_key, check_signer_id

logger = logging.getLogger(__name__)

SIGNERS = "sigs"
SUDO_SIGNER = "sudo_sig"


def short_id(signer_id: bytes) -> str:
    """Log-safe abbreviation of a signer id."""
    return signer_id[:4].hex()


def _index_of(sigs: List[bytes], signer_id: bytes) -> Optional[int]:
    i = bisect_left(sigs, signer_id)
    if i < len(sigs) and sigs[i] == signer_id:
        return i
    return None


def validate(sigs: List[bytes], sudo: Optional[bytes]) -> None:
    """
    Raise RuntimeError if the index is unsorted, has duplicates, or the sudo reference
    does not point into it.
    """
    for a, b in zip(sigs, sigs[1:]):
        if not a < b:
            raise RuntimeError("signer index is not strictly sorted")
    if sudo is not None and _index_of(sigs, sudo) is None:
        raise RuntimeError("sudo signer is not in the signer index")


class SignerRegistry:
    """Registry view over one account's storage (`Env`)."""

    def __init__(self, env):
        self.env = env

    # --- Reads ----------------------------------------------------------------------------------

    def list(self) -> List[bytes]:
        return list(self.env.instance().get(SIGNERS, []))

    def sudo(self) -> Optional[bytes]:
        return self.env.instance().get(SUDO_SIGNER)

    def public_key(self, signer_id: bytes) -> Optional[bytes]:
        return self.env.persistent().get(signer_id)

    def initialized(self) -> bool:
        return self.env.instance().has(SUDO_SIGNER)

    # --- Mutations ------------------------------------------------------------------------------

    def add(self, signer_id: bytes, public_key: bytes) -> None:
        """
        Register `signer_id` with `public_key`.

        Raises:
          DuplicateSigner if the id is already registered.
          (via require_auth) NotPermitted/NotFound/HostAbort when the caller is not sudo.
        """
        signer_id = check_signer_id(signer_id)
        public_key = check_public_key(public_key)
        instance = self.env.instance()
        persistent = self.env.persistent()

        first = not instance.has(SUDO_SIGNER)
        if not first:
            self.env.require_auth()

        sigs = self.list()
        i = bisect_left(sigs, signer_id)
        if i < len(sigs) and sigs[i] == signer_id:
            raise DuplicateSigner(f"signer {short_id(signer_id)} already registered")
        sigs.insert(i, signer_id)

        sudo = signer_id if first else instance.get(SUDO_SIGNER)
        validate(sigs, sudo)

        max_ttl = self.env.max_ttl()
        persistent.set(signer_id, public_key)
        persistent.extend_ttl(signer_id, max_ttl, max_ttl)
        instance.set(SIGNERS, sigs)
        if first:
            instance.set(SUDO_SIGNER, signer_id)
            logger.info("account %s initialized with sudo signer %s", self.env.address, short_id(signer_id))
        else:
            logger.info("signer %s added to %s", short_id(signer_id), self.env.address)

        self.extend_ttl()

    def remove(self, signer_id: bytes) -> None:
        """
        Remove a non-sudo signer and delete its key record.

        Raises:
          NotFound if the account has no sudo signer yet or `signer_id` is not registered.
          NotPermitted if `signer_id` is the sudo signer.
        """
        signer_id = check_signer_id(signer_id)
        instance = self.env.instance()

        sudo = instance.get(SUDO_SIGNER)
        if sudo is None:
            raise NotFound("account has no sudo signer")
        if signer_id == sudo:
            raise NotPermitted("the sudo signer cannot be removed")

        self.env.require_auth()

        if not instance.has(SIGNERS):
            raise NotFound("signer index missing")
        sigs = self.list()
        i = _index_of(sigs, signer_id)
        if i is None:
            raise NotFound(f"signer {short_id(signer_id)} not registered")
        del sigs[i]
        validate(sigs, sudo)

        instance.set(SIGNERS, sigs)
        self.env.persistent().remove(signer_id)
        logger.info("signer %s removed from %s", short_id(signer_id), self.env.address)

        self.extend_ttl()

    def promote(self, signer_id: bytes) -> None:
        """
        Make `signer_id` the sudo signer.

        Raises:
          NotFound if `signer_id` is not registered.
        """
        signer_id = check_signer_id(signer_id)
        self.env.require_auth()

        instance = self.env.instance()
        if not instance.has(SIGNERS):
            raise NotFound("signer index missing")
        sigs = self.list()
        if _index_of(sigs, signer_id) is None:
            raise NotFound(f"signer {short_id(signer_id)} not registered")
        validate(sigs, signer_id)

        instance.set(SUDO_SIGNER, signer_id)
        logger.info("sudo of %s moved to %s", self.env.address, short_id(signer_id))

        self.extend_ttl()

    # --- Freshness ------------------------------------------------------------------------------

    def extend_ttl(self) -> None:
        """Push the account instance (index + sudo reference) to the maximum TTL."""
        max_ttl = self.env.max_ttl()
        self.env.instance().extend_ttl(max_ttl, max_ttl)
