"""
tests/test_ledger.py — Storage tiers, TTL and archival semantics, rollback and the JSON file ledger
"""

from __future__ import annotations

import pytest

from passkey_account.auth.errors import EntryArchived
from passkey_account.host.file_store import JsonFileLedger
from passkey_account.host.ledger import (
    MAX_TTL,
    MIN_INSTANCE_TTL,
    MIN_PERSISTENT_TTL,
    MIN_TEMPORARY_TTL,
    MemoryLedger,
)

ADDR = "CSTORE"


def test_new_persistent_entry_gets_min_ttl_and_is_archived():
    ledger = MemoryLedger()
    p = ledger.persistent(ADDR)
    p.set(b"k", b"v")
    assert p.ttl(b"k") == MIN_PERSISTENT_TTL

    ledger.advance(MIN_PERSISTENT_TTL)
    assert p.has(b"k") and p.ttl(b"k") == 0

    ledger.advance(1)
    for op in (p.has, p.get, p.ttl, p.remove):
        with pytest.raises(EntryArchived):
            op(b"k")
    with pytest.raises(EntryArchived):
        p.set(b"k", b"overwrite")

    p.restore(b"k")
    assert p.get(b"k") == b"v"
    assert p.ttl(b"k") == MIN_PERSISTENT_TTL
    with pytest.raises(KeyError):
        p.restore(b"never-written")


def test_temporary_entry_is_dropped_on_expiry():
    ledger = MemoryLedger()
    t = ledger.temporary(ADDR)
    t.set("nonce:1", True)
    assert t.ttl("nonce:1") == MIN_TEMPORARY_TTL
    t.extend_ttl("nonce:1", 100, 100)
    assert t.ttl("nonce:1") == 100

    ledger.advance(101)
    assert not t.has("nonce:1")
    assert t.get("nonce:1") is None
    t.set("nonce:1", True)
    assert t.ttl("nonce:1") == MIN_TEMPORARY_TTL
    with pytest.raises(TypeError):
        t.restore("nonce:1")


def test_update_keeps_ttl():
    ledger = MemoryLedger()
    p = ledger.persistent(ADDR)
    p.set(b"k", b"v1")
    ledger.advance(10)
    p.set(b"k", b"v2")
    assert p.get(b"k") == b"v2"
    assert p.ttl(b"k") == MIN_PERSISTENT_TTL - 10


def test_extend_ttl_threshold_and_clamp():
    ledger = MemoryLedger()
    p = ledger.persistent(ADDR)
    p.set(b"k", b"v")

    # Remaining TTL (4096) is not below the threshold: untouched.
    p.extend_ttl(b"k", 100, 200)
    assert p.ttl(b"k") == MIN_PERSISTENT_TTL

    p.extend_ttl(b"k", MAX_TTL, MAX_TTL)
    assert p.ttl(b"k") == MAX_TTL

    # extend_to is clamped to the ledger maximum
    ledger.advance(5)
    p.extend_ttl(b"k", 2 * MAX_TTL, 2 * MAX_TTL)
    assert p.ttl(b"k") == MAX_TTL


def test_extend_ttl_never_shrinks_and_validates():
    ledger = MemoryLedger()
    p = ledger.persistent(ADDR)
    p.set(b"k", b"v")
    p.extend_ttl(b"k", MAX_TTL, MAX_TTL)
    p.extend_ttl(b"k", MAX_TTL, MAX_TTL)
    assert p.ttl(b"k") == MAX_TTL

    with pytest.raises(ValueError):
        p.extend_ttl(b"k", 10, 5)
    with pytest.raises(KeyError):
        p.extend_ttl(b"missing", 1, 1)


def test_remove_drops_value_and_ttl():
    ledger = MemoryLedger()
    p = ledger.persistent(ADDR)
    p.set(b"k", b"v")
    p.remove(b"k")
    assert not p.has(b"k")
    p.set(b"k", b"again")
    assert p.ttl(b"k") == MIN_PERSISTENT_TTL


def test_instance_tier_shares_one_ttl():
    ledger = MemoryLedger()
    inst = ledger.instance(ADDR)
    assert inst.ttl() is None
    inst.set("a", 1)
    inst.set("b", [b"x"])
    assert inst.ttl() == MIN_INSTANCE_TTL

    inst.extend_ttl(MAX_TTL, MAX_TTL)
    assert inst.ttl() == MAX_TTL

    inst.remove("a")
    assert not inst.has("a")
    assert inst.get("b") == [b"x"]

    ledger.advance(MAX_TTL + 1)
    with pytest.raises(EntryArchived):
        inst.get("b")
    with pytest.raises(EntryArchived):
        inst.set("c", 1)

    inst.restore()
    assert inst.get("b") == [b"x"]
    assert inst.ttl() == MIN_INSTANCE_TTL


def test_tiers_are_scoped_by_address():
    ledger = MemoryLedger()
    ledger.persistent("CA").set(b"k", b"a")
    ledger.instance("CA").set("sudo", b"a")
    assert ledger.persistent("CB").get(b"k") is None
    assert ledger.instance("CB").get("sudo") is None


def test_snapshot_restore_keeps_existing_views_valid():
    ledger = MemoryLedger()
    p = ledger.persistent(ADDR)
    inst = ledger.instance(ADDR)
    p.set(b"k", b"v")
    snap = ledger.snapshot()

    p.set(b"k", b"changed")
    p.set(b"other", b"x")
    inst.set("sigs", [b"1"])
    ledger.restore(snap)

    assert p.get(b"k") == b"v"
    assert not p.has(b"other")
    assert not inst.has("sigs")


def test_advance_rejects_negative():
    with pytest.raises(ValueError):
        MemoryLedger().advance(-1)


def test_json_file_ledger_round_trip(tmp_path):
    path = str(tmp_path / "ledger.json")
    ledger = JsonFileLedger(path)
    ledger.advance(3)
    ledger.persistent(ADDR).set(b"\x01" * 32, b"\x04" + b"\x02" * 64)
    ledger.persistent(ADDR).extend_ttl(b"\x01" * 32, MAX_TTL, MAX_TTL)
    ledger.instance(ADDR).set("sigs", [b"\x01" * 32])
    ledger.instance(ADDR).set("sudo_sig", b"\x01" * 32)
    ledger.persistent(ADDR).set("flag", True)
    ledger.temporary(ADDR).set("nonce:5", True)
    ledger.commit()

    again = JsonFileLedger(path)
    assert again.sequence == 4
    assert again.persistent(ADDR).get(b"\x01" * 32) == b"\x04" + b"\x02" * 64
    assert again.persistent(ADDR).ttl(b"\x01" * 32) == MAX_TTL
    assert again.instance(ADDR).get("sigs") == [b"\x01" * 32]
    assert again.instance(ADDR).get("sudo_sig") == b"\x01" * 32
    assert again.persistent(ADDR).get("flag") is True
    assert again.temporary(ADDR).get("nonce:5") is True
    assert again.temporary(ADDR).ttl("nonce:5") == MIN_TEMPORARY_TTL


def test_json_file_ledger_missing_file_starts_empty(tmp_path):
    ledger = JsonFileLedger(str(tmp_path / "absent.json"))
    assert ledger.instance(ADDR).get("sigs") is None
    assert not (tmp_path / "absent.json").exists()
