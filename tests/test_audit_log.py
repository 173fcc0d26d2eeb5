import asyncio
import json

import pytest

from supacheck.audit_log import (
    FileAuditLogStore,
    LogEntry,
    MemoryAuditLogStore,
    audit_account,
    format_logs,
    new_entry,
)
from supacheck.errors import CorruptLogStore


@pytest.mark.asyncio
async def test_file_store_append_list(tmp_path) -> None:
    store = FileAuditLogStore(tmp_path / "logs.json")
    first = new_entry("RLS", "RLS Check", {"table": "t1", "status": "RLS is not enabled"})
    second = new_entry("MFA", "MFA Check", {"user": "ada@example.com", "status": "MFA is enabled"})

    await store.append("proj-ref", [first, second])

    assert await store.list("proj-ref") == [first, second]


@pytest.mark.asyncio
async def test_file_store_persists(tmp_path) -> None:
    path = tmp_path / "logs.json"
    entry = new_entry("PITR", "PITR Check", {"pitr_enabled": False})
    await FileAuditLogStore(path).append("proj-ref", [entry])

    assert await FileAuditLogStore(path).list("proj-ref") == [entry]

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw[0]["account"] == "proj-ref"
    assert raw[0]["logs"][0]["type"] == "PITR"


@pytest.mark.asyncio
async def test_file_store_missing_file(tmp_path) -> None:
    store = FileAuditLogStore(tmp_path / "missing.json")

    assert await store.list("proj-ref") == []


@pytest.mark.asyncio
async def test_unknown_account_is_empty(tmp_path) -> None:
    store = FileAuditLogStore(tmp_path / "logs.json")
    await store.append("proj-a", [new_entry("RLS", "RLS Check", {})])

    assert await store.list("proj-b") == []


@pytest.mark.asyncio
async def test_append_keeps_call_order_and_other_accounts(tmp_path) -> None:
    store = FileAuditLogStore(tmp_path / "logs.json")
    a1 = new_entry("RLS", "RLS Check", {"n": 1})
    b1 = new_entry("MFA", "MFA Check", {"n": 2})
    a2 = new_entry("RLS", "Enable RLS", {"n": 3})

    await store.append("proj-a", [a1])
    await store.append("proj-b", [b1])
    await store.append("proj-a", [a2])

    assert await store.list("proj-a") == [a1, a2]
    assert await store.list("proj-b") == [b1]


@pytest.mark.asyncio
async def test_list_filters_by_check_type(tmp_path) -> None:
    store = FileAuditLogStore(tmp_path / "logs.json")
    rls = new_entry("RLS", "RLS Check", {})
    mfa = new_entry("MFA", "MFA Check", {})
    await store.append("proj-ref", [rls, mfa])

    assert await store.list("proj-ref", "MFA") == [mfa]
    assert await store.list("proj-ref", "PITR") == []


@pytest.mark.asyncio
async def test_concurrent_appends_do_not_lose_entries(tmp_path) -> None:
    store = FileAuditLogStore(tmp_path / "logs.json")
    entries = [new_entry("RLS", "RLS Check", {"n": index}) for index in range(20)]

    await asyncio.gather(*(store.append("proj-ref", [entry]) for entry in entries))

    stored = await store.list("proj-ref")
    assert len(stored) == 20
    assert sorted(entry.result["n"] for entry in stored) == list(range(20))


@pytest.mark.asyncio
async def test_concurrent_appends_across_accounts(tmp_path) -> None:
    store = FileAuditLogStore(tmp_path / "logs.json")

    await asyncio.gather(
        *(
            store.append(f"proj-{index % 3}", [new_entry("MFA", "MFA Check", {"n": index})])
            for index in range(15)
        )
    )

    for account in ("proj-0", "proj-1", "proj-2"):
        assert len(await store.list(account)) == 5


@pytest.mark.asyncio
async def test_corrupt_json_raises_and_is_not_overwritten(tmp_path) -> None:
    path = tmp_path / "logs.json"
    path.write_text("{not json", encoding="utf-8")
    store = FileAuditLogStore(path)

    with pytest.raises(CorruptLogStore):
        await store.list("proj-ref")
    with pytest.raises(CorruptLogStore):
        await store.append("proj-ref", [new_entry("RLS", "RLS Check", {})])

    assert path.read_text(encoding="utf-8") == "{not json"


@pytest.mark.asyncio
async def test_non_utf8_file_raises_and_is_not_overwritten(tmp_path) -> None:
    path = tmp_path / "logs.json"
    path.write_bytes(b"\xff\xfe[garbage")
    store = FileAuditLogStore(path)

    with pytest.raises(CorruptLogStore):
        await store.list("proj-ref")
    with pytest.raises(CorruptLogStore):
        await store.append("proj-ref", [new_entry("RLS", "RLS Check", {})])

    assert path.read_bytes() == b"\xff\xfe[garbage"


@pytest.mark.asyncio
async def test_invalid_entry_shape_raises(tmp_path) -> None:
    path = tmp_path / "logs.json"
    path.write_text(
        json.dumps([{"account": "proj-ref", "logs": [{"timestamp": "t", "action": "x", "type": "SSL"}]}]),
        encoding="utf-8",
    )

    with pytest.raises(CorruptLogStore):
        await FileAuditLogStore(path).list("proj-ref")


@pytest.mark.asyncio
async def test_memory_store_contract() -> None:
    store = MemoryAuditLogStore()
    entry = new_entry("RLS", "RLS Check", {})

    await store.append("proj-ref", [entry])

    assert await store.list("proj-ref") == [entry]
    assert await store.list("proj-ref", "MFA") == []
    assert await store.list("other") == []


def test_entry_serializes_type_field() -> None:
    entry = LogEntry(timestamp="2024-01-01T00:00:00+00:00", action="MFA Check", result=None, type="MFA")

    assert entry.to_dict() == {
        "timestamp": "2024-01-01T00:00:00+00:00",
        "action": "MFA Check",
        "result": None,
        "type": "MFA",
    }


def test_format_logs() -> None:
    entry = LogEntry(
        timestamp="2024-01-01T00:00:00+00:00",
        action="RLS Check",
        result={"table": "t1"},
        type="RLS",
    )

    assert format_logs([entry]) == (
        "[2024-01-01T00:00:00+00:00]\n"
        "Action: RLS Check\n"
        "Type: RLS\n"
        'Result: {\n  "table": "t1"\n}\n\n'
    )


def test_audit_account() -> None:
    assert audit_account("proj-ref") == "proj-ref"
    assert audit_account("proj-ref", "ada") == "proj-ref:ada"
