import time

import pytest

from auth.supabase_oauth import Credential
from supacheck.checks import (
    MfaCheck,
    PitrCheck,
    RlsCheck,
    get_check,
    latest_session_per_user,
    parse_check_type,
    quote_ident,
)
from supacheck.errors import InvalidArgument
from supacheck.management import ProjectQueryClient
from tests.app_helpers import FakeSupabase


def _query_client(http_client) -> ProjectQueryClient:
    return ProjectQueryClient(http_client, Credential("sb-access", time.time() + 3600))


@pytest.mark.asyncio
async def test_rls_check_flags_tables_without_rls() -> None:
    fake = FakeSupabase()
    fake.tables = {"t1": False, "t2": True}

    async with fake.client() as http_client:
        entities = await RlsCheck(_query_client(http_client)).evaluate("proj-ref")

    assert [(e.identifier, e.compliant) for e in entities] == [("t1", False), ("t2", True)]
    assert [e.identifier for e in entities if not e.compliant] == ["t1"]
    assert "n.nspname = 'public'" in fake.statements[0]


@pytest.mark.asyncio
async def test_enable_rls_then_fresh_read() -> None:
    fake = FakeSupabase()
    fake.tables = {"t1": False}

    async with fake.client() as http_client:
        check = RlsCheck(_query_client(http_client))
        await check.remediate("proj-ref", "t1", "enable_rls")
        entities = await check.evaluate("proj-ref")

    assert fake.statements[0] == 'ALTER TABLE "public"."t1" ENABLE ROW LEVEL SECURITY;'
    assert entities[0].attributes == {"rls_enabled": True}


def test_grant_read_statement() -> None:
    statement = RlsCheck(None).remediation_statement("orders", "grant_read")

    assert statement.startswith('ALTER TABLE "public"."orders" ENABLE ROW LEVEL SECURITY;')
    assert "FOR SELECT TO authenticated USING (true);" in statement
    assert "IF NOT EXISTS" in statement
    assert "tablename = 'orders'" in statement


def test_grant_read_write_statement() -> None:
    statement = RlsCheck(None).remediation_statement("orders", "grant_read_write")

    assert "FOR ALL TO authenticated USING (true) WITH CHECK (true);" in statement
    assert 'ON "public"."orders"' in statement


def test_policy_block_has_single_dollar_quote_pair() -> None:
    statement = RlsCheck(None).remediation_statement("orders", "grant_read_write")

    assert statement.count("$$") == 2
    assert statement.index("tablename = 'orders'") < statement.rindex("$$")


def test_dollar_in_table_name_rejected_before_building_policy() -> None:
    with pytest.raises(InvalidArgument):
        RlsCheck(None).remediation_statement("a$$b", "grant_read")


@pytest.mark.parametrize(
    "name",
    ['orders"; DROP TABLE users; --', "orders'", "", "1table", "a" * 64, "with space", "a$$b", "price$"],
)
def test_quote_ident_rejects_unsafe_names(name) -> None:
    with pytest.raises(InvalidArgument):
        quote_ident(name)


def test_quote_ident_accepts_plain_names() -> None:
    assert quote_ident("user_profiles") == '"user_profiles"'
    assert quote_ident("_t1") == '"_t1"'


@pytest.mark.asyncio
async def test_remediation_with_unsafe_name_sends_nothing() -> None:
    fake = FakeSupabase()

    async with fake.client() as http_client:
        with pytest.raises(InvalidArgument):
            await RlsCheck(_query_client(http_client)).remediate(
                "proj-ref", 'x"; DROP TABLE y; --', "enable_rls"
            )

    assert fake.requests == []


@pytest.mark.asyncio
async def test_unknown_remediation_rejected() -> None:
    fake = FakeSupabase()

    async with fake.client() as http_client:
        with pytest.raises(InvalidArgument, match="Unsupported remediation"):
            await RlsCheck(_query_client(http_client)).remediate("proj-ref", "t1", "drop_table")
        with pytest.raises(InvalidArgument):
            await MfaCheck(_query_client(http_client)).remediate("proj-ref", "t1", "enable_rls")

    assert fake.requests == []


def test_latest_session_per_user() -> None:
    rows = [
        {"user_id": "u1", "aal": "aal1", "created_at": "2024-01-01T10:00:00+00:00"},
        {"user_id": "u1", "aal": "aal2", "created_at": "2024-03-01T10:00:00+00:00"},
        {"user_id": "u2", "aal": "aal1", "created_at": "2024-02-01T10:00:00+00:00"},
    ]

    latest = {row["user_id"]: row["aal"] for row in latest_session_per_user(rows)}

    assert latest == {"u1": "aal2", "u2": "aal1"}


@pytest.mark.asyncio
async def test_mfa_check_counts_only_latest_session() -> None:
    fake = FakeSupabase()
    fake.sessions = [
        {
            "session_id": "s-old",
            "user_id": "u1",
            "aal": "aal1",
            "created_at": "2024-01-01T10:00:00+00:00",
            "user_email": "ada@example.com",
            "user_phone": None,
        },
        {
            "session_id": "s-new",
            "user_id": "u1",
            "aal": "aal2",
            "created_at": "2024-06-01T10:00:00+00:00",
            "user_email": "ada@example.com",
            "user_phone": None,
        },
    ]

    async with fake.client() as http_client:
        entities = await MfaCheck(_query_client(http_client)).evaluate("proj-ref")

    assert len(entities) == 1
    assert entities[0].attributes["session_id"] == "s-new"
    assert [e for e in entities if not e.compliant] == []


@pytest.mark.asyncio
async def test_mfa_check_flags_aal1_users() -> None:
    fake = FakeSupabase()
    fake.sessions = [
        {"session_id": "s1", "user_id": "u1", "aal": "aal1", "user_email": "bob@example.com"},
        {"session_id": "s2", "user_id": "u2", "aal": "aal2", "user_email": "eve@example.com"},
    ]

    async with fake.client() as http_client:
        check = MfaCheck(_query_client(http_client))
        entities = await check.evaluate("proj-ref")

    flagged = [e for e in entities if not e.compliant]
    assert [e.identifier for e in flagged] == ["bob@example.com"]
    assert check.describe(flagged[0]) == {"user": "bob@example.com", "status": "MFA is not enabled"}


@pytest.mark.asyncio
async def test_pitr_check_single_entity() -> None:
    fake = FakeSupabase()

    async with fake.client() as http_client:
        check = PitrCheck(_query_client(http_client))
        entities = await check.evaluate("proj-ref")

    assert len(entities) == 1
    entity = entities[0]
    assert entity.identifier == "proj-ref"
    assert entity.compliant is False
    assert entity.attributes == {
        "pitr_enabled": False,
        "region": "us-east-1",
        "walg_enabled": True,
        "backup_count": 2,
    }
    assert check.summarize(entities)["status"]["backup_count"] == 2


@pytest.mark.asyncio
async def test_pitr_descriptive_attributes_do_not_affect_verdict() -> None:
    fake = FakeSupabase()
    fake.backups = {"region": "eu-west-1", "pitr_enabled": True, "walg_enabled": False, "backups": []}

    async with fake.client() as http_client:
        entities = await PitrCheck(_query_client(http_client)).evaluate("proj-ref")

    assert entities[0].compliant is True


def test_get_check_unknown_type() -> None:
    with pytest.raises(InvalidArgument):
        get_check("SSL", None)

    assert isinstance(get_check("rls", None), RlsCheck)


def test_parse_check_type() -> None:
    assert parse_check_type("pitr") == "PITR"
    assert parse_check_type("") is None
    assert parse_check_type(None) is None
    with pytest.raises(InvalidArgument):
        parse_check_type("SSL")
