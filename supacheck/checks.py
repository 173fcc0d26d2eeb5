from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from .constants import CHECK_TYPES
from .errors import InvalidArgument
from .management import ProjectQueryClient

# no "$": names must not be able to close the dollar-quoted DO body
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

RLS_TABLES_QUERY = """
SELECT
  c.relname AS table_name,
  c.relrowsecurity AS rls_enabled
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind = 'r'
  AND n.nspname = 'public'
ORDER BY c.relname;
""".strip()

MFA_SESSIONS_QUERY = """
SELECT DISTINCT ON (s.user_id)
  s.id AS session_id,
  s.user_id,
  s.aal,
  s.created_at,
  u.email AS user_email,
  u.phone AS user_phone
FROM auth.sessions s
JOIN auth.users u ON u.id = s.user_id
ORDER BY s.user_id, s.created_at DESC;
""".strip()

READ_POLICY_NAME = "Authenticated users can read"
READ_WRITE_POLICY_NAME = "Authenticated users can read and write"


@dataclass
class Entity:
    identifier: str
    compliant: bool
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"identifier": self.identifier, "compliant": self.compliant, **self.attributes}


def quote_ident(name: str) -> str:
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise InvalidArgument(f"Invalid table name: {name!r}")
    return f'"{name}"'


class Check(ABC):
    check_type: str = ""
    label: str = ""
    remediations: dict[str, str] = {}

    def __init__(self, client: ProjectQueryClient) -> None:
        self.client = client

    @abstractmethod
    async def evaluate(self, project_ref: str) -> list[Entity]:
        raise NotImplementedError

    @abstractmethod
    def describe(self, entity: Entity) -> dict:
        """Audit payload for one evaluated entity."""
        raise NotImplementedError

    def summarize(self, entities: list[Entity]) -> dict:
        return {}

    async def remediate(self, project_ref: str, identifier: str, action: str) -> dict:
        if action not in self.remediations:
            raise InvalidArgument(f"Unsupported remediation {action!r} for {self.check_type}.")
        statement = self.remediation_statement(identifier, action)
        await self.client.run(project_ref, statement)
        return {"table": identifier, "action": action, "status": "success"}

    def remediation_statement(self, identifier: str, action: str) -> str:
        raise InvalidArgument(f"{self.check_type} has no remediations.")


class RlsCheck(Check):
    check_type = "RLS"
    label = "RLS Check"
    remediations = {
        "enable_rls": "Enable RLS",
        "grant_read": "Grant Read Access",
        "grant_read_write": "Grant Read/Write Access",
    }

    async def evaluate(self, project_ref: str) -> list[Entity]:
        rows = await self.client.run(project_ref, RLS_TABLES_QUERY)
        return [
            Entity(
                identifier=str(row.get("table_name")),
                compliant=bool(row.get("rls_enabled")),
                attributes={"rls_enabled": bool(row.get("rls_enabled"))},
            )
            for row in rows
        ]

    def describe(self, entity: Entity) -> dict:
        status = "RLS is enabled" if entity.compliant else "RLS is not enabled"
        return {"table": entity.identifier, "status": status}

    def remediation_statement(self, identifier: str, action: str) -> str:
        table = f'"public".{quote_ident(identifier)}'
        enable = f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;"
        if action == "enable_rls":
            return enable
        if action == "grant_read":
            return "\n".join(
                [enable, _create_policy(identifier, table, READ_POLICY_NAME, "SELECT", "USING (true)")]
            )
        return "\n".join(
            [
                enable,
                _create_policy(
                    identifier,
                    table,
                    READ_WRITE_POLICY_NAME,
                    "ALL",
                    "USING (true) WITH CHECK (true)",
                ),
            ]
        )


def _create_policy(identifier: str, table: str, policy: str, command: str, clauses: str) -> str:
    # identifier already passed quote_ident, so it is safe inside a literal
    return (
        "DO $$\nBEGIN\n"
        "  IF NOT EXISTS (\n"
        "    SELECT 1 FROM pg_policies\n"
        f"    WHERE schemaname = 'public' AND tablename = '{identifier}'"
        f" AND policyname = '{policy}'\n"
        "  ) THEN\n"
        f'    CREATE POLICY "{policy}" ON {table} FOR {command} TO authenticated {clauses};\n'
        "  END IF;\n"
        "END\n$$;"
    )


def latest_session_per_user(rows: list[dict]) -> list[dict]:
    latest: dict[str, dict] = {}
    for row in rows:
        user_id = str(row.get("user_id"))
        current = latest.get(user_id)
        if current is None or str(row.get("created_at") or "") > str(current.get("created_at") or ""):
            latest[user_id] = row
    return list(latest.values())


class MfaCheck(Check):
    check_type = "MFA"
    label = "MFA Check"

    async def evaluate(self, project_ref: str) -> list[Entity]:
        rows = await self.client.run(project_ref, MFA_SESSIONS_QUERY)
        return [
            Entity(
                identifier=str(row.get("user_email") or row.get("user_id")),
                compliant=row.get("aal") == "aal2",
                attributes={
                    "session_id": row.get("session_id"),
                    "user_id": row.get("user_id"),
                    "user_email": row.get("user_email"),
                    "user_phone": row.get("user_phone"),
                    "aal": row.get("aal"),
                },
            )
            for row in latest_session_per_user(rows)
        ]

    def describe(self, entity: Entity) -> dict:
        status = "MFA is enabled" if entity.compliant else "MFA is not enabled"
        return {"user": entity.identifier, "status": status}


class PitrCheck(Check):
    check_type = "PITR"
    label = "PITR Check"

    async def evaluate(self, project_ref: str) -> list[Entity]:
        payload = await self.client.get_backups(project_ref)
        backups = payload.get("backups")
        pitr_enabled = bool(payload.get("pitr_enabled"))
        return [
            Entity(
                identifier=project_ref,
                compliant=pitr_enabled,
                attributes={
                    "pitr_enabled": pitr_enabled,
                    "region": payload.get("region"),
                    "walg_enabled": bool(payload.get("walg_enabled")),
                    "backup_count": len(backups) if isinstance(backups, list) else 0,
                },
            )
        ]

    def describe(self, entity: Entity) -> dict:
        status = (
            "PITR is enabled" if entity.compliant else "PITR is not enabled"
        )
        return {"project": entity.identifier, "status": status, **entity.attributes}

    def summarize(self, entities: list[Entity]) -> dict:
        if not entities:
            return {}
        return {"status": dict(entities[0].attributes)}


CHECKS: dict[str, type[Check]] = {
    "RLS": RlsCheck,
    "MFA": MfaCheck,
    "PITR": PitrCheck,
}


def parse_check_type(raw: str | None) -> str | None:
    """Normalize an optional check type filter; empty means no filter."""
    if raw is None or raw == "":
        return None
    check_type = raw.upper()
    if check_type not in CHECK_TYPES:
        raise InvalidArgument(f"Unknown check type: {raw!r}")
    return check_type


def get_check(check_type: str, client: ProjectQueryClient) -> Check:
    check_cls = CHECKS.get(check_type.upper())
    if check_cls is None:
        raise InvalidArgument(f"Unknown check type: {check_type!r}")
    return check_cls(client)
