from __future__ import annotations

import httpx
from fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations

from auth.session import SessionStore
from auth.supabase_oauth import Credential

from .audit_log import audit_account
from .checks import get_check, parse_check_type
from .errors import SupacheckError, Unauthenticated
from .management import ProjectQueryClient
from .service import ComplianceService

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, openWorldHint=True)
WRITE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, openWorldHint=True)


def credential_from_context(sessions: SessionStore) -> Credential:
    """Resolve the session cookie carried on the current MCP HTTP request."""
    from fastmcp.server.dependencies import get_http_headers

    headers = get_http_headers(include_all=True)
    credential = sessions.get_from_cookie_header(headers.get("cookie"))
    if credential is None:
        raise Unauthenticated()
    return credential


class ComplianceTools:
    def __init__(
        self,
        *,
        sessions: SessionStore,
        service: ComplianceService,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.sessions = sessions
        self.service = service
        self.http_client = http_client

    def register(self, mcp) -> None:
        for fn in (self.run_rls_check, self.run_mfa_check, self.run_pitr_check, self.list_audit_logs):
            mcp.tool(fn, name=fn.__name__, annotations=READ_ONLY)
        for fn in (self.enable_rls, self.grant_read, self.grant_read_write):
            mcp.tool(fn, name=fn.__name__, annotations=WRITE)

    def _require_session(self) -> Credential:
        try:
            return credential_from_context(self.sessions)
        except Unauthenticated as error:
            raise ToolError(error.message) from error

    def _client(self) -> ProjectQueryClient:
        return ProjectQueryClient(self.http_client, self._require_session())

    async def _run(self, check_type: str, project_ref: str, user: str | None) -> dict:
        check = get_check(check_type, self._client())
        outcome = await self.service.run_check(check, project_ref, audit_account(project_ref, user))
        return outcome.to_payload()

    async def _remediate(self, action: str, project_ref: str, table: str, user: str | None) -> dict:
        check = get_check("RLS", self._client())
        outcome = await self.service.remediate(
            check, project_ref, audit_account(project_ref, user), table, action
        )
        return outcome.to_payload()

    async def run_rls_check(self, project_ref: str, user: str | None = None) -> dict:
        """List public tables and whether row-level security is enabled on each."""
        return await self._run("RLS", project_ref, user)

    async def run_mfa_check(self, project_ref: str, user: str | None = None) -> dict:
        """Report users whose latest session is below assurance level aal2."""
        return await self._run("MFA", project_ref, user)

    async def run_pitr_check(self, project_ref: str, user: str | None = None) -> dict:
        """Report whether point-in-time recovery is enabled for the project."""
        return await self._run("PITR", project_ref, user)

    async def enable_rls(self, project_ref: str, table: str, user: str | None = None) -> dict:
        """Enable row-level security on a public table, then re-run the RLS check."""
        return await self._remediate("enable_rls", project_ref, table, user)

    async def grant_read(self, project_ref: str, table: str, user: str | None = None) -> dict:
        """Enable RLS and add a SELECT policy for the authenticated role."""
        return await self._remediate("grant_read", project_ref, table, user)

    async def grant_read_write(self, project_ref: str, table: str, user: str | None = None) -> dict:
        """Enable RLS and add an ALL policy for the authenticated role."""
        return await self._remediate("grant_read_write", project_ref, table, user)

    async def list_audit_logs(
        self,
        project_ref: str,
        check_type: str | None = None,
        user: str | None = None,
    ) -> list[dict]:
        """Return audit log entries for the project, optionally filtered by check type."""
        self._require_session()
        try:
            entries = await self.service.audit_store.list(
                audit_account(project_ref, user), parse_check_type(check_type)
            )
        except SupacheckError as error:
            raise ToolError(error.message) from error
        return [entry.to_dict() for entry in entries]
