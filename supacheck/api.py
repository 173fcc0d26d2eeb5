from __future__ import annotations

import logging

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from auth.session import SessionStore

from .audit_log import audit_account, format_logs
from .checks import get_check, parse_check_type
from .errors import InvalidArgument, SupacheckError
from .http import error_response
from .management import ProjectQueryClient
from .service import CheckOutcome, ComplianceService

LOGGER = logging.getLogger("supacheck.api")

REMEDIATION_ROUTES = {
    "enable-rls": "enable_rls",
    "grant-read": "grant_read",
    "grant-read-write": "grant_read_write",
}


def outcome_response(outcome: CheckOutcome) -> Response:
    status_code = 200 if outcome.ok else outcome.error.status_code
    return JSONResponse(outcome.to_payload(), status_code=status_code)


class ComplianceRoutes:
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

    def _query_client(self, request: Request) -> ProjectQueryClient:
        return ProjectQueryClient(self.http_client, self.sessions.require(request))

    def mount_routes(self, mcp) -> None:
        @mcp.custom_route("/api/projects", methods=["GET"])
        async def projects_route(request: Request) -> Response:
            return await self._handle_projects(request)

        @mcp.custom_route("/api/projects/{ref}/checks/{check}", methods=["POST"])
        async def check_route(request: Request) -> Response:
            return await self._handle_check(request)

        @mcp.custom_route(
            "/api/projects/{ref}/checks/rls/tables/{table}/{action}",
            methods=["POST"],
        )
        async def remediation_route(request: Request) -> Response:
            return await self._handle_remediation(request)

        @mcp.custom_route("/api/projects/{ref}/logs", methods=["GET"])
        async def logs_route(request: Request) -> Response:
            return await self._handle_logs(request)

        @mcp.custom_route("/api/projects/{ref}/logs/{check}/download", methods=["GET"])
        async def logs_download_route(request: Request) -> Response:
            return await self._handle_logs_download(request)

    # -- handlers --------------------------------------------------------------

    async def _handle_projects(self, request: Request) -> Response:
        try:
            projects = await self._query_client(request).list_projects()
        except SupacheckError as error:
            return error_response(error)
        return JSONResponse({"projects": projects})

    async def _handle_check(self, request: Request) -> Response:
        ref = request.path_params["ref"]
        try:
            check = get_check(request.path_params["check"], self._query_client(request))
        except SupacheckError as error:
            return error_response(error)

        account = audit_account(ref, request.query_params.get("user"))
        return outcome_response(await self.service.run_check(check, ref, account))

    async def _handle_remediation(self, request: Request) -> Response:
        ref = request.path_params["ref"]
        action = REMEDIATION_ROUTES.get(request.path_params["action"])
        if action is None:
            return error_response(
                InvalidArgument(f"Unknown remediation: {request.path_params['action']!r}")
            )
        try:
            check = get_check("RLS", self._query_client(request))
        except SupacheckError as error:
            return error_response(error)

        account = audit_account(ref, request.query_params.get("user"))
        outcome = await self.service.remediate(
            check, ref, account, request.path_params["table"], action
        )
        return outcome_response(outcome)

    async def _handle_logs(self, request: Request) -> Response:
        ref = request.path_params["ref"]
        try:
            self.sessions.require(request)
            check_type = parse_check_type(request.query_params.get("type"))
            entries = await self.service.audit_store.list(
                audit_account(ref, request.query_params.get("user")), check_type
            )
        except SupacheckError as error:
            return error_response(error)
        return JSONResponse({"logs": [entry.to_dict() for entry in entries]})

    async def _handle_logs_download(self, request: Request) -> Response:
        ref = request.path_params["ref"]
        try:
            self.sessions.require(request)
            check_type = parse_check_type(request.path_params["check"])
            entries = await self.service.audit_store.list(
                audit_account(ref, request.query_params.get("user")), check_type
            )
        except SupacheckError as error:
            return error_response(error)

        filename = f"{check_type.lower()}_check_{ref}_logs.txt"
        return PlainTextResponse(
            format_logs(entries),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
