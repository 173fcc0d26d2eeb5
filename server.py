from __future__ import annotations

import os
from typing import TYPE_CHECKING

from auth import supabase_oauth
from auth.oauth_routes import OAuthRoutes
from auth.session import SessionStore
from supacheck.api import ComplianceRoutes
from supacheck.audit_log import AuditLogStore, FileAuditLogStore
from supacheck.constants import APP_VERSION, LOGGER
from supacheck.env import Settings, load_env, setup_logging, validate_env
from supacheck.management import build_http_client
from supacheck.service import ComplianceService
from supacheck.tools import ComplianceTools

if TYPE_CHECKING:
    import httpx
    from fastmcp import FastMCP


def mount_health_route(mcp: "FastMCP") -> None:
    from starlette.requests import Request
    from starlette.responses import JSONResponse, Response

    @mcp.custom_route("/health", methods=["GET"])
    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION})


def create_mcp(
    settings: Settings | None = None,
    *,
    audit_store: AuditLogStore | None = None,
    http_client: "httpx.AsyncClient | None" = None,
    exchange_code_fn=supabase_oauth.exchange,
    refresh_token_fn=supabase_oauth.refresh,
) -> "FastMCP":
    from fastmcp import FastMCP

    debug_enabled = False
    if settings is None:
        load_env()
        debug_enabled = setup_logging()
        validate_env()
        settings = Settings.from_env()

    sessions = SessionStore(settings)
    if audit_store is None:
        audit_store = FileAuditLogStore(settings.audit_log_path)
    if http_client is None:
        http_client = build_http_client(
            base_url=settings.api_base_url,
            timeout=settings.api_timeout,
            debug_enabled=debug_enabled,
        )
    service = ComplianceService(audit_store)

    mcp = FastMCP(name="Supabase Compliance Checks")
    OAuthRoutes(
        settings=settings,
        sessions=sessions,
        exchange_code_fn=exchange_code_fn,
        refresh_token_fn=refresh_token_fn,
    ).mount_routes(mcp)
    ComplianceRoutes(sessions=sessions, service=service, http_client=http_client).mount_routes(mcp)
    ComplianceTools(sessions=sessions, service=service, http_client=http_client).register(mcp)
    mount_health_route(mcp)

    setattr(mcp, "_client", http_client)
    LOGGER.info("Configured supacheck redirect_uri=%s", settings.redirect_uri)
    return mcp


def main() -> None:
    host = os.getenv("MCP_HOST", "127.0.0.1")
    port = int(os.getenv("MCP_PORT", "8000"))
    mcp = create_mcp()
    mcp.run(transport="streamable-http", host=host, port=port)


if __name__ == "__main__":
    main()
