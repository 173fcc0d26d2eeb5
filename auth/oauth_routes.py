from __future__ import annotations

import dataclasses
import logging

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from auth import pkce, supabase_oauth
from auth.session import SessionStore
from supacheck.env import Settings
from supacheck.errors import AuthorizationMismatch, TokenExchangeFailed, Unauthenticated
from supacheck.http import error_response, json_error

LOGGER = logging.getLogger("supacheck.oauth")


class OAuthRoutes:
    def __init__(
        self,
        *,
        settings: Settings,
        sessions: SessionStore,
        exchange_code_fn=supabase_oauth.exchange,
        refresh_token_fn=supabase_oauth.refresh,
    ) -> None:
        self.settings = settings
        self.sessions = sessions
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn

    def mount_routes(self, mcp) -> None:
        @mcp.custom_route("/login", methods=["GET"])
        async def login_route(request: Request) -> Response:
            return await self._handle_login(request)

        @mcp.custom_route("/callback", methods=["GET"])
        async def callback_route(request: Request) -> Response:
            return await self._handle_callback(request)

        @mcp.custom_route("/refresh", methods=["POST"])
        async def refresh_route(request: Request) -> Response:
            return await self._handle_refresh(request)

        @mcp.custom_route("/logout", methods=["POST"])
        async def logout_route(request: Request) -> Response:
            return await self._handle_logout(request)

        @mcp.custom_route("/check-token", methods=["GET"])
        async def check_token_route(request: Request) -> Response:
            return JSONResponse({"tokenExists": self.sessions.get(request) is not None})

    # -- handlers --------------------------------------------------------------

    async def _handle_login(self, request: Request) -> Response:
        del request
        authorization = pkce.begin()
        authorize_url = supabase_oauth.build_authorization_url(self.settings, authorization)

        response = RedirectResponse(url=authorize_url, status_code=302)
        self.sessions.set_authorization(response, authorization)
        return response

    async def _handle_callback(self, request: Request) -> Response:
        code_verifier, stored_state = self.sessions.read_authorization(request)

        if request.query_params.get("error"):
            LOGGER.warning(
                "Authorization server returned error=%s",
                request.query_params.get("error"),
            )
            response = json_error(
                "oauth_error",
                request.query_params.get("error_description")
                or "Supabase authorization returned an error.",
                400,
            )
            self.sessions.clear_authorization(response)
            return response

        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if not code or not state or not code_verifier:
            response = json_error("invalid_request", "Missing parameters", 400)
            self.sessions.clear_authorization(response)
            return response

        try:
            credential = await self._exchange_code_fn(
                self.settings,
                code,
                state,
                stored_state,
                code_verifier,
            )
        except AuthorizationMismatch as error:
            response = error_response(error)
        except TokenExchangeFailed as error:
            LOGGER.error("Token exchange failed with status %s", error.http_status)
            response = error_response(error)
        except httpx.HTTPError as error:
            LOGGER.error("Token exchange request failed: %s", error)
            response = json_error(
                "token_exchange_failed",
                f"Authentication failed: {error}",
                500,
            )
        else:
            response = RedirectResponse(url=self.settings.post_login_path, status_code=302)
            self.sessions.set(response, credential)
            LOGGER.info("Supabase session established")

        self.sessions.clear_authorization(response)
        return response

    async def _handle_refresh(self, request: Request) -> Response:
        credential = self.sessions.get(request)
        if credential is None:
            return error_response(Unauthenticated())
        if not credential.refresh_token:
            return error_response(
                Unauthenticated("Session cannot be refreshed. Please sign in again.")
            )

        try:
            refreshed = await self._refresh_token_fn(self.settings, credential.refresh_token)
        except TokenExchangeFailed as error:
            LOGGER.error("Token refresh failed with status %s", error.http_status)
            return error_response(error)
        except httpx.HTTPError as error:
            LOGGER.error("Token refresh request failed: %s", error)
            return json_error("token_exchange_failed", f"Token refresh failed: {error}", 500)

        if not refreshed.refresh_token:
            refreshed = dataclasses.replace(refreshed, refresh_token=credential.refresh_token)

        response = JSONResponse({"status": "refreshed", "expires_at": refreshed.expires_at})
        self.sessions.set(response, refreshed)
        return response

    async def _handle_logout(self, request: Request) -> Response:
        del request
        response = JSONResponse({"status": "signed_out"})
        self.sessions.clear(response)
        return response
