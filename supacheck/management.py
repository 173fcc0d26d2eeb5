from __future__ import annotations

import logging
from typing import Any

import httpx

from auth.supabase_oauth import Credential

from .errors import InvalidArgument, RemoteQueryFailed, Unauthenticated
from .http import build_event_hooks, friendly_error_message

LOGGER = logging.getLogger("supacheck.management")


def _remote_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
        error = payload.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict):
            nested = error.get("message")
            if isinstance(nested, str) and nested:
                return nested
    if isinstance(payload, str) and payload:
        return payload
    return fallback


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ProjectQueryClient:
    """Bearer-authenticated calls against the Supabase Management API.

    Statements are forwarded as-is; identifier quoting is the caller's job.
    """

    def __init__(self, http_client: httpx.AsyncClient, credential: Credential | None) -> None:
        self._http = http_client
        self._credential = credential

    def _headers(self) -> dict[str, str]:
        if self._credential is None or self._credential.is_expired():
            raise Unauthenticated()
        return {"Authorization": f"Bearer {self._credential.access_token}"}

    @staticmethod
    def _require_ref(project_ref: str | None) -> str:
        if not project_ref or not project_ref.strip():
            raise InvalidArgument("Project reference is required.")
        return project_ref.strip()

    async def _send(self, method: str, url: str, **kwargs) -> tuple[httpx.Response, Any]:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as error:
            LOGGER.warning("Supabase API %s %s failed: %s", method, url, error)
            raise RemoteQueryFailed(f"Could not reach Supabase API: {error}") from error
        return response, _decode_body(response)

    def _raise_for_error(self, response: httpx.Response, body: Any) -> None:
        if response.is_success and not (isinstance(body, dict) and body.get("error")):
            return
        fallback = friendly_error_message(response.status_code)
        raise RemoteQueryFailed(
            _remote_message(body, fallback),
            status_code=response.status_code,
            payload=body,
        )

    async def run(self, project_ref: str, statement: str) -> list[dict]:
        headers = self._headers()
        ref = self._require_ref(project_ref)

        response, body = await self._send(
            "POST",
            f"/v1/projects/{ref}/database/query",
            json={"query": statement},
            headers=headers,
        )
        self._raise_for_error(response, body)

        if isinstance(body, dict) and isinstance(body.get("result"), list):
            body = body["result"]
        if not isinstance(body, list):
            raise RemoteQueryFailed(
                "Unexpected query response from Supabase.",
                status_code=response.status_code,
                payload=body,
            )
        return body

    async def get_backups(self, project_ref: str) -> dict:
        headers = self._headers()
        ref = self._require_ref(project_ref)

        response, body = await self._send(
            "GET", f"/v1/projects/{ref}/database/backups", headers=headers
        )
        self._raise_for_error(response, body)

        if not isinstance(body, dict):
            raise RemoteQueryFailed(
                "Unexpected backups response from Supabase.",
                status_code=response.status_code,
                payload=body,
            )
        return body

    async def list_projects(self) -> list[dict]:
        headers = self._headers()

        response, body = await self._send("GET", "/v1/projects", headers=headers)
        self._raise_for_error(response, body)

        if not isinstance(body, list):
            raise RemoteQueryFailed(
                "Unexpected projects response from Supabase.",
                status_code=response.status_code,
                payload=body,
            )
        return body


def build_http_client(
    *,
    base_url: str,
    timeout: float,
    debug_enabled: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=transport,
        event_hooks=build_event_hooks(debug_enabled=debug_enabled),
    )
