from __future__ import annotations

import logging
import time
import urllib.parse
from dataclasses import dataclass

import httpx

from auth.pkce import AuthorizationState
from supacheck.env import Settings
from supacheck.errors import AuthorizationMismatch, TokenExchangeFailed

LOGGER = logging.getLogger("supacheck.oauth")


@dataclass(frozen=True)
class Credential:
    access_token: str
    expires_at: float
    refresh_token: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    def remaining_seconds(self, now: float | None = None) -> int:
        current = time.time() if now is None else now
        return max(0, int(self.expires_at - current))

    @classmethod
    def from_payload(cls, payload: dict, *, http_status: int = 200) -> "Credential":
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        refresh_token = payload.get("refresh_token")

        if not isinstance(access_token, str) or not access_token:
            raise TokenExchangeFailed(http_status, "Token response missing access_token.")
        if not isinstance(expires_in, int) or isinstance(expires_in, bool):
            raise TokenExchangeFailed(http_status, "Token response missing expires_in.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise TokenExchangeFailed(http_status, "Token response refresh_token must be a string.")

        return cls(
            access_token=access_token,
            expires_at=time.time() + expires_in,
            refresh_token=refresh_token or None,
        )


def build_authorization_url(settings: Settings, authorization: AuthorizationState) -> str:
    query = {
        "client_id": settings.require("client_id"),
        "code_challenge": authorization.code_challenge,
        "code_challenge_method": "S256",
        "redirect_uri": settings.redirect_uri,
        "response_type": "code",
        "state": authorization.state,
    }
    return f"{settings.authorization_endpoint}?{urllib.parse.urlencode(query)}"


async def _token_request(
    settings: Settings,
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> Credential:
    basic_auth = (settings.require("client_id"), settings.require("client_secret"))
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=settings.api_timeout)

    try:
        response = await http_client.post(
            settings.token_endpoint,
            data=payload,
            auth=basic_auth,
            headers={"Accept": "application/json"},
        )
    finally:
        if own_client:
            await http_client.aclose()

    LOGGER.info(
        "Token request grant_type=%s -> %s",
        payload.get("grant_type"),
        response.status_code,
    )
    if not response.is_success:
        raise TokenExchangeFailed(response.status_code, response.text)

    try:
        body = response.json()
    except ValueError:
        raise TokenExchangeFailed(response.status_code, response.text)
    if not isinstance(body, dict):
        raise TokenExchangeFailed(response.status_code, response.text)
    return Credential.from_payload(body, http_status=response.status_code)


async def exchange(
    settings: Settings,
    code: str | None,
    state: str | None,
    stored_state: str | None,
    code_verifier: str | None,
    *,
    client: httpx.AsyncClient | None = None,
) -> Credential:
    """Trade an authorization code for a Credential.

    The state comparison runs before any network I/O. A mismatch aborts the
    flow; codes are single-use, so a failed exchange is never replayed.
    """
    if not code or not state or not stored_state or not code_verifier:
        raise AuthorizationMismatch("Missing authorization code, state or code verifier.")
    if state != stored_state:
        LOGGER.warning("Rejected OAuth callback with mismatched state")
        raise AuthorizationMismatch()

    return await _token_request(
        settings,
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.redirect_uri,
            "code_verifier": code_verifier,
        },
        client=client,
    )


async def refresh(
    settings: Settings,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> Credential:
    return await _token_request(
        settings,
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        client=client,
    )
