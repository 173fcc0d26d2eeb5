from __future__ import annotations

import logging
import time

from starlette.requests import Request, cookie_parser
from starlette.responses import Response

from auth import sealed_cookie
from auth.pkce import AuthorizationState
from auth.supabase_oauth import Credential
from supacheck.constants import (
    CODE_VERIFIER_COOKIE,
    PKCE_COOKIE_MAX_AGE,
    SESSION_COOKIE,
    STATE_COOKIE,
)
from supacheck.env import Settings
from supacheck.errors import Unauthenticated

LOGGER = logging.getLogger("supacheck.session")


class SessionStore:
    """Cookie-backed credential store.

    The sealed session cookie is the only copy of the credential: it is
    encrypted, HTTP-only, host-only and expires with the token.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._key = sealed_cookie.derive_key(settings.cookie_secret)

    # -- credential ------------------------------------------------------------

    def get(self, request: Request) -> Credential | None:
        return self.get_from_cookies(request.cookies)

    def get_from_cookie_header(self, header: str | None) -> Credential | None:
        if not header:
            return None
        return self.get_from_cookies(cookie_parser(header))

    def get_from_cookies(self, cookies: dict[str, str]) -> Credential | None:
        token = cookies.get(SESSION_COOKIE)
        if not token:
            return None

        try:
            payload = sealed_cookie.unseal(token, self._key)
        except (RuntimeError, ValueError):
            LOGGER.warning("Discarding session cookie that failed verification")
            return None

        access_token = payload.get("at")
        expires_at = payload.get("exp")
        refresh_token = payload.get("rt")
        if not isinstance(access_token, str) or not access_token:
            return None
        if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
            return None
        if refresh_token is not None and not isinstance(refresh_token, str):
            return None

        credential = Credential(
            access_token=access_token,
            expires_at=float(expires_at),
            refresh_token=refresh_token,
        )
        if credential.is_expired():
            return None
        return credential

    def require(self, request: Request) -> Credential:
        credential = self.get(request)
        if credential is None:
            raise Unauthenticated()
        return credential

    def set(self, response: Response, credential: Credential) -> None:
        token = sealed_cookie.seal(
            {
                "at": credential.access_token,
                "rt": credential.refresh_token,
                "exp": credential.expires_at,
                "iat": time.time(),
            },
            self._key,
        )
        response.set_cookie(
            SESSION_COOKIE,
            token,
            max_age=credential.remaining_seconds(),
            path="/",
            secure=self._settings.secure_cookies,
            httponly=True,
            samesite="lax",
        )

    def clear(self, response: Response) -> None:
        response.delete_cookie(
            SESSION_COOKIE,
            path="/",
            secure=self._settings.secure_cookies,
            httponly=True,
            samesite="lax",
        )

    # -- authorization round-trip ------------------------------------------------

    def set_authorization(self, response: Response, authorization: AuthorizationState) -> None:
        for name, value in (
            (CODE_VERIFIER_COOKIE, authorization.code_verifier),
            (STATE_COOKIE, authorization.state),
        ):
            response.set_cookie(
                name,
                value,
                max_age=PKCE_COOKIE_MAX_AGE,
                path="/",
                secure=self._settings.secure_cookies,
                httponly=True,
                samesite="lax",
            )

    def read_authorization(self, request: Request) -> tuple[str | None, str | None]:
        return request.cookies.get(CODE_VERIFIER_COOKIE), request.cookies.get(STATE_COOKIE)

    def clear_authorization(self, response: Response) -> None:
        for name in (CODE_VERIFIER_COOKIE, STATE_COOKIE):
            response.delete_cookie(
                name,
                path="/",
                secure=self._settings.secure_cookies,
                httponly=True,
                samesite="lax",
            )
