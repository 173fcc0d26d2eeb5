from __future__ import annotations

from typing import Any


class SupacheckError(RuntimeError):
    code = "supacheck_error"
    status_code = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        payload = {"error": self.code, "error_description": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class AuthorizationMismatch(SupacheckError):
    """State or verifier did not match what was issued; possible CSRF."""

    code = "authorization_mismatch"
    status_code = 400

    def __init__(self, message: str = "Authorization state mismatch. Please sign in again.") -> None:
        super().__init__(message)


class TokenExchangeFailed(SupacheckError):
    code = "token_exchange_failed"
    status_code = 500

    def __init__(self, http_status: int, body: str) -> None:
        super().__init__(
            f"Token request failed with status {http_status}: {body}",
            details={"http_status": http_status, "body": body},
        )
        self.http_status = http_status
        self.body = body


class Unauthenticated(SupacheckError):
    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "No access token found. Please connect your Supabase account.") -> None:
        super().__init__(message)


class InvalidArgument(SupacheckError):
    code = "invalid_argument"
    status_code = 400


class RemoteQueryFailed(SupacheckError):
    code = "remote_query_failed"
    status_code = 502

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message, details=payload)
        self.remote_status = status_code
        self.payload = payload


class CorruptLogStore(SupacheckError):
    code = "corrupt_log_store"
    status_code = 500


class ConfigurationError(SupacheckError):
    code = "configuration_error"
    status_code = 500
