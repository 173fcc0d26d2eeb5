from __future__ import annotations

import logging

import httpx
from starlette.responses import JSONResponse, Response

from .errors import SupacheckError

LOGGER = logging.getLogger("supacheck.management")


def friendly_error_message(status_code: int) -> str:
    if status_code == 401:
        return "Authentication failed. Your Supabase access token may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action on this project."
    if status_code == 404:
        return "The requested project or resource was not found on Supabase."
    if status_code == 429:
        return "Supabase rate limit exceeded. Please wait before retrying."
    if status_code >= 500:
        return "Supabase API is experiencing issues. Please try again later."
    return f"Supabase API request failed with status {status_code}."


def error_response(error: SupacheckError, *, status_code: int | None = None) -> Response:
    return JSONResponse(error.to_payload(), status_code=status_code or error.status_code)


def json_error(code: str, description: str, status_code: int) -> Response:
    return JSONResponse(
        {"error": code, "error_description": description},
        status_code=status_code,
    )


def build_event_hooks(*, debug_enabled: bool) -> dict[str, list]:
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        LOGGER.info("Supabase API request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        LOGGER.info(
            "Supabase API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            LOGGER.warning("Supabase API error body: %s", text)

    return {"request": [log_request], "response": [log_response]}
