from __future__ import annotations

import logging

LOGGER = logging.getLogger("supacheck")
APP_VERSION = "0.1.0"

DEFAULT_AUTHORIZATION_ENDPOINT = "https://api.supabase.com/v1/oauth/authorize"
DEFAULT_TOKEN_ENDPOINT = "https://api.supabase.com/v1/oauth/token"
DEFAULT_API_BASE_URL = "https://api.supabase.com"

SESSION_COOKIE = "supabaseAccessToken"
CODE_VERIFIER_COOKIE = "codeVerifier"
STATE_COOKIE = "state"
PKCE_COOKIE_MAX_AGE = 600

CHECK_TYPES = ("RLS", "MFA", "PITR")
