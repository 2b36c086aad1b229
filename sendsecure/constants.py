from __future__ import annotations

import logging

LOGGER = logging.getLogger("sendsecure.auth")
APP_VERSION = "0.1.0"

DEFAULT_AUTH_SERVER = "https://auth.huny.dev"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8000/callback"
DEFAULT_SCOPES = ("openid", "profile", "email")

# Refresh the access token this long before it expires.
REFRESH_BUFFER_MS = 5 * 60 * 1000

SESSION_KEY = "auth.session"
PENDING_ATTEMPT_KEY = "auth.pendingAttempt"

POPUP_NAME = "SendSecureSSO"
POPUP_WIDTH = 500
POPUP_HEIGHT = 600

IDEMPOTENT_METHODS = {"GET", "HEAD", "OPTIONS"}
