from __future__ import annotations


class AuthError(RuntimeError):
    code = "auth_error"
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class AuthorizationDenied(AuthError):
    code = "authorization_denied"
    default_message = "Authorization server returned an error."


class MissingCode(AuthError):
    code = "missing_code"
    default_message = "Missing authorization code"


class MissingVerifier(AuthError):
    code = "missing_verifier"
    default_message = "Missing code verifier - please try logging in again"


class StateMismatch(AuthError):
    code = "state_mismatch"
    default_message = "State mismatch - possible CSRF attack"


class ExchangeFailed(AuthError):
    code = "exchange_failed"
    default_message = "Token exchange failed"


class UserInfoFailed(AuthError):
    code = "userinfo_failed"
    default_message = "Failed to fetch user info"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RefreshFailed(AuthError):
    code = "refresh_failed"
    default_message = "Token refresh failed"


class SessionExpired(AuthError):
    code = "session_expired"
    default_message = "Session expired. Please log in again."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        self.status_code = 401
