from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

AUTH_SUCCESS = "AUTH_SUCCESS"
AUTH_ERROR = "AUTH_ERROR"


class View(str, Enum):
    LOGIN = "login"
    CALLBACK = "callback"
    DASHBOARD = "dashboard"


def _optional_seconds(value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RuntimeError("expires_in must be a number of seconds.")
    return int(value)


def expires_at_from(expires_in: int | None, now_ms: int) -> int | None:
    """Absolute expiry in epoch milliseconds, fixed at the moment tokens arrive."""
    if not expires_in:
        return None
    return now_ms + expires_in * 1000


@dataclass
class PendingAuthAttempt:
    code_verifier: str
    state: str

    def to_payload(self) -> dict:
        return {"codeVerifier": self.code_verifier, "state": self.state}

    @classmethod
    def from_payload(cls, payload: dict) -> "PendingAuthAttempt":
        code_verifier = payload.get("codeVerifier")
        state = payload.get("state")
        if not isinstance(code_verifier, str) or not code_verifier:
            raise RuntimeError("Pending attempt missing codeVerifier.")
        if not isinstance(state, str) or not state:
            raise RuntimeError("Pending attempt missing state.")
        return cls(code_verifier=code_verifier, state=state)


@dataclass
class User:
    sub: str
    name: str = ""
    email: str = ""
    email_verified: bool | None = None
    role: str | None = None
    picture: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "User":
        # Userinfo responses use OIDC claim names, persisted sessions use camelCase.
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise RuntimeError("User profile missing sub.")
        email_verified = payload.get("emailVerified", payload.get("email_verified"))
        return cls(
            sub=sub,
            name=payload.get("name") or "",
            email=payload.get("email") or "",
            email_verified=email_verified if isinstance(email_verified, bool) else None,
            role=payload.get("role"),
            picture=payload.get("picture"),
        )

    def to_payload(self) -> dict:
        payload = {"sub": self.sub, "name": self.name, "email": self.email}
        if self.email_verified is not None:
            payload["emailVerified"] = self.email_verified
        if self.role is not None:
            payload["role"] = self.role
        if self.picture is not None:
            payload["picture"] = self.picture
        return payload


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "bearer"

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        token_type = payload.get("token_type", "bearer")

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise RuntimeError("Token response refresh_token must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=_optional_seconds(payload.get("expires_in")),
            token_type=token_type if isinstance(token_type, str) else "bearer",
        )


@dataclass
class CallbackResult:
    access_token: str
    user: User
    refresh_token: str | None = None
    expires_in: int | None = None


@dataclass
class Session:
    access_token: str
    user: User
    refresh_token: str | None = None
    expires_at: int | None = None

    @classmethod
    def from_callback(cls, result: CallbackResult, *, now_ms: int) -> "Session":
        return cls(
            access_token=result.access_token,
            user=result.user,
            refresh_token=result.refresh_token,
            expires_at=expires_at_from(result.expires_in, now_ms),
        )

    def with_tokens(self, tokens: TokenResponse, *, now_ms: int) -> "Session":
        """Apply a refresh response. Identity is kept as-is."""
        return replace(
            self,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or self.refresh_token,
            expires_at=expires_at_from(tokens.expires_in, now_ms) or self.expires_at,
        )

    def to_payload(self) -> dict:
        payload = {"accessToken": self.access_token, "user": self.user.to_payload()}
        if self.refresh_token is not None:
            payload["refreshToken"] = self.refresh_token
        if self.expires_at is not None:
            payload["expiresAt"] = self.expires_at
        return payload

    @classmethod
    def from_payload(cls, payload: dict) -> "Session":
        access_token = payload.get("accessToken")
        user = payload.get("user")
        refresh_token = payload.get("refreshToken")
        expires_at = payload.get("expiresAt")

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Session missing accessToken.")
        if not isinstance(user, dict):
            raise RuntimeError("Session missing user.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise RuntimeError("Session refreshToken must be a string.")
        if expires_at is not None and (
            isinstance(expires_at, bool) or not isinstance(expires_at, int)
        ):
            raise RuntimeError("Session expiresAt must be epoch milliseconds.")

        return cls(
            access_token=access_token,
            user=User.from_payload(user),
            refresh_token=refresh_token,
            expires_at=expires_at,
        )


@dataclass
class AuthSuccessMessage:
    token: str
    user: User
    refresh_token: str | None = None
    expires_in: int | None = None

    @classmethod
    def from_result(cls, result: CallbackResult) -> "AuthSuccessMessage":
        return cls(
            token=result.access_token,
            user=result.user,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
        )

    def to_payload(self) -> dict:
        payload = {"type": AUTH_SUCCESS, "token": self.token, "user": self.user.to_payload()}
        if self.refresh_token is not None:
            payload["refreshToken"] = self.refresh_token
        if self.expires_in is not None:
            payload["expiresIn"] = self.expires_in
        return payload

    def to_session(self, *, now_ms: int) -> Session:
        return Session(
            access_token=self.token,
            user=self.user,
            refresh_token=self.refresh_token,
            expires_at=expires_at_from(self.expires_in, now_ms),
        )


@dataclass
class AuthErrorMessage:
    error: str

    def to_payload(self) -> dict:
        return {"type": AUTH_ERROR, "error": self.error}


def parse_auth_message(data) -> AuthSuccessMessage | AuthErrorMessage | None:
    """Decode a cross-window payload; anything unrecognised yields None."""
    if not isinstance(data, dict):
        return None

    message_type = data.get("type")
    if message_type == AUTH_ERROR:
        error = data.get("error")
        return AuthErrorMessage(error=error if isinstance(error, str) else "Unknown error")

    if message_type != AUTH_SUCCESS:
        return None

    token = data.get("token")
    user = data.get("user")
    refresh_token = data.get("refreshToken")
    if not isinstance(token, str) or not token or not isinstance(user, dict):
        return None
    try:
        return AuthSuccessMessage(
            token=token,
            user=User.from_payload(user),
            refresh_token=refresh_token if isinstance(refresh_token, str) else None,
            expires_in=_optional_seconds(data.get("expiresIn")),
        )
    except RuntimeError:
        return None
