import pytest

from auth.models import (
    AuthErrorMessage,
    AuthSuccessMessage,
    Session,
    TokenResponse,
    User,
    expires_at_from,
    parse_auth_message,
)
from tests.auth_helpers import make_session


def test_expires_at_from_is_absolute_milliseconds() -> None:
    assert expires_at_from(3600, 1_000) == 3_601_000


def test_expires_at_from_without_lifetime() -> None:
    assert expires_at_from(None, 1_000) is None
    assert expires_at_from(0, 1_000) is None


def test_with_tokens_keeps_user_and_rotates() -> None:
    session = make_session(expires_at=5_000)

    updated = session.with_tokens(
        TokenResponse(access_token="access-2", refresh_token="refresh-2", expires_in=60),
        now_ms=10_000,
    )

    assert updated.user == session.user
    assert updated.access_token == "access-2"
    assert updated.refresh_token == "refresh-2"
    assert updated.expires_at == 70_000


def test_with_tokens_keeps_previous_values_when_omitted() -> None:
    session = make_session(expires_at=5_000)

    updated = session.with_tokens(TokenResponse(access_token="access-2"), now_ms=10_000)

    assert updated.refresh_token == "refresh-1"
    assert updated.expires_at == 5_000


def test_session_payload_rejects_float_expiry() -> None:
    payload = make_session().to_payload()
    payload["expiresAt"] = 12.5

    with pytest.raises(RuntimeError, match="epoch milliseconds"):
        Session.from_payload(payload)


def test_user_accepts_both_claim_spellings() -> None:
    assert User.from_payload({"sub": "a", "email_verified": False}).email_verified is False
    assert User.from_payload({"sub": "a", "emailVerified": True}).email_verified is True


def test_user_payload_omits_unset_fields() -> None:
    assert User(sub="a", name="Ada").to_payload() == {"sub": "a", "name": "Ada", "email": ""}


def test_token_response_rejects_non_numeric_lifetime() -> None:
    with pytest.raises(RuntimeError, match="expires_in"):
        TokenResponse.from_payload({"access_token": "a", "expires_in": "soon"})


def test_parse_success_message() -> None:
    message = parse_auth_message(
        {
            "type": "AUTH_SUCCESS",
            "token": "access-1",
            "user": {"sub": "user-1"},
            "refreshToken": "refresh-1",
            "expiresIn": 3600,
        }
    )

    assert isinstance(message, AuthSuccessMessage)
    assert message.to_session(now_ms=0).expires_at == 3_600_000


def test_parse_error_message() -> None:
    message = parse_auth_message({"type": "AUTH_ERROR", "error": "denied"})

    assert message == AuthErrorMessage(error="denied")


@pytest.mark.parametrize(
    "data",
    [
        None,
        "AUTH_SUCCESS",
        {"type": "OTHER"},
        {"type": "AUTH_SUCCESS", "user": {"sub": "a"}},
        {"type": "AUTH_SUCCESS", "token": "t", "user": {"name": "no sub"}},
    ],
)
def test_parse_rejects_unknown_messages(data) -> None:
    assert parse_auth_message(data) is None
