from __future__ import annotations

import httpx

from auth.errors import AuthError, ExchangeFailed, RefreshFailed, UserInfoFailed
from auth.models import TokenResponse, User
from sendsecure.env import AuthConfig


async def _token_request(
    url: str,
    payload: dict[str, str],
    *,
    error_cls: type[AuthError],
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            url,
            data=payload,
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise error_cls(
            f"{error_cls.default_message}: status {error.response.status_code}: {detail}"
        ) from error
    finally:
        if own_client:
            await http_client.aclose()

    # Only an unusable body counts as a rejected grant; client misuse propagates.
    try:
        body = response.json()
        if not isinstance(body, dict):
            raise RuntimeError("Token response must be a JSON object.")
        return TokenResponse.from_payload(body)
    except (ValueError, RuntimeError) as error:
        raise error_cls(f"{error_cls.default_message}: {error}") from error


async def exchange_code(
    config: AuthConfig,
    code: str,
    code_verifier: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    try:
        return await _token_request(
            config.token_url,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.redirect_uri,
                "client_id": config.client_id,
                "code_verifier": code_verifier,
            },
            error_cls=ExchangeFailed,
            client=client,
        )
    except httpx.HTTPError as error:
        raise ExchangeFailed(f"Token exchange failed: {error}") from error


async def refresh_access_token(
    config: AuthConfig,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    """Raises RefreshFailed when the server rejects the grant.

    Transport errors propagate as httpx.HTTPError so callers can tell a
    revoked refresh token apart from an unreachable server.
    """
    return await _token_request(
        config.token_url,
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
        },
        error_cls=RefreshFailed,
        client=client,
    )


async def fetch_user_info(
    config: AuthConfig,
    access_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> User:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.get(
            config.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise RuntimeError("Userinfo response must be a JSON object.")
        return User.from_payload(payload)
    except httpx.HTTPStatusError as error:
        raise UserInfoFailed(
            f"Failed to fetch user info: status {error.response.status_code}",
            status_code=error.response.status_code,
        ) from error
    except (httpx.HTTPError, ValueError, RuntimeError) as error:
        raise UserInfoFailed(f"Failed to fetch user info: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()


async def revoke_token(
    config: AuthConfig,
    token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> None:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(config.revoke_url, data={"token": token})
        response.raise_for_status()
    finally:
        if own_client:
            await http_client.aclose()
