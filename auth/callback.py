from __future__ import annotations

import hmac
from collections.abc import Mapping

import httpx

from auth import oauth_client
from auth.errors import AuthorizationDenied, MissingCode, MissingVerifier, StateMismatch
from auth.models import CallbackResult
from auth.storage import PendingAttemptStore
from sendsecure.constants import LOGGER
from sendsecure.env import AuthConfig


def states_match(received: str | None, expected: str) -> bool:
    if received is None:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


class CallbackExchanger:
    """Completes the authorization-code leg in the window that received the redirect."""

    def __init__(
        self,
        config: AuthConfig,
        *,
        pending: PendingAttemptStore,
        client: httpx.AsyncClient | None = None,
        exchange_code_fn=oauth_client.exchange_code,
        fetch_user_info_fn=oauth_client.fetch_user_info,
    ) -> None:
        self._config = config
        self._pending = pending
        self._client = client
        self._exchange_code_fn = exchange_code_fn
        self._fetch_user_info_fn = fetch_user_info_fn

    async def handle_callback(self, query_params: Mapping[str, str]) -> CallbackResult:
        code = query_params.get("code")
        state = query_params.get("state")
        error = query_params.get("error")

        # Consumed up front: every outcome below, success or failure, leaves nothing to replay.
        attempt = await self._pending.take()

        if error:
            raise AuthorizationDenied(query_params.get("error_description") or error)
        if not code:
            raise MissingCode()
        if attempt is None:
            raise MissingVerifier()
        if not states_match(state, attempt.state):
            LOGGER.warning("OAuth callback state mismatch; discarding attempt")
            raise StateMismatch()

        tokens = await self._exchange_code_fn(
            self._config,
            code,
            attempt.code_verifier,
            client=self._client,
        )
        user = await self._fetch_user_info_fn(
            self._config,
            tokens.access_token,
            client=self._client,
        )

        LOGGER.info("OAuth callback completed for sub=%s", user.sub)
        return CallbackResult(
            access_token=tokens.access_token,
            user=user,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
        )
