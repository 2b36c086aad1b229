from __future__ import annotations

import html
import os
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth import oauth_client
from auth.context import AuthContext
from auth.errors import UserInfoFailed
from auth.initiator import LOGIN_MODES
from sendsecure.constants import APP_VERSION, LOGGER
from sendsecure.env import load_config, load_env, setup_logging
from sendsecure.http import build_http_client

_POPUP_DONE_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Authenticating...</title></head>
<body>
  <p>{message}</p>
  <script>window.close();</script>
</body>
</html>"""


def extract_bearer_token(authorization_header: str | None) -> str | None:
    if not authorization_header:
        return None
    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_context() -> AuthContext:
    load_env()
    debug_enabled = setup_logging()
    config = load_config()
    return AuthContext(config, client=build_http_client(config, debug=debug_enabled))


def create_app(context: AuthContext | None = None) -> Starlette:
    context = context or create_context()
    callback_path = urlparse(context.config.redirect_uri).path or "/callback"

    @asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        await context.start()
        try:
            yield
        finally:
            await context.stop()

    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION})

    async def home_route(request: Request) -> Response:
        return JSONResponse(
            {
                "authenticated": context.is_authenticated,
                "view": context.view.value,
                "user": context.user.to_payload() if context.user else None,
                "error": request.query_params.get("error") or context.last_error,
            }
        )

    async def login_route(request: Request) -> Response:
        mode = request.query_params.get("mode", "popup")
        if mode not in LOGIN_MODES:
            return JSONResponse(
                {"error": "invalid_request", "error_description": f"Unsupported mode {mode!r}."},
                status_code=400,
            )

        await context.login(mode)
        if mode == "redirect":
            return RedirectResponse(url=context.window.location, status_code=302)
        return JSONResponse({"status": "pending"}, status_code=202)

    async def callback_route(request: Request) -> Response:
        outcome = await context.complete_callback(str(request.url), request.query_params)
        if outcome.delivered_to_opener:
            message = outcome.error or "Authentication complete. You can close this window."
            return HTMLResponse(_POPUP_DONE_PAGE.format(message=html.escape(message)))
        return RedirectResponse(url=outcome.location or "/", status_code=302)

    async def userinfo_route(request: Request) -> Response:
        token = extract_bearer_token(request.headers.get("authorization"))
        if token is None:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        try:
            user = await oauth_client.fetch_user_info(context.config, token, client=context.client)
        except UserInfoFailed as error:
            if error.status_code is not None:
                return JSONResponse({"error": "Invalid token"}, status_code=401)
            LOGGER.error("Token validation failed: %s", error)
            return JSONResponse({"error": "Failed to validate token"}, status_code=500)

        return JSONResponse({"success": True, "data": user.to_payload()})

    async def revoke_route(request: Request) -> Response:
        token = extract_bearer_token(request.headers.get("authorization"))
        if token is not None:
            try:
                await oauth_client.revoke_token(context.config, token, client=context.client)
            except httpx.HTTPError as error:
                LOGGER.warning("Token revocation failed: %s", error)
        return JSONResponse({"success": True})

    async def logout_route(request: Request) -> Response:
        del request
        await context.logout()
        return JSONResponse({"success": True})

    routes = [
        Route("/", home_route, methods=["GET"]),
        Route("/health", health_route, methods=["GET"]),
        Route("/login", login_route, methods=["GET"]),
        Route(callback_path, callback_route, methods=["GET"]),
        Route("/logout", logout_route, methods=["POST"]),
        Route("/api/auth/userinfo", userinfo_route, methods=["GET"]),
        Route("/api/auth/logout", revoke_route, methods=["POST"]),
    ]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.auth_context = context
    return app


def main() -> None:
    host = os.getenv("SENDSECURE_HOST", "127.0.0.1")
    port = int(os.getenv("SENDSECURE_PORT", "8000"))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
