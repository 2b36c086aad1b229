from __future__ import annotations

import urllib.parse

from sendsecure.env import AuthConfig


def build_authorize_url(config: AuthConfig, *, state: str, code_challenge: str) -> str:
    query = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "scope": config.scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{config.authorize_url}?{urllib.parse.urlencode(query)}"


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))


def strip_query_params(url: str, names: tuple[str, ...], *, path: str | None = None) -> str:
    parsed = urllib.parse.urlparse(url)
    kept = [
        (key, value)
        for key, value in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
        if key not in names
    ]
    parsed = parsed._replace(query=urllib.parse.urlencode(kept))
    if path is not None:
        parsed = parsed._replace(path=path)
    return urllib.parse.urlunparse(parsed)
