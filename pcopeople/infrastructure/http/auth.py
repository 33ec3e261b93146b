"""Authorization headers and OAuth token refresh."""

import asyncio
import base64
import logging
from typing import Any, Union
from urllib.parse import urlsplit

import httpx

from pcopeople.core.exceptions import TokenRefreshError
from pcopeople.domain.models.common import TokenResponse
from pcopeople.infrastructure.config.settings import OAuthAuth, PersonalAccessTokenAuth

logger = logging.getLogger(__name__)

AuthConfig = Union[PersonalAccessTokenAuth, OAuthAuth]


def build_authorization_header(auth: AuthConfig) -> str:
    """Returns the single `Authorization` header value for the auth mode."""
    if isinstance(auth, OAuthAuth):
        return f"Bearer {auth.access_token}"
    credentials = f"{auth.app_id}:{auth.secret}".encode("utf-8")
    return f"Basic {base64.b64encode(credentials).decode('ascii')}"


def token_url_for(base_url: str) -> str:
    """Token endpoint on the API host: ``<scheme>://<host>/oauth/token``."""
    parts = urlsplit(base_url)
    return f"{parts.scheme}://{parts.netloc}/oauth/token"


async def _maybe_await(result: Any) -> None:
    if asyncio.iscoroutine(result):
        await result


async def refresh_access_token(client: httpx.AsyncClient, auth: OAuthAuth, base_url: str) -> TokenResponse:
    """Exchanges the refresh token for new tokens and stores them on `auth`.

    Args:
        client: The HTTP client used for the token request.
        auth: OAuth credentials; updated in place on success.
        base_url: API base URL, used to locate the token endpoint.

    Returns:
        The token endpoint response.

    Raises:
        TokenRefreshError: If there is no refresh token or the exchange fails.
    """
    if not auth.refresh_token:
        raise TokenRefreshError("No refresh token configured")

    form = {"grant_type": "refresh_token", "refresh_token": auth.refresh_token}
    if auth.client_id and auth.client_secret:
        form["client_id"] = auth.client_id
        form["client_secret"] = auth.client_secret

    url = token_url_for(base_url)
    logger.info(f"Refreshing OAuth access token via {url}")
    try:
        response = await client.post(
            url,
            data=form,
            headers={"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as e:
        raise TokenRefreshError(f"Token refresh failed: {e}") from e

    if response.status_code >= 400:
        raise TokenRefreshError(
            f"Token refresh failed: {response.status_code} {response.reason_phrase}",
            status=response.status_code,
        )

    try:
        tokens: TokenResponse = response.json()
    except ValueError as e:
        raise TokenRefreshError(f"Token refresh returned invalid JSON: {e}") from e
    if not isinstance(tokens, dict) or not tokens.get("access_token"):
        raise TokenRefreshError("Token refresh response did not contain an access token")

    auth.access_token = tokens["access_token"]
    if tokens.get("refresh_token"):
        auth.refresh_token = tokens["refresh_token"]

    if auth.on_refresh is not None:
        try:
            await _maybe_await(auth.on_refresh(tokens))
        except Exception as e:
            logger.warning(f"Token refresh callback failed: {e}", exc_info=True)
    return tokens


async def notify_refresh_failure(auth: OAuthAuth, error: BaseException) -> None:
    if auth.on_refresh_failure is None:
        return
    try:
        await _maybe_await(auth.on_refresh_failure(error))
    except Exception as e:
        logger.warning(f"Token refresh failure callback failed: {e}", exc_info=True)
