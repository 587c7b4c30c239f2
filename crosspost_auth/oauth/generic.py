"""
Standards-based OAuth 2.0 + PKCE platform strategy.

Works for any provider that follows RFC 6749 / RFC 7636 / RFC 7009. The
X (Twitter) v2 endpoints are provided as a preset.

Error mapping:
- invalid_grant, or 401 without a client error code -> UnauthorizedError
- any other 4xx (invalid_client, invalid_request)   -> PlatformRequestError
- 429                                               -> RateLimitedError
- 5xx, timeouts, connection errors                  -> TransientNetworkError

Only UnauthorizedError leads the orchestrator to delete the stored
credential.

SECURITY: response bodies are never logged or copied into error messages;
only the provider's `error` code is surfaced.

Usage:
    strategy = OAuth2PkceStrategy(
        twitter_endpoints(),
        client_id=os.environ["TWITTER_CLIENT_ID"],
        client_secret=os.environ.get("TWITTER_CLIENT_SECRET"),
    )
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from crosspost_auth.credentials.models import CredentialBundle, TokenType
from crosspost_auth.oauth.models import AuthorizationRequest, ExchangeResult
from crosspost_auth.oauth.pkce import code_challenge, generate_code_verifier, generate_state
from crosspost_auth.oauth.strategy import PlatformStrategy
from crosspost_auth.platform.errors import (
    PlatformRequestError,
    RateLimitedError,
    TransientNetworkError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# RFC 6749 §5.2 codes that blame the client or request, not the grant
CLIENT_ERROR_CODES = frozenset({
    "invalid_client",
    "invalid_request",
    "invalid_scope",
    "unauthorized_client",
    "unsupported_grant_type",
})


@dataclass(frozen=True)
class OAuth2Endpoints:
    """Provider endpoint set."""
    authorize_url: str
    token_url: str
    userinfo_url: str
    revoke_url: Optional[str] = None
    # Path to the user id inside the userinfo JSON
    user_id_path: Tuple[str, ...] = ("id",)


def twitter_endpoints() -> OAuth2Endpoints:
    return OAuth2Endpoints(
        authorize_url="https://twitter.com/i/oauth2/authorize",
        token_url="https://api.twitter.com/2/oauth2/token",
        userinfo_url="https://api.twitter.com/2/users/me",
        revoke_url="https://api.twitter.com/2/oauth2/revoke",
        user_id_path=("data", "id"),
    )


class OAuth2PkceStrategy(PlatformStrategy):
    """OAuth 2.0 authorization-code flow with S256 PKCE over httpx."""

    def __init__(
        self,
        endpoints: OAuth2Endpoints,
        client_id: str,
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Args:
            endpoints: Provider endpoints
            client_id: OAuth client id
            client_secret: Set for confidential clients (sent as HTTP Basic auth)
            http_client: Shared client; one is created and owned if omitted
            timeout: Per-request timeout for an owned client
        """
        if not client_id:
            raise ValueError("client_id is required")

        self.endpoints = endpoints
        self._client_id = client_id
        self._auth = httpx.BasicAuth(client_id, client_secret) if client_secret else None
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # PlatformStrategy
    # ------------------------------------------------------------------

    async def build_auth_url(self, redirect_uri: str, scopes: List[str]) -> AuthorizationRequest:
        state = generate_state()
        verifier = generate_code_verifier()
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
            "code_challenge": code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        url = str(httpx.URL(self.endpoints.authorize_url, params=params))
        return AuthorizationRequest(url=url, state=state, code_verifier=verifier)

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str],
    ) -> ExchangeResult:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self._client_id,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        payload = await self._token_request("code exchange", data)
        bundle = self._bundle_from_response(payload)
        user_id = await self._fetch_user_id(bundle.access_token)

        logger.info("Authorization code exchanged", extra={"token_url": self.endpoints.token_url})
        return ExchangeResult(user_id=user_id, bundle=bundle)

    async def refresh_credential(self, bundle: CredentialBundle) -> CredentialBundle:
        if not bundle.refresh_token:
            raise UnauthorizedError("No refresh token available")

        payload = await self._token_request(
            "token refresh",
            {
                "grant_type": "refresh_token",
                "refresh_token": bundle.refresh_token,
                "client_id": self._client_id,
            },
        )
        return self._bundle_from_response(payload, previous=bundle)

    async def revoke_credential(self, bundle: CredentialBundle) -> None:
        if not self.endpoints.revoke_url:
            logger.debug("Provider has no revocation endpoint")
            return

        await self._revoke(bundle.access_token, "access_token")
        if bundle.refresh_token:
            await self._revoke(bundle.refresh_token, "refresh_token")

    async def _revoke(self, token: str, hint: str) -> None:
        response = await self._send(
            "token revocation",
            "POST",
            self.endpoints.revoke_url,
            data={"token": token, "token_type_hint": hint, "client_id": self._client_id},
            auth=self._auth,
        )
        if response.status_code == 401:
            # Already invalid at the platform
            logger.info("Token already revoked", extra={"hint": hint})
            return
        self._raise_for_status(response, "token revocation")

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Platform request timed out", extra={"operation": operation})
            raise TransientNetworkError(f"Platform {operation} timed out") from e
        except httpx.TransportError as e:
            logger.warning(
                "Platform request failed",
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            raise TransientNetworkError(f"Platform {operation} failed to connect") from e

    async def _token_request(self, operation: str, data: Dict[str, str]) -> Dict[str, Any]:
        response = await self._send(
            operation, "POST", self.endpoints.token_url, data=data, auth=self._auth
        )
        self._raise_for_status(response, operation)
        return self._json(response, operation)

    async def _fetch_user_id(self, access_token: str) -> str:
        response = await self._send(
            "user lookup",
            "GET",
            self.endpoints.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        self._raise_for_status(response, "user lookup")
        node: Any = self._json(response, "user lookup")
        for part in self.endpoints.user_id_path:
            if not isinstance(node, dict) or part not in node:
                raise TransientNetworkError("Platform user lookup returned no user id")
            node = node[part]
        return str(node)

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise TransientNetworkError(f"Platform {operation} returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise TransientNetworkError(f"Platform {operation} returned an unexpected body")
        return payload

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[str]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict):
            code = payload.get("error")
            return code if isinstance(code, str) else None
        return None

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return

        if status == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitedError(
                f"Platform rate limited {operation}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if status >= 500:
            logger.warning(
                "Platform server error",
                extra={"operation": operation, "status_code": status},
            )
            raise TransientNetworkError(
                f"Platform {operation} failed: {status}",
                details={"status_code": status},
            )

        error_code = self._error_code(response)
        details = {"status_code": status, "error": error_code}
        if error_code == "invalid_grant" or (status == 401 and error_code not in CLIENT_ERROR_CODES):
            logger.warning(
                "Platform rejected credential",
                extra={"operation": operation, "status_code": status, "error_code": error_code},
            )
            raise UnauthorizedError(f"Platform rejected {operation}", details=details)

        logger.error(
            "Platform rejected request",
            extra={"operation": operation, "status_code": status, "error_code": error_code},
        )
        raise PlatformRequestError(f"Platform rejected {operation} request", details=details)

    @staticmethod
    def _bundle_from_response(
        payload: Dict[str, Any],
        previous: Optional[CredentialBundle] = None,
    ) -> CredentialBundle:
        access_token = payload.get("access_token")
        if not access_token:
            raise TransientNetworkError("Token response did not include an access token")

        expires_at = None
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            try:
                lifetime = int(expires_in)
            except (TypeError, ValueError) as e:
                raise TransientNetworkError("Token response had an invalid expires_in") from e
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=lifetime)

        # Providers may omit refresh_token and scope on refresh
        refresh_token = payload.get("refresh_token")
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token
        scope = payload.get("scope")
        if scope is None and previous is not None:
            scope = previous.scope

        return CredentialBundle(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scope=scope or [],
            token_type=TokenType.OAUTH2,
        )
