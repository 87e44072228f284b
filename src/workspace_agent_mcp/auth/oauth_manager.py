"""OAuth2 authentication for the Gmail, Calendar and Sheets APIs.

Runs the google-auth-oauthlib web flow with a one-shot local callback
server, stores the resulting token through TokenStorage and refreshes it
with google-auth when it expires.

Environment Variables:
    GOOGLE_OAUTH_CLIENT_ID: Google OAuth client ID (required for setup)
    GOOGLE_OAUTH_CLIENT_SECRET: Google OAuth client secret (required for setup)
    GOOGLE_OAUTH_REDIRECT_URI: Redirect URI (default: http://127.0.0.1:8789/callback)
"""

import asyncio
import logging
import os
import secrets
import webbrowser
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from workspace_agent_mcp.auth.models import OAuthToken, StoredToken, TokenMetadata, TokenStatus
from workspace_agent_mcp.auth.token_storage import TokenStorage

logger = logging.getLogger(__name__)

SERVICE_NAME = "workspace-agent-mcp"

GOOGLE_WORKSPACE_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.compose",
    "https://www.googleapis.com/auth/calendar.readonly",
]

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"  # nosec B105 - public endpoint
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"

DEFAULT_OAUTH_HOST = "127.0.0.1"
DEFAULT_OAUTH_PORT = 8789
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8789/callback"
CALLBACK_TIMEOUT_SECONDS = 300


@dataclass
class _CallbackResult:
    code: str | None = None
    error: str | None = None


def _make_callback_handler(
    callback_path: str, result: _CallbackResult
) -> type[BaseHTTPRequestHandler]:
    """Build a request handler class that records the OAuth redirect."""

    class OAuthCallbackHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args) -> None:
            pass

        def _reply(self, status: int, title: str, detail: str) -> None:
            self.send_response(status)
            self.send_header("Content-type", "text/html")
            self.end_headers()
            self.wfile.write(
                f"<html><body><h1>{title}</h1><p>{detail}</p></body></html>".encode()
            )

        def do_GET(self) -> None:
            request = urlparse(self.path)
            if request.path != callback_path:
                self.send_response(404)
                self.end_headers()
                self.wfile.write(b"Not Found")
                return

            query = parse_qs(request.query)
            if "error" in query:
                result.error = query["error"][0]
                self._reply(400, "Authentication Failed", "Close this window and try again.")
            elif "code" in query:
                result.code = query["code"][0]
                self._reply(
                    200,
                    "Authentication Successful!",
                    "You can close this window and return to the terminal.",
                )
            else:
                self._reply(400, "Authentication Failed", "No authorization code received.")

    return OAuthCallbackHandler


class OAuthManager:
    """Owns the single Workspace agent token: consent, storage and refresh.

    Attributes:
        storage: TokenStorage holding the agent token.

    Example:
        ```python
        manager = OAuthManager()
        token = await manager.authenticate(client_id="...", client_secret="...")

        status, stored = manager.get_status()
        if status == TokenStatus.EXPIRED:
            token = await manager.refresh_if_needed()
        ```
    """

    def __init__(self, storage: TokenStorage | None = None) -> None:
        """Bind the manager to a token store.

        Args:
            storage: Where tokens live. Defaults to the project-level TokenStorage.
        """
        self.storage = storage or TokenStorage()
        self._service_name = SERVICE_NAME

    def has_valid_tokens(self) -> bool:
        return self.storage.get_status(self._service_name) == TokenStatus.VALID

    @property
    def token_path(self) -> Path:
        return self.storage.token_path

    def _credentials_to_token(self, credentials: Credentials, scopes: list[str]) -> OAuthToken:
        """Snapshot google-auth Credentials as a storable OAuthToken.

        google-auth reports naive UTC expiry times; they are made timezone-aware.
        A missing expiry defaults to one hour from now.
        """
        if credentials.expiry:
            expires_at = credentials.expiry
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        else:
            expires_at = datetime.now(timezone.utc) + timedelta(hours=1)

        return OAuthToken(  # nosec B106 - "Bearer" is OAuth token type, not a password
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expires_at=expires_at,
            scopes=scopes,
            token_type="Bearer",
        )

    def _token_to_credentials(self, token: OAuthToken) -> Credentials:
        return Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            scopes=token.scopes,
        )

    async def authenticate(
        self,
        scopes: list[str] | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> OAuthToken:
        """Perform the complete OAuth2 authentication flow and store the token.

        Args:
            scopes: OAuth scopes to request. Uses GOOGLE_WORKSPACE_SCOPES if not specified.
            client_id: Google OAuth client ID.
            client_secret: Google OAuth client secret.

        Returns:
            The stored OAuthToken.

        Raises:
            ValueError: If the client ID or secret is missing.
            RuntimeError: If the user denies consent or no code is received.
        """
        if scopes is None:
            scopes = GOOGLE_WORKSPACE_SCOPES

        if not client_id or not client_secret:
            raise ValueError(
                "An OAuth client ID and secret are needed. "
                "Pass them explicitly or export GOOGLE_OAUTH_CLIENT_ID and "
                "GOOGLE_OAUTH_CLIENT_SECRET."
            )

        redirect_uri = os.environ.get("GOOGLE_OAUTH_REDIRECT_URI", DEFAULT_REDIRECT_URI)
        client_config = {
            "web": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
                "redirect_uris": [redirect_uri],
            }
        }

        # The flow blocks on the local callback server
        loop = asyncio.get_running_loop()
        credentials = await loop.run_in_executor(
            None, self._run_oauth_flow, client_config, scopes, redirect_uri
        )

        token = self._credentials_to_token(credentials, scopes)
        metadata = TokenMetadata(service_name=self._service_name, provider="google")
        self.storage.store(self._service_name, token, metadata)
        logger.info("Stored OAuth token at %s", self.token_path)

        return token

    def _run_oauth_flow(
        self, client_config: dict, scopes: list[str], redirect_uri: str
    ) -> Credentials:
        """Open the consent page and wait for the redirect (blocking).

        Args:
            client_config: "web" client configuration for google-auth-oauthlib.
            scopes: Scopes to request consent for.
            redirect_uri: Full redirect URI including path.

        Returns:
            Credentials obtained by exchanging the authorization code.
        """
        flow = Flow.from_client_config(client_config, scopes=scopes, redirect_uri=redirect_uri)
        auth_url, _ = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            state=secrets.token_urlsafe(32),
        )

        parsed = urlparse(redirect_uri)
        host = parsed.hostname or DEFAULT_OAUTH_HOST
        port = parsed.port or DEFAULT_OAUTH_PORT
        result = _CallbackResult()

        server = HTTPServer((host, port), _make_callback_handler(parsed.path or "/callback", result))
        server.timeout = CALLBACK_TIMEOUT_SECONDS

        print("Opening browser for Google authorization...")
        print(f"If browser doesn't open, visit: {auth_url}")
        webbrowser.open(auth_url)

        try:
            server.handle_request()
        finally:
            server.server_close()

        if result.error:
            raise RuntimeError(f"OAuth authentication failed: {result.error}")
        if not result.code:
            raise RuntimeError("No authorization code received from Google")

        flow.fetch_token(code=result.code)
        return flow.credentials

    async def refresh_if_needed(self) -> OAuthToken | None:
        """Refresh the stored token if expired or about to expire.

        Returns:
            The refreshed token, or the stored one while it is still fresh;
            None if no token exists or it has no refresh token.
        """
        stored = self.storage.retrieve(self._service_name)
        if stored is None:
            return None

        if not stored.token.is_expired():
            return stored.token

        if stored.token.refresh_token is None:
            return None

        credentials = self._token_to_credentials(stored.token)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, credentials.refresh, Request())

        new_token = self._credentials_to_token(credentials, stored.token.scopes)
        stored.metadata.last_refreshed = datetime.now(timezone.utc)
        self.storage.store(self._service_name, new_token, stored.metadata)
        logger.info("Refreshed OAuth token for %s", self._service_name)

        return new_token

    def get_status(self) -> tuple[TokenStatus, StoredToken | None]:
        """Get the status of the stored token.

        Returns:
            (status, stored record). The record is None only when MISSING.
        """
        status = self.storage.get_status(self._service_name)
        stored = (
            self.storage.retrieve(self._service_name) if status != TokenStatus.MISSING else None
        )
        return (status, stored)
