"""Shared pytest fixtures for workspace-agent-mcp tests.

This module provides reusable fixtures for OAuth tokens, token storage, an
in-memory Sheets metadata client for the pivot compiler, and mocked httpx
clients for server tests.
"""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from workspace_agent_mcp.auth.models import OAuthToken, StoredToken, TokenMetadata, TokenStatus
from workspace_agent_mcp.auth.oauth_manager import GOOGLE_WORKSPACE_SCOPES, SERVICE_NAME
from workspace_agent_mcp.sheets.pivot import SheetRef

# =============================================================================
# Token Fixtures
# =============================================================================


@pytest.fixture
def valid_token() -> OAuthToken:
    """Create a valid, non-expired OAuth token."""
    return OAuthToken(
        access_token="test_access_token_abc123",
        refresh_token="test_refresh_token_xyz789",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=list(GOOGLE_WORKSPACE_SCOPES),
        token_type="Bearer",
    )


@pytest.fixture
def expired_token() -> OAuthToken:
    """Create an expired OAuth token."""
    return OAuthToken(
        access_token="expired_access_token",
        refresh_token="test_refresh_token",
        expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        scopes=["https://www.googleapis.com/auth/spreadsheets"],
        token_type="Bearer",
    )


@pytest.fixture
def token_metadata() -> TokenMetadata:
    return TokenMetadata(
        service_name=SERVICE_NAME,
        provider="google",
        created_at=datetime.now(timezone.utc) - timedelta(days=1),
    )


@pytest.fixture
def stored_token(valid_token: OAuthToken, token_metadata: TokenMetadata) -> StoredToken:
    return StoredToken(version=1, metadata=token_metadata, token=valid_token)


# =============================================================================
# Token Storage Fixtures
# =============================================================================


@pytest.fixture
def temp_token_path(tmp_path: Path) -> Path:
    """Path for a tokens.json inside a fresh credentials directory."""
    token_dir = tmp_path / ".workspace-agent-mcp"
    token_dir.mkdir(parents=True, mode=0o700)
    return token_dir / "tokens.json"


@pytest.fixture
def token_storage(temp_token_path: Path):
    from workspace_agent_mcp.auth.token_storage import TokenStorage

    return TokenStorage(token_path=temp_token_path)


@pytest.fixture
def oauth_manager(token_storage):
    from workspace_agent_mcp.auth.oauth_manager import OAuthManager

    return OAuthManager(storage=token_storage)


@pytest.fixture
def mock_google_credentials() -> MagicMock:
    """Create a mock Google OAuth2 Credentials object."""
    mock_creds = MagicMock()
    mock_creds.token = "mock_access_token"
    mock_creds.refresh_token = "mock_refresh_token"
    mock_creds.expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    mock_creds.expired = False
    mock_creds.valid = True
    mock_creds.scopes = ["https://www.googleapis.com/auth/spreadsheets"]
    return mock_creds


# =============================================================================
# Sheets Metadata Fixtures
# =============================================================================


class FakeSheetsMetadataClient:
    """In-memory SheetsMetadataClient that records every call."""

    def __init__(self, sheets: list[SheetRef] | None = None, next_sheet_id: int = 900) -> None:
        self.sheets = list(sheets or [])
        self.next_sheet_id = next_sheet_id
        self.lookups: list[tuple[str, str]] = []
        self.created: list[tuple[str, str]] = []

    async def lookup_sheet_id(self, spreadsheet_id: str, title: str) -> int | None:
        self.lookups.append((spreadsheet_id, title))
        for sheet in self.sheets:
            if sheet.title == title:
                return sheet.sheet_id
        return None

    async def list_sheets(self, spreadsheet_id: str) -> list[SheetRef]:
        return list(self.sheets)

    async def create_sheet(self, spreadsheet_id: str, title: str) -> SheetRef:
        self.created.append((spreadsheet_id, title))
        sheet = SheetRef(sheet_id=self.next_sheet_id, title=title)
        self.sheets.append(sheet)
        return sheet


@pytest.fixture
def make_metadata_client() -> type[FakeSheetsMetadataClient]:
    return FakeSheetsMetadataClient


@pytest.fixture
def metadata_client() -> FakeSheetsMetadataClient:
    """Spreadsheet with Sheet1 (id 0) and Sales (id 7)."""
    return FakeSheetsMetadataClient(
        sheets=[SheetRef(sheet_id=0, title="Sheet1"), SheetRef(sheet_id=7, title="Sales")]
    )


# =============================================================================
# Server Fixtures
# =============================================================================


@pytest.fixture
def mock_token_storage() -> MagicMock:
    """Token storage that always reports a valid token."""
    mock_storage = MagicMock()
    mock_storage.get_status.return_value = TokenStatus.VALID

    stored = MagicMock()
    stored.token.access_token = "mock_access_token_12345"
    mock_storage.retrieve.return_value = stored

    return mock_storage


@pytest.fixture
def server(mock_token_storage: MagicMock):
    from workspace_agent_mcp.server.google_workspace_server import GoogleWorkspaceServer

    return GoogleWorkspaceServer(storage=mock_token_storage)


def create_mock_response(json_data: dict[str, Any], status_code: int = 200) -> MagicMock:
    """Create a mock httpx Response object."""
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.json.return_value = json_data
    mock_response.text = ""
    if status_code >= 400:
        request = httpx.Request("GET", "https://example.invalid")
        real_response = httpx.Response(status_code, json=json_data, request=request)
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"HTTP {status_code}", request=request, response=real_response
        )
    else:
        mock_response.raise_for_status = MagicMock()
    return mock_response


@pytest.fixture
def make_response() -> Callable[..., MagicMock]:
    return create_mock_response


@pytest.fixture
def mock_http() -> Generator[Callable[[Callable[..., Any]], list[dict[str, Any]]], None, None]:
    """Patch httpx.AsyncClient with a request handler.

    Usage: ``calls = mock_http(handler)`` where ``handler(method, url, **kwargs)``
    returns a JSON dict or a mock response. Each request is recorded in ``calls``.
    """
    with patch("httpx.AsyncClient") as mock_client_class:
        calls: list[dict[str, Any]] = []

        def install(handler: Callable[..., Any]) -> list[dict[str, Any]]:
            async def mock_request(method, url, **kwargs):
                calls.append({"method": method, "url": url, **kwargs})
                result = handler(method, url, **kwargs)
                if isinstance(result, dict):
                    return create_mock_response(result)
                return result

            mock_client = AsyncMock()
            mock_client.request = mock_request
            mock_client_class.return_value = mock_client
            return calls

        yield install
