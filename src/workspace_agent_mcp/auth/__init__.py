"""OAuth authentication for the Workspace agent MCP server.

Quick Start:
    ```python
    from workspace_agent_mcp.auth import OAuthManager

    manager = OAuthManager()
    token = await manager.authenticate(
        client_id="your-client-id",
        client_secret="your-client-secret"  # pragma: allowlist secret
    )
    status, stored = manager.get_status()
    ```
"""

from workspace_agent_mcp.auth.models import (
    OAuthToken,
    StoredToken,
    TokenMetadata,
    TokenStatus,
)
from workspace_agent_mcp.auth.oauth_manager import (
    GOOGLE_WORKSPACE_SCOPES,
    SERVICE_NAME,
    OAuthManager,
)
from workspace_agent_mcp.auth.token_storage import TokenStorage

__all__ = [
    "OAuthManager",
    "TokenStorage",
    "OAuthToken",
    "StoredToken",
    "TokenMetadata",
    "TokenStatus",
    "GOOGLE_WORKSPACE_SCOPES",
    "SERVICE_NAME",
]
