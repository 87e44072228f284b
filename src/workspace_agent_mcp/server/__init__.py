"""MCP server implementation for Google Workspace.

Provides 22 tools across Gmail, Calendar and Sheets:

Gmail Tools (8):
- List and read messages and threads
- List labels and attachments, download attachments
- Create drafts, including threaded replies

Calendar Tools (4):
- List calendars and events
- Event details with attendees and conference info
- Free/busy queries

Sheets Tools (10):
- Read, write, append and clear values
- Create, duplicate and batch-update spreadsheets
- Pivot tables compiled from column letters or offsets

Transport: Stdio
Authentication: OAuth 2.0 with automatic token refresh
"""

from workspace_agent_mcp.server.google_workspace_server import (
    GoogleWorkspaceServer,
    SheetsApiMetadataClient,
    main,
)


def create_server() -> GoogleWorkspaceServer:
    """Create and configure a Google Workspace MCP server.

    Example:
        >>> server = create_server()
        >>> asyncio.run(server.run())
    """
    return GoogleWorkspaceServer()


__all__ = ["create_server", "GoogleWorkspaceServer", "SheetsApiMetadataClient", "main"]
