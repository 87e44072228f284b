"""Google Workspace MCP server for agent integration.

This MCP server provides tools for reading Gmail and Calendar and for reading,
writing and pivoting Google Sheets, using OAuth tokens managed by the
workspace-agent-mcp TokenStorage system.

The server automatically handles token refresh when tokens expire,
using the OAuthManager for seamless re-authentication.
"""

import asyncio
import base64
import json
import logging
import mimetypes
import os
import re
import tempfile
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.mime.text import MIMEText
from typing import Any
from urllib.parse import quote

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import ValidationError

from workspace_agent_mcp.auth import SERVICE_NAME, OAuthManager, TokenStatus, TokenStorage
from workspace_agent_mcp.server.formatting import (
    RESPONSE_FORMAT_JSON,
    RESPONSE_FORMAT_MARKDOWN,
    render_result,
)
from workspace_agent_mcp.sheets import (
    PivotCompileError,
    PivotTableCompiler,
    PivotTableSpec,
    SheetRef,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Google API base URLs
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
SHEETS_API_BASE = "https://sheets.googleapis.com/v4"

SETUP_COMMAND = "workspace-agent setup"

# Attachment types returned inline rather than written to disk
INLINE_ATTACHMENT_TYPES = {"text/plain", "text/csv", "application/json"}

RequestFn = Callable[..., Awaitable[dict[str, Any]]]

_RESPONSE_FORMAT_PROPERTY = {
    "type": "string",
    "enum": [RESPONSE_FORMAT_MARKDOWN, RESPONSE_FORMAT_JSON],
    "default": RESPONSE_FORMAT_MARKDOWN,
    "description": "Output format: 'markdown' for human-readable or 'json' for structured data",
}

_MAJOR_DIMENSION_PROPERTY = {
    "type": "string",
    "enum": ["ROWS", "COLUMNS"],
    "default": "ROWS",
    "description": "Whether to return data by rows or columns",
}

_VALUE_INPUT_OPTION_PROPERTY = {
    "type": "string",
    "enum": ["RAW", "USER_ENTERED"],
    "default": "USER_ENTERED",
    "description": "How to interpret input: 'RAW' for literal values, 'USER_ENTERED' to parse formulas",
}

_CELL_VALUES_PROPERTY = {
    "type": "array",
    "items": {
        "type": "array",
        "items": {"type": ["string", "number", "boolean", "null"]},
    },
    "minItems": 1,
    "description": "2D array of values (rows of cells)",
}


# =============================================================================
# Helpers
# =============================================================================


def get_header(headers: list[dict[str, Any]] | None, name: str) -> str | None:
    """Case-insensitive lookup of a Gmail message header."""
    wanted = name.lower()
    for header in headers or []:
        if header.get("name", "").lower() == wanted:
            return header.get("value")
    return None


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's unpadded base64url payloads."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _decode_text(data: str) -> str:
    return decode_base64url(data).decode("utf-8", errors="replace")


def strip_html(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", "", html)).strip()


def extract_message_body(payload: dict[str, Any] | None) -> str:
    """Extract readable text from a Gmail message payload.

    Plain text parts win over HTML, which is returned with tags stripped.
    Nested multipart containers are searched when neither is found at the
    current level.

    Args:
        payload: Gmail message payload.

    Returns:
        Decoded message body text, or an empty string.
    """
    if not payload:
        return ""

    if payload.get("body", {}).get("data"):
        return _decode_text(payload["body"]["data"])

    parts = payload.get("parts", [])
    for part in parts:
        data = part.get("body", {}).get("data")
        if part.get("mimeType") == "text/plain" and data:
            return _decode_text(data)

    for part in parts:
        data = part.get("body", {}).get("data")
        if part.get("mimeType") == "text/html" and data:
            return strip_html(_decode_text(data))

    for part in parts:
        nested = extract_message_body(part)
        if nested:
            return nested

    return ""


def collect_attachments(parts: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Walk message parts recursively and list every attachment."""
    attachments: list[dict[str, Any]] = []
    for part in parts or []:
        body = part.get("body", {})
        if part.get("filename") and body.get("attachmentId"):
            attachments.append(
                {
                    "attachment_id": body["attachmentId"],
                    "filename": part["filename"],
                    "mime_type": part.get("mimeType") or "application/octet-stream",
                    "size": body.get("size", 0),
                }
            )
        if part.get("parts"):
            attachments.extend(collect_attachments(part["parts"]))
    return attachments


def _event_boundary(boundary: dict[str, Any] | None) -> str:
    boundary = boundary or {}
    return boundary.get("dateTime") or boundary.get("date") or ""


def _pivot_input_schema() -> dict[str, Any]:
    """PivotTableSpec's JSON schema plus the shared response_format option."""
    schema = PivotTableSpec.model_json_schema()
    properties = {**schema["properties"], "response_format": _RESPONSE_FORMAT_PROPERTY}
    return {**schema, "properties": properties}


def _values_url(spreadsheet_id: str, cell_range: str, suffix: str = "") -> str:
    encoded_range = quote(cell_range, safe="!:'")
    return f"{SHEETS_API_BASE}/spreadsheets/{spreadsheet_id}/values/{encoded_range}{suffix}"


def describe_error(error: Exception) -> str:
    """Turn an exception raised by a tool handler into a readable message.

    Args:
        error: The exception raised while handling a tool call.

    Returns:
        Message suitable for returning to the agent.
    """
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        try:
            api_message = error.response.json().get("error", {}).get("message", "")
        except ValueError:
            api_message = ""

        if status == 401:
            return f"Error: Authentication failed. Please re-authenticate using: {SETUP_COMMAND}"
        if status == 403:
            return (
                "Error: Permission denied. Check that the resource is shared with your "
                f"account and the required scopes were granted. {api_message}".rstrip()
            )
        if status == 404:
            return "Error: Resource not found. Please check the ID is correct."
        if status == 429:
            return "Error: Rate limit exceeded. Please wait before making more requests."
        return f"Error: Google API request failed with status {status}. {api_message}".rstrip()

    if isinstance(error, ValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in item['loc']) or '(root)'}: {item['msg']}"
            for item in error.errors()
        )
        return f"Invalid arguments: {details}"

    if isinstance(error, PivotCompileError):
        return f"Error: Cannot build pivot table. {error}"

    return f"Error: {error}"


# =============================================================================
# Sheets metadata adapter for the pivot compiler
# =============================================================================


class SheetsApiMetadataClient:
    """Sheet lookup and creation through the Sheets REST API.

    Attributes:
        request: Authenticated request coroutine, ``request(method, url, params=, json_data=)``.
    """

    def __init__(self, request: RequestFn) -> None:
        self.request = request

    async def list_sheets(self, spreadsheet_id: str) -> list[SheetRef]:
        url = f"{SHEETS_API_BASE}/spreadsheets/{spreadsheet_id}"
        response = await self.request(
            "GET", url, params={"fields": "sheets.properties(sheetId,title)"}
        )
        sheets = []
        for sheet in response.get("sheets", []):
            props = sheet.get("properties", {})
            # The API omits sheetId when it is 0
            sheets.append(SheetRef(sheet_id=props.get("sheetId", 0), title=props.get("title", "")))
        return sheets

    async def lookup_sheet_id(self, spreadsheet_id: str, title: str) -> int | None:
        for sheet in await self.list_sheets(spreadsheet_id):
            if sheet.title == title:
                return sheet.sheet_id
        return None

    async def create_sheet(self, spreadsheet_id: str, title: str) -> SheetRef:
        url = f"{SHEETS_API_BASE}/spreadsheets/{spreadsheet_id}:batchUpdate"
        response = await self.request(
            "POST",
            url,
            json_data={"requests": [{"addSheet": {"properties": {"title": title}}}]},
        )
        replies = response.get("replies") or [{}]
        props = replies[0].get("addSheet", {}).get("properties", {})
        return SheetRef(sheet_id=props.get("sheetId", 0), title=props.get("title", title))


class GoogleWorkspaceServer:
    """MCP server for Google Workspace APIs.

    Provides 22 tools:
    - Gmail: Message and thread reading, labels, attachments, drafts
    - Calendar: Calendars, events and free/busy queries
    - Sheets: Values, spreadsheet management and pivot tables

    Integrates with TokenStorage for credential management and
    automatically handles token refresh.

    Attributes:
        server: MCP Server instance.
        storage: TokenStorage for retrieving OAuth tokens.
        manager: OAuthManager for token refresh operations.
    """

    def __init__(self, storage: TokenStorage | None = None) -> None:
        """Initialize the Google Workspace MCP server."""
        self.server = Server("workspace-agent-mcp")
        self.storage = storage or TokenStorage()
        self.manager = OAuthManager(storage=self.storage)
        self._http_client: httpx.AsyncClient | None = None
        self._setup_handlers()

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create shared HTTP client with connection pooling."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                http2=True,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client and release resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _setup_handlers(self) -> None:
        """Register MCP tool handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return list of available tools."""
            return self.tool_definitions()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            return [TextContent(type="text", text=await self.handle_call(name, arguments))]

    async def handle_call(self, name: str, arguments: dict[str, Any] | None) -> str:
        """Run a tool and render its result; failures become error text.

        Args:
            name: Tool name.
            arguments: Tool arguments as received from the client.

        Returns:
            Rendered Markdown or JSON, or an error message.
        """
        arguments = arguments or {}
        response_format = arguments.get("response_format", RESPONSE_FORMAT_MARKDOWN)
        try:
            result = await self._dispatch_tool(name, arguments)
            return render_result(name, result, response_format)
        except Exception as e:
            logger.exception(f"Error calling tool {name}")
            return describe_error(e)

    def tool_definitions(self) -> list[Tool]:
        """Build the MCP tool list."""
        return [
            # =================================================================
            # Gmail
            # =================================================================
            Tool(
                name="gmail_list_messages",
                description=(
                    "List Gmail messages matching a search query. Supports Gmail "
                    "search operators such as 'is:unread', 'from:alice@example.com' "
                    "or 'has:attachment newer_than:7d'."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "Gmail search query (optional)",
                        },
                        "max_results": {
                            "type": "integer",
                            "minimum": 1,
                            "maximum": 100,
                            "default": 10,
                            "description": "Maximum messages to return (1-100)",
                        },
                        "label_ids": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Only return messages with all of these label IDs",
                        },
                        "page_token": {
                            "type": "string",
                            "description": "Token for the next page of results",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": [],
                },
            ),
            Tool(
                name="gmail_get_message",
                description="Get the full content of a Gmail message by ID",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "message_id": {
                            "type": "string",
                            "description": "Gmail message ID",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["message_id"],
                },
            ),
            Tool(
                name="gmail_list_threads",
                description="List Gmail conversation threads matching a search query",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "Gmail search query (optional)",
                        },
                        "max_results": {
                            "type": "integer",
                            "minimum": 1,
                            "maximum": 100,
                            "default": 10,
                            "description": "Maximum threads to return (1-100)",
                        },
                        "label_ids": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Only return threads with all of these label IDs",
                        },
                        "page_token": {
                            "type": "string",
                            "description": "Token for the next page of results",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": [],
                },
            ),
            Tool(
                name="gmail_get_thread",
                description="Get every message in a Gmail thread, with bodies",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "thread_id": {
                            "type": "string",
                            "description": "Gmail thread ID",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["thread_id"],
                },
            ),
            Tool(
                name="gmail_list_labels",
                description="List Gmail labels, system labels first",
                inputSchema={
                    "type": "object",
                    "properties": {"response_format": _RESPONSE_FORMAT_PROPERTY},
                    "required": [],
                },
            ),
            Tool(
                name="gmail_create_draft",
                description=(
                    "Create a Gmail draft. The draft is saved but NOT sent. "
                    "Pass reply_to_message_id to draft a reply in the same thread."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "to": {
                            "type": "array",
                            "items": {"type": "string"},
                            "minItems": 1,
                            "description": "Recipient email addresses",
                        },
                        "subject": {"type": "string", "description": "Email subject"},
                        "body": {"type": "string", "description": "Plain text email body"},
                        "cc": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "CC recipients (optional)",
                        },
                        "bcc": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "BCC recipients (optional)",
                        },
                        "reply_to_message_id": {
                            "type": "string",
                            "description": "Message ID this draft replies to (optional)",
                        },
                    },
                    "required": ["to", "subject", "body"],
                },
            ),
            Tool(
                name="gmail_list_attachments",
                description="List the attachments of a Gmail message",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "message_id": {
                            "type": "string",
                            "description": "Gmail message ID",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["message_id"],
                },
            ),
            Tool(
                name="gmail_get_attachment",
                description=(
                    "Download a Gmail attachment. Text, CSV and JSON content is returned "
                    "inline; other files are saved to a temporary file whose path is returned."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "message_id": {
                            "type": "string",
                            "description": "Gmail message ID",
                        },
                        "attachment_id": {
                            "type": "string",
                            "description": "Attachment ID from gmail_list_attachments",
                        },
                        "filename": {
                            "type": "string",
                            "description": "Attachment filename, used to pick the content type",
                        },
                    },
                    "required": ["message_id", "attachment_id"],
                },
            ),
            # =================================================================
            # Calendar
            # =================================================================
            Tool(
                name="calendar_list_calendars",
                description="List all calendars accessible by the authenticated user",
                inputSchema={
                    "type": "object",
                    "properties": {"response_format": _RESPONSE_FORMAT_PROPERTY},
                    "required": [],
                },
            ),
            Tool(
                name="calendar_list_events",
                description="List events from a calendar, upcoming events by default",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "calendar_id": {
                            "type": "string",
                            "default": "primary",
                            "description": "Calendar ID (default: 'primary')",
                        },
                        "time_min": {
                            "type": "string",
                            "description": "Start of range, ISO 8601 (default: now)",
                        },
                        "time_max": {
                            "type": "string",
                            "description": "End of range, ISO 8601 (optional)",
                        },
                        "max_results": {
                            "type": "integer",
                            "minimum": 1,
                            "maximum": 250,
                            "default": 10,
                            "description": "Maximum events to return (1-250)",
                        },
                        "query": {
                            "type": "string",
                            "description": "Free text search terms",
                        },
                        "single_events": {
                            "type": "boolean",
                            "default": True,
                            "description": "Expand recurring events into instances",
                        },
                        "order_by": {
                            "type": "string",
                            "enum": ["startTime", "updated"],
                            "default": "startTime",
                            "description": "Sort order ('startTime' requires single_events)",
                        },
                        "page_token": {
                            "type": "string",
                            "description": "Token for the next page of results",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": [],
                },
            ),
            Tool(
                name="calendar_get_event",
                description="Get the details of a calendar event",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "calendar_id": {
                            "type": "string",
                            "default": "primary",
                            "description": "Calendar ID (default: 'primary')",
                        },
                        "event_id": {"type": "string", "description": "Event ID"},
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["event_id"],
                },
            ),
            Tool(
                name="calendar_query_free_busy",
                description="Check busy periods for one or more calendars in a time range",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "time_min": {
                            "type": "string",
                            "description": "Start of range, ISO 8601",
                        },
                        "time_max": {
                            "type": "string",
                            "description": "End of range, ISO 8601",
                        },
                        "calendar_ids": {
                            "type": "array",
                            "items": {"type": "string"},
                            "minItems": 1,
                            "description": "Calendar IDs or email addresses",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["time_min", "time_max", "calendar_ids"],
                },
            ),
            # =================================================================
            # Sheets
            # =================================================================
            Tool(
                name="sheets_get_spreadsheet",
                description="Get spreadsheet metadata: title, locale and sheets",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {
                            "type": "string",
                            "description": "Spreadsheet ID (found in the URL)",
                        },
                        "include_grid_data": {
                            "type": "boolean",
                            "default": False,
                            "description": "Include cell data (can be large)",
                        },
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["spreadsheet_id"],
                },
            ),
            Tool(
                name="sheets_get_values",
                description="Read cell values from an A1 range (e.g., 'Sheet1!A1:D10')",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {"type": "string", "description": "Spreadsheet ID"},
                        "range": {"type": "string", "description": "A1 notation range"},
                        "major_dimension": _MAJOR_DIMENSION_PROPERTY,
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["spreadsheet_id", "range"],
                },
            ),
            Tool(
                name="sheets_batch_get_values",
                description="Read cell values from several A1 ranges in one request",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {"type": "string", "description": "Spreadsheet ID"},
                        "ranges": {
                            "type": "array",
                            "items": {"type": "string"},
                            "minItems": 1,
                            "description": "A1 notation ranges",
                        },
                        "major_dimension": _MAJOR_DIMENSION_PROPERTY,
                        "response_format": _RESPONSE_FORMAT_PROPERTY,
                    },
                    "required": ["spreadsheet_id", "ranges"],
                },
            ),
            Tool(
                name="sheets_update_values",
                description="Write values to an A1 range",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {"type": "string", "description": "Spreadsheet ID"},
                        "range": {"type": "string", "description": "A1 notation range"},
                        "values": _CELL_VALUES_PROPERTY,
                        "value_input_option": _VALUE_INPUT_OPTION_PROPERTY,
                    },
                    "required": ["spreadsheet_id", "range", "values"],
                },
            ),
            Tool(
                name="sheets_append_values",
                description="Append rows after the last row of data in a range",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {"type": "string", "description": "Spreadsheet ID"},
                        "range": {
                            "type": "string",
                            "description": "A1 notation range to append to (e.g., 'Sheet1!A:D')",
                        },
                        "values": _CELL_VALUES_PROPERTY,
                        "value_input_option": _VALUE_INPUT_OPTION_PROPERTY,
                        "insert_data_option": {
                            "type": "string",
                            "enum": ["OVERWRITE", "INSERT_ROWS"],
                            "default": "INSERT_ROWS",
                            "description": "Insert new rows or overwrite existing cells",
                        },
                    },
                    "required": ["spreadsheet_id", "range", "values"],
                },
            ),
            Tool(
                name="sheets_create_spreadsheet",
                description="Create a new spreadsheet",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "title": {
                            "type": "string",
                            "minLength": 1,
                            "maxLength": 500,
                            "description": "Spreadsheet title",
                        },
                        "sheet_titles": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Sheet names to create (default: one 'Sheet1')",
                        },
                    },
                    "required": ["title"],
                },
            ),
            Tool(
                name="sheets_batch_update",
                description=(
                    "Apply raw Sheets API batchUpdate requests (formatting, charts, "
                    "filters, sheet management)"
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {"type": "string", "description": "Spreadsheet ID"},
                        "requests": {
                            "type": "array",
                            "items": {"type": "object"},
                            "minItems": 1,
                            "description": "Sheets API batchUpdate request objects",
                        },
                    },
                    "required": ["spreadsheet_id", "requests"],
                },
            ),
            Tool(
                name="sheets_clear_values",
                description="Clear cell values in a range, keeping formatting",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {"type": "string", "description": "Spreadsheet ID"},
                        "range": {"type": "string", "description": "A1 notation range"},
                    },
                    "required": ["spreadsheet_id", "range"],
                },
            ),
            Tool(
                name="sheets_duplicate_sheet",
                description="Duplicate a sheet within its spreadsheet",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "spreadsheet_id": {"type": "string", "description": "Spreadsheet ID"},
                        "sheet_id": {
                            "type": "integer",
                            "minimum": 0,
                            "description": "ID of the sheet to copy",
                        },
                        "new_sheet_name": {
                            "type": "string",
                            "description": "Name for the copy (optional)",
                        },
                    },
                    "required": ["spreadsheet_id", "sheet_id"],
                },
            ),
            Tool(
                name="sheets_create_pivot_table",
                description=(
                    "Create a pivot table from a source range. Columns may be given as "
                    "letters ('A') or zero-based offsets within the source range. "
                    "A new destination sheet is created unless destination_sheet_id is set."
                ),
                inputSchema=_pivot_input_schema(),
            ),
        ]

    async def _get_access_token(self) -> str:
        """Get a valid access token, refreshing if necessary.

        Returns:
            Valid access token string.

        Raises:
            RuntimeError: If no token is available or refresh fails.
        """
        status = self.storage.get_status(SERVICE_NAME)

        if status == TokenStatus.MISSING:
            raise RuntimeError(
                f"No OAuth token found for service '{SERVICE_NAME}'. "
                f"Please authenticate first using: {SETUP_COMMAND}"
            )

        if status == TokenStatus.INVALID:
            raise RuntimeError(
                f"OAuth token for service '{SERVICE_NAME}' is invalid or corrupted. "
                f"Please re-authenticate using: {SETUP_COMMAND}"
            )

        if status == TokenStatus.EXPIRED:
            logger.info("Token expired, attempting refresh...")
            token = await self.manager.refresh_if_needed()
            if token is None:
                raise RuntimeError(
                    f"Token refresh failed. Please re-authenticate using: {SETUP_COMMAND}"
                )
            return token.access_token

        stored = self.storage.retrieve(SERVICE_NAME)
        if stored is None:
            raise RuntimeError("Unexpected error: token retrieval failed")

        return stored.token.access_token

    async def _make_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated HTTP request to Google APIs.

        Args:
            method: HTTP method (GET, POST, etc.).
            url: Full URL to request.
            params: Optional query parameters. List values repeat the key.
            json_data: Optional JSON body data.

        Returns:
            JSON response as a dictionary.

        Raises:
            httpx.HTTPStatusError: If the request fails.
        """
        access_token = await self._get_access_token()
        client = await self._get_http_client()

        response = await client.request(
            method=method,
            url=url,
            params=params,
            json=json_data,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result

    async def _dispatch_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Dispatch tool call to appropriate handler.

        Raises:
            ValueError: If tool name is not recognized.
        """
        handlers: dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            "gmail_list_messages": self._list_messages,
            "gmail_get_message": self._get_message,
            "gmail_list_threads": self._list_threads,
            "gmail_get_thread": self._get_thread,
            "gmail_list_labels": self._list_labels,
            "gmail_create_draft": self._create_draft,
            "gmail_list_attachments": self._list_attachments,
            "gmail_get_attachment": self._get_attachment,
            "calendar_list_calendars": self._list_calendars,
            "calendar_list_events": self._list_events,
            "calendar_get_event": self._get_event,
            "calendar_query_free_busy": self._query_free_busy,
            "sheets_get_spreadsheet": self._get_spreadsheet,
            "sheets_get_values": self._get_values,
            "sheets_batch_get_values": self._batch_get_values,
            "sheets_update_values": self._update_values,
            "sheets_append_values": self._append_values,
            "sheets_create_spreadsheet": self._create_spreadsheet,
            "sheets_batch_update": self._batch_update,
            "sheets_clear_values": self._clear_values,
            "sheets_duplicate_sheet": self._duplicate_sheet,
            "sheets_create_pivot_table": self._create_pivot_table,
        }

        handler = handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")

        return await handler(arguments)

    # =========================================================================
    # Gmail
    # =========================================================================

    def _gmail_list_params(self, arguments: dict[str, Any]) -> dict[str, Any]:
        params: dict[str, Any] = {"maxResults": arguments.get("max_results", 10)}
        if arguments.get("query"):
            params["q"] = arguments["query"]
        if arguments.get("label_ids"):
            params["labelIds"] = arguments["label_ids"]
        if arguments.get("page_token"):
            params["pageToken"] = arguments["page_token"]
        return params

    async def _list_messages(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """List Gmail messages with their metadata.

        Message details are fetched in parallel with asyncio.gather.

        Args:
            arguments: Tool arguments with query, max_results, label_ids, page_token.

        Returns:
            Message summaries with id, thread_id, subject, from, to, date, snippet, labels.
        """
        url = f"{GMAIL_API_BASE}/users/me/messages"
        response = await self._make_request("GET", url, params=self._gmail_list_params(arguments))

        message_list = response.get("messages", [])

        async def fetch_message_detail(msg_id: str) -> dict[str, Any]:
            msg_url = f"{GMAIL_API_BASE}/users/me/messages/{msg_id}"
            return await self._make_request(
                "GET",
                msg_url,
                params={
                    "format": "metadata",
                    "metadataHeaders": ["From", "To", "Subject", "Date"],
                },
            )

        details = await asyncio.gather(
            *[fetch_message_detail(msg["id"]) for msg in message_list],
            return_exceptions=True,
        )

        messages = []
        for msg, msg_detail in zip(message_list, details, strict=False):
            if isinstance(msg_detail, BaseException):
                logger.warning("Failed to fetch message %s: %s", msg["id"], msg_detail)
                continue

            headers = msg_detail.get("payload", {}).get("headers")
            messages.append(
                {
                    "id": msg["id"],
                    "thread_id": msg.get("threadId"),
                    "subject": get_header(headers, "Subject"),
                    "from": get_header(headers, "From"),
                    "to": get_header(headers, "To"),
                    "date": get_header(headers, "Date"),
                    "snippet": msg_detail.get("snippet", ""),
                    "labels": msg_detail.get("labelIds", []),
                }
            )

        return {
            "messages": messages,
            "result_count": len(messages),
            "next_page_token": response.get("nextPageToken"),
            "query": arguments.get("query"),
        }

    async def _get_message(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Get full content of a Gmail message.

        Args:
            arguments: Tool arguments with message_id.

        Returns:
            Message content including headers and body.
        """
        message_id = arguments["message_id"]

        url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}"
        response = await self._make_request("GET", url, params={"format": "full"})

        payload = response.get("payload", {})
        headers = payload.get("headers")

        return {
            "id": response.get("id"),
            "thread_id": response.get("threadId"),
            "subject": get_header(headers, "Subject"),
            "from": get_header(headers, "From"),
            "to": get_header(headers, "To"),
            "cc": get_header(headers, "Cc"),
            "date": get_header(headers, "Date"),
            "labels": response.get("labelIds", []),
            "body": extract_message_body(payload),
        }

    async def _list_threads(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """List Gmail threads with subject and sender of the first message.

        Args:
            arguments: Tool arguments with query, max_results, label_ids, page_token.

        Returns:
            Thread summaries with message counts and last activity date.
        """
        url = f"{GMAIL_API_BASE}/users/me/threads"
        response = await self._make_request("GET", url, params=self._gmail_list_params(arguments))

        thread_list = response.get("threads", [])

        async def fetch_thread_detail(thread_id: str) -> dict[str, Any]:
            thread_url = f"{GMAIL_API_BASE}/users/me/threads/{thread_id}"
            return await self._make_request(
                "GET",
                thread_url,
                params={"format": "metadata", "metadataHeaders": ["From", "Subject", "Date"]},
            )

        details = await asyncio.gather(
            *[fetch_thread_detail(thread["id"]) for thread in thread_list],
            return_exceptions=True,
        )

        threads = []
        for thread, thread_detail in zip(thread_list, details, strict=False):
            if isinstance(thread_detail, BaseException):
                logger.warning("Failed to fetch thread %s: %s", thread["id"], thread_detail)
                continue

            thread_messages = thread_detail.get("messages") or [{}]
            first_headers = thread_messages[0].get("payload", {}).get("headers")
            last_headers = thread_messages[-1].get("payload", {}).get("headers")
            threads.append(
                {
                    "id": thread["id"],
                    "subject": get_header(first_headers, "Subject") or "(no subject)",
                    "from": get_header(first_headers, "From") or "Unknown",
                    "date": get_header(last_headers, "Date") or "",
                    "snippet": thread.get("snippet", ""),
                    "message_count": len(thread_detail.get("messages", [])),
                }
            )

        return {
            "threads": threads,
            "result_count": len(threads),
            "next_page_token": response.get("nextPageToken"),
        }

    async def _get_thread(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Get all messages of a Gmail thread."""
        thread_id = arguments["thread_id"]

        url = f"{GMAIL_API_BASE}/users/me/threads/{thread_id}"
        response = await self._make_request("GET", url, params={"format": "full"})

        messages = []
        for msg in response.get("messages", []):
            payload = msg.get("payload", {})
            headers = payload.get("headers")
            messages.append(
                {
                    "id": msg.get("id"),
                    "from": get_header(headers, "From"),
                    "to": get_header(headers, "To"),
                    "subject": get_header(headers, "Subject"),
                    "date": get_header(headers, "Date"),
                    "body": extract_message_body(payload),
                }
            )

        return {
            "id": response.get("id", thread_id),
            "message_count": len(messages),
            "messages": messages,
        }

    async def _list_labels(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """List all Gmail labels (system and custom).

        Returns:
            Labels split into system labels and user labels, each sorted by name.
        """
        url = f"{GMAIL_API_BASE}/users/me/labels"
        response = await self._make_request("GET", url)

        labels = [
            {
                "id": label.get("id", ""),
                "name": label.get("name", ""),
                "type": label.get("type", "user"),
            }
            for label in response.get("labels", [])
        ]

        system_labels = sorted(
            [lbl for lbl in labels if lbl["type"] == "system"], key=lambda x: x["name"]
        )
        user_labels = sorted(
            [lbl for lbl in labels if lbl["type"] != "system"], key=lambda x: x["name"].lower()
        )

        return {
            "total": len(labels),
            "system_labels": system_labels,
            "user_labels": user_labels,
        }

    def _build_email_message(
        self,
        to: list[str],
        subject: str,
        body: str,
        cc: list[str] | None = None,
        bcc: list[str] | None = None,
        in_reply_to: str | None = None,
        references: str | None = None,
    ) -> str:
        """Build an RFC 2822 message and return it base64url encoded.

        Args:
            to: Recipient addresses.
            subject: Email subject.
            body: Plain text body.
            cc: Optional CC recipients.
            bcc: Optional BCC recipients.
            in_reply_to: Optional Message-ID for reply threading.
            references: Optional References header for reply threading.

        Returns:
            Base64url encoded email message.
        """
        message = MIMEText(body, "plain", "utf-8")
        message["To"] = ", ".join(to)
        message["Subject"] = subject

        if cc:
            message["Cc"] = ", ".join(cc)
        if bcc:
            message["Bcc"] = ", ".join(bcc)
        if in_reply_to:
            message["In-Reply-To"] = in_reply_to
        if references:
            message["References"] = references

        return base64.urlsafe_b64encode(message.as_bytes()).decode().rstrip("=")

    async def _create_draft(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Create an email draft, threaded onto the original when replying.

        Args:
            arguments: Tool arguments with to, subject, body, cc, bcc, reply_to_message_id.

        Returns:
            Created draft details.
        """
        to = arguments["to"]
        subject = arguments["subject"]
        reply_to_message_id = arguments.get("reply_to_message_id")

        thread_id = None
        in_reply_to = None
        references = None
        if reply_to_message_id:
            original_url = f"{GMAIL_API_BASE}/users/me/messages/{reply_to_message_id}"
            original = await self._make_request(
                "GET",
                original_url,
                params={"format": "metadata", "metadataHeaders": ["Message-ID", "References"]},
            )
            thread_id = original.get("threadId")
            headers = original.get("payload", {}).get("headers")
            in_reply_to = get_header(headers, "Message-ID")
            if in_reply_to:
                previous = get_header(headers, "References")
                references = f"{previous} {in_reply_to}" if previous else in_reply_to

        raw_message = self._build_email_message(
            to,
            subject,
            arguments["body"],
            arguments.get("cc"),
            arguments.get("bcc"),
            in_reply_to=in_reply_to,
            references=references,
        )

        message: dict[str, Any] = {"raw": raw_message}
        if thread_id:
            message["threadId"] = thread_id

        url = f"{GMAIL_API_BASE}/users/me/drafts"
        response = await self._make_request("POST", url, json_data={"message": message})

        return {
            "status": "draft_created",
            "draft_id": response.get("id"),
            "message_id": response.get("message", {}).get("id"),
            "thread_id": response.get("message", {}).get("threadId"),
            "to": to,
            "subject": subject,
        }

    async def _list_attachments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        message_id = arguments["message_id"]

        url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}"
        response = await self._make_request("GET", url, params={"format": "full"})

        attachments = collect_attachments(response.get("payload", {}).get("parts"))
        return {"message_id": message_id, "attachments": attachments, "count": len(attachments)}

    async def _get_attachment(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Download an attachment.

        Text-like content is returned inline. Anything else is written to a
        temporary file and its path returned.

        Args:
            arguments: Tool arguments with message_id, attachment_id, filename.

        Returns:
            Attachment metadata plus ``content`` or ``saved_path``.

        Raises:
            ValueError: If the attachment has no data.
        """
        message_id = arguments["message_id"]
        attachment_id = arguments["attachment_id"]
        filename = arguments.get("filename") or "attachment"

        url = f"{GMAIL_API_BASE}/users/me/messages/{message_id}/attachments/{attachment_id}"
        response = await self._make_request("GET", url)

        data = response.get("data")
        if not data:
            raise ValueError("Attachment data is empty.")

        content = decode_base64url(data)
        mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        result: dict[str, Any] = {
            "filename": filename,
            "size": response.get("size") or len(content),
            "mime_type": mime_type,
        }

        if mime_type in INLINE_ATTACHMENT_TYPES:
            result["content"] = content.decode("utf-8", errors="replace")
            return result

        safe_name = re.sub(r"[^a-zA-Z0-9.-]", "_", filename)
        fd, saved_path = tempfile.mkstemp(prefix="gmail_", suffix=f"_{safe_name}")
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        logger.info("Saved attachment %s to %s", filename, saved_path)

        result["saved_path"] = saved_path
        return result

    # =========================================================================
    # Calendar
    # =========================================================================

    async def _list_calendars(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """List all calendars accessible by the user, primary first.

        Returns:
            List of calendars with id, summary, and access role.
        """
        url = f"{CALENDAR_API_BASE}/users/me/calendarList"
        response = await self._make_request("GET", url)

        calendars = [
            {
                "id": item.get("id"),
                "summary": item.get("summary") or "(untitled)",
                "description": item.get("description"),
                "access_role": item.get("accessRole", "reader"),
                "primary": item.get("primary", False),
            }
            for item in response.get("items", [])
        ]
        calendars.sort(key=lambda cal: (not cal["primary"], cal["summary"].lower()))

        return {"calendars": calendars, "count": len(calendars)}

    def _format_event(self, item: dict[str, Any]) -> dict[str, Any]:
        start = item.get("start", {})
        return {
            "id": item.get("id"),
            "summary": item.get("summary") or "(no title)",
            "description": item.get("description"),
            "location": item.get("location"),
            "start": _event_boundary(start),
            "end": _event_boundary(item.get("end")),
            "is_all_day": "dateTime" not in start,
            "status": item.get("status", "confirmed"),
            "html_link": item.get("htmlLink"),
        }

    async def _list_events(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Get events from a calendar.

        Args:
            arguments: Tool arguments with calendar_id, time_min, time_max, max_results,
                query, single_events, order_by, page_token.

        Returns:
            List of events with summary, start, end times.
        """
        calendar_id = arguments.get("calendar_id", "primary")
        single_events = arguments.get("single_events", True)
        order_by = arguments.get("order_by", "startTime")

        url = f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}/events"
        params: dict[str, Any] = {
            "timeMin": arguments.get("time_min") or datetime.now(timezone.utc).isoformat(),
            "maxResults": arguments.get("max_results", 10),
            "singleEvents": single_events,
        }
        # startTime ordering is only accepted for expanded recurring events
        if single_events or order_by != "startTime":
            params["orderBy"] = order_by
        if arguments.get("time_max"):
            params["timeMax"] = arguments["time_max"]
        if arguments.get("query"):
            params["q"] = arguments["query"]
        if arguments.get("page_token"):
            params["pageToken"] = arguments["page_token"]

        response = await self._make_request("GET", url, params=params)

        events = []
        for item in response.get("items", []):
            event = self._format_event(item)
            event["attendees"] = [
                a.get("email") or a.get("displayName") or "Unknown"
                for a in item.get("attendees", [])
            ]
            organizer = item.get("organizer", {})
            event["organizer"] = organizer.get("email") or organizer.get("displayName")
            events.append(event)

        return {
            "events": events,
            "result_count": len(events),
            "next_page_token": response.get("nextPageToken"),
            "query": arguments.get("query"),
        }

    async def _get_event(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Get a single event with attendees, organizer and conference details."""
        calendar_id = arguments.get("calendar_id", "primary")
        event_id = arguments["event_id"]

        url = f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}/events/{event_id}"
        item = await self._make_request("GET", url)

        event = self._format_event(item)
        event["attendees"] = [
            {
                "email": a.get("email", ""),
                "display_name": a.get("displayName"),
                "response_status": a.get("responseStatus", "needsAction"),
                "organizer": a.get("organizer", False),
            }
            for a in item.get("attendees", [])
        ]
        organizer = item.get("organizer", {})
        event["organizer"] = {
            "email": organizer.get("email", ""),
            "display_name": organizer.get("displayName"),
        }
        event["created"] = item.get("created")
        event["updated"] = item.get("updated")
        event["recurrence"] = item.get("recurrence")

        conference = item.get("conferenceData")
        event["conference"] = (
            {
                "type": conference.get("conferenceSolution", {}).get("name", "Unknown"),
                "entry_points": [
                    {"type": ep.get("entryPointType", ""), "uri": ep.get("uri", "")}
                    for ep in conference.get("entryPoints", [])
                ],
            }
            if conference
            else None
        )
        return event

    async def _query_free_busy(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Query free/busy information for calendars.

        Args:
            arguments: Tool arguments with time_min, time_max, calendar_ids.

        Returns:
            Busy periods and errors per requested calendar.
        """
        time_min = arguments["time_min"]
        time_max = arguments["time_max"]
        calendar_ids = arguments.get("calendar_ids") or ["primary"]

        url = f"{CALENDAR_API_BASE}/freeBusy"
        request_body = {
            "timeMin": time_min,
            "timeMax": time_max,
            "items": [{"id": cal_id} for cal_id in calendar_ids],
        }

        response = await self._make_request("POST", url, json_data=request_body)

        calendars_info = {
            cal_id: {"busy": cal_data.get("busy", []), "errors": cal_data.get("errors", [])}
            for cal_id, cal_data in response.get("calendars", {}).items()
        }

        return {"time_min": time_min, "time_max": time_max, "calendars": calendars_info}

    # =========================================================================
    # Sheets
    # =========================================================================

    async def _get_spreadsheet(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Get spreadsheet metadata and its sheets.

        Args:
            arguments: Tool arguments with spreadsheet_id and include_grid_data.

        Returns:
            Title, locale, URL and per-sheet properties.
        """
        spreadsheet_id = arguments["spreadsheet_id"]

        url = f"{SHEETS_API_BASE}/spreadsheets/{spreadsheet_id}"
        params = {"includeGridData": arguments.get("include_grid_data", False)}
        response = await self._make_request("GET", url, params=params)

        sheets = []
        for sheet in response.get("sheets", []):
            props = sheet.get("properties", {})
            grid = props.get("gridProperties", {})
            sheets.append(
                {
                    "sheet_id": props.get("sheetId", 0),
                    "title": props.get("title", "Untitled"),
                    "index": props.get("index", 0),
                    "sheet_type": props.get("sheetType", "GRID"),
                    "row_count": grid.get("rowCount", 0),
                    "column_count": grid.get("columnCount", 0),
                }
            )

        properties = response.get("properties", {})
        result = {
            "spreadsheet_id": response.get("spreadsheetId", spreadsheet_id),
            "title": properties.get("title", "Untitled"),
            "locale": properties.get("locale", "en_US"),
            "spreadsheet_url": response.get("spreadsheetUrl"),
            "sheets": sheets,
        }
        if arguments.get("include_grid_data"):
            result["grid_data"] = [sheet.get("data", []) for sheet in response.get("sheets", [])]
        return result

    async def _get_values(self, arguments: dict[str, Any]) -> dict[str, Any]:
        spreadsheet_id = arguments["spreadsheet_id"]
        cell_range = arguments["range"]

        url = _values_url(spreadsheet_id, cell_range)
        params = {"majorDimension": arguments.get("major_dimension", "ROWS")}
        response = await self._make_request("GET", url, params=params)

        values = response.get("values", [])
        return {
            "spreadsheet_id": spreadsheet_id,
            "range": response.get("range", cell_range),
            "major_dimension": response.get("majorDimension", params["majorDimension"]),
            "values": values,
            "row_count": len(values),
        }

    async def _batch_get_values(self, arguments: dict[str, Any]) -> dict[str, Any]:
        spreadsheet_id = arguments["spreadsheet_id"]

        url = f"{SHEETS_API_BASE}/spreadsheets/{spreadsheet_id}/values:batchGet"
        params = {
            "ranges": arguments["ranges"],
            "majorDimension": arguments.get("major_dimension", "ROWS"),
        }
        response = await self._make_request("GET", url, params=params)

        return {
            "spreadsheet_id": response.get("spreadsheetId", spreadsheet_id),
            "value_ranges": [
                {
                    "range": value_range.get("range"),
                    "major_dimension": value_range.get("majorDimension"),
                    "values": value_range.get("values", []),
                }
                for value_range in response.get("valueRanges", [])
            ],
        }

    async def _update_values(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Write values to a range.

        Args:
            arguments: Tool arguments with spreadsheet_id, range, values, value_input_option.

        Returns:
            Update result with updated cell count.
        """
        spreadsheet_id = arguments["spreadsheet_id"]
        cell_range = arguments["range"]

        url = _values_url(spreadsheet_id, cell_range)
        params = {"valueInputOption": arguments.get("value_input_option", "USER_ENTERED")}
        body = {"range": cell_range, "values": arguments["values"]}

        response = await self._make_request("PUT", url, params=params, json_data=body)

        return {
            "spreadsheet_id": spreadsheet_id,
            "updated_range": response.get("updatedRange", cell_range),
            "updated_rows": response.get("updatedRows", 0),
            "updated_columns": response.get("updatedColumns", 0),
            "updated_cells": response.get("updatedCells", 0),
        }

    async def _append_values(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Append rows after the existing data of a range.

        Args:
            arguments: Tool arguments with spreadsheet_id, range, values,
                value_input_option and insert_data_option.

        Returns:
            Append result with the detected table range and rows added.
        """
        spreadsheet_id = arguments["spreadsheet_id"]
        cell_range = arguments["range"]

        url = _values_url(spreadsheet_id, cell_range, ":append")
        params = {
            "valueInputOption": arguments.get("value_input_option", "USER_ENTERED"),
            "insertDataOption": arguments.get("insert_data_option", "INSERT_ROWS"),
        }
        body = {"values": arguments["values"]}

        response = await self._make_request("POST", url, params=params, json_data=body)

        updates = response.get("updates", {})
        return {
            "spreadsheet_id": spreadsheet_id,
            "table_range": response.get("tableRange"),
            "updated_range": updates.get("updatedRange", ""),
            "updated_rows": updates.get("updatedRows", 0),
            "updated_columns": updates.get("updatedColumns", 0),
            "updated_cells": updates.get("updatedCells", 0),
        }

    async def _create_spreadsheet(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Create a new Google Spreadsheet.

        Args:
            arguments: Tool arguments with title and optional sheet_titles.

        Returns:
            New spreadsheet ID, URL and sheets.
        """
        title = arguments["title"]
        sheet_titles = arguments.get("sheet_titles") or ["Sheet1"]

        body = {
            "properties": {"title": title},
            "sheets": [
                {"properties": {"title": name, "index": i}} for i, name in enumerate(sheet_titles)
            ],
        }

        url = f"{SHEETS_API_BASE}/spreadsheets"
        response = await self._make_request("POST", url, json_data=body)

        spreadsheet_id = response.get("spreadsheetId", "")
        return {
            "spreadsheet_id": spreadsheet_id,
            "title": response.get("properties", {}).get("title", title),
            "spreadsheet_url": response.get(
                "spreadsheetUrl", f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}"
            ),
            "sheets": [
                {
                    "sheet_id": s.get("properties", {}).get("sheetId", 0),
                    "title": s.get("properties", {}).get("title", ""),
                }
                for s in response.get("sheets", [])
            ],
        }

    async def _batch_update(self, arguments: dict[str, Any]) -> dict[str, Any]:
        spreadsheet_id = arguments["spreadsheet_id"]
        requests = arguments["requests"]
        if not requests:
            raise ValueError("At least one request is required")

        url = f"{SHEETS_API_BASE}/spreadsheets/{spreadsheet_id}:batchUpdate"
        response = await self._make_request("POST", url, json_data={"requests": requests})

        return {
            "spreadsheet_id": response.get("spreadsheetId", spreadsheet_id),
            "replies": response.get("replies", []),
        }

    async def _clear_values(self, arguments: dict[str, Any]) -> dict[str, Any]:
        spreadsheet_id = arguments["spreadsheet_id"]
        cell_range = arguments["range"]

        url = _values_url(spreadsheet_id, cell_range, ":clear")
        response = await self._make_request("POST", url, json_data={})

        return {
            "spreadsheet_id": spreadsheet_id,
            "cleared_range": response.get("clearedRange", cell_range),
        }

    async def _duplicate_sheet(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Duplicate a sheet, optionally giving the copy a name."""
        spreadsheet_id = arguments["spreadsheet_id"]
        new_sheet_name = arguments.get("new_sheet_name")

        request: dict[str, Any] = {"sourceSheetId": arguments["sheet_id"]}
        if new_sheet_name:
            request["newSheetName"] = new_sheet_name

        url = f"{SHEETS_API_BASE}/spreadsheets/{spreadsheet_id}:batchUpdate"
        response = await self._make_request(
            "POST", url, json_data={"requests": [{"duplicateSheet": request}]}
        )

        replies = response.get("replies") or [{}]
        props = replies[0].get("duplicateSheet", {}).get("properties", {})
        return {
            "spreadsheet_id": spreadsheet_id,
            "sheet_id": props.get("sheetId", 0),
            "title": props.get("title") or new_sheet_name or "Copy",
            "index": props.get("index", 0),
        }

    async def _create_pivot_table(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Compile a pivot-table specification and write it to the spreadsheet.

        Args:
            arguments: PivotTableSpec fields.

        Returns:
            Destination sheet and the number of groupings, values and filters.

        Raises:
            pydantic.ValidationError: If the arguments do not form a valid spec.
            PivotCompileError: If the spec cannot be compiled.
        """
        spec = PivotTableSpec.model_validate(
            {key: value for key, value in arguments.items() if key != "response_format"}
        )

        compiler = PivotTableCompiler(SheetsApiMetadataClient(self._make_request))
        descriptor = await compiler.compile(spec)

        url = f"{SHEETS_API_BASE}/spreadsheets/{spec.spreadsheet_id}:batchUpdate"
        await self._make_request(
            "POST", url, json_data={"requests": [descriptor.to_update_request()]}
        )
        logger.info(
            "Created pivot table in %s on sheet %s",
            spec.spreadsheet_id,
            descriptor.destination_sheet_id,
        )

        return {
            "spreadsheet_id": spec.spreadsheet_id,
            "pivot_table_sheet_id": descriptor.destination_sheet_id,
            "pivot_table_sheet_name": descriptor.destination_sheet_name or "(existing sheet)",
            "source_range": spec.source_range,
            "row_groups": len(descriptor.rows),
            "column_groups": len(descriptor.columns),
            "value_aggregations": len(descriptor.values),
            "filters": len(descriptor.filter_specs),
        }

    async def run(self) -> None:
        """Run the MCP server using stdio transport."""
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.close()


def main() -> None:
    """Entry point for the Google Workspace MCP server."""
    server = GoogleWorkspaceServer()
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
