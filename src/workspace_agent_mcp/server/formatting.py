"""Text rendering for tool results.

Handlers return plain dictionaries. This module turns them into the text sent
back over MCP: Markdown by default, pretty-printed JSON on request. Markdown
is capped at CHARACTER_LIMIT characters; JSON is returned whole so it parses.
"""

import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

CHARACTER_LIMIT = 25000
TRUNCATION_NOTICE = "\n\n[Data truncated...]"

RESPONSE_FORMAT_MARKDOWN = "markdown"
RESPONSE_FORMAT_JSON = "json"

Renderer = Callable[[dict[str, Any]], str]


def truncate(text: str, limit: int = CHARACTER_LIMIT) -> str:
    """Cut text at ``limit`` characters and append a truncation notice."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_NOTICE


def _kb(size: int | None) -> str:
    return f"{(size or 0) / 1024:.1f}"


def _more_available(result: dict[str, Any]) -> str:
    return " (more available)" if result.get("next_page_token") else ""


def _page_hint(result: dict[str, Any], noun: str) -> list[str]:
    token = result.get("next_page_token")
    if not token:
        return []
    return [f'*Use page_token="{token}" to load more {noun}.*']


# =============================================================================
# Gmail
# =============================================================================


def _message_summary(message: dict[str, Any]) -> str:
    lines = [
        f"### {message.get('subject') or '(no subject)'}",
        f"- **From**: {message.get('from') or 'Unknown'}",
        f"- **To**: {message.get('to') or 'Unknown'}",
        f"- **Date**: {message.get('date') or 'Unknown'}",
        f"- **ID**: `{message.get('id')}`",
    ]
    if message.get("labels"):
        lines.append(f"- **Labels**: {', '.join(message['labels'])}")
    if message.get("snippet"):
        lines.append(f"- **Preview**: {message['snippet']}")
    return "\n".join(lines)


def render_message_list(result: dict[str, Any]) -> str:
    messages = result.get("messages", [])
    if not messages:
        query = result.get("query")
        return f'No messages found matching "{query}".' if query else "No messages found."

    lines = [
        "# Gmail Messages",
        "",
        f"Found {len(messages)} message(s){_more_available(result)}.",
        "",
    ]
    for message in messages:
        lines.extend([_message_summary(message), ""])
    lines.extend(_page_hint(result, "messages"))
    return "\n".join(lines)


def render_message(result: dict[str, Any]) -> str:
    lines = [
        f"# {result.get('subject') or '(no subject)'}",
        "",
        f"**From**: {result.get('from') or 'Unknown'}",
        f"**To**: {result.get('to') or 'Unknown'}",
    ]
    if result.get("cc"):
        lines.append(f"**CC**: {result['cc']}")
    lines.extend(
        [
            f"**Date**: {result.get('date') or 'Unknown'}",
            f"**Labels**: {', '.join(result.get('labels', [])) or 'None'}",
            "",
            "---",
            "",
            result.get("body") or "(no body content)",
        ]
    )
    return "\n".join(lines)


def render_thread_list(result: dict[str, Any]) -> str:
    threads = result.get("threads", [])
    if not threads:
        return "No threads found."

    lines = [
        "# Gmail Threads",
        "",
        f"Found {len(threads)} thread(s){_more_available(result)}.",
        "",
    ]
    for thread in threads:
        lines.extend(
            [
                f"### {thread['subject']}",
                f"- **From**: {thread['from']}",
                f"- **Messages**: {thread['message_count']}",
                f"- **Last activity**: {thread['date']}",
                f"- **ID**: `{thread['id']}`",
                f"- **Preview**: {thread.get('snippet', '')}",
                "",
            ]
        )
    lines.extend(_page_hint(result, "threads"))
    return "\n".join(lines)


def render_thread(result: dict[str, Any]) -> str:
    messages = result.get("messages", [])
    first_subject = (messages[0].get("subject") if messages else None) or "(no subject)"
    lines = [
        f"# Thread: {first_subject}",
        "",
        f"{len(messages)} message(s) in this thread.",
        "",
    ]
    for number, message in enumerate(messages, start=1):
        lines.extend(
            [
                f"## Message {number}",
                "",
                f"**From**: {message.get('from') or 'Unknown'}",
                f"**To**: {message.get('to') or 'Unknown'}",
                f"**Date**: {message.get('date') or 'Unknown'}",
                "",
                message.get("body") or "(no body content)",
                "",
                "---",
                "",
            ]
        )
    return "\n".join(lines)


def render_labels(result: dict[str, Any]) -> str:
    lines = ["# Gmail Labels", "", "## System Labels", ""]
    for label in result.get("system_labels", []):
        lines.append(f"- **{label['name']}** (`{label['id']}`)")

    user_labels = result.get("user_labels", [])
    if user_labels:
        lines.extend(["", "## User Labels", ""])
        for label in user_labels:
            lines.append(f"- **{label['name']}** (`{label['id']}`)")
    return "\n".join(lines)


def render_draft(result: dict[str, Any]) -> str:
    return (
        "Draft created successfully.\n\n"
        f"**Draft ID**: {result.get('draft_id')}\n"
        f"**To**: {', '.join(result.get('to', []))}\n"
        f"**Subject**: {result.get('subject')}\n\n"
        "The draft is saved in your Gmail Drafts folder. It will NOT be sent automatically."
    )


def render_attachment_list(result: dict[str, Any]) -> str:
    attachments = result.get("attachments", [])
    if not attachments:
        return "No attachments found in this message."

    lines = [
        "# Message Attachments",
        "",
        f"Found {len(attachments)} attachment(s).",
        "",
    ]
    for attachment in attachments:
        lines.extend(
            [
                f"### {attachment['filename']}",
                f"- **Type**: {attachment['mime_type']}",
                f"- **Size**: {_kb(attachment.get('size'))} KB",
                f"- **Attachment ID**: `{attachment['attachment_id']}`",
                "",
            ]
        )
    return "\n".join(lines)


def render_attachment(result: dict[str, Any]) -> str:
    header = (
        f"**Attachment**: {result.get('filename')}\n"
        f"**Size**: {_kb(result.get('size'))} KB\n"
        f"**Type**: {result.get('mime_type')}"
    )
    if result.get("content") is not None:
        return f"{header}\n\n---\n\n{result['content']}"
    return f"{header}\n\nFile saved to: {result.get('saved_path')}\n\nUse the Read tool to access this file."


# =============================================================================
# Calendar
# =============================================================================


def format_event_time(value: str | None, all_day: bool = False) -> str:
    """Human-readable event boundary; all-day events show their date."""
    if not value:
        return "Unknown"
    if all_day:
        return f"{value} (all day)"
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M %Z").strip()
    except ValueError:
        return value


def _event_summary(event: dict[str, Any]) -> str:
    all_day = event.get("is_all_day", False)
    lines = [
        f"### {event.get('summary') or '(no title)'}",
        f"- **When**: {format_event_time(event.get('start'), all_day)} → "
        f"{format_event_time(event.get('end'), all_day)}",
        f"- **ID**: `{event.get('id')}`",
    ]
    if event.get("location"):
        lines.append(f"- **Location**: {event['location']}")
    if event.get("status") and event["status"] != "confirmed":
        lines.append(f"- **Status**: {event['status']}")
    if event.get("attendees"):
        lines.append(f"- **Attendees**: {', '.join(event['attendees'])}")
    description = event.get("description")
    if description:
        if len(description) > 200:
            description = description[:200] + "..."
        lines.append(f"- **Description**: {description}")
    return "\n".join(lines)


def render_calendar_list(result: dict[str, Any]) -> str:
    calendars = result.get("calendars", [])
    lines = ["# Your Calendars", "", f"Found {len(calendars)} calendar(s).", ""]
    for calendar in calendars:
        marker = " ⭐ (Primary)" if calendar.get("primary") else ""
        lines.extend(
            [
                f"### {calendar['summary']}{marker}",
                f"- **ID**: `{calendar['id']}`",
                f"- **Access**: {calendar['access_role']}",
            ]
        )
        if calendar.get("description"):
            lines.append(f"- **Description**: {calendar['description']}")
        lines.append("")
    return "\n".join(lines)


def render_event_list(result: dict[str, Any]) -> str:
    events = result.get("events", [])
    if not events:
        query = result.get("query")
        if query:
            return f'No events found matching "{query}".'
        return "No events found in the specified time range."

    lines = [
        "# Calendar Events",
        "",
        f"Found {len(events)} event(s){_more_available(result)}.",
        "",
    ]
    for event in events:
        lines.extend([_event_summary(event), ""])
    lines.extend(_page_hint(result, "events"))
    return "\n".join(lines)


_RESPONSE_MARKERS = {"accepted": "✓", "declined": "✗", "tentative": "?"}


def render_event(result: dict[str, Any]) -> str:
    all_day = result.get("is_all_day", False)
    lines = [
        f"# {result.get('summary') or '(no title)'}",
        "",
        f"**When**: {format_event_time(result.get('start'), all_day)} → "
        f"{format_event_time(result.get('end'), all_day)}",
        f"**Status**: {result.get('status')}",
    ]
    if result.get("location"):
        lines.append(f"**Location**: {result['location']}")
    organizer = result.get("organizer") or {}
    if organizer.get("email"):
        lines.append(f"**Organizer**: {organizer.get('display_name') or organizer['email']}")
    if result.get("html_link"):
        lines.append(f"**Link**: {result['html_link']}")

    conference = result.get("conference")
    if conference:
        lines.extend(["", "## Conference Info", "", f"**Type**: {conference['type']}"])
        for entry_point in conference.get("entry_points", []):
            lines.append(f"- {entry_point['type']}: {entry_point['uri']}")

    attendees = result.get("attendees", [])
    if attendees:
        lines.extend(["", "## Attendees", ""])
        for attendee in attendees:
            marker = _RESPONSE_MARKERS.get(attendee.get("response_status"), "•")
            name = attendee.get("display_name") or attendee.get("email")
            role = " (organizer)" if attendee.get("organizer") else ""
            lines.append(f"- {marker} {name}{role}")

    if result.get("description"):
        lines.extend(["", "## Description", "", result["description"]])
    if result.get("recurrence"):
        lines.extend(["", "## Recurrence", "", "\n".join(result["recurrence"])])
    return "\n".join(lines)


def render_free_busy(result: dict[str, Any]) -> str:
    lines = [
        "# Free/Busy",
        "",
        f"**From**: {result.get('time_min')}",
        f"**To**: {result.get('time_max')}",
    ]
    for calendar_id, info in result.get("calendars", {}).items():
        lines.extend(["", f"## {calendar_id}", ""])
        if info.get("errors"):
            reasons = ", ".join(error.get("reason", "unknown") for error in info["errors"])
            lines.append(f"*Unavailable: {reasons}*")
            continue
        busy = info.get("busy", [])
        if not busy:
            lines.append("Free for the whole window.")
        for period in busy:
            lines.append(f"- Busy {period.get('start')} → {period.get('end')}")
    return "\n".join(lines)


# =============================================================================
# Sheets
# =============================================================================


def format_values_table(values: list[list[Any]] | None, cell_range: str) -> str:
    """Render a block of cell values as a Markdown table."""
    if not values:
        return f"No data found in range: {cell_range}"

    width = max(len(row) for row in values)
    headers = [f"Col {i + 1}" for i in range(width)]
    lines = [
        f"## Data from {cell_range}",
        "",
        f"| {' | '.join(headers)} |",
        f"| {' | '.join('---' for _ in headers)} |",
    ]
    for row in values:
        cells = ["" if cell is None else str(cell) for cell in row]
        cells.extend([""] * (width - len(cells)))
        lines.append(f"| {' | '.join(cells)} |")
    return "\n".join(lines)


def render_spreadsheet(result: dict[str, Any]) -> str:
    sheet_lines = []
    for sheet in result.get("sheets", []):
        sheet_lines.extend(
            [
                f"- **{sheet['title']}** (ID: {sheet['sheet_id']})",
                f"  - Type: {sheet.get('sheet_type') or 'GRID'}",
                f"  - Rows: {sheet.get('row_count') or 0}",
                f"  - Columns: {sheet.get('column_count') or 0}",
            ]
        )
    return "\n".join(
        [
            f"# {result.get('title')}",
            "",
            f"**Spreadsheet ID**: {result.get('spreadsheet_id')}",
            f"**URL**: {result.get('spreadsheet_url') or 'N/A'}",
            f"**Locale**: {result.get('locale')}",
            "",
            "## Sheets",
            "",
            "\n".join(sheet_lines) or "No sheets found",
        ]
    )


def render_values(result: dict[str, Any]) -> str:
    return format_values_table(result.get("values"), result.get("range") or "Unknown")


def render_batch_values(result: dict[str, Any]) -> str:
    return "\n\n---\n\n".join(
        format_values_table(value_range.get("values"), value_range.get("range") or "Unknown")
        for value_range in result.get("value_ranges", [])
    )


def render_update(result: dict[str, Any]) -> str:
    return (
        "Values updated successfully.\n\n"
        f"**Range**: {result.get('updated_range')}\n"
        f"**Cells updated**: {result.get('updated_cells', 0)} "
        f"({result.get('updated_rows', 0)} rows × {result.get('updated_columns', 0)} columns)"
    )


def render_append(result: dict[str, Any]) -> str:
    return (
        "Data appended successfully.\n\n"
        f"**Table range**: {result.get('table_range') or 'N/A'}\n"
        f"**Appended to**: {result.get('updated_range')}\n"
        f"**Rows added**: {result.get('updated_rows', 0)}"
    )


def render_created_spreadsheet(result: dict[str, Any]) -> str:
    return (
        "Spreadsheet created successfully.\n\n"
        f"**Title**: {result.get('title')}\n"
        f"**ID**: {result.get('spreadsheet_id')}\n"
        f"**URL**: {result.get('spreadsheet_url')}\n"
        f"**Sheets**: {', '.join(sheet['title'] for sheet in result.get('sheets', []))}"
    )


def render_batch_update(result: dict[str, Any]) -> str:
    return (
        f"Batch update applied successfully to spreadsheet {result.get('spreadsheet_id')}.\n\n"
        f"{len(result.get('replies', []))} operation(s) completed."
    )


def render_clear(result: dict[str, Any]) -> str:
    return f"Values cleared successfully.\n\n**Cleared range**: {result.get('cleared_range')}"


def render_duplicate_sheet(result: dict[str, Any]) -> str:
    return (
        "Sheet duplicated successfully.\n\n"
        f"**New Sheet Name**: {result.get('title')}\n"
        f"**Sheet ID**: {result.get('sheet_id')}"
    )


def render_pivot_table(result: dict[str, Any]) -> str:
    return (
        "Pivot table created successfully.\n\n"
        f"**Sheet**: {result.get('pivot_table_sheet_name')} "
        f"(ID: {result.get('pivot_table_sheet_id')})\n"
        f"**Source**: {result.get('source_range')}\n"
        f"**Row Groups**: {result.get('row_groups')}\n"
        f"**Column Groups**: {result.get('column_groups')}\n"
        f"**Values**: {result.get('value_aggregations')}\n"
        f"**Filters**: {result.get('filters')}"
    )


MARKDOWN_RENDERERS: dict[str, Renderer] = {
    "gmail_list_messages": render_message_list,
    "gmail_get_message": render_message,
    "gmail_list_threads": render_thread_list,
    "gmail_get_thread": render_thread,
    "gmail_list_labels": render_labels,
    "gmail_create_draft": render_draft,
    "gmail_list_attachments": render_attachment_list,
    "gmail_get_attachment": render_attachment,
    "calendar_list_calendars": render_calendar_list,
    "calendar_list_events": render_event_list,
    "calendar_get_event": render_event,
    "calendar_query_free_busy": render_free_busy,
    "sheets_get_spreadsheet": render_spreadsheet,
    "sheets_get_values": render_values,
    "sheets_batch_get_values": render_batch_values,
    "sheets_update_values": render_update,
    "sheets_append_values": render_append,
    "sheets_create_spreadsheet": render_created_spreadsheet,
    "sheets_batch_update": render_batch_update,
    "sheets_clear_values": render_clear,
    "sheets_duplicate_sheet": render_duplicate_sheet,
    "sheets_create_pivot_table": render_pivot_table,
}


def render_result(
    tool_name: str, result: dict[str, Any], response_format: str = RESPONSE_FORMAT_MARKDOWN
) -> str:
    """Render a handler result for the given tool.

    Args:
        tool_name: Name of the tool that produced the result.
        result: Dictionary returned by the tool handler.
        response_format: ``markdown`` or ``json``.

    Returns:
        Rendered text. Markdown is truncated to CHARACTER_LIMIT.
    """
    renderer = MARKDOWN_RENDERERS.get(tool_name)
    if response_format == RESPONSE_FORMAT_JSON or renderer is None:
        return json.dumps(result, indent=2, default=str)
    return truncate(renderer(result))
