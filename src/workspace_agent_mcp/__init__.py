"""Workspace agent MCP server.

Exposes Gmail, Calendar and Sheets to agents over the Model Context Protocol,
including a pivot-table compiler for Google Sheets.
"""

from workspace_agent_mcp.__version__ import __version__

__all__ = ["__version__"]
