"""Command-line interface for workspace-agent-mcp."""
