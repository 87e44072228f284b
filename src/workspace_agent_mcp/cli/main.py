"""Command-line interface for workspace-agent-mcp."""

import asyncio
import sys

import click

from workspace_agent_mcp.__version__ import __version__

SETUP_HINT = "Run 'workspace-agent setup' to authenticate."


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Workspace Agent MCP Server - Gmail, Calendar and Sheets for agents.

    Tools provided:
    - Gmail (read messages and threads, labels, attachments, drafts)
    - Calendar (calendars, events, free/busy)
    - Sheets (values, spreadsheets, pivot tables)
    """


@main.command()
@click.option("--client-id", envvar="GOOGLE_OAUTH_CLIENT_ID", help="Google OAuth client ID")
@click.option(
    "--client-secret", envvar="GOOGLE_OAUTH_CLIENT_SECRET", help="Google OAuth client secret"
)
def setup(client_id: str | None, client_secret: str | None) -> None:
    """Authorize access to Gmail, Calendar and Sheets.

    Opens the browser for Google consent and stores the resulting tokens
    at ./.workspace-agent-mcp/tokens.json.

    Requires:
    - GOOGLE_OAUTH_CLIENT_ID environment variable or --client-id option
    - GOOGLE_OAUTH_CLIENT_SECRET environment variable or --client-secret option
    """
    from workspace_agent_mcp.auth import OAuthManager

    manager = OAuthManager()

    if manager.has_valid_tokens():
        click.echo("✓ Already authenticated!")
        click.echo(f"Token stored at: {manager.token_path}")
        click.echo("")

        if not click.confirm("Re-authenticate?"):
            return

    if not client_id or not client_secret:
        click.echo("❌ Error: OAuth client credentials required")
        click.echo("")
        click.echo("Set environment variables:")
        click.echo("  export GOOGLE_OAUTH_CLIENT_ID='your-client-id'")
        click.echo("  export GOOGLE_OAUTH_CLIENT_SECRET='your-client-secret'")
        click.echo("")
        click.echo("Or pass as options:")
        click.echo("  workspace-agent setup --client-id=... --client-secret=...")
        sys.exit(1)

    click.echo("Starting OAuth authentication flow...")
    click.echo("Browser will open for Google consent...")
    click.echo("")

    try:
        asyncio.run(manager.authenticate(client_id=client_id, client_secret=client_secret))
    except Exception as e:
        click.echo(f"❌ Authentication failed: {e}")
        sys.exit(1)

    click.echo("✓ Authentication successful!")
    click.echo(f"Token stored at: {manager.token_path}")
    click.echo("")
    click.echo("Run 'workspace-agent doctor' to verify setup.")


@main.command()
def mcp() -> None:
    """Start the MCP server on stdio.

    Authentication is required before starting the server. This command is
    normally launched by an MCP client rather than by hand.
    """
    from workspace_agent_mcp.auth import OAuthManager, TokenStatus
    from workspace_agent_mcp.server import main as server_main

    manager = OAuthManager()
    status, _ = manager.get_status()

    if status == TokenStatus.MISSING:
        click.echo(f"❌ Not authenticated. {SETUP_HINT}", err=True)
        sys.exit(1)

    if status == TokenStatus.INVALID:
        click.echo(f"❌ Token file corrupted. {SETUP_HINT}", err=True)
        sys.exit(1)

    # stdout carries the MCP protocol
    click.echo("Starting Workspace Agent MCP server...", err=True)
    try:
        server_main()
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)
    except Exception as e:
        click.echo(f"❌ Server error: {e}", err=True)
        sys.exit(1)


@main.command()
def doctor() -> None:
    """Check installation and authentication status."""
    from workspace_agent_mcp.auth import GOOGLE_WORKSPACE_SCOPES, OAuthManager, TokenStatus

    click.echo("Workspace Agent MCP Status:")
    click.echo("")

    click.echo("Dependencies:")
    try:
        import google.auth  # noqa: F401
        import google_auth_oauthlib  # noqa: F401
        import httpx  # noqa: F401
        import mcp  # noqa: F401

        click.echo("  ✓ google-auth, google-auth-oauthlib, httpx and mcp installed")
    except ImportError as e:
        click.echo(f"  ❌ Missing dependency: {e}")
        sys.exit(1)

    click.echo("")

    manager = OAuthManager()
    status, stored = manager.get_status()

    click.echo("Authentication:")
    click.echo(f"  Token file: {manager.token_path}")

    if status == TokenStatus.MISSING:
        click.echo("  ❌ Not authenticated")
        click.echo("")
        click.echo(SETUP_HINT)
        sys.exit(1)
    if status == TokenStatus.INVALID:
        click.echo("  ❌ Token file corrupted")
        click.echo("")
        click.echo(SETUP_HINT)
        sys.exit(1)

    if status == TokenStatus.EXPIRED:
        click.echo("  ⚠️  Token expired (refreshes automatically on use)")
    else:
        click.echo("  ✓ Authenticated")
        if stored:
            click.echo(
                f"  Token expires: {stored.token.expires_at.strftime('%Y-%m-%d %H:%M:%S UTC')}"
            )

    if stored:
        missing = sorted(set(GOOGLE_WORKSPACE_SCOPES) - set(stored.token.scopes))
        if missing:
            click.echo("  ⚠️  Missing scopes (re-run setup):")
            for scope in missing:
                click.echo(f"    - {scope}")
        else:
            click.echo(f"  Scopes: {len(stored.token.scopes)} granted")

    click.echo("")
    click.echo("✓ Ready to use!")


if __name__ == "__main__":
    main()
