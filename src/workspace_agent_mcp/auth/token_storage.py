"""OAuth token storage for the Workspace agent MCP server.

Tokens are kept as JSON without encryption.

Storage Location: ./.workspace-agent-mcp/tokens.json (PROJECT-LEVEL ONLY)

Tokens are stored at project level since OAuth client credentials are
project-specific too. Different projects can connect to different Google
accounts; each one runs `workspace-agent setup` once.
"""

import json
import logging
import os
from pathlib import Path

from workspace_agent_mcp.auth.models import (
    OAuthToken,
    StoredToken,
    TokenMetadata,
    TokenStatus,
)

logger = logging.getLogger(__name__)

CREDENTIALS_DIR_NAME = ".workspace-agent-mcp"


def get_token_path() -> Path:
    """Get the project-level token storage path.

    Returns:
        Path to tokens.json in ./.workspace-agent-mcp/ of the working directory.
    """
    return Path.cwd() / CREDENTIALS_DIR_NAME / "tokens.json"


class TokenStorage:
    """JSON-based storage for OAuth tokens, keyed by service name.

    Attributes:
        token_path: Path to the tokens.json file.

    Example:
        ```python
        storage = TokenStorage()
        metadata = TokenMetadata(service_name="workspace-agent-mcp")
        storage.store("workspace-agent-mcp", token, metadata)

        stored = storage.retrieve("workspace-agent-mcp")
        if stored:
            print(f"Token expires at: {stored.token.expires_at}")
        ```
    """

    def __init__(self, token_path: Path | None = None) -> None:
        """Initialize token storage.

        Args:
            token_path: Custom path for tokens.json. Defaults to the
                project-level ./.workspace-agent-mcp/tokens.json.
        """
        self.token_path = token_path or get_token_path()
        self.credentials_dir = self.token_path.parent
        self._ensure_credentials_dir()

    def _ensure_credentials_dir(self) -> None:
        """Create credentials directory with owner-only permissions if needed."""
        if not self.credentials_dir.exists():
            self.credentials_dir.mkdir(parents=True, mode=0o700)
        else:
            self.credentials_dir.chmod(0o700)

    def _load_tokens(self) -> dict[str, dict]:
        """Read every stored record; an unreadable file counts as empty."""
        if not self.token_path.exists():
            return {}

        try:
            data = json.loads(self.token_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read token file {self.token_path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed token file {self.token_path}")
            return {}
        return data

    def _save_tokens(self, tokens: dict[str, dict]) -> None:
        """Replace tokens.json atomically, readable by the owner only."""
        self._ensure_credentials_dir()

        staging_path = self.token_path.with_suffix(".tmp")
        fd = os.open(staging_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(tokens, f, indent=2, default=str)
        os.replace(staging_path, self.token_path)
        self.token_path.chmod(0o600)

    def store(
        self,
        service_name: str,
        token: OAuthToken,
        metadata: TokenMetadata,
    ) -> None:
        """Store an OAuth token, replacing any previous token for the service.

        Args:
            service_name: Unique identifier for the service.
            token: OAuth token data to store.
            metadata: Token metadata including provider info.
        """
        stored_token = StoredToken(version=1, metadata=metadata, token=token)

        tokens = self._load_tokens()
        tokens[service_name] = json.loads(stored_token.model_dump_json())
        self._save_tokens(tokens)

    def retrieve(self, service_name: str) -> StoredToken | None:
        """Retrieve a stored OAuth token.

        Returns:
            StoredToken if found and parseable, None otherwise.
        """
        tokens = self._load_tokens()

        if service_name not in tokens:
            return None

        try:
            return StoredToken.model_validate(tokens[service_name])
        except (ValueError, KeyError):
            return None

    def get_status(self, service_name: str) -> TokenStatus:
        """Get the status of a stored token.

        Args:
            service_name: Unique identifier for the service.

        Returns:
            TokenStatus indicating the token's current state.
        """
        stored = self.retrieve(service_name)

        if stored is None:
            if service_name in self._load_tokens():
                # Present but unparseable
                return TokenStatus.INVALID
            return TokenStatus.MISSING

        if stored.token.is_expired():
            return TokenStatus.EXPIRED

        return TokenStatus.VALID
