"""Version information for workspace-agent-mcp."""

from pathlib import Path


def _get_version() -> str:
    """Read the VERSION file shipped with the package or the repository root."""
    candidates = [
        Path(__file__).parent / "VERSION",
        Path(__file__).parent.parent.parent / "VERSION",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate.read_text().strip()
    return "0.1.0"


__version__ = _get_version()
