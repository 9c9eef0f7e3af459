"""Integration plane: read-only version-control metadata."""

from patchgate.integration_plane.git_engine import (
    GitCommandError,
    GitEngineError,
    GitMetadata,
    GitMetadataReader,
)

__all__ = ["GitCommandError", "GitEngineError", "GitMetadata", "GitMetadataReader"]
