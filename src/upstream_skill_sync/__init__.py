"""Mirror skill directories from upstream GitHub repositories and track their provenance."""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MANIFEST_FILENAME = "upstream.json"
"""The default name of the manifest file, relative to the repository root."""

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_ACCEPT_HEADER = "application/vnd.github.v3+json"


class UpstreamSyncSettings(BaseSettings):
    """Settings for syncing skill directories from upstream repositories."""

    model_config = SettingsConfigDict(
        env_prefix="UPSTREAM_SYNC_",
        use_attribute_docstrings=True,
    )

    root_path: Path = Path()
    """The repository root. Every `localPath` in the manifest is relative to this folder."""

    manifest_path: Path | None = None
    """Path to the manifest file. If None, `{root_path}/upstream.json` is used."""

    github_api_url: str = GITHUB_API_URL
    """Base URL of the GitHub REST API. Change this for GitHub Enterprise or a proxy."""

    github_token: str | None = None
    """Optional bearer token for the GitHub API. \
Set via UPSTREAM_SYNC_GITHUB_TOKEN or GITHUB_TOKEN environment variable."""

    request_timeout: float = 30
    """Timeout in seconds for each HTTP request."""

    verbose_logging: bool = False
    """Enable detailed logging for sync operations."""

    @model_validator(mode="after")
    def resolve_github_token(self) -> UpstreamSyncSettings:
        """Fall back to the GITHUB_TOKEN environment variable when no token was configured."""
        if self.github_token is None:
            self.github_token = os.getenv("GITHUB_TOKEN") or None
            if self.github_token is not None:
                logger.debug("Loaded GitHub token from GITHUB_TOKEN environment variable")
        elif os.getenv("GITHUB_TOKEN"):
            logger.warning(
                "Both UPSTREAM_SYNC_GITHUB_TOKEN and GITHUB_TOKEN are set. Using UPSTREAM_SYNC_GITHUB_TOKEN."
            )

        if self.request_timeout <= 0:
            logger.warning(f"request_timeout is {self.request_timeout}, but must be > 0. Setting to 30.")
            self.request_timeout = 30

        return self

    @property
    def resolved_manifest_path(self) -> Path:
        """Return the manifest path, defaulting to the manifest file in the repository root."""
        if self.manifest_path is not None:
            return self.manifest_path
        return self.root_path / MANIFEST_FILENAME


upstream_sync_settings = UpstreamSyncSettings()
"""Global instance of the upstream sync settings."""


from .exceptions import (  # noqa: E402
    ManifestUnreadable,
    PathNotFound,
    UpstreamSyncError,
    UpstreamUnavailable,
    WriteFailure,
)
from .github_contents import FetchedFile, GitHubContentsClient, short_revision  # noqa: E402
from .manifest import (  # noqa: E402
    NotSynced,
    SourceSelection,
    Synced,
    SyncManifest,
    TrackedPath,
    TrackedReference,
    UpstreamSource,
    load_manifest,
    save_manifest,
    select_sources,
)
from .synchronizer import EntryFailure, SyncReport, UpstreamSynchronizer  # noqa: E402

__all__ = [
    "GITHUB_API_URL",
    "MANIFEST_FILENAME",
    "EntryFailure",
    "FetchedFile",
    "GitHubContentsClient",
    "ManifestUnreadable",
    "NotSynced",
    "PathNotFound",
    "SourceSelection",
    "SyncManifest",
    "SyncReport",
    "Synced",
    "TrackedPath",
    "TrackedReference",
    "UpstreamSource",
    "UpstreamSyncError",
    "UpstreamSyncSettings",
    "UpstreamSynchronizer",
    "UpstreamUnavailable",
    "WriteFailure",
    "load_manifest",
    "save_manifest",
    "select_sources",
    "short_revision",
    "upstream_sync_settings",
]
