"""Errors raised while syncing upstream sources."""

from __future__ import annotations


class UpstreamSyncError(Exception):
    """Base class for all sync errors."""


class ManifestUnreadable(UpstreamSyncError):
    """The manifest is missing, is not valid JSON, or does not match the manifest schema.

    This is the only error that aborts a whole run.
    """


class UpstreamUnavailable(UpstreamSyncError):
    """The GitHub API (or a raw download URL) did not answer with a success status."""

    def __init__(self, url: str, status_code: int | None, reason: str) -> None:
        """Initialize with the failing URL, the HTTP status (None for transport errors) and the reason text."""
        self.url = url
        self.status_code = status_code
        self.reason = reason
        status = f"{status_code} {reason}" if status_code is not None else reason
        super().__init__(f"GitHub request failed: {status} ({url})")


class PathNotFound(UpstreamSyncError):
    """A configured remote path does not exist in its parent directory listing."""

    def __init__(self, repo: str, branch: str, path: str) -> None:
        """Initialize with the repository, branch and the missing path."""
        self.repo = repo
        self.branch = branch
        self.path = path
        super().__init__(f"Path not found in {repo}@{branch}: {path}")


class WriteFailure(UpstreamSyncError):
    """A fetched file could not be written to its local destination."""

    def __init__(self, destination: str, reason: str) -> None:
        """Initialize with the destination path and a description of what went wrong."""
        self.destination = destination
        self.reason = reason
        super().__init__(f"Failed to write {destination}: {reason}")
