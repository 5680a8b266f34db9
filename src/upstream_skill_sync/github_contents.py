"""Async client for the GitHub contents API: directory listings, raw downloads and revision lookups."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from types import TracebackType
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from upstream_skill_sync import GITHUB_API_ACCEPT_HEADER, upstream_sync_settings
from upstream_skill_sync.exceptions import PathNotFound, UpstreamUnavailable

SHORT_REVISION_LENGTH = 8


class GitHubContentEntry(BaseModel):
    """One entry of a contents API directory listing."""

    model_config = ConfigDict(extra="ignore")

    name: str
    path: str
    sha: str
    type: str
    """`file`, `dir`, `symlink` or `submodule`."""
    download_url: str | None = None
    """Direct raw-content URL. Only set for files."""


_listing_adapter: TypeAdapter[list[GitHubContentEntry]] = TypeAdapter(list[GitHubContentEntry])


@dataclass(frozen=True)
class FetchedFile:
    """A file downloaded from an upstream repository."""

    path: str
    """The file's path within the upstream repository."""
    content: bytes
    """The raw file content, exactly as served."""

    @property
    def text(self) -> str:
        """The content decoded as UTF-8."""
        return self.content.decode("utf-8")


def short_revision(revision_tag: str) -> str:
    """Return the abbreviated form of a revision tag used in log output."""
    return revision_tag[:SHORT_REVISION_LENGTH]


def split_remote_path(path: str) -> tuple[str, str]:
    """Split a repository path into its parent directory and its leaf name.

    Args:
        path (str): A path within a repository, e.g. `skills/foo`.

    Returns:
        tuple[str, str]: `("skills", "foo")`. The parent is an empty string for top level paths.
    """
    parent, _, leaf = path.strip("/").rpartition("/")
    return parent, leaf


class GitHubContentsClient:
    """Reads directory trees and revision tags from GitHub repositories.

    Use as an async context manager. An `httpx.AsyncClient` may be passed in to share connections; otherwise the
    client creates (and later closes) its own.
    """

    def __init__(
        self,
        *,
        api_url: str | None = None,
        github_token: str | None = None,
        timeout: float | None = None,
        httpx_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the contents client.

        Args:
            api_url: Base URL of the GitHub REST API. Defaults to the configured API URL.
            github_token: Bearer token sent to the API. Defaults to the configured token, if any.
            timeout: Request timeout in seconds. Defaults to the configured timeout.
            httpx_client: An optional shared async client.
        """
        self._api_url = (api_url or upstream_sync_settings.github_api_url).rstrip("/")
        self._github_token = github_token if github_token is not None else upstream_sync_settings.github_token
        self._timeout = timeout if timeout is not None else upstream_sync_settings.request_timeout

        self._httpx_client = httpx_client
        self._owns_client = httpx_client is None

        if self._github_token:
            logger.debug("Using GitHub token authentication for the contents API")
        else:
            logger.debug("No GitHub token configured, requests are subject to anonymous rate limits")

    async def __aenter__(self) -> GitHubContentsClient:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - closes the client if this instance created it."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if it is owned by this instance."""
        if self._owns_client and self._httpx_client is not None:
            await self._httpx_client.aclose()
            self._httpx_client = None

    @property
    def _client(self) -> httpx.AsyncClient:
        if self._httpx_client is None:
            self._httpx_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
            self._owns_client = True
        return self._httpx_client

    def _api_headers(self) -> dict[str, str]:
        headers = {"Accept": GITHUB_API_ACCEPT_HEADER}
        if self._github_token:
            headers["Authorization"] = f"Bearer {self._github_token}"
        return headers

    def contents_url(self, repo: str, path: str) -> str:
        """Return the contents API URL for a path in a repository (the repository root for an empty path)."""
        path = path.strip("/")
        if not path:
            return f"{self._api_url}/repos/{repo}/contents"
        return f"{self._api_url}/repos/{repo}/contents/{quote(path)}"

    async def _get(
        self,
        url: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.debug(f"Request to {url} failed: {e!r}")
            raise UpstreamUnavailable(url, None, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise UpstreamUnavailable(url, response.status_code, response.reason_phrase)

        return response

    async def list_directory(self, repo: str, branch: str, path: str) -> list[GitHubContentEntry]:
        """List a directory via the contents API.

        Args:
            repo: The repository in 'owner/name' format.
            branch: The branch or ref to read.
            path: The directory (or file) path. An empty path lists the repository root.

        Returns:
            The listing entries. When `path` is a file, a single entry describing that file.

        Raises:
            UpstreamUnavailable: If the listing request fails or its body is not a contents listing.
        """
        url = self.contents_url(repo, path)
        logger.debug(f"Listing {repo}@{branch}:/{path.strip('/')}")
        response = await self._get(url, params={"ref": branch}, headers=self._api_headers())

        try:
            payload: Any = response.json()
            if isinstance(payload, dict):
                payload = [payload]
            return _listing_adapter.validate_python(payload)
        except (ValueError, ValidationError) as e:
            raise UpstreamUnavailable(url, response.status_code, f"Unexpected contents listing: {e}") from e

    async def fetch_file(self, download_url: str) -> bytes:
        """Download a file's raw content from its direct download URL.

        Raises:
            UpstreamUnavailable: If the download fails.
        """
        response = await self._get(download_url)
        return response.content

    async def fetch_tree(self, repo: str, branch: str, path: str) -> list[FetchedFile]:
        """Fetch every file below a remote path.

        Subdirectories are walked recursively and siblings are fetched concurrently. If one sibling fails, the
        others are cancelled. Entries that are neither files nor directories (symlinks, submodules) are skipped.

        Args:
            repo: The repository in 'owner/name' format.
            branch: The branch or ref to read.
            path: The directory to fetch. A file path fetches just that file.

        Returns:
            Every file in the tree as one flat list, in no particular order. Empty for an empty directory.

        Raises:
            UpstreamUnavailable: If any listing or download in the tree fails.
        """
        entries = await self.list_directory(repo, branch, path)

        async def fetch_entry(entry: GitHubContentEntry) -> list[FetchedFile]:
            if entry.type == "file" and entry.download_url:
                content = await self.fetch_file(entry.download_url)
                return [FetchedFile(path=entry.path, content=content)]
            if entry.type == "dir":
                return await self.fetch_tree(repo, branch, entry.path)

            logger.debug(f"Skipping {entry.type} entry {entry.path} in {repo}@{branch}")
            return []

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(fetch_entry(entry)) for entry in entries]
        except ExceptionGroup as e:
            # Remaining siblings were cancelled; surface the first failure itself.
            raise e.exceptions[0]

        return [fetched for task in tasks for fetched in task.result()]

    async def resolve_revision(self, repo: str, branch: str, path: str) -> str:
        """Find the current revision tag (git object SHA) of a path without downloading it.

        The parent directory is listed and the entry named like the path's leaf is looked up.

        Args:
            repo: The repository in 'owner/name' format.
            branch: The branch or ref to read.
            path: The file or directory path.

        Returns:
            The revision tag.

        Raises:
            UpstreamUnavailable: If the parent listing fails.
            PathNotFound: If the parent has no entry with the leaf's name.
        """
        parent, leaf = split_remote_path(path)
        entries = await self.list_directory(repo, branch, parent)

        for entry in entries:
            if entry.name == leaf:
                return entry.sha

        raise PathNotFound(repo, branch, path)
