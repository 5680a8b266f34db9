"""Sync orchestration: resolve, fetch, write and record every selected manifest entry."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Literal

import aiofiles
import aiofiles.os
from loguru import logger

from upstream_skill_sync.exceptions import UpstreamSyncError, WriteFailure
from upstream_skill_sync.github_contents import FetchedFile, GitHubContentsClient, short_revision
from upstream_skill_sync.manifest import (
    SyncManifest,
    TrackedPath,
    TrackedReference,
    UpstreamSource,
    load_manifest,
    save_manifest,
    select_sources,
)

EntryKind = Literal["path", "reference"]


@dataclass
class EntryUpdate:
    """A manifest entry that synced successfully."""

    repo: str
    branch: str
    remote_path: str
    kind: EntryKind
    revision_tag: str
    files_written: int = 0


@dataclass
class EntryFailure:
    """A manifest entry that failed to sync. Its manifest record was left untouched."""

    repo: str
    branch: str
    remote_path: str
    kind: EntryKind
    error: Exception

    def describe(self) -> str:
        """Return a one line description of the failure."""
        return f"{self.repo} ({self.branch}) {self.kind} {self.remote_path}: {self.error}"


EntryOutcome = EntryUpdate | EntryFailure


@dataclass
class SyncReport:
    """The outcome of one sync run."""

    updated: list[EntryUpdate] = field(default_factory=list)
    failures: list[EntryFailure] = field(default_factory=list)

    nothing_to_sync: bool = False
    """True when an incremental run found no never-synced entries and made no changes."""

    manifest_written: bool = False
    manifest_error: UpstreamSyncError | None = None
    """Set if the manifest could not be saved at the end of the run."""

    def add(self, outcome: EntryOutcome) -> None:
        """Record an entry outcome."""
        if isinstance(outcome, EntryFailure):
            self.failures.append(outcome)
        else:
            self.updated.append(outcome)

    def has_failures(self) -> bool:
        """Return True if any entry failed or the manifest could not be saved."""
        return bool(self.failures) or self.manifest_error is not None

    def exit_code(self) -> int:
        """Return the process exit code for this run (0 for success, 1 for failure)."""
        return 1 if self.has_failures() else 0

    def summary(self) -> str:
        """Return a human-readable summary of the run."""
        if self.nothing_to_sync:
            return "No new upstreams to sync."

        lines = [f"Entries updated: {len(self.updated)}", f"Entries failed: {len(self.failures)}"]
        for failure in self.failures:
            lines.append(f"  ✗ {failure.describe()}")
        return "\n".join(lines)


class UpstreamSynchronizer:
    """Syncs the entries of a manifest from their upstream repositories into a local working copy."""

    def __init__(
        self,
        contents_client: GitHubContentsClient,
        *,
        root_path: Path,
        manifest_path: Path,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            contents_client: The client used to talk to GitHub.
            root_path: The repository root that every `localPath` is relative to.
            manifest_path: Where the manifest is loaded from and saved to.
            now: Clock used for `lastSync` timestamps. Defaults to the current UTC time.
        """
        self._contents = contents_client
        self._root_path = root_path
        self._manifest_path = manifest_path
        self._now = now or (lambda: datetime.now(UTC))

    async def run(self, *, new_only: bool = False) -> SyncReport:
        """Load the manifest, sync the selected entries and save the manifest once everything settled.

        Args:
            new_only: Only sync entries that were never synced before.

        Returns:
            The run report. Entry failures are recorded there and do not prevent the manifest from being saved.

        Raises:
            ManifestUnreadable: If the manifest cannot be loaded. Nothing is fetched or written in that case.
        """
        manifest = load_manifest(self._manifest_path)
        report = await self.sync_manifest(manifest, new_only=new_only)

        logger.info(report.summary())
        if report.nothing_to_sync:
            return report

        try:
            save_manifest(manifest, self._manifest_path)
        except WriteFailure as e:
            report.manifest_error = e
            logger.error(f"Failed to save manifest: {e}")
            logger.error("Manifest was not updated.")
            return report

        report.manifest_written = True
        logger.info("Manifest updated.")
        return report

    async def sync_manifest(self, manifest: SyncManifest, *, new_only: bool = False) -> SyncReport:
        """Sync the selected entries of an already loaded manifest, mutating it in place.

        Args:
            manifest: The manifest to sync. Successful entries get a new revision tag and timestamp.
            new_only: Only sync entries that were never synced before.

        Returns:
            The run report.
        """
        selections = [
            selection for selection in select_sources(manifest.upstreams, new_only) if not selection.is_empty()
        ]

        if new_only and not selections:
            return SyncReport(nothing_to_sync=True)

        logger.info(f"Syncing {len(selections)} upstream(s)")

        async def sync_source(
            source: UpstreamSource,
            paths: list[TrackedPath],
            references: list[TrackedReference],
        ) -> list[EntryOutcome]:
            logger.info(f"Upstream: {source.repo} ({source.branch})")
            outcomes: list[EntryOutcome] = list(
                await asyncio.gather(*(self.sync_path(source, tracked_path) for tracked_path in paths))
            )
            for reference in references:
                outcomes.append(await self.sync_reference(source, reference))
            return outcomes

        results = await asyncio.gather(
            *(sync_source(selection.source, selection.paths, selection.references) for selection in selections)
        )

        report = SyncReport()
        for outcomes in results:
            for outcome in outcomes:
                report.add(outcome)
        return report

    async def sync_path(self, source: UpstreamSource, tracked_path: TrackedPath) -> EntryOutcome:
        """Resolve, fetch and write one tracked path, then record its new revision.

        The manifest entry is only updated once every file has been written.
        """
        logger.info(f"  Syncing {tracked_path.remote_path} -> {tracked_path.local_path}")

        try:
            revision_tag = await self._contents.resolve_revision(source.repo, source.branch, tracked_path.api_path)
            logger.info(f"  {tracked_path.remote_path} SHA: {short_revision(revision_tag)}")

            files = await self._contents.fetch_tree(source.repo, source.branch, tracked_path.api_path)
            for fetched in files:
                destination = self.destination_for(tracked_path, fetched)
                await self.write_file(destination, fetched.content)
                logger.info(f"    wrote {destination.relative_to(self._root_path).as_posix()}")
        except Exception as e:
            return self._failed(source, tracked_path.remote_path, "path", e)

        tracked_path.mark_synced(revision_tag, self._now())
        logger.info(f"  ✓ {tracked_path.remote_path} ({short_revision(revision_tag)}, {len(files)} file(s))")
        return EntryUpdate(
            repo=source.repo,
            branch=source.branch,
            remote_path=tracked_path.remote_path,
            kind="path",
            revision_tag=revision_tag,
            files_written=len(files),
        )

    async def sync_reference(self, source: UpstreamSource, reference: TrackedReference) -> EntryOutcome:
        """Resolve one tracked reference and record its new revision. No files are written."""
        try:
            revision_tag = await self._contents.resolve_revision(source.repo, source.branch, reference.api_path)
        except Exception as e:
            return self._failed(source, reference.remote_path, "reference", e)

        reference.mark_synced(revision_tag, self._now())
        logger.info(f"  Reference updated: {reference.remote_path} ({short_revision(revision_tag)})")
        return EntryUpdate(
            repo=source.repo,
            branch=source.branch,
            remote_path=reference.remote_path,
            kind="reference",
            revision_tag=revision_tag,
        )

    def _failed(self, source: UpstreamSource, remote_path: str, kind: EntryKind, error: Exception) -> EntryFailure:
        if isinstance(error, UpstreamSyncError):
            logger.error(f"  ✗ {source.repo} ({source.branch}) {remote_path}: {error}")
        else:
            logger.opt(exception=error).error(
                f"  ✗ {source.repo} ({source.branch}) {remote_path}: unexpected {type(error).__name__}: {error}"
            )
        return EntryFailure(repo=source.repo, branch=source.branch, remote_path=remote_path, kind=kind, error=error)

    def destination_for(self, tracked_path: TrackedPath, fetched: FetchedFile) -> Path:
        """Map a fetched file to its local destination.

        The file's path relative to the tracked remote path is kept verbatim below the tracked local path. A file
        fetched for a single-file remote path is written to the local path itself.

        Raises:
            WriteFailure: If the fetched file does not lie below the remote path, or would escape the local path.
        """
        remote_path = tracked_path.api_path
        if fetched.path.strip("/") == remote_path:
            relative = ""
        elif fetched.path.startswith(f"{remote_path}/"):
            relative = fetched.path[len(remote_path) + 1 :]
        else:
            raise WriteFailure(fetched.path, f"file is not inside the tracked remote path {remote_path}")

        if ".." in PurePosixPath(relative).parts or PurePosixPath(relative).is_absolute():
            raise WriteFailure(fetched.path, "file path escapes the tracked local path")

        local_root = self._root_path / tracked_path.local_path
        return local_root / relative if relative else local_root

    async def write_file(self, destination: Path, content: bytes) -> None:
        """Write a file, creating its parent directories. Existing files are overwritten.

        Raises:
            WriteFailure: If the file could not be written.
        """
        try:
            await aiofiles.os.makedirs(destination.parent, exist_ok=True)
            async with aiofiles.open(destination, "wb") as f:
                await f.write(content)
        except OSError as e:
            raise WriteFailure(str(destination), str(e)) from e
