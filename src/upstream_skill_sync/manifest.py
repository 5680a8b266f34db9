"""The sync manifest pydantic models, plus loading, saving and run selection.

The manifest (`upstream.json`) is the source of truth for what should be synced and what was last synced. It is
read once at the start of a run, mutated in place as entries sync, and written back in full at the end of the run.
"""

from __future__ import annotations

import contextlib
import json
import os
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Any

from loguru import logger
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    SerializerFunctionWrapHandler,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_serializer,
    model_validator,
)

from upstream_skill_sync.exceptions import ManifestUnreadable, WriteFailure


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision and a `Z` suffix.

    Args:
        moment (datetime): The moment to format. Naive datetimes are assumed to be UTC.

    Returns:
        str: For example `2025-01-31T12:00:00.000Z`.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class NotSynced:
    """The entry has never been synced successfully."""


@dataclass(frozen=True)
class Synced:
    """The entry was last synced at `synced_at`, when the remote path had the revision `revision_tag`."""

    revision_tag: str
    synced_at: datetime


SyncState = NotSynced | Synced


def get_default_config() -> ConfigDict:
    """Get the config shared by all manifest models.

    Unknown keys are kept so that hand-written additions to the manifest survive a save.
    """
    return ConfigDict(extra="allow", populate_by_name=True)


class ManifestRecord(BaseModel):
    """Base for manifest records. Serializes its keys in the order they were read in."""

    model_config = get_default_config()

    _key_order: list[str] = PrivateAttr(default_factory=list)

    @model_validator(mode="wrap")
    @classmethod
    def remember_key_order(cls, data: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        record = handler(data)
        if isinstance(data, dict) and isinstance(record, ManifestRecord):
            record._key_order = list(data)
        return record

    @model_serializer(mode="wrap")
    def keep_key_order(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        if not self._key_order:
            return data

        # Keys the file did not have (e.g. a first `sha`) follow the ones it did, in field order.
        position = {key: index for index, key in enumerate(self._key_order)}
        return dict(sorted(data.items(), key=lambda item: position.get(item[0], len(position))))


class RemoteEntry(ManifestRecord):
    """A manifest entry naming a path in the upstream repository."""

    remote_path: str = Field(alias="remotePath", min_length=1)
    """The path of the file or directory within the upstream repository."""

    @field_validator("remote_path")
    @classmethod
    def remote_path_not_blank(cls, value: str) -> str:
        if not value.strip("/"):
            raise ValueError("remotePath must name a path inside the repository")
        return value

    @property
    def api_path(self) -> str:
        """The remote path as the contents API expects it, without leading or trailing slashes."""
        return self.remote_path.strip("/")


class SyncedEntry(RemoteEntry):
    """Fields shared by every manifest entry that records provenance.

    Subclasses list this class first and their own fields in a second base, so that `sha` and `lastSync` come last.
    """

    sha: str | None = None
    """The revision tag (git object SHA) of `remote_path` as of the last successful sync."""

    last_sync: str | None = Field(default=None, alias="lastSync")
    """ISO-8601 timestamp of the last successful sync."""

    @field_validator("last_sync")
    @classmethod
    def last_sync_is_iso_timestamp(cls, value: str | None) -> str | None:
        if value is not None:
            datetime.fromisoformat(value)
        return value

    @model_validator(mode="after")
    def sha_and_last_sync_together(self) -> SyncedEntry:
        if (self.sha is None) != (self.last_sync is None):
            raise ValueError(f"{self.remote_path}: sha and lastSync must either both be set or both be absent")
        return self

    @property
    def is_synced(self) -> bool:
        """Return True if this entry has been synced at least once."""
        return self.last_sync is not None

    @property
    def sync_state(self) -> SyncState:
        """Return the sync state of this entry as a `NotSynced` or `Synced` value."""
        if self.sha is None or self.last_sync is None:
            return NotSynced()
        return Synced(revision_tag=self.sha, synced_at=datetime.fromisoformat(self.last_sync))

    def mark_synced(self, revision_tag: str, synced_at: datetime | None = None) -> None:
        """Record a successful sync. The revision tag and the timestamp are always updated together.

        Args:
            revision_tag (str): The revision tag the remote path had when it was fetched.
            synced_at (datetime | None): When the sync completed. Defaults to now.
        """
        self.sha = revision_tag
        self.last_sync = format_timestamp(synced_at or datetime.now(UTC))


class _LocalDestination(RemoteEntry):
    local_path: str = Field(alias="localPath", min_length=1)
    """The destination, relative to the repository root."""

    @field_validator("local_path")
    @classmethod
    def local_path_is_relative(cls, value: str) -> str:
        local = PurePosixPath(value)
        if local.is_absolute() or Path(value).is_absolute():
            raise ValueError(f"localPath must be relative: {value}")
        if ".." in local.parts:
            raise ValueError(f"localPath cannot contain '..': {value}")
        return value


class TrackedPath(SyncedEntry, _LocalDestination):
    """A directory tree (or single file) mirrored from an upstream repository into this one."""


class _ReferenceDescription(RemoteEntry):
    description: str = ""
    """Why this path is being tracked."""


class TrackedReference(SyncedEntry, _ReferenceDescription):
    """An upstream path whose revision is tracked without mirroring any files."""


class UpstreamSource(ManifestRecord):
    """One upstream repository and the paths tracked from it."""

    repo: str = Field(frozen=True, pattern=r"^[^/\s]+/[^/\s]+$")
    """The repository in 'owner/name' format."""

    branch: str = Field(frozen=True, min_length=1)
    """The branch (or any other git ref) to sync from."""

    skills: list[TrackedPath] = Field(default_factory=list)
    """Paths mirrored into this repository."""

    references: list[TrackedReference] | None = None
    """Paths whose revisions are tracked without mirroring any files."""

    def has_unsynced_entries(self) -> bool:
        """Return True if any path or reference of this source has never been synced."""
        return any(not skill.is_synced for skill in self.skills) or any(
            not reference.is_synced for reference in self.references or []
        )


class SyncManifest(ManifestRecord):
    """The top level manifest record."""

    upstreams: list[UpstreamSource] = Field(default_factory=list)
    """The upstream sources, in manifest order."""


@dataclass
class SourceSelection:
    """The part of an upstream source that a run will act on."""

    source: UpstreamSource
    paths: list[TrackedPath] = field(default_factory=list)
    references: list[TrackedReference] = field(default_factory=list)

    def is_empty(self) -> bool:
        """Return True if there is nothing to do for this source."""
        return not self.paths and not self.references


def select_sources(sources: Sequence[UpstreamSource], incremental_only: bool) -> list[SourceSelection]:
    """Pick the sources, paths and references a run acts on.

    Args:
        sources (Sequence[UpstreamSource]): All sources from the manifest.
        incremental_only (bool): If True, only never-synced paths and references are selected, and sources without
            any are left out entirely.

    Returns:
        list[SourceSelection]: The selections, in manifest order. The entries are the manifest's own objects.
    """
    if not incremental_only:
        return [
            SourceSelection(source=source, paths=list(source.skills), references=list(source.references or []))
            for source in sources
        ]

    selections: list[SourceSelection] = []
    for source in sources:
        if not source.has_unsynced_entries():
            logger.debug(f"Skipping {source.repo} ({source.branch}): every entry has been synced before")
            continue
        selections.append(
            SourceSelection(
                source=source,
                paths=[skill for skill in source.skills if not skill.is_synced],
                references=[reference for reference in source.references or [] if not reference.is_synced],
            )
        )
    return selections


def load_manifest(manifest_path: Path) -> SyncManifest:
    """Read and validate the manifest.

    Args:
        manifest_path (Path): Where the manifest lives.

    Returns:
        SyncManifest: The parsed manifest.

    Raises:
        ManifestUnreadable: If the file does not exist, cannot be read, is not JSON or does not match the schema.
    """
    try:
        raw = manifest_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ManifestUnreadable(f"Manifest not found at {manifest_path}") from e
    except OSError as e:
        raise ManifestUnreadable(f"Failed to read manifest {manifest_path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ManifestUnreadable(f"Manifest {manifest_path} is not valid UTF-8: {e}") from e

    try:
        manifest = SyncManifest.model_validate_json(raw)
    except ValidationError as e:
        raise ManifestUnreadable(f"Manifest {manifest_path} is invalid: {e}") from e

    logger.debug(f"Loaded manifest {manifest_path} with {len(manifest.upstreams)} upstream(s)")
    return manifest


def dump_manifest(manifest: SyncManifest) -> str:
    """Serialize the manifest as pretty-printed JSON with a trailing newline.

    Keys absent from the loaded file stay absent, so untouched entries serialize the way they were read.
    """
    data = manifest.model_dump(mode="json", by_alias=True, exclude_unset=True)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def save_manifest(manifest: SyncManifest, manifest_path: Path) -> None:
    """Write the manifest atomically, replacing the previous file in full.

    Pass the same object the run mutated, never a fresh reload.

    Args:
        manifest (SyncManifest): The manifest to write.
        manifest_path (Path): Where to write it.

    Raises:
        WriteFailure: If the file could not be written.
    """
    content = dump_manifest(manifest)
    temp_path = manifest_path.with_suffix(f".tmp.{time.time()}")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(manifest_path)
    except OSError as e:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise WriteFailure(str(manifest_path), str(e)) from e

    logger.debug(f"Wrote manifest to {manifest_path}")
