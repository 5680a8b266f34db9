r"""Sync tracked skill directories from their upstream GitHub repositories.

This command:
1. Loads the upstream manifest (upstream.json)
2. Resolves the current revision of every tracked path and reference
3. Downloads tracked directories and overwrites the local copies
4. Records the new revisions and sync times back into the manifest

Usage:
    upstream-sync [--new-only] [--manifest PATH] [--root PATH] [--verbose]

Environment variables:
    GITHUB_TOKEN - Optional GitHub token, raises the API rate limit
    UPSTREAM_SYNC_GITHUB_TOKEN - Same as GITHUB_TOKEN, takes precedence
    UPSTREAM_SYNC_GITHUB_API_URL - GitHub API base URL (default: https://api.github.com)
    UPSTREAM_SYNC_REQUEST_TIMEOUT - Timeout in seconds per request (default: 30)
    UPSTREAM_SYNC_ROOT_PATH - Repository root (default: current directory)
    UPSTREAM_SYNC_MANIFEST_PATH - Manifest path (default: {root}/upstream.json)
    UPSTREAM_SYNC_VERBOSE_LOGGING - Set to 'true' for verbose logging

Examples:
    # Re-sync everything
    upstream-sync

    # Only sync entries that were added to the manifest since the last run
    upstream-sync --new-only
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from upstream_skill_sync import MANIFEST_FILENAME, UpstreamSyncSettings, upstream_sync_settings
from upstream_skill_sync.exceptions import ManifestUnreadable
from upstream_skill_sync.github_contents import GitHubContentsClient
from upstream_skill_sync.logging_config import CLI_FORMAT, configure_logger
from upstream_skill_sync.synchronizer import SyncReport, UpstreamSynchronizer


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the sync command."""
    parser = argparse.ArgumentParser(
        prog="upstream-sync",
        description="Sync tracked skill directories from their upstream GitHub repositories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--new-only",
        action="store_true",
        default=False,
        help="Only sync paths and references that have never been synced",
    )

    parser.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Path to the manifest (default: from env UPSTREAM_SYNC_MANIFEST_PATH or {root}/upstream.json)",
    )

    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Repository root that local paths are relative to (default: from env UPSTREAM_SYNC_ROOT_PATH or cwd)",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug logging",
    )

    return parser


async def run_sync(
    settings: UpstreamSyncSettings,
    *,
    root_path: Path,
    manifest_path: Path,
    new_only: bool,
) -> SyncReport:
    """Run one sync with a contents client built from the given settings."""
    async with GitHubContentsClient(
        api_url=settings.github_api_url,
        github_token=settings.github_token,
        timeout=settings.request_timeout,
    ) as contents_client:
        synchronizer = UpstreamSynchronizer(
            contents_client,
            root_path=root_path,
            manifest_path=manifest_path,
        )
        return await synchronizer.run(new_only=new_only)


def main(argv: Sequence[str] | None = None, *, settings: UpstreamSyncSettings | None = None) -> int:
    """Enter the sync command.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    args = build_parser().parse_args(argv)
    settings = settings or upstream_sync_settings

    verbose = args.verbose or settings.verbose_logging
    configure_logger("DEBUG" if verbose else "INFO", format_string=CLI_FORMAT, sink=sys.stdout)

    root_path: Path = args.root if args.root is not None else settings.root_path
    manifest_path: Path = args.manifest or settings.manifest_path or root_path / MANIFEST_FILENAME

    logger.debug(f"Repository root: {root_path.resolve()}")
    logger.debug(f"Manifest: {manifest_path}")

    try:
        report = asyncio.run(
            run_sync(settings, root_path=root_path, manifest_path=manifest_path, new_only=args.new_only)
        )
    except ManifestUnreadable as e:
        logger.error(f"Sync failed: {e}")
        logger.error("Manifest was not updated.")
        return 1

    return report.exit_code()


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
