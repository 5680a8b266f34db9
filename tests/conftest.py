import os
import sys
from collections.abc import Generator
from pathlib import Path

# CRITICAL: Clear environment variables BEFORE importing any package modules
# This ensures the settings singleton is initialized without a token or custom paths
_UPSTREAM_SYNC_ENV_PREFIX = "UPSTREAM_SYNC_"

_CRITICAL_ENV_VARS_TO_CLEAR = [
    "GITHUB_TOKEN",
]


def _clear_test_environment_variables() -> dict[str, str]:
    """Clear environment variables that could interfere with tests.

    Returns a dictionary of the cleared variables for potential restoration.
    """
    cleared_vars = {}
    for var_name in list(os.environ):
        if var_name.startswith(_UPSTREAM_SYNC_ENV_PREFIX) or var_name in _CRITICAL_ENV_VARS_TO_CLEAR:
            cleared_vars[var_name] = os.environ[var_name]
            del os.environ[var_name]
    return cleared_vars


_CLEARED_ENV_VARS = _clear_test_environment_variables()

import pytest  # noqa: E402
from loguru import logger  # noqa: E402
from pytest import LogCaptureFixture  # noqa: E402

from upstream_skill_sync import upstream_sync_settings  # noqa: E402


def configure_test_logging() -> None:
    """Route loguru output to stderr with a verbose format."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {name}:{function}:{line} | {level} | {message}",
    )


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Set up logging for tests."""
    configure_test_logging()


@pytest.fixture(scope="session", autouse=True)
def env_var_checks() -> None:
    """Make sure no token leaked into the global settings."""
    if upstream_sync_settings.github_token is not None:
        pytest.fail(
            "The global settings picked up a GitHub token. "
            "Please ensure conftest.py clears GITHUB_TOKEN before importing the package."
        )


@pytest.fixture
def caplog(caplog: LogCaptureFixture) -> Generator[LogCaptureFixture, None, None]:
    """Fixture to capture log messages during tests.

    See https://loguru.readthedocs.io/en/stable/resources/migration.html#migration-caplog for more information.
    """
    handler_id = logger.add(caplog.handler, format="{message}")
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def restore_logging() -> Generator[None, None, None]:
    """Restore the test logging configuration after a test reconfigured loguru (e.g. through the CLI)."""
    yield
    configure_test_logging()


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    """An empty repository root to sync into."""
    root = tmp_path / "repo"
    root.mkdir()
    return root
