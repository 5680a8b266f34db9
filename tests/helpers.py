import json
from pathlib import Path
from typing import Any

from pytest_httpx import HTTPXMock

API_URL = "https://api.github.com"
RAW_URL = "https://raw.githubusercontent.com"

REPO = "org/repo"
BRANCH = "main"


def contents_url(path: str, *, repo: str = REPO, branch: str = BRANCH) -> str:
    """Return the contents API URL (including the ref query) for a path."""
    if not path:
        return f"{API_URL}/repos/{repo}/contents?ref={branch}"
    return f"{API_URL}/repos/{repo}/contents/{path}?ref={branch}"


def raw_url(path: str, *, repo: str = REPO, branch: str = BRANCH) -> str:
    """Return the raw download URL for a file."""
    return f"{RAW_URL}/{repo}/{branch}/{path}"


def dir_entry(path: str, sha: str) -> dict[str, Any]:
    """Build a contents API listing entry for a directory."""
    return {
        "name": path.rsplit("/", 1)[-1],
        "path": path,
        "sha": sha,
        "type": "dir",
        "download_url": None,
    }


def file_entry(path: str, sha: str, *, repo: str = REPO, branch: str = BRANCH) -> dict[str, Any]:
    """Build a contents API listing entry for a file."""
    return {
        "name": path.rsplit("/", 1)[-1],
        "path": path,
        "sha": sha,
        "size": 10,
        "type": "file",
        "download_url": raw_url(path, repo=repo, branch=branch),
    }


def add_listing(
    httpx_mock: HTTPXMock,
    path: str,
    entries: list[dict[str, Any]] | dict[str, Any],
    *,
    repo: str = REPO,
    branch: str = BRANCH,
) -> None:
    """Register a contents API listing response."""
    httpx_mock.add_response(url=contents_url(path, repo=repo, branch=branch), json=entries)


def add_raw(httpx_mock: HTTPXMock, path: str, content: str | bytes, *, repo: str = REPO, branch: str = BRANCH) -> None:
    """Register a raw file download response."""
    body = content.encode("utf-8") if isinstance(content, str) else content
    httpx_mock.add_response(url=raw_url(path, repo=repo, branch=branch), content=body)


def add_skill_tree(httpx_mock: HTTPXMock, *, sha: str = "abc123def4567890") -> None:
    """Register the responses for resolving and fetching `skills/foo`, a directory holding one `SKILL.md`."""
    add_listing(httpx_mock, "skills", [dir_entry("skills/foo", sha)])
    add_listing(httpx_mock, "skills/foo", [file_entry("skills/foo/SKILL.md", "f00")])
    add_raw(httpx_mock, "skills/foo/SKILL.md", "# Foo")


def write_manifest(path: Path, data: dict[str, Any]) -> Path:
    """Write manifest data as pretty-printed JSON."""
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path


def read_manifest(path: Path) -> dict[str, Any]:
    """Read manifest data back as plain JSON."""
    data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
    return data


def single_source_manifest(*skills: dict[str, Any], references: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Build manifest data with one `org/repo@main` source."""
    source: dict[str, Any] = {"repo": REPO, "branch": BRANCH, "skills": list(skills)}
    if references is not None:
        source["references"] = references
    return {"upstreams": [source]}
