#!/usr/bin/env python3
"""
Plugin Directory - Remote Fetch Module

Retrieves raw files from a plugin's GitHub repository.

Plugin repositories publish from either ``main`` or ``master``. A fetch on
the default branch that does not succeed is retried exactly once on the
fallback branch; there is no backoff and no other branch is tried.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any

import httpx

RAW_CONTENT_BASE = "https://raw.githubusercontent.com"

DEFAULT_BRANCH = "main"
FALLBACK_BRANCH = "master"

MANIFEST_FILE = "manifest.json"

GITHUB_REPO_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)")


class FetchError(Exception):
    """A repository file could not be retrieved.

    Attributes:
        status: HTTP status of the last attempt, None for transport failures
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidRepoUrl(FetchError):
    """The repository URL does not point at a GitHub repository."""


def parse_github_url(url: str) -> tuple[str, str] | None:
    """Extract (owner, repo) from a GitHub URL.

    Returns None when the URL does not contain ``github.com/<owner>/<repo>``.
    A trailing ``.git`` is stripped from the repository name.
    """
    if not isinstance(url, str):
        return None
    match = GITHUB_REPO_PATTERN.search(url)
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    return owner, re.sub(r"\.git$", "", repo)


def raw_file_url(owner: str, repo: str, branch: str, file_path: str) -> str:
    return f"{RAW_CONTENT_BASE}/{owner}/{repo}/{branch}/{file_path}"


async def fetch_with_fallback(
    client: httpx.AsyncClient,
    repo_url: str,
    file_path: str,
    branches: Sequence[str],
) -> str:
    """Fetch a file, trying each branch in order until one succeeds.

    Args:
        client: HTTP client shared by the run
        repo_url: GitHub repository URL from the submission
        file_path: Path of the file relative to the repository root
        branches: Branch names to try, in order

    Returns:
        The file content as text

    Raises:
        InvalidRepoUrl: repo_url is not a GitHub repository URL
        FetchError: every branch failed; carries the last status
    """
    parsed = parse_github_url(repo_url)
    if parsed is None:
        raise InvalidRepoUrl(f"Invalid GitHub URL: {repo_url}")
    owner, repo = parsed

    status: int | None = None
    reason = "no branches to try"
    for branch in branches:
        url = raw_file_url(owner, repo, branch, file_path)
        try:
            response = await client.get(url)
        except httpx.InvalidURL as e:
            raise InvalidRepoUrl(f"Invalid GitHub URL: {repo_url}") from e
        except httpx.HTTPError as e:
            status = None
            reason = str(e) or type(e).__name__
            continue
        if response.is_success:
            return response.text
        status = response.status_code
        reason = str(status)

    raise FetchError(f"Failed to fetch {file_path}: {reason}", status=status)


async def fetch_from_github(
    client: httpx.AsyncClient,
    repo_url: str,
    file_path: str,
    branch: str = DEFAULT_BRANCH,
) -> str:
    """Fetch a raw file from a GitHub repository.

    Falls back to ``master`` only when the requested branch is the default.
    """
    if branch == DEFAULT_BRANCH:
        branches: tuple[str, ...] = (DEFAULT_BRANCH, FALLBACK_BRANCH)
    else:
        branches = (branch,)
    return await fetch_with_fallback(client, repo_url, file_path, branches)


async def fetch_manifest(client: httpx.AsyncClient, repo_url: str) -> Any:
    """Fetch and parse ``manifest.json`` from the repository root.

    Raises:
        FetchError: the manifest could not be retrieved
        json.JSONDecodeError: the manifest is not valid JSON
    """
    content = await fetch_from_github(client, repo_url, MANIFEST_FILE)
    return json.loads(content)


def create_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build the HTTP client used for a run.

    Redirects are followed so renamed repositories still resolve; timeouts
    are left at the httpx default.
    """
    return httpx.AsyncClient(transport=transport, follow_redirects=True)
