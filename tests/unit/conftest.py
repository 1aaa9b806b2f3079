"""Shared fixtures: a fake raw.githubusercontent.com and submission files."""

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

RAW_BASE = "https://raw.githubusercontent.com"


class FakeGitHub:
    """In-memory raw file host served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.requests: list[str] = []
        self.offline = False

    def add(self, owner: str, repo: str, path: str, content: Any, branch: str = "main") -> None:
        if not isinstance(content, str):
            content = json.dumps(content)
        self.files[f"{RAW_BASE}/{owner}/{repo}/{branch}/{path}"] = content

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        if url in self.files:
            return httpx.Response(200, text=self.files[url])
        return httpx.Response(404, text="404: Not Found")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def plugins_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "plugins"
    directory.mkdir()
    return directory


def make_manifest(**overrides: Any) -> dict[str, Any]:
    manifest: dict[str, Any] = {
        "id": "com.a.b",
        "name": "B",
        "version": "1.0.0",
        "minAppVersion": "2.0.0",
        "author": "A",
        "description": "d",
        "main": "main.js",
        "permissions": ["read:goals"],
        "helpUrl": "https://example.com/help",
        "category": "productivity",
    }
    manifest.update(overrides)
    return manifest


def make_submission(**overrides: Any) -> dict[str, Any]:
    submission: dict[str, Any] = {
        "id": "com.a.b",
        "name": "B",
        "description": "d",
        "author": "A",
        "repo": "https://github.com/a/b",
    }
    submission.update(overrides)
    return submission


def write_json(path: Path, data: Any) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path
