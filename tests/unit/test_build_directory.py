#!/usr/bin/env python3
"""Tests for build_directory.py - directory aggregation and the builder CLI."""

import asyncio
import json
import locale
import subprocess
import sys
from pathlib import Path

import build_directory
import pytest
from build_directory import (
    DirectoryEntry,
    EntryError,
    build_directory as run_build,
    build_entry,
    list_submissions,
    sort_entries,
)
from conftest import FakeGitHub, make_manifest, make_submission, write_json

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
SCRIPT_PATH = PROJECT_ROOT / "scripts" / "build_directory.py"

REQUIRED_ENTRY_KEYS = {
    "id",
    "name",
    "description",
    "author",
    "version",
    "minAppVersion",
    "repo",
    "permissions",
    "updatedAt",
}


def add_plugin(github: FakeGitHub, plugins_dir: Path, repo: str, name: str, **manifest_fields) -> None:
    plugin_id = f"com.test.{repo}"
    github.add("test", repo, "manifest.json", make_manifest(id=plugin_id, name=name, **manifest_fields))
    write_json(
        plugins_dir / f"{plugin_id}.json",
        make_submission(id=plugin_id, name=name, repo=f"https://github.com/test/{repo}"),
    )


def build(github: FakeGitHub, plugins_dir: Path):
    async def go():
        async with github.client() as client:
            return await run_build(plugins_dir, client, verbose=False)

    return asyncio.run(go())


def strip_timestamps(directory: dict) -> list[dict]:
    return [{k: v for k, v in entry.items() if k != "updatedAt"} for entry in directory["plugins"]]


@pytest.fixture
def c_collation():
    """Run with C collation, as in most containers and CI runners."""
    previous = locale.setlocale(locale.LC_COLLATE)
    locale.setlocale(locale.LC_COLLATE, "C")
    yield
    locale.setlocale(locale.LC_COLLATE, previous)


class TestBuildEntry:
    def test_projects_required_fields(self) -> None:
        manifest = make_manifest(helpUrl="", category="")
        entry = build_entry(make_submission(), manifest, "2024-01-01T00:00:00.000Z")
        assert entry.to_dict() == {
            "id": "com.a.b",
            "name": "B",
            "description": "d",
            "author": "A",
            "version": "1.0.0",
            "minAppVersion": "2.0.0",
            "repo": "https://github.com/a/b",
            "permissions": ["read:goals"],
            "updatedAt": "2024-01-01T00:00:00.000Z",
        }

    def test_includes_present_optional_fields(self) -> None:
        manifest = make_manifest(
            authorUrl="https://a.example",
            fundingUrl="https://fund.example",
            supportLinks=[{"label": "Docs", "url": "https://docs.example"}],
            tags=["focus"],
        )
        data = build_entry(make_submission(), manifest, "t").to_dict()
        assert data["authorUrl"] == "https://a.example"
        assert data["helpUrl"] == "https://example.com/help"
        assert data["fundingUrl"] == "https://fund.example"
        assert data["supportLinks"] == [{"label": "Docs", "url": "https://docs.example"}]
        assert data["tags"] == ["focus"]
        assert data["category"] == "productivity"
        assert list(data)[-1] == "updatedAt"

    def test_does_not_copy_unlisted_fields(self) -> None:
        manifest = make_manifest(main="main.js", secret="x")
        data = build_entry(make_submission(), manifest, "t").to_dict()
        assert "main" not in data
        assert "secret" not in data

    def test_missing_permissions_default_to_empty(self) -> None:
        manifest = make_manifest()
        del manifest["permissions"]
        assert build_entry(make_submission(), manifest, "t").permissions == ()

    def test_entry_is_immutable(self) -> None:
        entry = build_entry(make_submission(), make_manifest(), "t")
        with pytest.raises(AttributeError):
            entry.name = "other"  # type: ignore[misc]

    @pytest.mark.parametrize(
        "manifest",
        [
            ["not", "an", "object"],
            {"id": "com.a.b", "name": "B"},
            make_manifest(name=7),
            make_manifest(permissions="network"),
        ],
    )
    def test_malformed_manifest_raises(self, manifest) -> None:
        with pytest.raises(EntryError):
            build_entry(make_submission(), manifest, "t")

    def test_submission_without_repo_raises(self) -> None:
        with pytest.raises(EntryError):
            build_entry(make_submission(repo=None), make_manifest(), "t")

    def test_name_with_nul_raises(self) -> None:
        with pytest.raises(EntryError, match="NUL"):
            build_entry(make_submission(), make_manifest(name="B\u0000x"), "t")


class TestSortEntries:
    def test_sorts_by_name(self) -> None:
        entries = [
            DirectoryEntry("c", "Gamma", "", "", "1.0.0", "1.0.0", "r", (), "t"),
            DirectoryEntry("a", "Alpha", "", "", "1.0.0", "1.0.0", "r", (), "t"),
            DirectoryEntry("b", "Beta", "", "", "1.0.0", "1.0.0", "r", (), "t"),
        ]
        assert [e.name for e in sort_entries(entries)] == ["Alpha", "Beta", "Gamma"]

    def test_mixed_case_names_sort_alphabetically_under_c_locale(self, c_collation: None) -> None:
        entries = [
            DirectoryEntry("b", "beta", "", "", "1.0.0", "1.0.0", "r", (), "t"),
            DirectoryEntry("z", "Zeta", "", "", "1.0.0", "1.0.0", "r", (), "t"),
            DirectoryEntry("a", "alpha", "", "", "1.0.0", "1.0.0", "r", (), "t"),
        ]
        assert [e.name for e in sort_entries(entries)] == ["alpha", "beta", "Zeta"]

    def test_case_breaks_ties(self, c_collation: None) -> None:
        entries = [
            DirectoryEntry("l", "focus", "", "", "1.0.0", "1.0.0", "r", (), "t"),
            DirectoryEntry("u", "Focus", "", "", "1.0.0", "1.0.0", "r", (), "t"),
        ]
        assert [e.id for e in sort_entries(entries)] == ["u", "l"]


class TestBuildDirectory:
    def test_aggregates_all_valid_submissions(self, github: FakeGitHub, plugins_dir: Path) -> None:
        """N valid submissions give N entries sorted by name with every field."""
        add_plugin(github, plugins_dir, "zeta", "Gamma")
        add_plugin(github, plugins_dir, "alpha", "Beta")
        add_plugin(github, plugins_dir, "mid", "Alpha")

        directory, errors = build(github, plugins_dir)

        assert errors == []
        assert directory["version"] == 1
        assert directory["generatedAt"].endswith("Z")
        assert len(directory["plugins"]) == 3
        assert [p["name"] for p in directory["plugins"]] == ["Alpha", "Beta", "Gamma"]
        for entry in directory["plugins"]:
            assert REQUIRED_ENTRY_KEYS <= set(entry)

    def test_failures_are_skipped_and_recorded(self, github: FakeGitHub, plugins_dir: Path) -> None:
        add_plugin(github, plugins_dir, "good", "Good")
        gone = make_submission(id="com.test.gone", repo="https://github.com/test/gone")
        write_json(plugins_dir / "com.test.gone.json", gone)
        write_json(plugins_dir / "com.test.bad-url.json", make_submission(repo="https://example.com/x"))
        (plugins_dir / "com.test.broken.json").write_text("{", encoding="utf-8")
        github.add("test", "half", "manifest.json", {"id": "com.test.half"})
        write_json(plugins_dir / "com.test.half.json", make_submission(repo="https://github.com/test/half"))
        (plugins_dir / "README.md").write_text("not a submission", encoding="utf-8")

        directory, errors = build(github, plugins_dir)

        assert [p["id"] for p in directory["plugins"]] == ["com.test.good"]
        failed = {e.file: e.error for e in errors}
        assert set(failed) == {
            "com.test.bad-url.json",
            "com.test.broken.json",
            "com.test.gone.json",
            "com.test.half.json",
        }
        assert failed["com.test.bad-url.json"] == "Invalid GitHub URL: https://example.com/x"
        assert failed["com.test.gone.json"] == "Failed to fetch manifest.json: 404"
        assert failed["com.test.half.json"].startswith("manifest missing:")

    def test_uses_master_fallback(self, github: FakeGitHub, plugins_dir: Path) -> None:
        github.add("test", "old", "manifest.json", make_manifest(id="com.test.old", name="Old"), branch="master")
        old = make_submission(id="com.test.old", repo="https://github.com/test/old")
        write_json(plugins_dir / "com.test.old.json", old)
        directory, errors = build(github, plugins_dir)
        assert errors == []
        assert [p["name"] for p in directory["plugins"]] == ["Old"]

    def test_nul_in_name_is_recorded_not_fatal(self, github: FakeGitHub, plugins_dir: Path) -> None:
        add_plugin(github, plugins_dir, "good", "Good")
        add_plugin(github, plugins_dir, "nul", "B\u0000x")

        directory, errors = build(github, plugins_dir)

        assert [p["id"] for p in directory["plugins"]] == ["com.test.good"]
        assert [e.file for e in errors] == ["com.test.nul.json"]

    def test_url_rejected_by_http_client_is_recorded(self, github: FakeGitHub, plugins_dir: Path) -> None:
        """A repo path with control characters fails that submission only."""
        add_plugin(github, plugins_dir, "good", "Good")
        bad_repo = "https://github.com/test/b\u0001x"
        write_json(plugins_dir / "com.test.bad.json", make_submission(id="com.test.bad", repo=bad_repo))

        directory, errors = build(github, plugins_dir)

        assert [p["id"] for p in directory["plugins"]] == ["com.test.good"]
        assert [(e.file, e.error) for e in errors] == [("com.test.bad.json", f"Invalid GitHub URL: {bad_repo}")]

    def test_processes_files_in_name_order(self, github: FakeGitHub, plugins_dir: Path) -> None:
        add_plugin(github, plugins_dir, "b", "One")
        add_plugin(github, plugins_dir, "a", "Two")
        build(github, plugins_dir)
        assert github.requests == [
            "https://raw.githubusercontent.com/test/a/main/manifest.json",
            "https://raw.githubusercontent.com/test/b/main/manifest.json",
        ]

    def test_rebuild_is_stable(self, github: FakeGitHub, plugins_dir: Path) -> None:
        """Two runs over unchanged inputs differ only in timestamps."""
        add_plugin(github, plugins_dir, "one", "One", tags=["x"])
        add_plugin(github, plugins_dir, "two", "Two")
        first, _ = build(github, plugins_dir)
        second, _ = build(github, plugins_dir)
        assert json.dumps(strip_timestamps(first)) == json.dumps(strip_timestamps(second))

    def test_does_not_modify_submissions(self, github: FakeGitHub, plugins_dir: Path) -> None:
        add_plugin(github, plugins_dir, "one", "One")
        before = {p.name: p.read_text(encoding="utf-8") for p in plugins_dir.iterdir()}
        build(github, plugins_dir)
        assert {p.name: p.read_text(encoding="utf-8") for p in plugins_dir.iterdir()} == before

    def test_missing_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            list_submissions(tmp_path / "missing")


class TestCLI:
    def test_writes_directory(
        self,
        github: FakeGitHub,
        tmp_path: Path,
        plugins_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        add_plugin(github, plugins_dir, "one", "One")
        write_json(plugins_dir / "com.test.gone.json", make_submission(repo="https://github.com/test/gone"))
        output = tmp_path / "out" / "plugins.json"
        monkeypatch.setattr(build_directory, "create_client", github.client)

        code = build_directory.main(["--plugins-dir", str(plugins_dir), "--output", str(output)])

        assert code == 0
        data = json.loads(output.read_text(encoding="utf-8"))
        assert [p["id"] for p in data["plugins"]] == ["com.test.one"]
        out = capsys.readouterr().out
        assert "Plugins: 1" in out
        assert "Errors: 1" in out
        assert "com.test.gone.json" in out

    def test_dry_run_prints_document(
        self,
        github: FakeGitHub,
        tmp_path: Path,
        plugins_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        add_plugin(github, plugins_dir, "one", "One")
        output = tmp_path / "plugins.json"
        monkeypatch.setattr(build_directory, "create_client", github.client)

        code = build_directory.main(["--plugins-dir", str(plugins_dir), "--output", str(output), "--dry-run"])

        assert code == 0
        assert not output.exists()
        assert json.loads(capsys.readouterr().out)["plugins"][0]["name"] == "One"

    def test_missing_submissions_directory_is_fatal(self, tmp_path: Path) -> None:
        result = subprocess.run(
            [
                sys.executable,
                str(SCRIPT_PATH),
                "--plugins-dir",
                str(tmp_path / "missing"),
                "--output",
                str(tmp_path / "p.json"),
            ],
            capture_output=True,
            text=True,
            timeout=30,
        )
        assert result.returncode == 1
        assert "ERROR:" in result.stderr
        assert not (tmp_path / "p.json").exists()
