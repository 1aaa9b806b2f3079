#!/usr/bin/env python3
"""
Plugin Directory Builder.

Aggregates every plugin submission and fetches its manifest to rebuild the
complete plugins.json directory file:
1. Reads each submission in plugins/
2. Fetches manifest.json from the plugin repository (main, then master)
3. Projects the published manifest fields into a directory entry
4. Sorts entries by plugin name and writes plugins.json

A submission that cannot be loaded or whose manifest cannot be fetched is
reported and left out; the rest of the directory is still written. Run this
after merging plugin submissions.

Usage:
    python scripts/build_directory.py
    python scripts/build_directory.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import json
import locale
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from directory_common import (
    DIRECTORY_FILE,
    DIRECTORY_SCHEMA_VERSION,
    EXIT_FAILED,
    EXIT_OK,
    OPTIONAL_MANIFEST_FIELDS,
    PLUGINS_DIR,
    colorize,
    is_blank,
    load_json_file,
    utc_timestamp,
)
from remote_fetch import FetchError, create_client, fetch_manifest

# Manifest fields every directory entry must carry
PROJECTED_FIELDS = ("id", "name", "description", "author", "version", "minAppVersion")


class EntryError(Exception):
    """A submission or its manifest cannot be turned into a directory entry."""


@dataclass(frozen=True)
class DirectoryEntry:
    """One plugin as published in plugins.json."""

    id: str
    name: str
    description: Any
    author: Any
    version: Any
    min_app_version: Any
    repo: str
    permissions: tuple[Any, ...]
    updated_at: str
    optional: tuple[tuple[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to the plugins.json entry layout."""
        entry: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "author": self.author,
            "version": self.version,
            "minAppVersion": self.min_app_version,
            "repo": self.repo,
            "permissions": list(self.permissions),
        }
        entry.update(self.optional)
        entry["updatedAt"] = self.updated_at
        return entry


@dataclass
class BuildError:
    """A submission left out of the directory, with the reason."""

    file: str
    error: str


def build_entry(submission: Any, manifest: Any, updated_at: str) -> DirectoryEntry:
    """Project a submission and its manifest into a directory entry.

    Raises:
        EntryError: the submission has no repo, or the manifest is not an
            object with the projected fields
    """
    if not isinstance(submission, dict) or not isinstance(submission.get("repo"), str):
        raise EntryError("submission has no repo URL")
    if not isinstance(manifest, dict):
        raise EntryError("manifest.json must contain a JSON object")

    missing = [name for name in PROJECTED_FIELDS if is_blank(manifest.get(name))]
    if missing:
        raise EntryError(f"manifest missing: {', '.join(missing)}")
    if not isinstance(manifest["id"], str) or not isinstance(manifest["name"], str):
        raise EntryError("manifest id and name must be strings")
    if "\x00" in manifest["name"]:
        raise EntryError("manifest name contains a NUL character")

    permissions = manifest.get("permissions") or []
    if not isinstance(permissions, list):
        raise EntryError("manifest permissions must be a list")

    optional = tuple((name, manifest[name]) for name in OPTIONAL_MANIFEST_FIELDS if not is_blank(manifest.get(name)))

    return DirectoryEntry(
        id=manifest["id"],
        name=manifest["name"],
        description=manifest["description"],
        author=manifest["author"],
        version=manifest["version"],
        min_app_version=manifest["minAppVersion"],
        repo=submission["repo"],
        permissions=tuple(permissions),
        updated_at=updated_at,
        optional=optional,
    )


def list_submissions(plugins_dir: Path) -> list[Path]:
    """Submission files in plugins_dir, in name order.

    Raises:
        OSError: plugins_dir cannot be listed
    """
    if not plugins_dir.is_dir():
        raise NotADirectoryError(f"Submissions directory not found: {plugins_dir}")
    return sorted(p for p in plugins_dir.iterdir() if p.suffix == ".json" and p.is_file())


def sort_entries(entries: list[DirectoryEntry]) -> list[DirectoryEntry]:
    """Sort entries by plugin name using the active locale's collation.

    Names compare case-insensitively first so the order stays alphabetical
    under the C locale; case only breaks ties.
    """
    return sorted(entries, key=lambda entry: (locale.strxfrm(entry.name.casefold()), locale.strxfrm(entry.name)))


async def collect_entries(
    files: list[Path],
    client: httpx.AsyncClient,
    verbose: bool = True,
) -> tuple[list[DirectoryEntry], list[BuildError]]:
    """Load each submission and fetch its manifest, one at a time.

    A failing submission is recorded in the error list and skipped.
    """
    entries: list[DirectoryEntry] = []
    errors: list[BuildError] = []

    for path in files:
        if verbose:
            print(f"Processing: {path.name}")
        try:
            submission = load_json_file(path)
            if not isinstance(submission, dict):
                raise EntryError("submission must contain a JSON object")
            manifest = await fetch_manifest(client, submission.get("repo"))
            entry = build_entry(submission, manifest, utc_timestamp())
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, FetchError, EntryError) as e:
            errors.append(BuildError(path.name, str(e)))
            if verbose:
                print(f"  {colorize('✗', 'FAILED')} Error: {e}\n")
            continue

        entries.append(entry)
        if verbose:
            print(f"  {colorize('✓', 'PASSED')} Added: {entry.name} v{entry.version}\n")

    return entries, errors


def build_document(entries: list[DirectoryEntry]) -> dict[str, Any]:
    """Build the plugins.json document from unsorted entries."""
    return {
        "version": DIRECTORY_SCHEMA_VERSION,
        "generatedAt": utc_timestamp(),
        "plugins": [entry.to_dict() for entry in sort_entries(entries)],
    }


async def build_directory(
    plugins_dir: Path,
    client: httpx.AsyncClient,
    verbose: bool = True,
) -> tuple[dict[str, Any], list[BuildError]]:
    """Rebuild the directory document from every submission in plugins_dir.

    Returns:
        (directory document, per-submission errors)

    Raises:
        OSError: plugins_dir cannot be listed
    """
    files = list_submissions(plugins_dir)
    if verbose:
        print(f"Found {len(files)} plugin submission(s)\n")
    entries, errors = await collect_entries(files, client, verbose=verbose)
    return build_document(entries), errors


def print_summary(directory: dict[str, Any], errors: list[BuildError], output: Path | None) -> None:
    print("─" * 50)
    print(f"\n{colorize('✓', 'PASSED')} Directory built successfully!")
    print(f"   Plugins: {len(directory['plugins'])}")
    print(f"   Errors: {len(errors)}")
    if output is not None:
        print(f"   Output: {output}\n")

    if errors:
        print("Errors:")
        for error in errors:
            print(f"  - {error.file}: {error.error}")


async def _run(plugins_dir: Path, verbose: bool) -> tuple[dict[str, Any], list[BuildError]]:
    async with create_client() as client:
        return await build_directory(plugins_dir, client, verbose=verbose)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild plugins.json from all plugin submissions")
    parser.add_argument(
        "--plugins-dir",
        type=Path,
        default=PLUGINS_DIR,
        help=f"Directory of submission files (default: {PLUGINS_DIR})",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=DIRECTORY_FILE,
        help=f"Path to write the directory (default: {DIRECTORY_FILE})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the directory to stdout instead of writing it",
    )

    args = parser.parse_args(argv)

    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        # Unknown locale in the environment; names sort by code point
        locale.setlocale(locale.LC_COLLATE, "C")

    if not args.dry_run:
        print("Building plugin directory...\n")

    try:
        directory, errors = asyncio.run(_run(args.plugins_dir, verbose=not args.dry_run))
    except OSError as exc:
        print(f"ERROR: Failed to read submissions: {exc}", file=sys.stderr)
        return EXIT_FAILED

    if args.dry_run:
        print(json.dumps(directory, indent=2))
        for error in errors:
            print(f"ERROR: {error.file}: {error.error}", file=sys.stderr)
        return EXIT_OK

    try:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(directory, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        print(f"ERROR: Failed to write directory: {exc}", file=sys.stderr)
        return EXIT_FAILED

    print_summary(directory, errors, args.output)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
