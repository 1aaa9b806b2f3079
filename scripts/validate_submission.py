#!/usr/bin/env python3
"""
Plugin Submission Validator.

Validates plugin submission files from a pull request:
1. Checks the submission JSON format
2. Fetches and validates manifest.json from the plugin repository
3. Scans the plugin entry file for risky code patterns
4. Writes validation-result.json for the GitHub Actions workflow

The checks run as one ordered pipeline. Blocking checks stop the pipeline
when they fail; every other check is recorded and the pipeline continues.
Warnings go to reviewers and never fail a submission.

Exit Codes:
  0 - All submissions passed
  1 - A submission failed, or no submission files were given

Usage:
    python scripts/validate_submission.py plugins/com.author.plugin.json
    python scripts/validate_submission.py plugins/a.json plugins/b.json --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from directory_common import (
    EXIT_FAILED,
    EXIT_OK,
    PLUGINS_DIR,
    REQUIRED_MANIFEST_FIELDS,
    REQUIRED_SUBMISSION_FIELDS,
    VALIDATION_RESULT_FILE,
    ValidationResult,
    format_summary_line,
    is_blank,
    is_valid_plugin_id,
    is_valid_semver,
    load_json_file,
    missing_fields,
)
from remote_fetch import MANIFEST_FILE, FetchError, create_client, fetch_from_github
from submission_policy import POLICY, SubmissionPolicy

# =============================================================================
# Pipeline State
# =============================================================================


@dataclass
class SubmissionContext:
    """State shared by the checks of one submission.

    The context and its result belong to a single pipeline run.
    """

    path: Path
    plugins_dir: Path
    client: httpx.AsyncClient
    result: ValidationResult
    policy: SubmissionPolicy = POLICY
    submission: dict[str, Any] = field(default_factory=dict)
    manifest: dict[str, Any] = field(default_factory=dict)

    @property
    def plugin_id(self) -> str:
        return str(self.submission.get("id", ""))

    @property
    def repo_url(self) -> Any:
        return self.submission.get("repo")

    @property
    def declared_permissions(self) -> list[Any]:
        permissions = self.manifest.get("permissions")
        return permissions if isinstance(permissions, list) else []


StepFunction = Callable[[SubmissionContext], Awaitable[bool]]


@dataclass(frozen=True)
class CheckStep:
    """One pipeline step. A failing blocking step halts the pipeline."""

    name: str
    run: StepFunction
    blocking: bool = False


# =============================================================================
# Submission Checks
# =============================================================================


async def check_submission_json(ctx: SubmissionContext) -> bool:
    try:
        data = load_json_file(ctx.path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return ctx.result.add_check("Valid JSON", False, str(e))
    if not isinstance(data, dict):
        return ctx.result.add_check("Valid JSON", False, "expected a JSON object")
    ctx.submission = data
    return ctx.result.add_check("Valid JSON", True)


async def check_submission_fields(ctx: SubmissionContext) -> bool:
    missing = missing_fields(ctx.submission, REQUIRED_SUBMISSION_FIELDS)
    if missing:
        return ctx.result.add_check("Required fields", False, f"missing: {', '.join(missing)}")
    ctx.result.plugin_id = ctx.plugin_id
    return ctx.result.add_check("Required fields", True)


async def check_plugin_id_format(ctx: SubmissionContext) -> bool:
    plugin_id = ctx.submission["id"]
    if not isinstance(plugin_id, str) or not is_valid_plugin_id(plugin_id):
        return ctx.result.add_check(
            "Plugin ID format", False, "must be reverse domain notation (e.g., com.author.name)"
        )
    return ctx.result.add_check("Plugin ID format", True)


async def check_filename_matches_id(ctx: SubmissionContext) -> bool:
    expected = f"{ctx.plugin_id}.json"
    if ctx.path.name != expected:
        return ctx.result.add_check("Filename matches ID", False, f"expected {expected}")
    return ctx.result.add_check("Filename matches ID", True)


def find_existing_submission(plugin_id: str, plugins_dir: Path, exclude: Path | None = None) -> Path | None:
    """Find another submission file in plugins_dir declaring plugin_id.

    Files that cannot be read or parsed are skipped; they are reported when
    they are validated themselves.
    """
    if not plugins_dir.is_dir():
        return None
    excluded = exclude.resolve() if exclude is not None else None
    for candidate in sorted(plugins_dir.glob("*.json")):
        if excluded is not None and candidate.resolve() == excluded:
            continue
        try:
            content = load_json_file(candidate)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            continue
        if isinstance(content, dict) and content.get("id") == plugin_id:
            return candidate
    return None


async def check_duplicate(ctx: SubmissionContext) -> bool:
    # An existing entry is expected when a plugin is updated, so only warn
    if find_existing_submission(ctx.plugin_id, ctx.plugins_dir, exclude=ctx.path) is not None:
        ctx.result.add_warning("Plugin ID already exists - this will update the existing entry")
    return True


# =============================================================================
# Manifest Checks
# =============================================================================


async def check_manifest_fetch(ctx: SubmissionContext) -> bool:
    try:
        content = await fetch_from_github(ctx.client, ctx.repo_url, MANIFEST_FILE)
    except FetchError as e:
        return ctx.result.add_check("Repo accessible", False, str(e))
    ctx.result.add_check("Repo accessible", True)

    try:
        manifest = json.loads(content)
    except json.JSONDecodeError as e:
        return ctx.result.add_check("Manifest found", False, f"{MANIFEST_FILE} is not valid JSON: {e}")
    if not isinstance(manifest, dict):
        return ctx.result.add_check("Manifest found", False, f"{MANIFEST_FILE} must contain a JSON object")

    ctx.manifest = manifest
    ctx.result.manifest = manifest
    return ctx.result.add_check("Manifest found", True)


async def check_manifest_fields(ctx: SubmissionContext) -> bool:
    missing = missing_fields(ctx.manifest, REQUIRED_MANIFEST_FIELDS)
    if missing:
        return ctx.result.add_check("Manifest valid", False, f"missing: {', '.join(missing)}")
    return ctx.result.add_check("Manifest valid", True)


async def check_ids_match(ctx: SubmissionContext) -> bool:
    submission_id = ctx.submission["id"]
    manifest_id = ctx.manifest["id"]
    if manifest_id != submission_id:
        return ctx.result.add_check("IDs match", False, f"submission: {submission_id}, manifest: {manifest_id}")
    return ctx.result.add_check("IDs match", True)


async def check_version_format(ctx: SubmissionContext) -> bool:
    version = ctx.manifest["version"]
    if not isinstance(version, str) or not is_valid_semver(version):
        return ctx.result.add_check("Version format", False, f"{version} is not valid semver")
    return ctx.result.add_check("Version format", True, version)


async def check_permissions(ctx: SubmissionContext) -> bool:
    permissions = ctx.manifest["permissions"]
    if not isinstance(permissions, list):
        return ctx.result.add_check("Valid permissions", False, "permissions must be a list")
    invalid = ctx.policy.invalid_permissions(permissions)
    if invalid:
        return ctx.result.add_check("Valid permissions", False, f"invalid: {', '.join(str(p) for p in invalid)}")
    return ctx.result.add_check("Valid permissions", True)


# =============================================================================
# Advisories (warnings only)
# =============================================================================


async def advise_dangerous_permissions(ctx: SubmissionContext) -> bool:
    dangerous = ctx.policy.dangerous_in(ctx.declared_permissions)
    if dangerous:
        listed = "`, `".join(dangerous)
        ctx.result.add_warning(
            f"Plugin requests dangerous permissions: `{listed}` - please document why these are needed"
        )
    return True


async def advise_optional_fields(ctx: SubmissionContext) -> bool:
    if is_blank(ctx.manifest.get("helpUrl")):
        ctx.result.add_warning("Consider adding a `helpUrl` for documentation")
    if is_blank(ctx.manifest.get("category")):
        ctx.result.add_warning("Consider adding a `category` for better discoverability")
    return True


async def advise_permission_count(ctx: SubmissionContext) -> bool:
    count = len(ctx.declared_permissions)
    if count > ctx.policy.max_permissions:
        ctx.result.add_warning(f"Plugin requests {count} permissions - consider if all are necessary")
    return True


async def scan_main_script(ctx: SubmissionContext) -> bool:
    main_file = str(ctx.manifest["main"])
    try:
        source = await fetch_from_github(ctx.client, ctx.repo_url, main_file)
    except FetchError as e:
        return ctx.result.add_check("Main script accessible", False, str(e))
    ctx.result.add_check("Main script accessible", True, main_file)

    size = len(source.encode("utf-8"))
    if size > ctx.policy.max_main_script_bytes:
        ctx.result.add_warning(f"Main script is large ({size / 1024:.0f}KB) - consider code splitting")

    for label in ctx.policy.scan_source(source):
        ctx.result.add_warning(f"Found potentially dangerous pattern: `{label}` - please document its use")
    return True


# =============================================================================
# Pipeline
# =============================================================================

VALIDATION_STEPS: tuple[CheckStep, ...] = (
    CheckStep("parse submission", check_submission_json, blocking=True),
    CheckStep("required fields", check_submission_fields, blocking=True),
    CheckStep("plugin id format", check_plugin_id_format, blocking=True),
    CheckStep("filename matches id", check_filename_matches_id),
    CheckStep("duplicate id", check_duplicate),
    CheckStep("fetch manifest", check_manifest_fetch, blocking=True),
    CheckStep("manifest fields", check_manifest_fields, blocking=True),
    CheckStep("ids match", check_ids_match),
    CheckStep("version format", check_version_format),
    CheckStep("permission vocabulary", check_permissions),
    CheckStep("dangerous permissions", advise_dangerous_permissions),
    CheckStep("optional fields", advise_optional_fields),
    CheckStep("permission count", advise_permission_count),
    CheckStep("source scan", scan_main_script),
)


async def run_pipeline(ctx: SubmissionContext, steps: tuple[CheckStep, ...] = VALIDATION_STEPS) -> ValidationResult:
    """Run steps in order, stopping at the first failed blocking step."""
    for step in steps:
        passed = await step.run(ctx)
        if not passed and step.blocking:
            break
    return ctx.result


async def validate_plugin(
    submission_path: Path,
    plugins_dir: Path,
    client: httpx.AsyncClient,
    policy: SubmissionPolicy = POLICY,
) -> ValidationResult:
    """Validate a single plugin submission file.

    Args:
        submission_path: Submission JSON file to validate
        plugins_dir: Directory holding all accepted submissions
        client: HTTP client used to reach the plugin repository
        policy: Review policy for permissions and source patterns

    Returns:
        The ValidationResult, possibly partial if a blocking check failed
    """
    ctx = SubmissionContext(
        path=submission_path,
        plugins_dir=plugins_dir,
        client=client,
        result=ValidationResult(plugin_id=submission_path.stem),
        policy=policy,
    )
    return await run_pipeline(ctx)


async def validate_submissions(
    paths: list[Path],
    plugins_dir: Path,
    client: httpx.AsyncClient,
    quiet: bool = False,
) -> list[ValidationResult]:
    """Validate submissions one at a time, in the order given."""
    results: list[ValidationResult] = []
    for path in paths:
        print(f"\nValidating: {path}")
        try:
            result = await validate_plugin(path, plugins_dir, client)
        except Exception as e:
            print(f"ERROR: validating {path}: {e}", file=sys.stderr)
            result = ValidationResult(plugin_id=path.stem)
            result.add_error(f"Validation failed: {e}")
        results.append(result)

        if quiet:
            print(format_summary_line(result))
        else:
            print(result.to_markdown())
    return results


def build_output(results: list[ValidationResult]) -> dict[str, Any]:
    """Build the validation-result.json document."""
    return {
        "allPassed": all(r.passed for r in results),
        "results": [r.to_dict() for r in results],
        "markdown": "\n---\n\n".join(r.to_markdown() for r in results),
    }


# =============================================================================
# CLI Interface
# =============================================================================


async def _run(paths: list[Path], plugins_dir: Path, quiet: bool) -> list[ValidationResult]:
    async with create_client() as client:
        return await validate_submissions(paths, plugins_dir, client, quiet=quiet)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Validate plugin directory submissions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0 - All submissions passed
  1 - A submission failed, or no files were given

Examples:
  %(prog)s plugins/com.author.plugin.json
  %(prog)s plugins/*.json --quiet
        """,
    )
    parser.add_argument("files", nargs="*", type=Path, help="Submission JSON files to validate")
    parser.add_argument(
        "--plugins-dir",
        type=Path,
        default=PLUGINS_DIR,
        help=f"Directory of existing submissions for duplicate checks (default: {PLUGINS_DIR})",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=VALIDATION_RESULT_FILE,
        help=f"Where to write the result document (default: {VALIDATION_RESULT_FILE})",
    )
    parser.add_argument("--json", action="store_true", help="Also print the result document as JSON")
    parser.add_argument("-q", "--quiet", action="store_true", help="Print one summary line per submission")

    args = parser.parse_args(argv)

    if not args.files:
        print("Usage: validate_submission.py <plugin-file.json> [plugin-file2.json ...]", file=sys.stderr)
        return EXIT_FAILED

    results = asyncio.run(_run(args.files, args.plugins_dir, args.quiet))
    output = build_output(results)

    try:
        args.output.write_text(json.dumps(output, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        print(f"ERROR: Failed to write validation result: {exc}", file=sys.stderr)
        return EXIT_FAILED

    if args.json:
        print(json.dumps(output, indent=2))

    return EXIT_OK if output["allPassed"] else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
