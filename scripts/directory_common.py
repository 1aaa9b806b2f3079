#!/usr/bin/env python3
"""
Plugin Directory - Common Module

Shared infrastructure for the submission validator and the directory builder.
This module contains:
- Fixed repository paths (submissions directory, directory file, result file)
- Type definitions (CheckResult, ValidationResult)
- Submission/manifest schema constants and format checks
- Utility functions (timestamps, colors, JSON loading)

Both entry points import from this module so that checks, rendering and
exit codes stay consistent between CI validation and directory rebuilds.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# =============================================================================
# Paths
# =============================================================================


def get_repo_root() -> Path:
    """Get the repository root directory (parent of scripts/).

    Returns:
        Path to the repository root, assuming this module lives in scripts/.
    """
    return Path(__file__).resolve().parent.parent


# One submission record per plugin, named <plugin-id>.json
PLUGINS_DIR = get_repo_root() / "plugins"

# Aggregated directory served to the app
DIRECTORY_FILE = get_repo_root() / "plugins.json"

# Written to the working directory for the CI workflow to pick up
VALIDATION_RESULT_FILE = Path("validation-result.json")

# =============================================================================
# Exit Codes
# =============================================================================

EXIT_OK = 0  # Every submission passed (warnings allowed)
EXIT_FAILED = 1  # A submission failed, no arguments, or fatal error

# =============================================================================
# Schema Constants
# =============================================================================

# Required fields in a submission file
REQUIRED_SUBMISSION_FIELDS = ("id", "name", "description", "author", "repo")

# Required fields in manifest.json
REQUIRED_MANIFEST_FIELDS = ("id", "name", "version", "minAppVersion", "author", "description", "main", "permissions")

# Optional manifest fields copied into the directory when present
OPTIONAL_MANIFEST_FIELDS = ("authorUrl", "helpUrl", "fundingUrl", "supportLinks", "tags", "category")

# Directory document schema version
DIRECTORY_SCHEMA_VERSION = 1

# Semantic version with optional pre-release and build metadata
SEMVER_PATTERN = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+(-[a-zA-Z0-9.-]+)?(\+[a-zA-Z0-9.-]+)?$")

# One segment of a reverse-domain plugin ID
PLUGIN_ID_PART_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$|^[a-z0-9]$")

# =============================================================================
# Format Checks
# =============================================================================


def is_valid_plugin_id(plugin_id: str) -> bool:
    """Check plugin ID uses reverse domain notation (e.g. com.author.name)."""
    parts = plugin_id.split(".")
    if len(parts) < 2:
        return False
    return all(PLUGIN_ID_PART_PATTERN.fullmatch(part) for part in parts)


def is_valid_semver(version: str) -> bool:
    """Check version is MAJOR.MINOR.PATCH with optional -prerelease/+build."""
    return bool(SEMVER_PATTERN.fullmatch(version))


def is_blank(value: Any) -> bool:
    """Check if a JSON value counts as missing.

    Absent, null, false, zero and empty strings are missing. Empty lists and
    objects are present, so a manifest may declare ``"permissions": []``.
    """
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (int, float)):
        return value == 0
    return False


def missing_fields(record: dict[str, Any], required: tuple[str, ...]) -> list[str]:
    """Return required field names that are blank in record, in schema order."""
    return [name for name in required if is_blank(record.get(name))]


def load_json_file(path: Path) -> Any:
    """Read and parse a UTF-8 JSON file.

    Raises:
        OSError: file cannot be read
        json.JSONDecodeError: content is not valid JSON
    """
    return json.loads(path.read_text(encoding="utf-8"))


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class CheckResult:
    """Single named pass/fail check.

    Attributes:
        name: Check name shown in the report table
        passed: Whether the check passed
        details: Optional detail shown next to the name
    """

    name: str
    passed: bool
    details: str | None = None

    def to_dict(self) -> dict[str, str | bool | None]:
        """Convert to dictionary for JSON serialization."""
        return {"name": self.name, "passed": self.passed, "details": self.details}


@dataclass
class ValidationResult:
    """Validation outcome for one plugin submission.

    Checks keep their order. A failed check or any error flips ``passed``
    to False permanently; warnings are advisory and never change it.
    """

    plugin_id: str
    passed: bool = True
    checks: list[CheckResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    manifest: dict[str, Any] | None = None

    def add_check(self, name: str, passed: bool, details: str | None = None) -> bool:
        """Record a check and return its outcome."""
        self.checks.append(CheckResult(name, passed, details))
        if not passed:
            self.passed = False
        return passed

    def add_warning(self, message: str) -> None:
        """Add an advisory warning for reviewers."""
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error; always fails the submission."""
        self.errors.append(message)
        self.passed = False

    def get_check(self, name: str) -> CheckResult | None:
        """Return the first check recorded under name, if any."""
        for check in self.checks:
            if check.name == name:
                return check
        return None

    @property
    def failed_checks(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]

    def to_markdown(self) -> str:
        """Render the result as a GitHub-flavored markdown report."""
        status = "✅ Passed" if self.passed else "❌ Failed"
        lines = [
            "## 🔍 Plugin Validation Results",
            "",
            f"**Plugin:** `{self.plugin_id}`",
            f"**Status:** {status}",
            "",
            "### Checks",
            "| Check | Status |",
            "|-------|--------|",
        ]
        for check in self.checks:
            icon = "✅" if check.passed else "❌"
            details = f" ({check.details})" if check.details else ""
            lines.append(f"| {check.name}{details} | {icon} |")
        lines.append("")

        if self.warnings:
            lines.append("### Warnings")
            for warning in self.warnings:
                lines.append(f"⚠️ {warning}")
                lines.append("")

        if self.errors:
            lines.append("### Errors")
            for error in self.errors:
                lines.append(f"❌ {error}")
                lines.append("")

        if self.manifest is not None:
            permissions = self.manifest.get("permissions")
            if isinstance(permissions, list) and permissions:
                permission_text = ", ".join(str(p) for p in permissions)
            else:
                permission_text = "none"
            lines.append("### Manifest Summary")
            lines.append(f"- **Version:** {self.manifest.get('version')}")
            lines.append(f"- **Min App Version:** {self.manifest.get('minAppVersion')}")
            lines.append(f"- **Permissions:** {permission_text}")
            if self.manifest.get("category"):
                lines.append(f"- **Category:** {self.manifest['category']}")

        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "pluginId": self.plugin_id,
            "passed": self.passed,
            "checks": [c.to_dict() for c in self.checks],
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "manifest": self.manifest,
        }


# =============================================================================
# Color Formatting (for terminal output)
# =============================================================================

# ANSI color codes
COLORS = {
    "FAILED": "\033[91m",  # Red
    "WARNING": "\033[95m",  # Magenta, never blocks
    "INFO": "\033[90m",  # Gray
    "PASSED": "\033[92m",  # Green
    "RESET": "\033[0m",
    "BOLD": "\033[1m",
}


def colorize(text: str, level: str) -> str:
    """Apply color to text based on level."""
    color = COLORS.get(level, "")
    return f"{color}{text}{COLORS['RESET']}"


def format_summary_line(result: ValidationResult) -> str:
    """One-line console summary for a validated submission."""
    if result.passed:
        status = colorize("PASSED", "PASSED")
    else:
        status = colorize("FAILED", "FAILED")
    failed = len(result.failed_checks)
    return (
        f"{status} {result.plugin_id}: {len(result.checks)} checks, "
        f"{failed} failed, {len(result.warnings)} warnings, {len(result.errors)} errors"
    )
