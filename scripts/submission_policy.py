#!/usr/bin/env python3
"""
Plugin Directory - Submission Policy Module

Permission vocabulary, dangerous-permission subset and risky source patterns,
read from submission_policy.yaml once at import. The tables are immutable for
the life of the process; there are no per-plugin overrides.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

POLICY_FILE = Path(__file__).resolve().parent / "submission_policy.yaml"


class PolicyError(ValueError):
    """The policy file is missing, malformed or inconsistent."""


@dataclass(frozen=True)
class SubmissionPolicy:
    """Static review policy for plugin submissions.

    Attributes:
        valid_permissions: Complete permission vocabulary
        dangerous_permissions: Subset that needs a written justification
        risky_patterns: (compiled pattern, label) pairs, in report order
        max_permissions: Permission count above which reviewers are warned
        max_main_script_bytes: Entry file size above which reviewers are warned
    """

    valid_permissions: frozenset[str]
    dangerous_permissions: frozenset[str]
    risky_patterns: tuple[tuple[re.Pattern[str], str], ...]
    max_permissions: int = 5
    max_main_script_bytes: int = 1024 * 1024

    def is_valid(self, permission: str) -> bool:
        return permission in self.valid_permissions

    def is_dangerous(self, permission: str) -> bool:
        return permission in self.dangerous_permissions

    def invalid_permissions(self, permissions: Iterable[Any]) -> list[Any]:
        """Declared permissions outside the vocabulary, in declaration order."""
        return [p for p in permissions if not isinstance(p, str) or not self.is_valid(p)]

    def dangerous_in(self, permissions: Iterable[Any]) -> list[str]:
        """Declared dangerous permissions, in declaration order (duplicates kept)."""
        return [p for p in permissions if isinstance(p, str) and self.is_dangerous(p)]

    def scan_source(self, source: str) -> list[str]:
        """Labels of every risky pattern found at least once in source.

        This is a lexical scan: matches inside comments or string literals
        are reported too.
        """
        return [label for pattern, label in self.risky_patterns if pattern.search(source)]


def _string_list(value: Any, key: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise PolicyError(f"'{key}' must be a list of strings")
    return value


def parse_policy(data: Any) -> SubmissionPolicy:
    """Build a SubmissionPolicy from parsed YAML data.

    Raises:
        PolicyError: a section is missing or has the wrong shape, a dangerous
            permission is not in the vocabulary, or a pattern does not compile
    """
    if not isinstance(data, dict):
        raise PolicyError("policy must be a mapping")

    groups = data.get("permissions")
    if not isinstance(groups, dict) or not groups:
        raise PolicyError("'permissions' must map group names to permission lists")
    valid: set[str] = set()
    for group, permissions in groups.items():
        valid.update(_string_list(permissions, f"permissions.{group}"))

    dangerous = set(_string_list(data.get("dangerous", []), "dangerous"))
    unknown = sorted(dangerous - valid)
    if unknown:
        raise PolicyError(f"dangerous permissions not in vocabulary: {', '.join(unknown)}")

    raw_patterns = data.get("risky_patterns", [])
    if not isinstance(raw_patterns, list):
        raise PolicyError("'risky_patterns' must be a list")
    patterns: list[tuple[re.Pattern[str], str]] = []
    for index, entry in enumerate(raw_patterns):
        if not isinstance(entry, dict) or not entry.get("pattern") or not entry.get("label"):
            raise PolicyError(f"risky_patterns[{index}] needs 'pattern' and 'label'")
        try:
            compiled = re.compile(str(entry["pattern"]))
        except re.error as e:
            raise PolicyError(f"risky_patterns[{index}] does not compile: {e}") from e
        patterns.append((compiled, str(entry["label"])))

    limits = data.get("limits") or {}
    if not isinstance(limits, dict):
        raise PolicyError("'limits' must be a mapping")
    max_permissions = limits.get("max_permissions", 5)
    max_kib = limits.get("max_main_script_kib", 1024)
    if not isinstance(max_permissions, int) or not isinstance(max_kib, int):
        raise PolicyError("limits must be integers")

    return SubmissionPolicy(
        valid_permissions=frozenset(valid),
        dangerous_permissions=frozenset(dangerous),
        risky_patterns=tuple(patterns),
        max_permissions=max_permissions,
        max_main_script_bytes=max_kib * 1024,
    )


def load_policy(path: Path = POLICY_FILE) -> SubmissionPolicy:
    """Read and validate a policy file.

    Raises:
        PolicyError: the file cannot be read or parsed, or is inconsistent
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise PolicyError(f"cannot load policy {path}: {e}") from e
    return parse_policy(data)


POLICY = load_policy()

VALID_PERMISSIONS = POLICY.valid_permissions
DANGEROUS_PERMISSIONS = POLICY.dangerous_permissions
DANGEROUS_PATTERNS = POLICY.risky_patterns
