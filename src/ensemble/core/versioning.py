"""
ensemble.core.versioning - Semantic Versions and Constraints
==============================================================

Version values and constraint matching used by the DependencyResolver.

Supported syntax:
    Versions:     MAJOR.MINOR.PATCH[-prerelease][+build]
    Constraints:  "=1.2.0", ">1.0.0", "<2.0.0", ">=1.0.0", "<=1.4.0",
                  "^1.2.0" (same major, and >= 1.2.0),
                  "~1.2.0" (same major.minor, and >= 1.2.0),
                  "1.2.0"  (bare version means "=").
    A constraint string containing whitespace (">=1.0.0 <2.0.0") is a
    conjunction of several constraints.

Ordering ignores build metadata. A release sorts above its prereleases
(1.0.0-beta < 1.0.0); prerelease strings compare lexically.
"""

from __future__ import annotations

import re
from functools import total_ordering
from typing import Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field

from ensemble.core.exceptions import ValidationError

_VERSION_PATTERN = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
# Two-character operators first so ">=" is not read as ">" followed by "=1.0.0".
_CONSTRAINT_PATTERN = re.compile(r"^(>=|<=|[=<>~^])?\s*(.+)$")

ConstraintOperator = Literal["=", ">", "<", ">=", "<=", "^", "~"]


@total_ordering
class SemanticVersion(BaseModel):
    """An immutable semantic version.

    Example:
        >>> SemanticVersion.parse("1.2.0") < SemanticVersion.parse("2.0.0")
        True
    """

    model_config = {"frozen": True}

    major: int = Field(ge=0)
    minor: int = Field(ge=0)
    patch: int = Field(ge=0)
    prerelease: Optional[str] = None
    build: Optional[str] = None

    @classmethod
    def parse(cls, value: Union[str, SemanticVersion]) -> SemanticVersion:
        """Parse a version string.

        Raises:
            ValidationError: If the string is not a semantic version.
        """
        if isinstance(value, SemanticVersion):
            return value
        match = _VERSION_PATTERN.match(value.strip())
        if match is None:
            raise ValidationError(
                message=f"Invalid version format: {value}",
                error_code="INVALID_VERSION",
                details={"version": value},
            )
        major, minor, patch, prerelease, build = match.groups()
        return cls(
            major=int(major),
            minor=int(minor),
            patch=int(patch),
            prerelease=prerelease,
            build=build,
        )

    def _precedence(self) -> tuple[int, int, int, int, str]:
        # A release (no prerelease) outranks any prerelease of the same triple.
        return (
            self.major,
            self.minor,
            self.patch,
            0 if self.prerelease else 1,
            self.prerelease or "",
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._precedence() == other._precedence()

    def __lt__(self, other: SemanticVersion) -> bool:
        return self._precedence() < other._precedence()

    def __hash__(self) -> int:
        return hash(self._precedence())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text


class VersionConstraint(BaseModel):
    """A single ``<operator><version>`` requirement."""

    model_config = {"frozen": True}

    operator: ConstraintOperator = "="
    version: SemanticVersion

    @classmethod
    def parse(cls, value: Union[str, VersionConstraint]) -> VersionConstraint:
        if isinstance(value, VersionConstraint):
            return value
        match = _CONSTRAINT_PATTERN.match(value.strip())
        if match is None:
            raise ValidationError(
                message=f"Invalid constraint format: {value}",
                error_code="INVALID_CONSTRAINT",
                details={"constraint": value},
            )
        operator, version = match.groups()
        return cls(operator=operator or "=", version=SemanticVersion.parse(version))

    def is_satisfied_by(self, candidate: SemanticVersion) -> bool:
        target = self.version
        if self.operator == "=":
            return candidate == target
        if self.operator == ">":
            return candidate > target
        if self.operator == "<":
            return candidate < target
        if self.operator == ">=":
            return candidate >= target
        if self.operator == "<=":
            return candidate <= target
        if self.operator == "^":
            return candidate.major == target.major and candidate >= target
        # "~"
        return (
            candidate.major == target.major
            and candidate.minor == target.minor
            and candidate >= target
        )

    def __str__(self) -> str:
        return f"{self.operator}{self.version}"


def parse_constraints(
    constraints: Union[str, VersionConstraint, Iterable[Union[str, VersionConstraint]], None],
) -> list[VersionConstraint]:
    """Normalize constraints into a flat list of VersionConstraint.

    Accepts a single string (split on whitespace), a single constraint, or
    an iterable mixing both.

    Example:
        >>> [str(c) for c in parse_constraints(">=1.0.0 <2.0.0")]
        ['>=1.0.0', '<2.0.0']
    """
    if constraints is None:
        return []
    if isinstance(constraints, (str, VersionConstraint)):
        constraints = [constraints]

    parsed: list[VersionConstraint] = []
    for item in constraints:
        if isinstance(item, VersionConstraint):
            parsed.append(item)
            continue
        parsed.extend(VersionConstraint.parse(part) for part in item.split())
    return parsed


def satisfies_all(version: SemanticVersion, constraints: Iterable[VersionConstraint]) -> bool:
    """True when ``version`` satisfies every constraint (vacuously true if none)."""
    return all(constraint.is_satisfied_by(version) for constraint in constraints)
