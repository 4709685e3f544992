"""Semantic versions and pub-style version constraints.

pub.dev versions follow semver 2.0 (``1.2.3-dev.4+build``), which PEP 440
parsers reject, so versions and constraints are handled here.

Supported constraint forms:
    any
    1.2.3                 exact
    ^1.2.3                caret (compatible with)
    >=2.12.0 <3.0.0       ranges built from >=, >, <=, <
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Optional

_VERSION_RE = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)"
    r"(?:-([0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?"
    r"(?:\+([0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?$"
)

_COMPARATOR_RE = re.compile(r"(>=|<=|>|<)\s*([^\s<>=]+)")


def _identifier_key(part: str) -> tuple:
    # Numeric identifiers sort before alphanumeric ones
    if part.isdigit():
        return (0, int(part), "")
    return (1, 0, part)


@total_ordering
@dataclass(frozen=True)
class Version:
    """A semantic version."""

    major: int
    minor: int
    patch: int
    pre_release: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "Version":
        match = _VERSION_RE.match(text.strip())
        if not match:
            raise ValueError(f"Invalid version: {text!r}")
        major, minor, patch, pre, build = match.groups()
        return cls(
            major=int(major),
            minor=int(minor),
            patch=int(patch),
            pre_release=tuple(pre.split(".")) if pre else (),
            build=tuple(build.split(".")) if build else (),
        )

    @property
    def is_pre_release(self) -> bool:
        return bool(self.pre_release)

    def _key(self) -> tuple:
        # A release sorts after all of its pre-releases
        pre = tuple(_identifier_key(p) for p in self.pre_release)
        return (self.major, self.minor, self.patch, 0 if pre else 1, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre_release:
            text += "-" + ".".join(self.pre_release)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


@dataclass(frozen=True)
class VersionRange:
    """A contiguous range of versions; ``None`` bounds are open."""

    min: Optional[Version] = None
    max: Optional[Version] = None
    include_min: bool = False
    include_max: bool = False

    def allows(self, version: Version) -> bool:
        if self.min is not None:
            if version < self.min or (version == self.min and not self.include_min):
                return False
        if self.max is not None:
            if version > self.max or (version == self.max and not self.include_max):
                return False
        return True

    @property
    def is_any(self) -> bool:
        return self.min is None and self.max is None

    def __str__(self) -> str:
        if self.is_any:
            return "any"
        if self.min is not None and self.min == self.max:
            return str(self.min)
        parts = []
        if self.min is not None:
            parts.append(f"{'>=' if self.include_min else '>'}{self.min}")
        if self.max is not None:
            parts.append(f"{'<=' if self.include_max else '<'}{self.max}")
        return " ".join(parts)


def _caret_upper(version: Version) -> Version:
    if version.major > 0:
        return Version(version.major + 1, 0, 0)
    if version.minor > 0:
        return Version(0, version.minor + 1, 0)
    return Version(0, 0, version.patch + 1)


def parse_constraint(text: str) -> VersionRange:
    """Parse a pub version constraint string.

    Raises:
        ValueError: If the constraint is malformed.
    """
    text = text.strip()
    if not text or text == "any":
        return VersionRange()

    if text.startswith("^"):
        base = Version.parse(text[1:])
        return VersionRange(min=base, max=_caret_upper(base), include_min=True)

    if text[0].isdigit():
        exact = Version.parse(text)
        return VersionRange(min=exact, max=exact, include_min=True, include_max=True)

    low: Optional[Version] = None
    high: Optional[Version] = None
    include_min = include_max = False
    for match in _COMPARATOR_RE.finditer(text):
        op, raw = match.groups()
        version = Version.parse(raw)
        if op in (">=", ">"):
            if low is not None:
                raise ValueError(f"Duplicate lower bound in {text!r}")
            low, include_min = version, op == ">="
        else:
            if high is not None:
                raise ValueError(f"Duplicate upper bound in {text!r}")
            high, include_max = version, op == "<="

    if low is None and high is None:
        raise ValueError(f"Invalid version constraint: {text!r}")
    # Reject leftovers such as ">=1.0.0 foo"
    if _COMPARATOR_RE.sub("", text).strip():
        raise ValueError(f"Invalid version constraint: {text!r}")

    return VersionRange(min=low, max=high, include_min=include_min, include_max=include_max)


def try_parse_version(text: Optional[str]) -> Optional[Version]:
    """Parse a version, returning None on bad input."""
    if not text:
        return None
    try:
        return Version.parse(text)
    except ValueError:
        return None

