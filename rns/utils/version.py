"""Version helpers for capability requirements and manifest schema versions."""

import re
from typing import NamedTuple

_VERSION = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$")
_COMPARATOR = re.compile(r"^(>=|<=|>|<|=)?\s*(.+)$")


class Version(NamedTuple):
    """A parsed semantic version. Prerelease tags sort before the release."""

    major: int
    minor: int
    patch: int
    prerelease: str = ""

    @classmethod
    def parse(cls, text: str) -> "Version":
        """Parse ``1``, ``1.2`` or ``1.2.3[-pre][+build]``.

        Raises:
            ValueError: If the text is not a version
        """
        match = _VERSION.match(text.strip())
        if not match:
            raise ValueError(f"Invalid version: {text!r}")
        major, minor, patch, pre = match.groups()
        return cls(int(major), int(minor or 0), int(patch or 0), pre or "")

    def key(self) -> tuple[int, int, int, int, str]:
        return (self.major, self.minor, self.patch, 0 if self.prerelease else 1, self.prerelease)

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as version ``a`` sorts before, equal to, or after ``b``."""
    ka, kb = Version.parse(a).key(), Version.parse(b).key()
    return (ka > kb) - (ka < kb)


def _upper_bound(base: Version, caret: bool) -> Version:
    if not caret:
        return Version(base.major, base.minor + 1, 0, "0")
    if base.major > 0:
        return Version(base.major + 1, 0, 0, "0")
    if base.minor > 0:
        return Version(0, base.minor + 1, 0, "0")
    return Version(0, 0, base.patch + 1, "0")


def _check(version: Version, op: str, bound: Version) -> bool:
    v, b = version.key(), bound.key()
    return {
        ">=": v >= b,
        "<=": v <= b,
        ">": v > b,
        "<": v < b,
        "=": v == b,
    }[op]


def satisfies(version: str, spec: str) -> bool:
    """Check a version against an npm-style range.

    Supports ``*``/``latest``, exact versions, ``^`` and ``~`` ranges, and
    space-separated comparator sets such as ``>=1.2.0 <2``.

    Args:
        version: Installed version
        spec: Required range

    Returns:
        True if the version satisfies the range; False for unparseable input
    """
    spec = spec.strip()
    if spec in ("", "*", "latest", "x"):
        return True
    try:
        parsed = Version.parse(version)
        for part in spec.split():
            if part[0] in "^~":
                base = Version.parse(part[1:])
                upper = _upper_bound(base, caret=part[0] == "^")
                if not (_check(parsed, ">=", base) and _check(parsed, "<", upper)):
                    return False
                continue
            match = _COMPARATOR.match(part)
            if match is None:
                return False
            op, bound = match.group(1) or "=", Version.parse(match.group(2))
            if not _check(parsed, op, bound):
                return False
    except ValueError:
        return False
    return True
