"""
Version Comparator

Semantic-version ordering on major.minor.patch.

One comparator is shared by the startup migration gate and the auto-update
check so both agree on what "newer" means.

Rules:
- A leading "v" is ignored ("v3.8.1" == "3.8.1")
- Missing components count as zero ("3.8" == "3.8.0")
- Build metadata after "+" is ignored
- A pre-release sorts before its release ("3.9.0-rc.1" < "3.9.0");
  pre-release identifiers compare numerically when both are numeric,
  lexically otherwise, and numeric identifiers sort first
"""

import re
from enum import Enum
from typing import Tuple, Union

_VERSION_RE = re.compile(
    r"^v?(?P<core>\d+(?:\.\d+){0,2})"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


class VersionOrder(str, Enum):
    """Result of comparing version `a` against version `b`."""
    OLDER = "older"
    EQUAL = "equal"
    NEWER = "newer"


def parse_version(version: str) -> Tuple[Tuple[int, int, int], Tuple[Union[int, str], ...]]:
    """
    Parse a version string into (core, prerelease).

    Raises:
        ValueError: If the string is not a recognisable version
    """
    match = _VERSION_RE.match((version or "").strip())
    if not match:
        raise ValueError(f"Invalid version string: {version!r}")

    parts = [int(p) for p in match.group("core").split(".")]
    while len(parts) < 3:
        parts.append(0)

    pre: Tuple[Union[int, str], ...] = ()
    if match.group("pre"):
        pre = tuple(
            int(ident) if ident.isdigit() else ident
            for ident in match.group("pre").split(".")
        )
    return (parts[0], parts[1], parts[2]), pre


def _compare_prerelease(a: Tuple[Union[int, str], ...], b: Tuple[Union[int, str], ...]) -> int:
    # No pre-release outranks any pre-release
    if not a and not b:
        return 0
    if not a:
        return 1
    if not b:
        return -1

    for left, right in zip(a, b):
        if left == right:
            continue
        if isinstance(left, int) and isinstance(right, int):
            return -1 if left < right else 1
        if isinstance(left, int):
            return -1
        if isinstance(right, int):
            return 1
        return -1 if left < right else 1

    if len(a) == len(b):
        return 0
    return -1 if len(a) < len(b) else 1


def compare_versions(a: str, b: str) -> VersionOrder:
    """
    Compare version `a` against version `b`.

    compare_versions("1.2.0", "1.10.0") -> OLDER
    compare_versions("2.0.0", "2.0.0")  -> EQUAL
    compare_versions("3.8.1", "3.8.0")  -> NEWER
    """
    core_a, pre_a = parse_version(a)
    core_b, pre_b = parse_version(b)

    if core_a != core_b:
        return VersionOrder.OLDER if core_a < core_b else VersionOrder.NEWER

    result = _compare_prerelease(pre_a, pre_b)
    if result < 0:
        return VersionOrder.OLDER
    if result > 0:
        return VersionOrder.NEWER
    return VersionOrder.EQUAL


def is_newer(a: str, b: str) -> bool:
    """True when version `a` is strictly newer than version `b`."""
    return compare_versions(a, b) is VersionOrder.NEWER


def is_older(a: str, b: str) -> bool:
    """True when version `a` is strictly older than version `b`."""
    return compare_versions(a, b) is VersionOrder.OLDER
