"""npm-compatible semver helpers built on ``semantic_version``.

Targets in endpoints follow npm range syntax (``~1.2.0``, ``^1.0.0``, ``1.x``,
``>=1.0.0 <2.0.0 || 3.0.0``), so ranges are parsed with ``NpmSpec``. Versions
are parsed loosely: tags such as ``v1.2.3`` or ``=1.2.3`` are accepted.
"""

import functools
import re
from collections.abc import Iterable

from semantic_version import NpmSpec
from semantic_version import Version

_LOOSE_PREFIX = re.compile(r"^[=v]+")


def parse(version: str | None) -> Version | None:
    """Parse a version string loosely, returning None when it is not semver."""
    if not isinstance(version, str):
        return None
    cleaned = _LOOSE_PREFIX.sub("", version.strip())
    try:
        return Version(cleaned)
    except ValueError:
        return None


def clean(version: str | None) -> str | None:
    """Return the canonical form of a version string, or None if invalid."""
    parsed = parse(version)
    return str(parsed) if parsed is not None else None


def valid(version: str | None) -> bool:
    """Check whether a string is a valid semver version."""
    return parse(version) is not None


def _spec(target: str | None) -> NpmSpec | None:
    if not isinstance(target, str):
        return None
    expression = target.strip() or "*"
    try:
        return NpmSpec(expression)
    except ValueError:
        return None


def valid_range(target: str | None) -> bool:
    """Check whether a string is a valid npm range (exact versions included)."""
    return _spec(target) is not None


def satisfies(version: str | None, target: str | None) -> bool:
    """Check whether ``version`` satisfies the npm range ``target``."""
    parsed = parse(version)
    spec = _spec(target)
    if parsed is None or spec is None:
        return False
    return spec.match(parsed)


def max_satisfying(versions: Iterable[str], target: str) -> str | None:
    """Return the highest entry of ``versions`` satisfying ``target``.

    The original string is returned (not its cleaned form) so callers can use
    it to address cache directories or tags.
    """
    spec = _spec(target)
    if spec is None:
        return None

    best: tuple[Version, str] | None = None
    for candidate in versions:
        parsed = parse(candidate)
        if parsed is None or not spec.match(parsed):
            continue
        if best is None or parsed > best[0]:
            best = (parsed, candidate)
    return best[1] if best else None


def compare(first: str, second: str) -> int:
    """Compare two valid versions: -1, 0 or 1."""
    a = parse(first)
    b = parse(second)
    if a is None or b is None:
        raise ValueError(f"Invalid version comparison: {first!r} vs {second!r}")
    return (a > b) - (a < b)


def rcompare(first: str, second: str) -> int:
    """Reverse of :func:`compare`."""
    return compare(second, first)


def eq(first: str, second: str) -> bool:
    return compare(first, second) == 0


def _release_order(first: str, second: str) -> int:
    first_valid = valid(first)
    second_valid = valid(second)

    if first_valid and second_valid:
        return rcompare(first, second)
    if first_valid:
        return -1
    if second_valid:
        return 1
    return 0


def sort_versions(versions: list[str]) -> list[str]:
    """Sort release labels in place: semvers DESC first, the rest keep encounter order."""
    versions.sort(key=functools.cmp_to_key(_release_order))
    return versions


def comparators(target: str) -> list:
    """Expand a range into its nested comparator tree.

    Leaves are ``(operator, version)`` tuples; every ``AllOf``/``AnyOf`` group
    becomes a nested list, so ``~1.2.0`` expands to a single group holding a
    ``>=1.2.0`` and a ``<1.3.0`` comparator.
    """
    spec = _spec(target)
    if spec is None:
        return []
    tree = _walk(spec.clause)
    return tree if isinstance(tree, list) else [tree]


def _walk(clause):
    sub = getattr(clause, "clauses", None)
    if sub is not None:
        walked = [_walk(item) for item in sub]
        return [item for item in walked if item != []]

    operator = getattr(clause, "operator", None)
    target = getattr(clause, "target", None)
    if operator is None or target is None:
        return []
    # Partial versions print with a trailing "-"
    return (operator, str(target).rstrip("-"))


def get_cap(tree: list, side: str = "highest") -> dict:
    """Get the highest (or lowest) bound of a comparator tree.

    Only the version number matters; the comparator is returned alongside it.

    Examples:
        >>> get_cap([[(">=", "2.1.1"), ("<", "2.2.0")], ("<", "3.2.0")])
        {'comparator': '<', 'version': '3.2.0'}
        >>> get_cap([[(">=", "2.1.1"), ("<", "2.2.0")], ("<", "3.2.0")], "lowest")
        {'comparator': '>=', 'version': '2.1.1'}

    Args:
        tree: Output of :func:`comparators` (or any nested subset of it)
        side: ``"highest"`` (default) or ``"lowest"``

    Returns:
        Dict with ``comparator`` and ``version`` keys, empty if no bound was found
    """
    cap: dict = {}
    lowest = side == "lowest"

    for item in tree:
        if isinstance(item, list):
            candidate = get_cap(item, side)
        else:
            operator, version = item
            candidate = {"comparator": operator, "version": version}

        if not candidate.get("version"):
            continue
        if not cap:
            cap = candidate
            continue

        order = compare(candidate["version"], cap["version"])
        if (lowest and order < 0) or (not lowest and order > 0):
            cap = candidate

    return cap


__all__ = [
    "clean",
    "comparators",
    "compare",
    "eq",
    "get_cap",
    "max_satisfying",
    "parse",
    "rcompare",
    "satisfies",
    "sort_versions",
    "valid",
    "valid_range",
]
