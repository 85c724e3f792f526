"""Tests for the npm-style semver helpers."""

from noap_resolver import semver


def test_loose_versions():
    """Test that tag-style versions are accepted and cleaned."""
    assert semver.valid("1.2.3")
    assert semver.valid("v1.2.3")
    assert semver.valid("=1.2.3")
    assert semver.clean("v1.2.3") == "1.2.3"

    assert not semver.valid("master")
    assert not semver.valid("*")
    assert not semver.valid(None)
    assert semver.clean("latest") is None


def test_ranges():
    """Test npm range parsing and matching."""
    assert semver.valid_range("~1.2.0")
    assert semver.valid_range("^1.0.0")
    assert semver.valid_range("*")
    assert semver.valid_range("1.2.3")
    assert not semver.valid_range("master")

    assert semver.satisfies("1.2.3", "~1.2.0")
    assert not semver.satisfies("1.3.0", "~1.2.0")
    assert semver.satisfies("v1.2.3", "1.2.3")
    assert not semver.satisfies("master", "*")


def test_max_satisfying_returns_original_string():
    """Test that the matching entry is returned as given (not cleaned)."""
    versions = ["v1.0.0", "v1.2.0", "v2.0.0", "garbage"]

    assert semver.max_satisfying(versions, "^1.0.0") == "v1.2.0"
    assert semver.max_satisfying(versions, "*") == "v2.0.0"
    assert semver.max_satisfying(versions, "~3.0.0") is None


def test_sort_versions_semvers_first():
    """Test cache ordering: semvers highest first, other labels after in encounter order."""
    versions = ["_wildcard", "1.0.0", "some-branch", "2.0.0", "1.10.0"]

    assert semver.sort_versions(versions) == ["2.0.0", "1.10.0", "1.0.0", "_wildcard", "some-branch"]


def test_compare():
    """Test comparisons."""
    assert semver.compare("1.0.0", "2.0.0") == -1
    assert semver.compare("2.0.0", "1.0.0") == 1
    assert semver.rcompare("1.0.0", "2.0.0") == 1
    assert semver.eq("v1.0.0", "1.0.0")


def test_comparators_and_caps():
    """Test range expansion and bound extraction."""
    tree = semver.comparators("~1.2.0")
    highest = semver.get_cap(tree, "highest")
    lowest = semver.get_cap(tree, "lowest")
    assert highest["comparator"] == "<"
    assert highest["version"].startswith("1.3.0")
    assert lowest["comparator"] == ">="
    assert lowest["version"].startswith("1.2.0")

    nested = [[(">=", "2.1.1"), ("<", "2.2.0")], ("<", "3.2.0")]
    assert semver.get_cap(nested) == {"comparator": "<", "version": "3.2.0"}
    assert semver.get_cap(nested, "lowest") == {"comparator": ">=", "version": "2.1.1"}


def test_get_cap_empty():
    """Test that a tree without bounds yields an empty cap."""
    assert semver.get_cap([]) == {}
    assert semver.comparators("not a range") == []
