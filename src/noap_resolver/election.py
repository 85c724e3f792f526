"""Candidate ordering and election, kept free of I/O.

The manager gathers every resolved candidate of a package name and asks
``elect`` for a winner. When no candidate is compatible with all the others,
``elect`` reports the conflict with the candidates sorted for display; what to
do with it (force the latest, fail, or ask someone) is the caller's policy.
"""

import functools
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace

from . import semver
from .endpoint import WILDCARD
from .endpoint import Endpoint
from .endpoint import to_data


@dataclass
class Election:
    """Outcome of an election for one package name."""

    name: str
    suitable: Endpoint | None = None
    picks: list[Endpoint] = field(default_factory=list)

    @property
    def conflicted(self) -> bool:
        return bool(self.picks)

    def data_picks(self) -> list[dict]:
        """Serializable picks, each with its dependants sorted by name."""
        data = []
        for pick in self.picks:
            entry = to_data(pick)
            entry["dependants"] = sorted(
                (to_data(dependant) for dependant in pick.dependants),
                key=lambda item: item["endpoint"]["name"] or "",
            )
            data.append(entry)
        return data


def _compare_semver_candidates(first: Endpoint, second: Endpoint) -> int:
    result = semver.rcompare(first.version, second.version)
    if result:
        return result

    # On equal versions, wildcards lose and exact versions beat ranges
    if first.target == WILDCARD and second.target != WILDCARD:
        return 1
    if second.target == WILDCARD and first.target != WILDCARD:
        return -1

    first_exact = semver.valid(first.target)
    second_exact = semver.valid(second.target)
    if first_exact and not second_exact:
        return -1
    if second_exact and not first_exact:
        return 1
    return 0


def sort_semver_candidates(candidates: list[Endpoint]) -> list[Endpoint]:
    """Sort candidates carrying a version, highest first (stable)."""
    return sorted(candidates, key=functools.cmp_to_key(_compare_semver_candidates))


def promote_wildcards(candidates: list[Endpoint], prefix: str = "~") -> list[Endpoint]:
    """
    Turn newly requested ``*`` targets into a range anchored at the resolved version.

    Only targetable candidates are promoted; promoted ones are new endpoints
    remembering ``*`` as their ``original_target``.
    """
    promoted = []
    for candidate in candidates:
        if candidate.newly and candidate.target == WILDCARD and not candidate.untargetable:
            candidate = replace(candidate, target=f"{prefix}{candidate.version}", original_target=WILDCARD)
        promoted.append(candidate)
    return promoted


def _compare_picks(first: Endpoint, second: Endpoint) -> int:
    version1 = first.version
    version2 = second.version

    if version1 and version2:
        result = semver.compare(version1, version2)
        if result:
            return result
    elif version1:
        return 1
    elif version2:
        return -1

    return (len(first.dependants) > len(second.dependants)) - (len(first.dependants) < len(second.dependants))


def sort_picks(picks: list[Endpoint]) -> list[Endpoint]:
    """Sort conflicting picks ascending: by version (non-semver lowest), then by dependant count."""
    return sorted(picks, key=functools.cmp_to_key(_compare_picks))


def elect(name: str, semvers: list[Endpoint], non_semvers: list[Endpoint], force_latest: bool = False) -> Election:
    """
    Elect the candidate to install for ``name``.

    - semver and non-semver candidates together always conflict
    - a single non-semver candidate wins; several conflict
    - among semver candidates (sorted highest first), the first one satisfying
      every other candidate's target wins; none means a conflict

    With ``force_latest`` a conflict is settled with the last (highest) pick,
    which is returned both as ``suitable`` and within ``picks``.

    Args:
        name: Package name
        semvers: Candidates with a version, as sorted by :func:`sort_semver_candidates`
        non_semvers: Candidates without a version
        force_latest: Settle conflicts with the highest pick
    """
    if semvers and non_semvers:
        picks = [*semvers, *non_semvers]
    elif non_semvers:
        if len(non_semvers) == 1:
            return Election(name, suitable=non_semvers[0])
        picks = list(non_semvers)
    else:
        for subject in semvers:
            if all(
                subject is other or semver.satisfies(subject.version, other.target) for other in semvers
            ):
                return Election(name, suitable=subject)
        picks = list(semvers)

    picks = sort_picks(picks)
    return Election(name, suitable=picks[-1] if force_latest and picks else None, picks=picks)


def parse_choice(answer: str, count: int) -> tuple[int, bool] | None:
    """
    Validate an interactive answer.

    Args:
        answer: Raw answer, a 1-based pick number optionally marked with ``!``
        count: Number of picks offered

    Returns:
        ``(index, remember)`` with a 0-based index, or None if the answer is invalid
    """
    answer = answer.strip()
    remember = answer.startswith("!") or answer.endswith("!")
    number = answer.strip("!").strip()

    if not number.isdigit():
        return None

    choice = int(number)
    if choice < 1 or choice > count:
        return None
    return choice - 1, remember


def are_compatible(candidate: Endpoint, resolved: Endpoint) -> bool:
    """
    Check whether ``candidate`` can be served by ``resolved`` (fetched or in flight).

    Equal targets are always compatible. Once ``resolved`` carries a version, the
    candidate target must match it (exact version) or be satisfied by it (range).
    While ``resolved`` is still in flight only targets can be compared: a version
    against a range, two versions, or two ranges by their upper bound.
    """
    if candidate.target == resolved.target:
        return True

    candidate_is_range = semver.valid_range(candidate.target)
    resolved_is_range = semver.valid_range(resolved.target)
    candidate_is_version = semver.valid(candidate.target)
    resolved_is_version = semver.valid(resolved.target)

    resolved_version = resolved.version
    if not resolved_version:
        if candidate_is_version and resolved_is_range:
            return semver.satisfies(candidate.target, resolved.target)

        if resolved_is_version and candidate_is_range:
            return semver.satisfies(resolved.target, candidate.target)

        if resolved_is_version and candidate_is_version:
            return semver.eq(resolved.target, candidate.target)

        if resolved_is_range and candidate_is_range:
            highest_candidate = semver.get_cap(semver.comparators(candidate.target), "highest")
            highest_resolved = semver.get_cap(semver.comparators(resolved.target), "highest")

            if not highest_candidate.get("version") or not highest_resolved.get("version"):
                return False

            return (
                semver.eq(highest_candidate["version"], highest_resolved["version"])
                and highest_candidate["comparator"] == highest_resolved["comparator"]
            )

        return False

    if candidate_is_version:
        return semver.eq(candidate.target, resolved_version)

    if candidate_is_range:
        return semver.satisfies(resolved_version, candidate.target)

    return False


def uniquify(endpoints: list[Endpoint]) -> list[Endpoint]:
    """
    Drop duplicate endpoints, keeping the last of each.

    Endpoints are duplicates when they share a target and a name (or, when
    neither has a name, a source).
    """
    unique = []
    for index, endpoint in enumerate(endpoints):
        duplicated = False
        for current in endpoints[index + 1 :]:
            if current is endpoint:
                duplicated = True
                break

            if not current.name and not endpoint.name:
                if current.source != endpoint.source:
                    continue
            elif current.name != endpoint.name:
                continue

            if current.target == endpoint.target:
                duplicated = True
                break

        if not duplicated:
            unique.append(endpoint)
    return unique
