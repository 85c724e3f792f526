"""Endpoint records and the ``[name=]source[#target]`` grammar."""

import re
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from .schema import PackageMeta

WILDCARD = "*"

_ENDPOINT = re.compile(r"^(?:([\w\-]|(?:[\w\.\-]+[\w\-])?)=)?([^\|#]+)(?:#(.*))?$")


@dataclass(eq=False)
class Endpoint:
    """
    One resolution request and, once fetched, its outcome.

    Endpoints are compared by identity: two requests for the same source and
    target are still distinct candidates until the manager merges them.
    """

    source: str
    name: str | None = None
    target: str = WILDCARD
    original_target: str | None = None
    canonical_dir: Path | None = None
    pkg_meta: PackageMeta | None = None

    # Explicitly requested by the user (vs. pulled in as a dependency)
    newly: bool = False
    untargetable: bool = False
    linked: bool = False
    missing: bool = False
    registry: bool = False

    dependants: list["Endpoint"] = field(default_factory=list)
    installed: PackageMeta | None = None
    initial_name: str | None = None

    def __post_init__(self):
        if not self.target:
            self.target = WILDCARD

    @property
    def release(self) -> str | None:
        return self.pkg_meta.release if self.pkg_meta else None

    @property
    def version(self) -> str | None:
        return self.pkg_meta.version if self.pkg_meta else None

    def identity(self) -> dict:
        """Name, source and target, as annotated on logs and errors."""
        return {"name": self.name, "source": self.source, "target": self.target}


def decompose(expression: str) -> Endpoint:
    """
    Parse an endpoint expression.

    Grammar: ``[name=]source[#target]``; the target defaults to ``*``.

    Examples:
        >>> decompose("jquery#~2.0.0").target
        '~2.0.0'
        >>> decompose("jq=git://github.com/jquery/jquery.git").name
        'jq'

    Raises:
        ValueError: If the expression is empty or malformed
    """
    matches = _ENDPOINT.match(expression.strip()) if expression else None
    if not matches:
        raise ValueError(f"Invalid endpoint: {expression!r}")

    name, source, target = matches.groups()
    return Endpoint(
        name=(name or "").strip() or None,
        source=source.strip(),
        target=(target or "").strip() or WILDCARD,
    )


def compose(endpoint: Endpoint) -> str:
    """Inverse of :func:`decompose`; the target is omitted when it is ``*``."""
    composed = ""
    if endpoint.name:
        composed += f"{endpoint.name.strip()}="
    composed += endpoint.source.strip()
    if endpoint.target and endpoint.target != WILDCARD:
        composed += f"#{endpoint.target.strip()}"
    return composed


def to_data(endpoint: Endpoint, extra_keys: list[str] | None = None) -> dict:
    """
    Serializable projection of an endpoint for logs and conflict payloads.

    Args:
        endpoint: Endpoint to project
        extra_keys: Additional truthy attributes to include (e.g. ``["missing", "linked"]``)
    """
    data: dict = {"endpoint": endpoint.identity()}

    if endpoint.canonical_dir:
        data["canonical_dir"] = str(endpoint.canonical_dir)
        data["pkg_meta"] = endpoint.pkg_meta.to_dict() if endpoint.pkg_meta else None

    for key in extra_keys or []:
        value = getattr(endpoint, key, None)
        if value:
            data[key] = value

    return data
