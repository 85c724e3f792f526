"""Tests for resolver dispatch."""

import tempfile
from pathlib import Path

import pytest

from noap_resolver import Endpoint
from noap_resolver import NoResolverError
from noap_resolver import PackageNotFoundError
from noap_resolver import Registry
from noap_resolver import ResolverConfig
from noap_resolver import ResolverFactory
from noap_resolver import StorageConfig
from noap_resolver.resolvers import FsResolver
from noap_resolver.resolvers import GitFsResolver
from noap_resolver.resolvers import GitHubResolver
from noap_resolver.resolvers import GitRemoteResolver
from noap_resolver.resolvers import ResolverContext
from noap_resolver.resolvers import SvnResolver
from noap_resolver.resolvers import UrlResolver
from noap_resolver.resolvers.github import get_org_repo_pair


def make_factory(base: Path, with_registry: bool = True, **overrides) -> ResolverFactory:
    config = ResolverConfig(cwd=base, tmp=base / "tmp", storage=StorageConfig(packages=base / "cache"), **overrides)
    context = ResolverContext(config=config)
    registry = Registry(config, context.runtime) if with_registry else None
    return ResolverFactory(context, registry)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "source,expected_class,expected_source",
    [
        ("git://github.com/jquery/jquery.git", GitHubResolver, "git://github.com/jquery/jquery.git"),
        ("git@github.com:twbs/bootstrap.git", GitHubResolver, "git@github.com:twbs/bootstrap.git"),
        ("git+https://github.com/org/repo", GitHubResolver, "https://github.com/org/repo"),
        ("git+ssh://git@example.com/org/repo.git", GitRemoteResolver, "ssh://git@example.com/org/repo.git"),
        ("https://example.com/org/repo.git", GitRemoteResolver, "https://example.com/org/repo.git"),
        ("svn+https://svn.example.com/repo", SvnResolver, "svn+https://svn.example.com/repo"),
        ("svn://svn.example.com/repo", SvnResolver, "svn://svn.example.com/repo"),
        ("https://example.com/dist/lib.zip", UrlResolver, "https://example.com/dist/lib.zip"),
    ],
)
async def test_url_dispatch(source, expected_class, expected_source):
    """Test that URL forms map to their resolver type."""
    with tempfile.TemporaryDirectory() as tmpdir:
        factory = make_factory(Path(tmpdir))

        resolver_class, normalized, from_registry = await factory.get_constructor(source)

        assert resolver_class is expected_class
        assert normalized == expected_source
        assert from_registry is False


@pytest.mark.asyncio
async def test_local_path_dispatch():
    """Test git checkouts, svn working copies and plain folders."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "git-pkg" / ".git").mkdir(parents=True)
        (base / "svn-pkg" / ".svn").mkdir(parents=True)
        (base / "plain-pkg").mkdir()
        (base / "file.js").write_text("")
        factory = make_factory(base)

        assert await factory.get_constructor("./git-pkg") == (GitFsResolver, str(base / "git-pkg"), False)
        assert await factory.get_constructor("./svn-pkg") == (SvnResolver, str(base / "svn-pkg"), False)
        assert await factory.get_constructor("./plain-pkg") == (FsResolver, str(base / "plain-pkg"), False)
        assert await factory.get_constructor(str(base / "file.js")) == (FsResolver, str(base / "file.js"), False)


@pytest.mark.asyncio
async def test_shorthand_expansion():
    """Test owner/package shorthands against the host templates."""
    with tempfile.TemporaryDirectory() as tmpdir:
        factory = make_factory(Path(tmpdir))

        resolver_class, source, _ = await factory.get_constructor("jquery/jquery")
        assert resolver_class is GitHubResolver
        assert source == "https://github.com/jquery/jquery.git"

        resolver_class, source, _ = await factory.get_constructor("@gitlab:org/pkg")
        assert resolver_class is GitRemoteResolver
        assert source == "https://gitlab.com/org/pkg.git"


@pytest.mark.asyncio
async def test_custom_host_template():
    """Test a default host given as a raw template."""
    with tempfile.TemporaryDirectory() as tmpdir:
        factory = make_factory(Path(tmpdir), host="git://git.example.com/{{owner}}/{{package}}.git")

        resolver_class, source, _ = await factory.get_constructor("team/widget")

        assert resolver_class is GitRemoteResolver
        assert source == "git://git.example.com/team/widget.git"


@pytest.mark.asyncio
async def test_registry_fallback():
    """Test that unknown names go through the registry and get flagged."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "local-pkg").mkdir()
        factory = make_factory(base, registry={"widget": str(base / "local-pkg")})

        endpoint = Endpoint(source="widget")
        resolver = await factory.create(endpoint)

        assert isinstance(resolver, FsResolver)
        assert resolver.source == str(base / "local-pkg")
        assert resolver.name == "widget"
        assert endpoint.registry is True
        assert endpoint.name == "widget"


@pytest.mark.asyncio
async def test_unknown_in_registry():
    """Test that names the registry doesn't know fail with ENOTFOUND."""
    with tempfile.TemporaryDirectory() as tmpdir:
        factory = make_factory(Path(tmpdir))

        with pytest.raises(PackageNotFoundError, match="not found") as exc_info:
            await factory.get_constructor("no-such-package")

        assert exc_info.value.code == "ENOTFOUND"


@pytest.mark.asyncio
async def test_no_resolver_without_registry():
    """Test that dispatch fails with ENORESOLVER once every rule is exhausted."""
    with tempfile.TemporaryDirectory() as tmpdir:
        factory = make_factory(Path(tmpdir), with_registry=False)

        with pytest.raises(NoResolverError) as exc_info:
            await factory.get_constructor("no-such-package")

        assert exc_info.value.code == "ENORESOLVER"


def test_get_org_repo_pair():
    """Test GitHub URL parsing."""
    assert get_org_repo_pair("git://github.com/jquery/jquery.git") == {"org": "jquery", "repo": "jquery"}
    assert get_org_repo_pair("https://github.com/twbs/bootstrap") == {"org": "twbs", "repo": "bootstrap"}
    assert get_org_repo_pair("git@github.com:twbs/bootstrap.git") == {"org": "twbs", "repo": "bootstrap"}
    assert get_org_repo_pair("https://gitlab.com/org/repo.git") is None
