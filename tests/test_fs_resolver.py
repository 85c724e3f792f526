"""Tests for the filesystem resolver."""

import json
import tarfile
import tempfile
from pathlib import Path

import pytest

from noap_resolver import Endpoint
from noap_resolver import ErrorCode
from noap_resolver import NoResolveTargetError
from noap_resolver import ResolverConfig
from noap_resolver import StorageConfig
from noap_resolver.resolvers import FsResolver
from noap_resolver.resolvers import ResolverContext


def make_context(base: Path) -> ResolverContext:
    config = ResolverConfig(cwd=base, tmp=base / "tmp", storage=StorageConfig(packages=base / "cache"))
    return ResolverContext(config=config)


def contents(directory: Path) -> list[str]:
    return sorted(entry.name for entry in directory.iterdir())


@pytest.mark.asyncio
async def test_single_file_renamed_to_index():
    """Test that a folder with one content file gets it renamed to index<ext>."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "pkg-a").mkdir()
        (base / "pkg-a" / "jquery.min.js").write_text("/* jquery */")
        (base / "pkg-a" / ".DS_Store").write_text("")

        resolver = FsResolver(Endpoint(source="./pkg-a"), make_context(base))
        canonical_dir = await resolver.resolve()

        assert "index.js" in contents(canonical_dir)
        assert "jquery.min.js" not in contents(canonical_dir)
        assert resolver.pkg_meta.main == "index.js"
        assert resolver.pkg_meta.name == "pkg-a"
        assert resolver.pkg_meta.source == str(base / "pkg-a")
        assert resolver.pkg_meta.target == "*"
        assert json.loads((canonical_dir / ".package.json").read_text())["main"] == "index.js"


@pytest.mark.asyncio
async def test_metadata_only_folder_not_renamed():
    """Test that a folder holding just its package.json is left alone."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "pkg-b").mkdir()
        (base / "pkg-b" / "package.json").write_text('{"name": "declared-b", "version": "1.0.0"}')

        resolver = FsResolver(Endpoint(source="./pkg-b"), make_context(base))
        canonical_dir = await resolver.resolve()

        assert contents(canonical_dir) == [".package.json", "package.json"]
        assert resolver.pkg_meta.main is None
        # A guessed name gives way to the declared one
        assert resolver.name == "declared-b"
        assert resolver.pkg_meta.release == "1.0.0"


@pytest.mark.asyncio
async def test_ignore_list_honoured():
    """Test that ignored entries are not copied."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        source = base / "pkg-c"
        (source / "test").mkdir(parents=True)
        (source / "test" / "spec.js").write_text("")
        (source / "README.md").write_text("")
        (source / "index.js").write_text("")
        (source / "package.json").write_text('{"name": "pkg-c", "ignore": ["test", "*.md"]}')

        canonical_dir = await FsResolver(Endpoint(source=str(source)), make_context(base)).resolve()

        assert contents(canonical_dir) == [".package.json", "index.js", "package.json"]


@pytest.mark.asyncio
async def test_archive_file_extracted():
    """Test that an archive source is copied and extracted."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        content = base / "content"
        content.mkdir()
        (content / "a.js").write_text("a")
        (content / "b.js").write_text("b")
        archive = base / "pkg-d.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(content, arcname="pkg-d-1.0.0")

        resolver = FsResolver(Endpoint(source="./pkg-d.tar.gz"), make_context(base))
        canonical_dir = await resolver.resolve()

        assert resolver.name == "pkg-d"
        assert contents(canonical_dir) == [".package.json", "a.js", "b.js"]


@pytest.mark.asyncio
async def test_plain_file_source():
    """Test that a single file source becomes index<ext>."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "lib.css").write_text("body {}")

        resolver = FsResolver(Endpoint(source="./lib.css"), make_context(base))
        canonical_dir = await resolver.resolve()

        assert resolver.name == "lib"
        assert contents(canonical_dir) == [".package.json", "index.css"]


def test_targets_rejected():
    """Test that filesystem sources only accept the wildcard."""
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(NoResolveTargetError) as exc_info:
            FsResolver(Endpoint(source="./pkg", target="1.0.0"), make_context(Path(tmpdir)))

        assert exc_info.value.code == ErrorCode.NO_RESOLVE_TARGET


@pytest.mark.asyncio
async def test_not_cacheable_and_untargetable():
    """Test the cache and target capabilities."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "pkg").mkdir()
        resolver = FsResolver(Endpoint(source="./pkg"), make_context(base))

        assert not resolver.is_cacheable()
        assert not FsResolver.is_targetable()
        assert await resolver.has_new(base / "whatever")


@pytest.mark.asyncio
async def test_failed_resolve_cleans_temp_dir():
    """Test that a missing source leaves no temp dir behind."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        resolver = FsResolver(Endpoint(source="./missing"), make_context(base))

        with pytest.raises(OSError):
            await resolver.resolve()

        assert resolver.temp_dir is None
        assert contents(base / "tmp") == []


@pytest.mark.asyncio
async def test_non_semver_declared_version():
    """Test that a package declaring a non-semver version still resolves, without a version."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "pkg").mkdir()
        (base / "pkg" / "package.json").write_text(json.dumps({"name": "pkg", "version": "1.0"}))
        (base / "pkg" / "index.js").write_text("// pkg")

        resolver = FsResolver(Endpoint(source="./pkg"), make_context(base))
        canonical_dir = await resolver.resolve()

        assert (canonical_dir / "index.js").read_text() == "// pkg"
        assert resolver.pkg_meta.name == "pkg"
        assert resolver.pkg_meta.version is None
        assert resolver.pkg_meta.release == "*"
