"""Tests for the Manager: concurrent fetches, dissection and installation."""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from noap_resolver import ConflictError
from noap_resolver import Endpoint
from noap_resolver import ErrorCode
from noap_resolver import FetchError
from noap_resolver import FetchResult
from noap_resolver import Logger
from noap_resolver import Manager
from noap_resolver import PackageMeta
from noap_resolver import ResolverConfig
from noap_resolver import StorageConfig
from noap_resolver import WorkingError
from noap_resolver import read_installed


class FakeRepository:
    """
    Serves fetches from a table of ``"source#target" -> outcome``.

    An outcome is a version string, an exception to raise, or an ``asyncio.Event``
    to wait for before serving ``version`` 1.0.0.
    """

    def __init__(self, base: Path, outcomes: dict):
        self.base = base
        self.outcomes = outcomes
        self.fetched = []

    async def fetch(self, endpoint: Endpoint) -> FetchResult:
        self.fetched.append(endpoint)
        outcome = self.outcomes[f"{endpoint.source}#{endpoint.target}"]

        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, asyncio.Event):
            await outcome.wait()
            outcome = "1.0.0"

        await asyncio.sleep(0)
        return FetchResult(*self._package(endpoint, outcome), targetable=True)

    def _package(self, endpoint: Endpoint, version: str) -> tuple[Path, PackageMeta]:
        canonical_dir = self.base / "cache" / f"{endpoint.source}-{version}"
        canonical_dir.mkdir(parents=True, exist_ok=True)
        meta = PackageMeta.from_dict(
            {
                "name": endpoint.source,
                "version": version,
                "_source": endpoint.source,
                "_target": endpoint.target,
                "_release": version,
            }
        )
        meta.write(canonical_dir)
        (canonical_dir / "index.js").write_text(f"// {version}")
        return canonical_dir, meta


class ScriptedPrompter:
    def __init__(self, answers: list[str]):
        self.answers = list(answers)
        self.prompts = []

    async def prompt(self, message: str, picks: list[dict]) -> str:
        self.prompts.append(picks)
        return self.answers.pop(0)


def make_config(base: Path, **overrides) -> ResolverConfig:
    return ResolverConfig(
        cwd=base,
        tmp=base / "tmp",
        storage=StorageConfig(packages=base / "cache" / "packages"),
        repo=base / "components",
        **overrides,
    )


def foo(target: str, **kwargs) -> Endpoint:
    return Endpoint(source="foo", name="foo", target=target, **kwargs)


@pytest.mark.asyncio
async def test_mutually_compatible_targets_elect_exact_version():
    """Test that ~1.2.0 and 1.2.3 resolving to 1.2.3 elect the 1.2.3 target without prompting."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        repository = FakeRepository(base, {"foo#~1.2.0": "1.2.3", "foo#1.2.3": "1.2.3"})
        manager = Manager(make_config(base), repository=repository)

        dissected = await manager.configure(targets=[foo("~1.2.0"), foo("1.2.3")]).resolve()

        assert list(dissected) == ["foo"]
        assert dissected["foo"].target == "1.2.3"
        assert dissected["foo"].version == "1.2.3"
        assert not manager.conflicted
        # The second target shared the compatible in-flight fetch
        assert len(repository.fetched) == 1


@pytest.mark.asyncio
async def test_shared_fetch_landing_outside_exact_target_is_refetched():
    """Test that an exact target sharing a range fetch gets its own fetch when the range resolves higher."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        repository = FakeRepository(base, {"foo#~1.2.0": "1.2.5", "foo#1.2.3": "1.2.3"})
        manager = Manager(make_config(base), repository=repository)

        dissected = await manager.configure(targets=[foo("~1.2.0"), foo("1.2.3")]).resolve()

        assert [endpoint.target for endpoint in repository.fetched] == ["~1.2.0", "1.2.3"]
        assert dissected["foo"].target == "1.2.3"
        assert dissected["foo"].version == "1.2.3"
        assert dissected["foo"].release == "1.2.3"


@pytest.mark.asyncio
async def test_conflict_rejects_when_not_interactive():
    """Test that incompatible ranges fail with ECONFLICT carrying both candidates."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        repository = FakeRepository(base, {"foo#~1.0.0": "1.0.5", "foo#~2.0.0": "2.0.1"})
        manager = Manager(make_config(base), repository=repository)
        manager.configure(targets=[foo("~1.0.0"), foo("~2.0.0")])

        with pytest.raises(ConflictError) as exc_info:
            await manager.resolve()

        error = exc_info.value
        assert error.code == ErrorCode.CONFLICT
        assert error.name == "foo"
        assert [pick["endpoint"]["target"] for pick in error.picks] == ["~1.0.0", "~2.0.0"]
        assert [pick["pkg_meta"]["version"] for pick in error.picks] == ["1.0.5", "2.0.1"]
        assert "foo" in manager.conflicted


@pytest.mark.asyncio
async def test_force_latest_settles_conflict():
    """Test that force_latest picks the highest candidate and logs the solved conflict."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        logger = Logger()
        events = []
        logger.on_log(events.append)
        repository = FakeRepository(base, {"foo#~1.0.0": "1.0.5", "foo#~2.0.0": "2.0.1"})
        manager = Manager(make_config(base), logger=logger, repository=repository)

        dissected = await manager.configure(targets=[foo("~1.0.0"), foo("~2.0.0")], force_latest=True).resolve()

        assert dissected["foo"].version == "2.0.1"
        solved = [event for event in events if event.level == "conflict"]
        assert [event.id for event in solved] == ["solved"]
        assert solved[0].data["forced"] is True


@pytest.mark.asyncio
async def test_interactive_choice_is_validated_and_remembered():
    """Test prompting, invalid answers and the ! marker."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        logger = Logger()
        events = []
        logger.on_log(events.append)
        repository = FakeRepository(base, {"foo#~1.0.0": "1.0.5", "foo#~2.0.0": "2.0.1"})
        prompter = ScriptedPrompter(["9", "1!"])
        manager = Manager(make_config(base, interactive=True), logger=logger, repository=repository, prompter=prompter)

        dissected = await manager.configure(targets=[foo("~1.0.0"), foo("~2.0.0")]).resolve()

        assert dissected["foo"].version == "1.0.5"
        assert len(prompter.prompts) == 2
        assert manager.resolutions == {"foo": "~1.0.0"}
        assert ("conflict", "incompatible") in [(event.level, event.id) for event in events]
        assert ("warn", "invalid") in [(event.level, event.id) for event in events]

        # The remembered answer is reused without asking again
        dissected = await manager.configure(targets=[foo("~1.0.0"), foo("~2.0.0")]).resolve()
        assert dissected["foo"].version == "1.0.5"
        assert len(prompter.prompts) == 2


@pytest.mark.asyncio
async def test_fail_fast_stops_waiting_for_stragglers():
    """Test that one failure ends the resolution after the grace window even if a fetch hangs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        hanging = asyncio.Event()
        failure = FetchError("network unreachable")
        repository = FakeRepository(
            base,
            {
                "a#*": "1.0.0",
                "b#*": "1.0.0",
                "c#*": "1.0.0",
                "broken#*": failure,
                "slow#*": hanging,
            },
        )
        manager = Manager(make_config(base, fail_fast_timeout=0.05), repository=repository)
        targets = [Endpoint(source=source, name=source) for source in ("a", "b", "c", "broken", "slow")]

        with pytest.raises(FetchError) as exc_info:
            await asyncio.wait_for(manager.configure(targets=targets).resolve(), timeout=5)

        assert exc_info.value is failure
        assert exc_info.value.context["endpoint"]["name"] == "broken"

        # A late result is ignored
        hanging.set()
        await asyncio.sleep(0.01)
        assert manager.dissected == {}

        # The manager is usable again
        repository.outcomes["broken#*"] = "1.0.0"
        dissected = await manager.configure(targets=targets).resolve()
        assert sorted(dissected) == ["a", "b", "broken", "c", "slow"]


@pytest.mark.asyncio
async def test_concurrent_resolve_is_rejected():
    """Test that a busy manager refuses a second resolve."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        gate = asyncio.Event()
        manager = Manager(make_config(base), repository=FakeRepository(base, {"foo#*": gate}))
        manager.configure(targets=[foo("*")])

        task = asyncio.ensure_future(manager.resolve())
        await asyncio.sleep(0)

        with pytest.raises(WorkingError) as exc_info:
            await manager.resolve()
        assert exc_info.value.code == ErrorCode.WORKING

        gate.set()
        dissected = await task
        assert list(dissected) == ["foo"]


@pytest.mark.asyncio
async def test_newly_requested_wildcard_is_promoted():
    """Test that a fresh * install is recorded as a range anchored at the resolved version."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        manager = Manager(make_config(base, save_prefix="^"), repository=FakeRepository(base, {"foo#*": "1.4.2"}))

        dissected = await manager.configure(targets=[foo("*", newly=True)]).resolve()

        assert dissected["foo"].target == "^1.4.2"
        assert dissected["foo"].original_target == "*"


@pytest.mark.asyncio
async def test_filters():
    """Test that linked and already-installed packages are left out of the plan."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        repository = FakeRepository(base, {"foo#~1.0.0": "1.0.0", "bar#*": "2.0.0"})
        installed = PackageMeta.from_dict(
            {"name": "foo", "version": "1.0.0", "_target": "~1.0.0", "_originalSource": "foo", "_release": "1.0.0"}
        )
        targets = [foo("~1.0.0"), Endpoint(source="bar", name="bar", linked=True)]

        manager = Manager(make_config(base), repository=repository)
        assert await manager.configure(targets=targets, installed={"foo": installed}).resolve() == {}

        forced = Manager(make_config(base, force=True), repository=repository)
        dissected = await forced.configure(targets=targets, installed={"foo": installed}).resolve()
        assert list(dissected) == ["foo"]


@pytest.mark.asyncio
async def test_empty_targets_elect_already_resolved():
    """Test that already resolved endpoints take part in the election without fetching."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        repository = FakeRepository(base, {})
        meta = PackageMeta.from_dict({"name": "foo", "version": "1.0.0", "_release": "1.0.0"})
        resolved = Endpoint(source="foo", name="foo", target="~1.0.0", canonical_dir=base / "x", pkg_meta=meta)

        manager = Manager(make_config(base), repository=repository)
        assert await manager.configure().resolve() == {}

        dissected = await manager.configure(resolved={"foo": resolved}).resolve()

        # Installed metadata lacks _target/_originalSource, so it doesn't count as the same install
        assert list(dissected) == ["foo"]
        assert repository.fetched == []


class RecordingScriptRunner:
    def __init__(self):
        self.calls = []

    async def preinstall(self, packages: dict, installed: dict) -> None:
        self.calls.append(("preinstall", sorted(packages)))

    async def postinstall(self, packages: dict, installed: dict) -> None:
        self.calls.append(("postinstall", sorted(packages)))


class RecordingBinLinker:
    def __init__(self):
        self.linked = []

    async def link(self, name: str, package_dir: Path) -> None:
        self.linked.append((name, package_dir))


@pytest.mark.asyncio
async def test_install_writes_sidecar_and_calls_collaborators():
    """Test the install step with fake collaborators."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        scripts = RecordingScriptRunner()
        bins = RecordingBinLinker()
        manager = Manager(
            make_config(base),
            repository=FakeRepository(base, {"foo#~1.0.0": "1.0.3"}),
            script_runner=scripts,
            bin_linker=bins,
        )
        await manager.configure(targets=[foo("~1.0.0", newly=True)]).resolve()

        await manager.preinstall()
        installed = await manager.install()
        await manager.postinstall()

        dst = base / "components" / "foo"
        sidecar = json.loads((dst / ".package.json").read_text())
        assert sidecar["_target"] == "~1.0.0"
        assert sidecar["_originalSource"] == "foo"
        assert sidecar["_direct"] is True
        assert (dst / "index.js").read_text() == "// 1.0.3"

        assert installed["foo"]["canonical_dir"] == str(dst)
        assert installed["foo"]["pkg_meta"]["_release"] == "1.0.3"
        assert scripts.calls == [("preinstall", ["foo"]), ("postinstall", ["foo"])]
        assert bins.linked == [("foo", dst)]


@pytest.mark.asyncio
async def test_local_package_not_reinstalled():
    """Test that requesting the same local package twice only installs it once."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        (base / "pkg-a").mkdir()
        (base / "pkg-a" / "main.js").write_text("// a")
        (base / "pkg-a" / "README").write_text("a")
        config = make_config(base)

        first = Manager(config)
        dissected = await first.configure(targets=[Endpoint(source="./pkg-a", newly=True)]).resolve()
        assert list(dissected) == ["pkg-a"]
        await first.install()

        installed = read_installed(config.repo)
        assert list(installed) == ["pkg-a"]
        assert installed["pkg-a"].source == "./pkg-a"

        second = Manager(config)
        second.configure(
            targets=[Endpoint(source="./pkg-a", newly=True)],
            installed={name: endpoint.pkg_meta for name, endpoint in installed.items()},
        )
        assert await second.resolve() == {}

        forced = Manager(make_config(base, force=True))
        forced.configure(
            targets=[Endpoint(source="./pkg-a")],
            installed={name: endpoint.pkg_meta for name, endpoint in installed.items()},
        )
        assert list(await forced.resolve()) == ["pkg-a"]


def test_read_installed_skips_folders_without_metadata():
    """Test reading the install destination."""
    with tempfile.TemporaryDirectory() as tmpdir:
        repo = Path(tmpdir) / "components"
        (repo / "plain").mkdir(parents=True)
        (repo / "broken").mkdir()
        (repo / "broken" / ".package.json").write_text("{nope")
        (repo / "good").mkdir()
        PackageMeta.from_dict({"name": "good", "_target": "~1.0.0", "_originalSource": "org/good"}).write(repo / "good")

        installed = read_installed(repo)

        assert list(installed) == ["good"]
        assert installed["good"].target == "~1.0.0"
        assert installed["good"].source == "org/good"
        assert read_installed(Path(tmpdir) / "missing") == {}
