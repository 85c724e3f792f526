"""Manager: fetch every target concurrently, then dissect the results into an install plan.

One ``resolve()`` call goes idle -> fetching -> dissecting -> done. All targets
are fetched at once (throttling belongs to the shell layer). The first failed
fetch arms a fail-fast timer: when it fires, the remaining fetches are no
longer waited for and the resolution fails with the first error. Fetches are
never cancelled; late results are ignored.
"""

import asyncio
import functools
import logging
import os
from dataclasses import replace
from pathlib import Path

from .config import ResolverConfig
from .election import are_compatible
from .election import elect
from .election import parse_choice
from .election import promote_wildcards
from .election import sort_semver_candidates
from .election import uniquify
from .endpoint import WILDCARD
from .endpoint import Endpoint
from .endpoint import to_data
from .exceptions import ConflictError
from .exceptions import FetchError
from .exceptions import NotInstalledError
from .exceptions import ResolutionError
from .exceptions import WorkingError
from .logger import Logger
from .protocols import BinLinkerProtocol
from .protocols import FileCopierProtocol
from .protocols import PrompterProtocol
from .protocols import ScriptRunnerProtocol
from .repository import FetchResult
from .repository import Repository
from .schema import PackageMeta
from .utils import copy_dir
from .utils import remove

logger = logging.getLogger(__name__)


class LocalFileCopier:
    """Copies packages with the library's own directory copy."""

    async def copy_dir(self, src: Path, dst: Path) -> None:
        await asyncio.to_thread(copy_dir, src, dst)


class ConsolePrompter:
    """Asks on the terminal which conflicting candidate to install."""

    async def prompt(self, message: str, picks: list[dict]) -> str:
        lines = ["", "Please choose a suitable version:"]
        for number, pick in enumerate(picks, start=1):
            endpoint = pick["endpoint"]
            release = (pick.get("pkg_meta") or {}).get("_release")
            dependants = ", ".join(
                item["endpoint"]["name"] or item["endpoint"]["source"] for item in pick["dependants"]
            )
            line = f"  {number}) {endpoint['name']}#{endpoint['target']}"
            if release:
                line += f" which resolved to {release}"
            if dependants:
                line += f" and is required by {dependants}"
            lines.append(line)
        lines.append("Prefix the choice with ! to persist it")
        print("\n".join(lines))
        return await asyncio.to_thread(input, f"{message} ")


def read_installed(repo_dir: Path) -> dict[str, Endpoint]:
    """
    Build endpoints for the packages installed under ``repo_dir``.

    Folders without a readable ``.package.json`` are skipped.
    """
    repo_dir = Path(repo_dir)
    if not repo_dir.is_dir():
        return {}

    installed = {}
    for package_dir in sorted(repo_dir.iterdir()):
        if not package_dir.is_dir():
            continue
        try:
            meta = PackageMeta.read(package_dir)
        except FileNotFoundError:
            continue
        except ValueError as e:
            logger.warning(f"Skipping {package_dir}: unreadable metadata ({e})")
            continue

        name = package_dir.name
        installed[name] = Endpoint(
            name=name,
            source=meta.original_source or meta.source or str(package_dir),
            target=meta.target or "*",
            canonical_dir=package_dir,
            pkg_meta=meta,
            installed=meta,
        )
    return installed


class Manager:
    """
    Resolves a set of target endpoints into one package per name.

    Example:
        >>> manager = Manager(config)
        >>> manager.configure(targets=[decompose("jquery#~2.0.0")])
        >>> plan = await manager.resolve()
        >>> await manager.install()
    """

    def __init__(
        self,
        config: ResolverConfig,
        logger: Logger | None = None,
        repository: Repository | None = None,
        prompter: PrompterProtocol | None = None,
        script_runner: ScriptRunnerProtocol | None = None,
        file_copier: FileCopierProtocol | None = None,
        bin_linker: BinLinkerProtocol | None = None,
    ):
        self._config = config
        self._logger = logger or Logger()
        self._repository = repository or Repository(config, self._logger)
        self._prompter = prompter or ConsolePrompter()
        self._script_runner = script_runner
        self._file_copier = file_copier or LocalFileCopier()
        self._bin_linker = bin_linker

        self._working = False
        self._generation = 0
        self._resolutions: dict[str, str] = {}
        self._dissected: dict[str, Endpoint] = {}
        self.configure()

    @property
    def repository(self) -> Repository:
        return self._repository

    @property
    def resolutions(self) -> dict[str, str]:
        """Choices remembered from interactive answers marked with ``!`` (name -> target)."""
        return dict(self._resolutions)

    @property
    def dissected(self) -> dict[str, Endpoint]:
        return dict(self._dissected)

    @property
    def installed(self) -> dict[str, PackageMeta]:
        return dict(self._installed)

    @property
    def conflicted(self) -> set[str]:
        return set(self._conflicted)

    def configure(
        self,
        targets: list[Endpoint] | None = None,
        resolved: dict[str, Endpoint] | None = None,
        installed: dict[str, PackageMeta] | None = None,
        force_latest: bool = False,
    ) -> "Manager":
        """
        Set what the next ``resolve()`` works on.

        Args:
            targets: Endpoints to fetch; duplicates (same name or source, same target) collapse to the last
            resolved: Already resolved endpoints by name; they take part in elections and count as installed
            installed: Installed metadata by name, for the already-installed skip rule
            force_latest: Settle conflicts with the highest candidate instead of failing or prompting
        """
        self._conflicted: dict[str, bool] = {}

        targets = list(targets or [])
        for endpoint in targets:
            endpoint.initial_name = endpoint.name

        self._resolved: dict[str, list[Endpoint]] = {}
        self._installed: dict[str, PackageMeta] = {}
        for name, endpoint in (resolved or {}).items():
            self._resolved[name] = [endpoint]
            if endpoint.pkg_meta is not None:
                self._installed[name] = endpoint.pkg_meta

        self._installed.update(installed or {})
        self._targets = uniquify(targets)
        self._force_latest = force_latest or self._config.force_latest
        return self

    async def resolve(self) -> dict[str, Endpoint]:
        """
        Fetch every target and elect one package per name.

        Returns:
            The packages to install, by name

        Raises:
            WorkingError: If this manager is already resolving or installing
            ConflictError: If a conflict cannot be settled (non-interactive, no force)
            ResolutionError: The first fetch error, if any fetch failed
        """
        if self._working:
            raise WorkingError()

        self._working = True
        try:
            await self._fetch_all()
            return await self._dissect()
        finally:
            self._working = False
            self._cancel_fail_fast()

    async def _fetch_all(self) -> None:
        self._generation += 1
        self._fetching: dict[str | None, list[Endpoint]] = {}
        self._tasks: dict[int, asyncio.Future] = {}
        self._shared: set[int] = set()
        self._nr_fetching = 0
        self._failed: dict[str | None, list[Exception]] = {}
        self._has_failed = False
        self._fail_fast_handle: asyncio.TimerHandle | None = None
        self._done = asyncio.get_running_loop().create_future()

        if not self._targets:
            # Keep completion asynchronous even with nothing to fetch
            await asyncio.sleep(0)
            return

        for endpoint in self._targets:
            self._fetch(endpoint)

        if self._nr_fetching > 0:
            await self._done

    def _fetch(self, endpoint: Endpoint) -> None:
        if self._has_failed:
            return

        name = endpoint.name
        fetching = self._fetching.setdefault(name, [])

        # Share a compatible fetch already in flight for the same name
        task = None
        if name:
            for other in fetching:
                if id(other) in self._tasks and are_compatible(endpoint, other):
                    task = self._tasks[id(other)]
                    logger.debug(f"Reusing in-flight fetch of {other.source}#{other.target} for {endpoint.target}")
                    break

        if task is None:
            task = asyncio.ensure_future(self._repository.fetch(endpoint))
        else:
            self._shared.add(id(endpoint))

        fetching.append(endpoint)
        self._nr_fetching += 1
        self._watch(endpoint, task)

    def _watch(self, endpoint: Endpoint, task: asyncio.Future) -> None:
        self._tasks[id(endpoint)] = task
        task.add_done_callback(functools.partial(self._on_fetch_done, endpoint, self._generation))

    def _on_fetch_done(self, endpoint: Endpoint, generation: int, task: asyncio.Future) -> None:
        if task.cancelled():
            error: Exception | None = FetchError(f"Fetch of {endpoint.source} was cancelled")
        else:
            error = task.exception()

        # Stragglers of a finished (or fail-fast ended) resolution are ignored
        if generation != self._generation or self._done.done():
            return

        self._tasks.pop(id(endpoint), None)
        if error is not None:
            self._on_fetch_error(endpoint, error)
        else:
            self._on_fetch_success(endpoint, task.result())

    def _stop_fetching(self, endpoint: Endpoint, name: str | None) -> None:
        fetching = self._fetching.get(name, [])
        for index, other in enumerate(fetching):
            if other is endpoint:
                del fetching[index]
                break
        self._nr_fetching -= 1

    def _on_fetch_success(self, endpoint: Endpoint, result: FetchResult) -> None:
        # A shared fetch may have landed on a version this endpoint does not accept
        if id(endpoint) in self._shared:
            self._shared.discard(id(endpoint))
            served = Endpoint(
                source=endpoint.source,
                name=endpoint.name,
                target=result.pkg_meta.target or WILDCARD,
                pkg_meta=result.pkg_meta,
            )
            if not are_compatible(endpoint, served):
                logger.debug(
                    f"Shared fetch of {endpoint.source} gave {served.version}, fetching {endpoint.target} on its own"
                )
                self._watch(endpoint, asyncio.ensure_future(self._repository.fetch(endpoint)))
                return

        initial_name = endpoint.initial_name if endpoint.initial_name is not None else endpoint.name
        self._stop_fetching(endpoint, initial_name)

        resolved_endpoint = replace(
            endpoint,
            name=endpoint.name or result.pkg_meta.name,
            canonical_dir=result.canonical_dir,
            pkg_meta=result.pkg_meta,
            untargetable=endpoint.untargetable or not result.targetable,
            dependants=list(endpoint.dependants),
        )
        name = resolved_endpoint.name

        # The same target may arrive twice when names were unknown upfront
        resolved = self._resolved.setdefault(name, [])
        for index, other in enumerate(resolved):
            if other.target == resolved_endpoint.target:
                resolved_endpoint.dependants = uniquify([*resolved_endpoint.dependants, *other.dependants])
                del resolved[index]
                break
        resolved.append(resolved_endpoint)

        self._check_done()

    def _on_fetch_error(self, endpoint: Endpoint, error: Exception) -> None:
        name = endpoint.name
        if isinstance(error, ResolutionError):
            error.context["endpoint"] = endpoint.identity()

        self._stop_fetching(endpoint, endpoint.initial_name if endpoint.initial_name is not None else name)
        self._failed.setdefault(name, []).append(error)
        self._fail_fast()
        self._check_done()

    def _check_done(self) -> None:
        if self._nr_fetching <= 0 and not self._done.done():
            self._done.set_result(None)

    def _fail_fast(self) -> None:
        if self._has_failed:
            return

        self._has_failed = True
        self._fail_fast_handle = asyncio.get_running_loop().call_later(
            self._config.fail_fast_timeout, self._on_fail_fast_timeout, self._generation
        )

    def _on_fail_fast_timeout(self, generation: int) -> None:
        if generation != self._generation or self._done.done():
            return

        logger.debug(f"Giving up on {self._nr_fetching} pending fetch(es) after a failure")
        self._nr_fetching = 0
        self._done.set_result(None)

    def _cancel_fail_fast(self) -> None:
        handle = getattr(self, "_fail_fast_handle", None)
        if handle is not None:
            handle.cancel()
            self._fail_fast_handle = None

    async def _dissect(self) -> dict[str, Endpoint]:
        self._cancel_fail_fast()

        if self._has_failed:
            raise next(iter(self._failed.values()))[0]

        suitables: dict[str, Endpoint] = {}
        for name, endpoints in self._resolved.items():
            semvers = sort_semver_candidates([endpoint for endpoint in endpoints if endpoint.version])
            semvers = promote_wildcards(semvers, self._config.save_prefix)
            non_semvers = [endpoint for endpoint in endpoints if not endpoint.version]
            self._resolved[name] = [*semvers, *non_semvers]

            suitables[name] = await self._elect_suitable(name, semvers, non_semvers)

        repo_dir = self._repo_dir()
        self._dissected = {
            name: endpoint for name, endpoint in suitables.items() if self._needs_install(name, endpoint, repo_dir)
        }
        return dict(self._dissected)

    def _needs_install(self, name: str, endpoint: Endpoint, repo_dir: Path) -> bool:
        if endpoint.linked:
            return False

        if endpoint.canonical_dir and os.path.abspath(endpoint.canonical_dir) == str(repo_dir / name):
            return False

        installed = self._installed.get(name)
        if (
            installed is not None
            and installed.target == endpoint.target
            and installed.original_source == endpoint.source
            and installed.release == endpoint.release
        ):
            return self._config.force

        return True

    async def _elect_suitable(self, name: str, semvers: list[Endpoint], non_semvers: list[Endpoint]) -> Endpoint:
        election = elect(name, semvers, non_semvers, force_latest=self._force_latest)
        if not election.conflicted:
            return election.suitable

        self._conflicted[name] = True
        message = f"Unable to find suitable version for {name}"
        picks = election.data_picks()

        if election.suitable is not None:
            self._logger.conflict(
                "solved", message, {"name": name, "picks": picks, "suitable": picks[-1], "forced": True}
            )
            return election.suitable

        remembered = self._resolutions.get(name)
        if remembered is not None:
            for index, pick in enumerate(election.picks):
                if pick.target == remembered:
                    self._logger.conflict(
                        "solved", message, {"name": name, "picks": picks, "suitable": picks[index], "resolution": True}
                    )
                    return pick

        if not self._config.interactive:
            raise ConflictError(message, name, picks)

        self._logger.conflict("incompatible", message, {"name": name, "picks": picks})

        choice = None
        while choice is None:
            answer = await self._prompter.prompt("Answer:", picks)
            choice = parse_choice(answer, len(picks))
            if choice is None:
                self._logger.warn("invalid", f"Invalid choice: {answer.strip()}", {"name": name})

        index, remember = choice
        pick = election.picks[index]
        if remember:
            self._resolutions[name] = pick.target
        return pick

    def _repo_dir(self) -> Path:
        return Path(os.path.abspath(os.path.join(self._config.cwd, self._config.repo)))

    async def preinstall(self) -> None:
        """Run the pre-install scripts of the dissected packages, if a script runner is set."""
        if not self._dissected or self._script_runner is None:
            return
        await asyncio.to_thread(self._repo_dir().mkdir, parents=True, exist_ok=True)
        await self._script_runner.preinstall(self.dissected, self.installed)

    async def postinstall(self) -> None:
        """Run the post-install scripts of the dissected packages, if a script runner is set."""
        if not self._dissected or self._script_runner is None:
            return
        await asyncio.to_thread(self._repo_dir().mkdir, parents=True, exist_ok=True)
        await self._script_runner.postinstall(self.dissected, self.installed)

    async def install(self) -> dict[str, dict]:
        """
        Copy every dissected package to ``<repo>/<name>``.

        The installed sidecar records ``_target``, ``_originalSource`` and, for
        packages the user asked for, ``_direct``.

        Returns:
            ``name -> to_data(endpoint)`` of the installed packages
        """
        if self._working:
            raise WorkingError()

        if not self._dissected:
            return {}

        self._working = True
        try:
            repo_dir = self._repo_dir()
            await asyncio.to_thread(repo_dir.mkdir, parents=True, exist_ok=True)
            await asyncio.gather(
                *(self._install_one(name, endpoint, repo_dir) for name, endpoint in list(self._dissected.items()))
            )
            return {name: to_data(endpoint) for name, endpoint in self._dissected.items()}
        finally:
            self._working = False

    async def _install_one(self, name: str, endpoint: Endpoint, repo_dir: Path) -> None:
        release = endpoint.release
        self._logger.action("install", f"{name}#{release}" if release else name, to_data(endpoint))

        dst = repo_dir / name
        await asyncio.to_thread(remove, dst)
        await self._file_copier.copy_dir(Path(endpoint.canonical_dir), dst)

        try:
            meta = await asyncio.to_thread(PackageMeta.read, dst)
        except FileNotFoundError as e:
            raise NotInstalledError(f"{name} was not installed to {dst}", context=to_data(endpoint)) from e
        meta.target = endpoint.target
        meta.original_source = endpoint.source
        if endpoint.newly:
            meta.direct = True
        await asyncio.to_thread(meta.write, dst)

        if self._bin_linker is not None:
            await self._bin_linker.link(name, dst)

        self._dissected[name] = replace(endpoint, canonical_dir=dst, pkg_meta=meta)
        self._installed[name] = meta
