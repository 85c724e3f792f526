"""Repository: fetch one endpoint through the cache or its resolver."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import replace
from pathlib import Path

from .cache import Cache
from .config import ResolverConfig
from .endpoint import Endpoint
from .exceptions import FetchError
from .exceptions import NoCacheError
from .exceptions import ResolutionError
from .factory import ResolverFactory
from .logger import Logger
from .protocols import RegistryProtocol
from .registry import Registry
from .resolvers import Resolver
from .resolvers import ResolverContext
from .runtime import RuntimeCache
from .schema import PackageMeta
from .sh import Shell

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of a fetch: where the package is, its metadata, and whether its resolver takes targets."""

    canonical_dir: Path
    pkg_meta: PackageMeta
    targetable: bool


class Repository:
    """
    Fetches endpoints, serving them from the cache whenever that is safe.

    For each endpoint one of four paths is taken:

    1. the resolver is not cacheable: resolve fresh
    2. ``force``: resolve fresh, still writing through to the cache
    3. cache miss: fail with ``NoCacheError`` when offline, else resolve fresh
    4. cache hit: use it when offline or when the resolver reports nothing new, else resolve fresh

    Every log event and error raised during a fetch carries the endpoint, the
    resolver and, once known, the cached entry.
    """

    def __init__(
        self,
        config: ResolverConfig,
        logger: Logger | None = None,
        registry: RegistryProtocol | None = None,
        runtime: RuntimeCache | None = None,
        shell: Shell | None = None,
        factory: ResolverFactory | None = None,
    ):
        self._config = config
        self._logger = logger or Logger()
        self._runtime = runtime or RuntimeCache()
        self._registry = registry if registry is not None else Registry(config, self._runtime)
        self._context = ResolverContext(config=config, logger=self._logger, runtime=self._runtime, shell=shell)
        self._cache = Cache(config, self._runtime)
        self._factory = factory or ResolverFactory(self._context, self._registry)

    @property
    def cache(self) -> Cache:
        return self._cache

    @property
    def registry(self) -> RegistryProtocol:
        return self._registry

    async def fetch(self, endpoint: Endpoint) -> FetchResult:
        """
        Fetch an endpoint.

        Raises:
            ResolutionError: Annotated with ``endpoint``/``resolver``/cached entry context;
                unexpected exceptions are wrapped in ``FetchError``
        """
        info: dict = {"endpoint": endpoint}
        fetch_logger = self._logger.geminate().intercept(lambda event: self._extend(event.data, info))
        context = replace(self._context, logger=fetch_logger)

        try:
            return await self._fetch(endpoint, info, fetch_logger, context)
        except ResolutionError as e:
            self._extend(e.context, info)
            raise
        except Exception as e:
            error = FetchError(str(e) or type(e).__name__, context={"cause": type(e).__name__})
            self._extend(error.context, info)
            raise error from e

    async def _fetch(self, endpoint: Endpoint, info: dict, log: Logger, context: ResolverContext) -> FetchResult:
        resolver = await self._factory.create(endpoint, context)
        info["resolver"] = resolver
        targetable = resolver.is_targetable()
        label = f"{resolver.source}#{resolver.target}"

        if not resolver.is_cacheable():
            return await self._resolve(resolver, log)

        # Bypass the cache but still write to it
        if self._config.force:
            log.action("resolve", label)
            return await self._resolve(resolver, log)

        cached = await self._cache.retrieve(resolver.source, resolver.target)
        if cached is None:
            if self._config.offline:
                raise NoCacheError(f"No cached version for {label}", context={"resolver": resolver.identity()})

            log.info("not-cached", label)
            log.action("resolve", label)
            return await self._resolve(resolver, log)

        canonical_dir, pkg_meta = cached
        info["canonical_dir"] = canonical_dir
        info["pkg_meta"] = pkg_meta

        release = f"#{pkg_meta.release}" if pkg_meta.release else ""
        log.info("cached", f"{resolver.source}{release}")

        if self._config.offline:
            return FetchResult(canonical_dir, pkg_meta, targetable)

        log.action("validate", f"{pkg_meta.release + ' against ' if pkg_meta.release else ''}{label}")
        if not await resolver.has_new(canonical_dir, pkg_meta):
            return FetchResult(canonical_dir, pkg_meta, targetable)

        log.info("new", f"version for {label}")
        log.action("resolve", label)
        return await self._resolve(resolver, log)

    async def _resolve(self, resolver: Resolver, log: Logger) -> FetchResult:
        canonical_dir = await resolver.resolve()

        if resolver.is_cacheable():
            canonical_dir = await self._cache.store(canonical_dir, resolver.pkg_meta)

        pkg_meta = resolver.pkg_meta
        release = f"#{pkg_meta.release}" if pkg_meta.release else ""
        log.info("resolved", f"{resolver.source}{release}")
        return FetchResult(canonical_dir, pkg_meta, resolver.is_targetable())

    async def versions(self, source: str) -> list[str]:
        """
        Versions a source offers, highest first.

        The source goes through the factory first since it may be a registry
        name. Offline, only cached versions are listed.
        """
        resolver_class, source, _ = await self._factory.get_constructor(source)
        if self._config.offline:
            return await self._cache.versions(source)
        return await resolver_class.versions(source, self._context)

    async def eliminate(self, pkg_meta: PackageMeta) -> None:
        await self._cache.eliminate(pkg_meta)
        self._registry.clear_cache(pkg_meta.name)

    async def clear(self) -> None:
        await self._cache.clear()
        self._registry.clear_cache()

    def reset(self) -> None:
        self._cache.reset()
        self._registry.reset_cache()

    async def list(self) -> list[dict]:
        return await self._cache.list()

    def clear_runtime_cache(self) -> None:
        """Reset every in-memory layer shared through the runtime cache."""
        self._runtime.reset()

    @staticmethod
    def _extend(data: dict, info: dict) -> dict:
        endpoint = info.get("endpoint")
        if endpoint is not None:
            data["endpoint"] = endpoint.identity()

        resolver = info.get("resolver")
        if resolver is not None:
            data["resolver"] = resolver.identity()

        if info.get("canonical_dir"):
            data["canonical_dir"] = str(info["canonical_dir"])
            data["pkg_meta"] = info["pkg_meta"].to_dict()

        return data
